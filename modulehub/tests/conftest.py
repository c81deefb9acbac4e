from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from uuid import uuid4

# Point the module-level engine at a throwaway SQLite file before any modulehub import.
_TEST_DB_PATH = Path(tempfile.gettempdir()) / f"modulehub-test-{uuid4().hex}.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")

import pytest

from modulehub.core.config import get_settings
from modulehub.domain.models import Base
from modulehub.persistence.db import engine


async def _create_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


@pytest.fixture(scope="session", autouse=True)
def database_schema() -> None:
    # Build tables once from the ORM metadata; tests isolate themselves with unique ids.
    asyncio.run(_create_schema())
    yield
    _TEST_DB_PATH.unlink(missing_ok=True)


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    # Tests that monkeypatch env vars must not leak cached settings into later tests.
    yield
    get_settings.cache_clear()
