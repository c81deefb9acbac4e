from __future__ import annotations

import re
from typing import Iterable


PERMISSION_READ = "read"
PERMISSION_WRITE = "write"
PERMISSION_DELETE = "delete"

MODULE_SIMPLE_TEXT = "simple-text"
MODULE_AI_AGENT = "ai-agent"

_TOKEN_RE = re.compile(r"^[a-z][a-z0-9_.:-]{0,63}$")
_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def normalize_permissions(permissions: Iterable[str]) -> list[str]:
    # Store tokens lowercased, de-duplicated and sorted so rows compare deterministically.
    if isinstance(permissions, (str, bytes)):
        raise ValueError("Permissions must be a list of tokens, not a single string")
    normalized: set[str] = set()
    for raw in permissions:
        token = str(raw).strip().lower()
        if not _TOKEN_RE.match(token):
            raise ValueError(f"Invalid permission token: {raw!r}")
        normalized.add(token)
    return sorted(normalized)


def validate_module_slug(slug: str) -> str:
    # Slugs are lowercase kebab-case identifiers and never change once created.
    candidate = slug.strip()
    if not candidate or len(candidate) > 64 or not _SLUG_RE.match(candidate):
        raise ValueError(f"Invalid module slug: {slug!r}")
    return candidate
