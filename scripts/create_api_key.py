from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
import sys

from modulehub.core.errors import ModuleHubError
from modulehub.persistence.db import SessionLocal
from modulehub.services.auth.api_keys import issue_api_key


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue an API key for an existing modulehub user")
    parser.add_argument("--user-id", required=True, help="User identifier the key authenticates as")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    parser.add_argument(
        "--expires-in-days",
        type=int,
        default=None,
        help="Optional lifetime; keys without one never expire",
    )
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    expires_at = None
    if args.expires_in_days is not None:
        if args.expires_in_days <= 0:
            raise ValueError("--expires-in-days must be positive")
        expires_at = datetime.now(timezone.utc) + timedelta(days=args.expires_in_days)

    async with SessionLocal() as session:
        api_key, raw_key = await issue_api_key(
            session,
            user_id=args.user_id,
            name=args.name,
            expires_at=expires_at,
            actor_id="create_api_key",
        )

    print("API key created:")
    print(f"  key_id: {api_key.id}")
    print(f"  key_prefix: {api_key.key_prefix}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except (ModuleHubError, ValueError) as exc:
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
