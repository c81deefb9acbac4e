from __future__ import annotations

import argparse
import asyncio
import sys

from modulehub.core.errors import ConflictError, ModuleHubError
from modulehub.domain.actors import ROLE_SYSTEM_ADMIN, ROLE_TENANT_MEMBER
from modulehub.domain.permissions import MODULE_AI_AGENT, MODULE_SIMPLE_TEXT, PERMISSION_READ, PERMISSION_WRITE
from modulehub.persistence.db import SessionLocal
from modulehub.persistence.repos import directory as directory_repo
from modulehub.services import admin as admin_service
from modulehub.services.auth.api_keys import issue_api_key
from modulehub.services.authz.grants import grant_module_access


DEMO_ADMIN_EMAIL = "admin@modulehub.local"
DEMO_OWNER_EMAIL = "owner@acme.local"
DEMO_MEMBER_EMAIL = "member@acme.local"
DEMO_TENANT_NAME = "Acme"

DEMO_MODULES = (
    (MODULE_SIMPLE_TEXT, "Simple Text", "Tenant-scoped text notes"),
    (MODULE_AI_AGENT, "AI Agent", "Conversational assistant"),
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed a demo admin, tenant, members and modules")
    parser.add_argument("--with-keys", action="store_true", help="Also issue API keys for the demo users")
    return parser


async def _seed(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        if await directory_repo.get_user_by_email(session, DEMO_ADMIN_EMAIL) is not None:
            raise ConflictError("Demo data already seeded")

        admin = await admin_service.create_user(session, email=DEMO_ADMIN_EMAIL, role=ROLE_SYSTEM_ADMIN)
        tenant, owner = await admin_service.create_tenant(
            session, name=DEMO_TENANT_NAME, owner_email=DEMO_OWNER_EMAIL
        )
        member = await admin_service.create_user(
            session, email=DEMO_MEMBER_EMAIL, role=ROLE_TENANT_MEMBER, tenant_id=tenant.id
        )
        modules = {}
        for slug, name, description in DEMO_MODULES:
            modules[slug] = await admin_service.create_module(
                session, name=name, slug=slug, description=description
            )

        # Only simple-text is granted; ai-agent stays visible to the admin alone.
        await admin_service.grant_module_to_tenant(
            session, tenant_id=tenant.id, module_id=modules[MODULE_SIMPLE_TEXT].id, actor_id=admin.id
        )
        await grant_module_access(
            session,
            granter_id=owner.id,
            target_id=member.id,
            module_slug=MODULE_SIMPLE_TEXT,
            permissions=[PERMISSION_READ, PERMISSION_WRITE],
        )

        print("Demo data seeded:")
        print(f"  tenant_id: {tenant.id}")
        for label, user in (("admin", admin), ("owner", owner), ("member", member)):
            print(f"  {label}: {user.id} ({user.email})")
            if args.with_keys:
                _api_key, raw_key = await issue_api_key(
                    session, user_id=user.id, name=f"demo-{label}", actor_id="seed_demo"
                )
                print(f"    api_key: {raw_key}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_seed(args))
    except ModuleHubError as exc:
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
