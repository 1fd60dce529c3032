import argparse
import asyncio
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.auth import AuthService, AuthServiceError
from portal.config import load_settings, resolve_config_path
from portal.models import AppRole
from portal.supabase_client import create_provider_client


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Link an existing identity to a portal account and grant it a role"
    )
    parser.add_argument("admin_email", help="Email of the administrator performing the grant")
    parser.add_argument("user_id", help="Identity id of the member to provision")
    parser.add_argument("account_id", help="Account the member belongs to")
    parser.add_argument(
        "--role",
        choices=[role.value for role in AppRole],
        default=AppRole.ACCOUNT_USER.value,
        help="Role to grant (default: account_user)",
    )
    parser.add_argument("--email", default=None, help="Create a profile with this email address")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the portal YAML configuration (defaults to PORTAL_CONFIG or config/portal.yaml)",
    )
    return parser.parse_args(argv)


async def authorize(service: AuthService, admin_id: str, account_id: str, role: AppRole) -> bool:
    """Ask the database whether ``admin_id`` may grant ``role`` in ``account_id``."""
    if await service.is_super_admin(admin_id):
        return True
    if role == AppRole.SUPER_ADMIN:
        return False
    return await service.has_role(admin_id, account_id, AppRole.ACCOUNT_ADMIN)


async def provision(args: argparse.Namespace, password: str) -> int:
    settings = load_settings(resolve_config_path(args.config or os.getenv("PORTAL_CONFIG")))
    client = await create_provider_client(settings)
    service = AuthService(client)
    role = AppRole(args.role)

    try:
        response = await service.sign_in(args.admin_email.strip().lower(), password)
        admin_id = str(response.user.id)

        if not await authorize(service, admin_id, args.account_id, role):
            print("Error: administrator may not grant roles in this account.", file=sys.stderr)
            return 1

        if args.email:
            profile = await service.create_profile(
                args.user_id,
                args.account_id,
                args.email.strip().lower(),
                first_name=args.first_name,
                last_name=args.last_name,
            )
            print(f"Created profile {profile.id} for {profile.display_name}")

        granted = await service.assign_role(args.user_id, args.account_id, role, admin_id)
    except AuthServiceError as exc:
        print(f"Error ({exc.kind.value}): {exc}", file=sys.stderr)
        return 1
    finally:
        try:
            await service.sign_out()
        except AuthServiceError as exc:
            print(f"Warning: sign-out failed: {exc}", file=sys.stderr)

    print(f"Granted {granted.role.value} in account {granted.account_id} to {granted.user_id}")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    password = getpass.getpass("Administrator password: ")
    try:
        return asyncio.run(provision(args, password))
    except (RuntimeError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
