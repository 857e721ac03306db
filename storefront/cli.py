"""Command-line tools for operating a storefront deployment."""

import argparse
import sys
from typing import List, Optional

from .config import load_env
from .db.session import build_engine, build_session_factory
from .errors import StorefrontError
from .models import Base
from .services import AccountService, VerificationLedger
from .utils.validators import validate_name, validate_password, validate_phone


def _session_factory(args: argparse.Namespace):
    engine = build_engine(args.database_url or load_env().database_url)
    Base.metadata.create_all(engine)
    return build_session_factory(engine)


def cmd_create_admin(args: argparse.Namespace) -> int:
    """Create an administrator, or promote the user that owns the phone."""
    try:
        phone = validate_phone(args.phone)
        password = validate_password(args.password)
        name = validate_name(args.name, "name")
        last_name = validate_name(args.last_name, "last_name")
        # admin bootstrap never sends codes, so no ledger is needed
        accounts = AccountService(None, "", _session_factory(args))
        admin = accounts.create_admin(phone=phone, password=password, name=name, last_name=last_name)
    except StorefrontError as e:
        print(f"Error: {e.message} {e.details.get('errors', '')}".rstrip(), file=sys.stderr)
        return 1

    print(f"Administrator ready: {admin['phone']} ({admin['id']})")
    return 0


def cmd_purge_verifications(args: argparse.Namespace) -> int:
    """Delete pending verification records whose code has expired."""
    ledger = VerificationLedger(None, _session_factory(args))
    removed = ledger.purge_expired()
    print(f"Removed {removed} expired verification(s)")
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storefront", description="Storefront operator commands.")
    parser.add_argument("--database-url", help="Database URL (default: DATABASE_URL from settings)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    admin_parser = subparsers.add_parser("create-admin", help="Create or promote an administrator")
    admin_parser.add_argument("--phone", required=True, help="Mobile number, e.g. 09123456789")
    admin_parser.add_argument("--password", required=True, help="Password (at least 6 characters)")
    admin_parser.add_argument("--name", default="Admin", help="First name")
    admin_parser.add_argument("--last-name", default="System", help="Last name")

    subparsers.add_parser("purge-verifications", help="Delete expired verification codes")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    commands = {
        "create-admin": cmd_create_admin,
        "purge-verifications": cmd_purge_verifications,
    }
    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
