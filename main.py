#!/usr/bin/env python3
"""
Gatehouse -- administrative command line.

Operates directly on the configured database (DATABASE_URL), bypassing the
HTTP layer. Intended for operators: unlocking accounts when the API admin is
itself locked out, running a sweep from cron, or inspecting an identity.

Usage:
  python main.py show 42
  python main.py unlock 42
  python main.py verify-email 42
  python main.py delete 42
  python main.py sweep
  python main.py stats

Configuration comes from the environment / .env file only (see core/config.py).
"""

import argparse
import logging
import sys
from typing import Optional

from auth.errors import NotFoundError
from auth.models import Identity
from auth.service import SessionService, build_service
from core.config import get_settings


def _print_identity(identity: Identity) -> None:
    print(f"  id:               {identity.id}")
    print(f"  username:         {identity.username}")
    print(f"  email:            {identity.email}")
    print(f"  email verified:   {'yes' if identity.email_verified else 'no'}")
    print(f"  locked:           {'yes' if identity.account_locked else 'no'}")
    if identity.locked_at:
        print(f"  locked at:        {identity.locked_at.isoformat()}")
    print(f"  failed attempts:  {identity.failed_login_attempts}")
    print(f"  last login:       {identity.last_login_at.isoformat() if identity.last_login_at else 'never'}")
    print(f"  roles:            {', '.join(identity.roles) or '-'}")


def _cmd_show(service: SessionService, args: argparse.Namespace) -> int:
    _print_identity(service.get_identity(args.identity_id))
    print(f"  active sessions:  {service.sessions.count_active(args.identity_id)}")
    return 0


def _cmd_unlock(service: SessionService, args: argparse.Namespace) -> int:
    identity = service.unlock(args.identity_id)
    print(f"  Unlocked {identity.username} (id {identity.id}).")
    return 0


def _cmd_verify_email(service: SessionService, args: argparse.Namespace) -> int:
    identity = service.verify_email(args.identity_id)
    print(f"  Marked {identity.email} as verified.")
    return 0


def _cmd_delete(service: SessionService, args: argparse.Namespace) -> int:
    service.delete_identity(args.identity_id)
    print(f"  Deleted identity {args.identity_id}; all its sessions are revoked.")
    return 0


def _cmd_sweep(service: SessionService, args: argparse.Namespace) -> int:
    removed = service.sweep_expired_sessions()
    print(f"  Removed {removed} expired refresh session(s).")
    return 0


def _cmd_stats(service: SessionService, args: argparse.Namespace) -> int:
    print(f"  identities: {service.identities.count_active()}")
    print(f"  locked:     {service.identities.count_locked()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Gatehouse account administration.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for name, handler, help_text in (
        ("show", _cmd_show, "Show an identity and its session count"),
        ("unlock", _cmd_unlock, "Clear lockout and reset the failed-attempt counter"),
        ("verify-email", _cmd_verify_email, "Mark an identity's email as verified"),
        ("delete", _cmd_delete, "Soft-delete an identity and revoke its sessions"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("identity_id", type=int, help="Numeric identity ID")
        p.set_defaults(handler=handler)

    p = sub.add_parser("sweep", help="Delete expired refresh sessions")
    p.set_defaults(handler=_cmd_sweep)
    p = sub.add_parser("stats", help="Count live and locked identities")
    p.set_defaults(handler=_cmd_stats)
    return parser


def main(argv: Optional[list[str]] = None, service: Optional[SessionService] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    own_service = service is None
    if service is None:
        service = build_service(get_settings())
    try:
        return args.handler(service, args)
    except NotFoundError:
        print(f"  [!] No identity with id {args.identity_id}.")
        return 1
    finally:
        if own_service:
            service.db.close()


if __name__ == "__main__":
    sys.exit(main())
