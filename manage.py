"""Maintenance commands for the finance tracker database.

Usage:
    python manage.py users
    python manage.py tokens
    python manage.py count
    python manage.py user someone@example.com
    python manage.py clear-tokens
    python manage.py purge-tokens
    python manage.py init-db
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from database import check_database, create_schema, session_scope
from models import Budget, Category, Expense, RefreshToken, User
from services import AuthService

logger = logging.getLogger(__name__)


def _show_users(session: Session) -> None:
    users = AuthService(session).list_users()
    print(f"Users ({len(users)}):")
    for user in users:
        print(f"  #{user.id} {user.email} created {user.created_at:%Y-%m-%d %H:%M}")


def _show_tokens(session: Session) -> None:
    tokens = session.scalars(
        select(RefreshToken).order_by(RefreshToken.created_at.desc())
    ).all()
    print(f"Refresh tokens ({len(tokens)}):")
    for token in tokens:
        print(
            f"  #{token.id} user={token.user_id} "
            f"created {token.created_at:%Y-%m-%d %H:%M} {token.token[:16]}..."
        )


def _show_counts(session: Session) -> None:
    for label, model in (
        ("users", User),
        ("refresh tokens", RefreshToken),
        ("categories", Category),
        ("expenses", Expense),
        ("budgets", Budget),
    ):
        count = session.execute(select(func.count(model.id))).scalar_one()
        print(f"{label}: {count}")


def _show_user(session: Session, email: str) -> int:
    user = AuthService(session).find_by_email(email)
    if user is None:
        print(f"No user with email {email}", file=sys.stderr)
        return 1
    token_count = session.execute(
        select(func.count(RefreshToken.id)).where(RefreshToken.user_id == user.id)
    ).scalar_one()
    print(f"id: {user.id}")
    print(f"email: {user.email}")
    print(f"created: {user.created_at:%Y-%m-%d %H:%M}")
    print(f"active refresh tokens: {token_count}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="manage.py", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("users", help="List registered users")
    sub.add_parser("tokens", help="List stored refresh tokens")
    sub.add_parser("count", help="Show row counts per table")
    user_cmd = sub.add_parser("user", help="Show one user by email")
    user_cmd.add_argument("email")
    sub.add_parser("clear-tokens", help="Delete every stored refresh token")
    sub.add_parser("purge-tokens", help="Delete refresh tokens past their lifetime")
    sub.add_parser("init-db", help="Create missing tables")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)

    if args.command == "init-db":
        create_schema()
        print("Schema ready")
        return 0

    with session_scope() as session:
        if not check_database(session):
            print("Database is unreachable", file=sys.stderr)
            return 1
        if args.command == "users":
            _show_users(session)
        elif args.command == "tokens":
            _show_tokens(session)
        elif args.command == "count":
            _show_counts(session)
        elif args.command == "user":
            return _show_user(session, args.email)
        elif args.command == "clear-tokens":
            removed = AuthService(session).clear_tokens()
            print(f"Removed {removed} refresh token(s)")
        elif args.command == "purge-tokens":
            removed = AuthService(session).purge_stale_tokens()
            print(f"Purged {removed} expired refresh token(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
