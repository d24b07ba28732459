#!/usr/bin/env python3
"""
Capstone Tracker -- command-line administration.

Usage:
  python main.py seed
  python main.py create-user instructor@college.edu --first-name Ada --last-name Lovelace --role INSTRUCTOR
  python main.py serve --host 127.0.0.1 --port 8000

Environment variables (or .env):
  AUTH_DB_URL, PROJECTS_DB_URL   Database URLs. Empty = SQLite files next to the stores.
  SECRET_KEY / DEBUG             See core/config.py.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.models import UserRole


def _user_store() -> UserStore:
    url = get_settings().auth_db_url
    return UserStore(db_url=url) if url else UserStore()


def _cmd_seed(args: argparse.Namespace) -> int:
    from projects.seed import SEED_PASSWORD, seed_demo_data
    from projects.store import ProjectStore

    url = get_settings().projects_db_url
    user_store = _user_store()
    project_store = ProjectStore(db_url=url) if url else ProjectStore()
    try:
        created = seed_demo_data(user_store, project_store)
    finally:
        project_store.close()
        user_store.close()

    print("\nCapstone Tracker -- demo data")
    print("-" * 40)
    for key, count in created.items():
        print(f"  {key:<10} {count} created")
    print(f"\nAll demo accounts use the password '{SEED_PASSWORD}'.")
    return 0


def _cmd_create_user(args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    min_len = get_settings().min_password_length
    if len(password) < min_len:
        print(f"  [!] Password must be at least {min_len} characters long.", file=sys.stderr)
        return 1

    store = _user_store()
    try:
        user_id = store.create_user(
            User(
                username=args.email,
                role=args.role,
                first_name=args.first_name,
                last_name=args.last_name,
                hashed_password=hash_password(password),
            )
        )
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.", file=sys.stderr)
        return 1
    finally:
        store.close()

    print(f"Created {args.role} {args.email.lower()} (id={user_id}).")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="capstone-tracker",
        description="Administration commands for the Capstone Tracker service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user ada@college.edu --first-name Ada --last-name Lovelace --role INSTRUCTOR
  python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed", help="Load the demo instructor, students, and sample project")
    seed.set_defaults(func=_cmd_seed)

    create = sub.add_parser("create-user", help="Provision an account with a local password")
    create.add_argument("email", help="Login email address")
    create.add_argument("--first-name", default="", help="Given name")
    create.add_argument("--last-name", default="", help="Family name")
    create.add_argument(
        "--role",
        choices=[r.value for r in UserRole],
        default=UserRole.STUDENT.value,
        help="Account role (default: STUDENT)",
    )
    create.add_argument("--password", help="Password (prompted when omitted)")
    create.set_defaults(func=_cmd_create_user)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
