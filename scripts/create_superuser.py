#!/usr/bin/env python3
"""
Create an admin account that can sign in to the blog's admin area.

Prompts for anything not passed on the command line. The password is read
twice without echo and hashed with the configured password hasher.

Usage: python scripts/create_superuser.py [--email EMAIL] [--dsn DSN]
"""

import argparse
import asyncio
import getpass
import os
import sys
from typing import List, Optional

from service_blog.app.adapters.user_store import PostgresUserStore, UserRecord, UserStore
from service_blog.app.auth.passwords import PasswordHasher, build_password_hasher
from shared.config import get_config
from shared.errors import AccessLayerException, ConflictError

MIN_PASSWORD_LENGTH = 6


def validate_superuser_input(email: str, first_name: str, last_name: str,
                             password: str, password_confirm: str) -> List[str]:
    """Return one message per problem; empty when the input is usable."""
    errors = []
    if not email or "@" not in email:
        errors.append("A valid email address is required")
    if not first_name.strip():
        errors.append("First name is required")
    if not last_name.strip():
        errors.append("Last name is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    elif password != password_confirm:
        errors.append("Passwords do not match")
    return errors


async def create_superuser(store: UserStore, hasher: PasswordHasher, email: str,
                           first_name: str, last_name: str, password: str) -> UserRecord:
    if await store.get_user_by_email(email) is not None:
        raise ConflictError(f"User with email {email} already exists")
    password_hash = await hasher.hash(password)
    return await store.create_user(
        email,
        password_hash,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        is_superuser=True,
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a blog admin account.")
    parser.add_argument("--email", help="Admin email address")
    parser.add_argument("--first-name", help="Admin first name")
    parser.add_argument("--last-name", help="Admin last name")
    parser.add_argument("--dsn", default=os.getenv("BLOG_POSTGRES_DSN"), help="PostgreSQL DSN (default: $BLOG_POSTGRES_DSN)")
    return parser.parse_args(argv)


async def _run(dsn: str, email: str, first_name: str, last_name: str, password: str) -> UserRecord:
    config = get_config("blog", 8000, postgres_dsn=dsn)
    store = PostgresUserStore(dsn)
    await store.start()
    try:
        return await create_superuser(store, build_password_hasher(config), email, first_name, last_name, password)
    finally:
        await store.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    if not args.dsn:
        print("[create-superuser] no database configured, pass --dsn or set BLOG_POSTGRES_DSN", file=sys.stderr)
        return 2

    try:
        email = (args.email or input("Email address: ")).strip()
        first_name = args.first_name or input("First name: ")
        last_name = args.last_name or input("Last name: ")
        password = getpass.getpass("Password: ")
        password_confirm = getpass.getpass("Password (again): ")
    except (KeyboardInterrupt, EOFError):
        print()
        return 130

    errors = validate_superuser_input(email, first_name, last_name, password, password_confirm)
    if errors:
        for message in errors:
            print(f"[create-superuser] {message}", file=sys.stderr)
        return 2

    try:
        user = asyncio.run(_run(args.dsn, email, first_name, last_name, password))
    except ConflictError as exc:
        print(f"[create-superuser] {exc.message}", file=sys.stderr)
        return 1
    except AccessLayerException as exc:
        print(f"[create-superuser] failed: {exc.message}", file=sys.stderr)
        return 1

    print("[create-superuser] superuser created")
    print(f"  email: {user.email}")
    print(f"  name:  {user.first_name} {user.last_name}")
    print(f"  id:    {user.id}")
    print("[create-superuser] sign in at /admin/login")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
