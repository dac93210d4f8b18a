# scripts/create_user.py
"""
Create (or look up) a user and print its API token.
Run: python scripts/create_user.py dev@example.com "Dev User"
"""
from __future__ import annotations

import asyncio
import os
import secrets
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import select

from db.session import session_scope
from models.user import User


async def create_user(email: str, name: str) -> None:
    async with session_scope() as db:
        user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if user:
            print(f"User already exists: {user.id}")
        else:
            user = User(name=name, email=email, api_token=secrets.token_urlsafe(32))
            db.add(user)
            await db.flush()
            print(f"Created user: {user.id}")

        print(f"X-Api-Token: {user.api_token}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        sys.exit("usage: create_user.py EMAIL [NAME]")
    asyncio.run(create_user(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "Dev User"))
