"""
Database seeding script for initial users.

Creates an enabled admin who is also an order creator, plus two regular
members, for development. Prints a bearer token for each, since sign-in
is handled by the identity integration.

Run with: python -m chickentender.seed_users
"""

import asyncio
from datetime import timedelta

from sqlalchemy import select

from chickentender.app.core.jwt import create_user_token
from chickentender.app.db.session import AsyncSessionLocal, engine, Base
from chickentender.app.models.enums import Permission
from chickentender.app.models.user import User

SEED_USERS = [
    ("admin@chickentender.local", "Ada", "Admin", Permission.ADMIN | Permission.ORDER_CREATOR),
    ("alice@chickentender.local", "Alice", "Member", Permission.NONE),
    ("bob@chickentender.local", "Bob", "Member", Permission.NONE),
]


async def seed_users():
    """
    Seed initial users.

    Existing users (by email) are left untouched.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Starting user seeding...")

        users = []
        for email, first_name, last_name, permissions in SEED_USERS:
            result = await db.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

            if user:
                print(f"User {email} already exists, skipping")
            else:
                user = User(
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    enabled=True,
                    permissions=int(permissions),
                    coins=0
                )
                db.add(user)
                print(f"Created {email} with permissions {permissions.names()}")
            users.append(user)

        await db.commit()

        print("\nDevelopment tokens (valid 7 days):")
        for user in users:
            token = create_user_token(user, expires_delta=timedelta(days=7))
            print(f"  {user.email}: {token}")


if __name__ == "__main__":
    asyncio.run(seed_users())
