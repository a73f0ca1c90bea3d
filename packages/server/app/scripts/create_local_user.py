"""
Script to create a user with a password for local testing.

Coordinator and admin accounts cannot self-register through the API, so this
is how the first ones are made:

    python -m app.scripts.create_local_user --email c@example.org --password secret --role COORDINATOR
"""

import asyncio
import argparse
import uuid

from sqlmodel import select

from app.core.auth import hash_password
from app.core.database import get_session_context
from app.models.user import User
from dms_shared.schemas.common import Role


async def create_user(email: str, password: str, name: str, role: Role, reputation: float):
    async with get_session_context() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user:
            print(f"User {email} already exists ({user.role}).")
            return

        user = User(
            id=uuid.uuid4(),
            email=email,
            name=name,
            role=role.value,
            reputation_score=reputation,
            password_hash=hash_password(password),
        )
        session.add(user)
        print(f"Created {role.value} user: {email}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a local user.")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--password", required=True, help="Password for the user")
    parser.add_argument("--name", default=None, help="Display name (defaults to the email local part)")
    parser.add_argument(
        "--role",
        default=Role.COORDINATOR.value,
        choices=[r.value for r in Role],
        help="Role for the new user",
    )
    parser.add_argument("--reputation", type=float, default=50.0, help="Initial reputation score")

    args = parser.parse_args()

    asyncio.run(
        create_user(
            args.email,
            args.password,
            args.name or args.email.split("@")[0],
            Role(args.role),
            args.reputation,
        )
    )
