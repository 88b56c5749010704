"""
Create the admin account used to log in to the dashboard.
Run: python -m scripts.create_admin --email admin@example.com --password '...' (from project root).
Existing accounts are left untouched.
"""
import argparse
import asyncio
import getpass
import logging
import os
import sys

# Add parent so we can import from the project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import Database
from logging_config import configure_logging
from services.auth import ensure_admin

logger = logging.getLogger("create_admin")


async def create_admin(email: str, password: str, name: str) -> None:
    db = Database(settings)
    await db.init()
    try:
        async with db.session() as session:
            admin = await ensure_admin(session, email, password, name)
            await session.commit()
            logger.info("Admin ready: %s (%s)", admin.email, admin.id)
    finally:
        await db.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--email", default=settings.admin_email)
    parser.add_argument("--name", default=settings.admin_name)
    parser.add_argument("--password", default=settings.admin_password)
    args = parser.parse_args()

    configure_logging(settings.log_level)
    if not args.email:
        parser.error("--email (or ADMIN_EMAIL) is required")
    password = args.password or getpass.getpass("Password: ")
    if len(password) < 6:
        parser.error("password must be at least 6 characters")
    asyncio.run(create_admin(args.email, password, args.name))


if __name__ == "__main__":
    main()
