"""Utility helpers for administrative tasks."""
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine

from . import models  # noqa: F401  (registers tables on Base.metadata)
from .config import Settings, configure_logging, get_settings
from .database import Base, create_engine, create_session_factory
from .security import AuthService
from .values import Role

logger = logging.getLogger(__name__)


async def init_database(db_engine: AsyncEngine) -> None:
    """Create database tables for the application."""

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_admin(settings: Settings, username: str, password: str) -> None:
    """Register an admin account; the register endpoint itself requires one."""

    engine = create_engine(settings)
    try:
        await init_database(engine)
        async with create_session_factory(engine)() as session:
            user = await AuthService(settings).register(session, username, password, Role.ADMIN)
            await session.commit()
            logger.info("Admin account %s ready", user.username)
    finally:
        await engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    parser = argparse.ArgumentParser(prog="supply-ledger-admin")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init-db", help="create database tables")
    admin_parser = commands.add_parser("create-admin", help="register an admin user")
    admin_parser.add_argument("--username", required=True)
    admin_parser.add_argument("--password", required=True)
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    if args.command == "init-db":
        engine = create_engine(settings)

        async def _run() -> None:
            try:
                await init_database(engine)
            finally:
                await engine.dispose()

        asyncio.run(_run())
    else:
        asyncio.run(create_admin(settings, args.username, args.password))


if __name__ == "__main__":
    main()
