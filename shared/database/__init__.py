"""Workflow store connection lifecycle."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from tortoise import Tortoise

from shared.config import config
from shared.database.config import build_tortoise_config
from shared.logger import get_logger

logger = get_logger("shared.database")


def _backend_name(database_url: str) -> str:
    if database_url.startswith(("postgres://", "postgresql://")):
        return "postgres"
    return database_url.split(":", 1)[0] or "unknown"


async def init_db(database_url: Optional[str] = None, *, generate_schemas: Optional[bool] = None) -> None:
    """
    Open the workflow store.

    Defaults come from ``config``: ``DATABASE_URL`` and ``DB_GENERATE_SCHEMAS``.
    Schema generation creates missing tables only and is meant for local
    SQLite stores and tests.
    """
    url = database_url or config.database_url
    if generate_schemas is None:
        generate_schemas = config.db_generate_schemas

    await Tortoise.init(config=build_tortoise_config(url))
    logger.info(f"Workflow store connected ({_backend_name(url)})")

    if generate_schemas:
        logger.warning("Generating workflow store schemas at startup")
        await Tortoise.generate_schemas()


async def close_db() -> None:
    await Tortoise.close_connections()


@asynccontextmanager
async def db_lifespan(_: FastAPI) -> AsyncIterator[None]:
    """FastAPI lifespan that keeps the workflow store open while the app serves."""
    await init_db()
    try:
        yield
    finally:
        logger.info("Closing workflow store connections")
        await close_db()


__all__ = ["close_db", "db_lifespan", "init_db"]
