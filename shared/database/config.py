from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import urlparse

from dotenv import load_dotenv

from shared.config import config

logger = logging.getLogger(__name__)

# Ensure environment variables from .env are available when running locally.
try:
    load_dotenv()
except PermissionError:
    logger.warning(
        "Could not read .env file due to insufficient permissions. "
        "Continuing with existing environment variables.",
    )


MODEL_MODULES = [
    "shared.database.models",
    "shared.database.workflow_models",
]


def _parse_postgres_credentials(url: str) -> Dict[str, Any]:
    """Convert a postgres-style DSN into asyncpg credential kwargs."""
    parsed = urlparse(url)
    if parsed.scheme not in {"postgres", "postgresql"}:
        raise ValueError("DATABASE_URL must use postgres:// or postgresql:// scheme")

    database = (parsed.path or "").lstrip("/") or "postgres"

    credentials = {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": parsed.username,
        "password": parsed.password,
        "database": database,
        "minsize": config.db_min_connections,
        "maxsize": config.db_max_connections,
    }

    # asyncpg doesn't support a "schema" parameter directly
    if config.db_schema != "public":
        credentials["server_settings"] = {"search_path": config.db_schema}

    return credentials


def build_tortoise_config(database_url: str) -> Dict[str, Any]:
    """Build the Tortoise ORM settings for a connection string."""
    if database_url.startswith(("postgres://", "postgresql://")):
        connection: Any = {
            "engine": "tortoise.backends.asyncpg",
            "credentials": _parse_postgres_credentials(database_url),
        }
    else:
        connection = database_url

    return {
        "connections": {"default": connection},
        "apps": {
            "models": {
                "models": list(MODEL_MODULES),
                "default_connection": "default",
            },
        },
        "use_tz": True,
        "timezone": "UTC",
    }


__all__ = ["MODEL_MODULES", "build_tortoise_config"]
