"""SQLite key-value storage for dashboard configuration."""

import json
import os
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import SecretStr
from simple_logger.logger import get_logger

from jenkins_allure_insight.models import AuthenticationConfig, BuildConfig

logger = get_logger(name=__name__, level=os.environ.get("LOG_LEVEL", "INFO"))

DB_PATH = Path(os.getenv("DB_PATH", "/data/dashboard.db"))

AUTH_CONFIG_KEY = "jenkins-auth-config"
BUILD_CONFIGS_KEY = "jenkins-build-configs"


async def init_db() -> None:
    """Initialize the database schema.

    Creates the config table if it does not exist.
    """
    logger.info(f"Initializing database at {DB_PATH}")
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await db.commit()


async def save_value(key: str, value: Any) -> None:
    """Save or replace a JSON-serializable value.

    Args:
        key: Storage key.
        value: Value to store.
    """
    logger.debug(f"Saving config value: {key}")
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """
            INSERT OR REPLACE INTO config (key, value_json, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            """,
            (key, json.dumps(value)),
        )
        await db.commit()


async def get_value(key: str) -> Any | None:
    """Retrieve a stored value.

    Args:
        key: Storage key.

    Returns:
        The decoded value if found, None otherwise.
    """
    async with aiosqlite.connect(DB_PATH) as db:
        cursor = await db.execute(
            "SELECT value_json FROM config WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        if row:
            return json.loads(row[0])
        return None


async def delete_value(key: str) -> None:
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM config WHERE key = ?", (key,))
        await db.commit()


async def save_auth_config(auth: AuthenticationConfig) -> None:
    await save_value(
        AUTH_CONFIG_KEY,
        {
            "jsession_id": auth.jsession_id.get_secret_value(),
            "jenkins_base_url": auth.jenkins_base_url,
        },
    )


async def get_auth_config() -> AuthenticationConfig | None:
    data = await get_value(AUTH_CONFIG_KEY)
    if not data:
        return None
    return AuthenticationConfig(
        jsession_id=SecretStr(data["jsession_id"]),
        jenkins_base_url=data["jenkins_base_url"],
    )


async def save_build_configs(configs: list[BuildConfig]) -> None:
    await save_value(
        BUILD_CONFIGS_KEY, [config.model_dump(mode="json") for config in configs]
    )


async def get_build_configs() -> list[BuildConfig]:
    """Load the stored build configurations in their saved order."""
    data = await get_value(BUILD_CONFIGS_KEY)
    if not data:
        return []
    return [BuildConfig.model_validate(item) for item in data]
