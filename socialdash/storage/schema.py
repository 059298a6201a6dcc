"""
DDL for the two durable tables.

``social_accounts`` holds at most one row per (user, platform); relinking
updates it in place. ``analytics_snapshots`` is append-only.
"""

import logging

from .db import Database

logger = logging.getLogger(__name__)

SOCIAL_ACCOUNTS_DDL = """
CREATE TABLE IF NOT EXISTS social_accounts (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT NOT NULL,
    platform            TEXT NOT NULL,
    platform_account_id TEXT NOT NULL,
    handle              TEXT NOT NULL,
    access_token        TEXT NOT NULL,
    refresh_token       TEXT,
    token_expires_at    TIMESTAMPTZ,
    is_active           BOOLEAN NOT NULL DEFAULT TRUE,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT social_accounts_user_platform_key UNIQUE (user_id, platform)
)
"""

ANALYTICS_SNAPSHOTS_DDL = """
CREATE TABLE IF NOT EXISTS analytics_snapshots (
    id             TEXT PRIMARY KEY,
    account_id     TEXT NOT NULL REFERENCES social_accounts (id),
    user_id        TEXT NOT NULL,
    platform       TEXT NOT NULL,
    followers      INTEGER NOT NULL DEFAULT 0,
    following      INTEGER NOT NULL DEFAULT 0,
    posts          INTEGER NOT NULL DEFAULT 0,
    avg_engagement DOUBLE PRECISION NOT NULL DEFAULT 0,
    reach_rate     DOUBLE PRECISION NOT NULL DEFAULT 0,
    top_post_types JSONB NOT NULL DEFAULT '{}'::jsonb,
    audience_demo  JSONB NOT NULL DEFAULT '{}'::jsonb,
    captured_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

INDEXES_DDL = [
    "CREATE INDEX IF NOT EXISTS idx_social_accounts_user_active "
    "ON social_accounts (user_id) WHERE is_active",
    "CREATE INDEX IF NOT EXISTS idx_analytics_snapshots_account_time "
    "ON analytics_snapshots (account_id, captured_at DESC)",
]


async def ensure_schema(db: Database) -> bool:
    """
    Create tables and indexes if they do not exist.

    Returns:
        False when no database is configured, True otherwise
    """
    if not db.is_configured:
        logger.info("No database configured; using in-memory stores")
        return False

    await db.execute(SOCIAL_ACCOUNTS_DDL)
    await db.execute(ANALYTICS_SNAPSHOTS_DDL)
    for statement in INDEXES_DDL:
        await db.execute(statement)

    logger.info("Database schema verified")
    return True
