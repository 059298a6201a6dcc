"""
Storage for linked accounts, analytics snapshots and OAuth state.
"""

from .account_store import SocialAccountStore
from .db import Database
from .nonce_store import NonceStore, PendingLink
from .redis_client import RedisClient
from .schema import ensure_schema
from .snapshot_store import AnalyticsSnapshotStore

__all__ = [
    "AnalyticsSnapshotStore",
    "Database",
    "NonceStore",
    "PendingLink",
    "RedisClient",
    "SocialAccountStore",
    "ensure_schema",
]
