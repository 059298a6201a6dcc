"""
Append-only storage for account analytics snapshots.
"""

import json
import logging
from typing import List, Optional

from socialdash.types.social import AnalyticsSnapshot

from .account_store import storage_errors
from .db import Database

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = (
    "id, account_id, user_id, platform, followers, following, posts, "
    "avg_engagement, reach_rate, top_post_types, audience_demo, captured_at"
)


def _row_to_snapshot(row) -> AnalyticsSnapshot:
    data = dict(row)
    for key in ("top_post_types", "audience_demo"):
        if isinstance(data.get(key), str):
            data[key] = json.loads(data[key])
    return AnalyticsSnapshot(**data)


class AnalyticsSnapshotStore:
    """Snapshots are only ever inserted; there is no update or delete."""

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db = db
        self._snapshots: List[AnalyticsSnapshot] = []

    @property
    def using_memory(self) -> bool:
        return self._db is None or not self._db.is_configured

    async def append(self, snapshot: AnalyticsSnapshot) -> AnalyticsSnapshot:
        if self.using_memory:
            self._snapshots.append(snapshot)
            return snapshot

        with storage_errors("append_snapshot"):
            await self._db.execute(
                f"""
                INSERT INTO analytics_snapshots ({SNAPSHOT_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb, $11::jsonb, $12)
                """,
                snapshot.id,
                snapshot.account_id,
                snapshot.user_id,
                snapshot.platform.value,
                snapshot.followers,
                snapshot.following,
                snapshot.posts,
                snapshot.avg_engagement,
                snapshot.reach_rate,
                json.dumps(snapshot.top_post_types),
                json.dumps(snapshot.audience_demo),
                snapshot.captured_at,
            )
        logger.debug(f"Stored analytics snapshot {snapshot.id} for account {snapshot.account_id}")
        return snapshot

    async def list_for_account(self, account_id: str, limit: int = 30) -> List[AnalyticsSnapshot]:
        """Most recent snapshots first."""
        if self.using_memory:
            matching = [s for s in self._snapshots if s.account_id == account_id]
            return sorted(matching, key=lambda s: s.captured_at, reverse=True)[:limit]

        with storage_errors("list_snapshots"):
            rows = await self._db.fetch(
                f"SELECT {SNAPSHOT_COLUMNS} FROM analytics_snapshots "
                "WHERE account_id = $1 ORDER BY captured_at DESC LIMIT $2",
                account_id,
                limit,
            )
        return [_row_to_snapshot(row) for row in rows]
