"""
Linked social account storage with Postgres backend and in-memory fallback.

Invariants:
- At most one row per (user_id, platform); relinking updates it in place.
- Token rotation writes access token, refresh token and expiry in one
  statement, so readers never see a mix of two refresh responses.
- Accounts are deactivated, never deleted.
"""

import asyncio
import logging
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import asyncpg

from socialdash.exceptions import StorageError
from socialdash.types.social import (
    OAuthTokens,
    PlatformProfile,
    SocialAccount,
    SocialPlatform,
    utcnow,
)

from .db import Database

logger = logging.getLogger(__name__)

ACCOUNT_COLUMNS = (
    "id, user_id, platform, platform_account_id, handle, access_token, "
    "refresh_token, token_expires_at, is_active, created_at, updated_at"
)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StorageError."""
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"{operation} failed: {type(e).__name__}: {e}")
        raise StorageError(f"Storage unavailable during {operation}") from e


def _row_to_account(row) -> SocialAccount:
    return SocialAccount(**dict(row))


class SocialAccountStore:
    """
    Store for SocialAccount rows.

    Uses Postgres when the Database is configured, otherwise a process-local
    dictionary (development and tests).
    """

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db = db
        self._accounts: Dict[str, SocialAccount] = {}
        self._by_owner: Dict[Tuple[str, SocialPlatform], str] = {}

    @property
    def using_memory(self) -> bool:
        return self._db is None or not self._db.is_configured

    # =========================================================================
    # Writes
    # =========================================================================

    async def upsert_account(
        self,
        user_id: str,
        platform: SocialPlatform,
        profile: PlatformProfile,
        tokens: OAuthTokens,
    ) -> SocialAccount:
        """
        Insert or update the (user, platform) account and mark it active.

        Args:
            user_id: Owner of the account
            platform: Linked platform
            profile: Identity returned by the provider
            tokens: Tokens from the code exchange

        Returns:
            The stored account
        """
        if self.using_memory:
            now = utcnow()
            existing_id = self._by_owner.get((user_id, platform))
            existing = self._accounts.get(existing_id) if existing_id else None
            account = SocialAccount(
                id=existing.id if existing else str(uuid.uuid4()),
                user_id=user_id,
                platform=platform,
                platform_account_id=profile.id,
                handle=profile.username,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.expires_at,
                is_active=True,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._accounts[account.id] = account
            self._by_owner[(user_id, platform)] = account.id
            return account

        with storage_errors("upsert_account"):
            row = await self._db.fetchrow(
                f"""
                INSERT INTO social_accounts (
                    id, user_id, platform, platform_account_id, handle,
                    access_token, refresh_token, token_expires_at, is_active
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, TRUE)
                ON CONFLICT (user_id, platform) DO UPDATE SET
                    platform_account_id = EXCLUDED.platform_account_id,
                    handle = EXCLUDED.handle,
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_expires_at = EXCLUDED.token_expires_at,
                    is_active = TRUE,
                    updated_at = NOW()
                RETURNING {ACCOUNT_COLUMNS}
                """,
                str(uuid.uuid4()),
                user_id,
                platform.value,
                profile.id,
                profile.username,
                tokens.access_token,
                tokens.refresh_token,
                tokens.expires_at,
            )
        return _row_to_account(row)

    async def update_tokens(self, account_id: str, tokens: OAuthTokens) -> Optional[SocialAccount]:
        """
        Atomically replace an account's tokens.

        A refresh response without a refresh token keeps the stored one.

        Returns:
            The updated account, or None if it no longer exists
        """
        if self.using_memory:
            current = self._accounts.get(account_id)
            if current is None:
                return None
            updated = current.model_copy(
                update={
                    "access_token": tokens.access_token,
                    "refresh_token": tokens.refresh_token or current.refresh_token,
                    "token_expires_at": tokens.expires_at,
                    "updated_at": utcnow(),
                }
            )
            self._accounts[account_id] = updated
            return updated

        with storage_errors("update_tokens"):
            row = await self._db.fetchrow(
                f"""
                UPDATE social_accounts SET
                    access_token = $2,
                    refresh_token = COALESCE($3, refresh_token),
                    token_expires_at = $4,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING {ACCOUNT_COLUMNS}
                """,
                account_id,
                tokens.access_token,
                tokens.refresh_token,
                tokens.expires_at,
            )
        return _row_to_account(row) if row else None

    async def deactivate(self, account_id: str) -> None:
        """Mark an account inactive; it drops out of every aggregation."""
        if self.using_memory:
            current = self._accounts.get(account_id)
            if current is not None:
                self._accounts[account_id] = current.model_copy(
                    update={"is_active": False, "updated_at": utcnow()}
                )
        else:
            with storage_errors("deactivate"):
                await self._db.execute(
                    "UPDATE social_accounts SET is_active = FALSE, updated_at = NOW() WHERE id = $1",
                    account_id,
                )
        logger.info(f"Deactivated social account {account_id}")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_by_id(self, account_id: str) -> Optional[SocialAccount]:
        if self.using_memory:
            return self._accounts.get(account_id)

        with storage_errors("get_by_id"):
            row = await self._db.fetchrow(
                f"SELECT {ACCOUNT_COLUMNS} FROM social_accounts WHERE id = $1",
                account_id,
            )
        return _row_to_account(row) if row else None

    async def get_account(
        self,
        user_id: str,
        platform: SocialPlatform,
    ) -> Optional[SocialAccount]:
        """The user's account on ``platform``, active or not."""
        if self.using_memory:
            account_id = self._by_owner.get((user_id, platform))
            return self._accounts.get(account_id) if account_id else None

        with storage_errors("get_account"):
            row = await self._db.fetchrow(
                f"SELECT {ACCOUNT_COLUMNS} FROM social_accounts "
                "WHERE user_id = $1 AND platform = $2",
                user_id,
                platform.value,
            )
        return _row_to_account(row) if row else None

    async def list_active_accounts(self, user_id: str) -> List[SocialAccount]:
        """Active accounts for a user, ordered by platform name."""
        if self.using_memory:
            accounts = [
                a for a in self._accounts.values()
                if a.user_id == user_id and a.is_active
            ]
            return sorted(accounts, key=lambda a: a.platform.value)

        with storage_errors("list_active_accounts"):
            rows = await self._db.fetch(
                f"SELECT {ACCOUNT_COLUMNS} FROM social_accounts "
                "WHERE user_id = $1 AND is_active ORDER BY platform",
                user_id,
            )
        return [_row_to_account(row) for row in rows]

    async def count(self) -> int:
        if self.using_memory:
            return len(self._accounts)

        with storage_errors("count"):
            row = await self._db.fetchrow("SELECT COUNT(*) AS n FROM social_accounts")
        return int(row["n"]) if row else 0
