"""Per-(user, scope) credential storage with proactive refresh.

Reads and write-backs are separate partition operations; the identity
provider call in between runs outside the partition lock.

Dependencies: escrow.partition, escrow.store_schema, escrow.types
Wired in: escrow/protocol.py → EscrowEngine, escrow/service.py → EscrowService
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable

import httpx

from quidprquo.escrow.partition import Partition
from quidprquo.escrow.store_schema import utc_now_epoch
from quidprquo.escrow.types import (
    Credential,
    IdentityProviderClient,
    UpstreamError,
)

_log = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN_SECONDS = 5 * 60


class CredentialStore:
    """Credentials for one partition, refreshed before they expire."""

    def __init__(
        self,
        partition: Partition,
        identity: IdentityProviderClient,
        *,
        margin_seconds: int = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], int] = utc_now_epoch,
    ) -> None:
        self._partition = partition
        self._identity = identity
        self._margin_seconds = margin_seconds
        self._clock = clock
        self._refresh_locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def put_credential(self, user: str, scope: str, credential: Credential) -> None:
        """Insert or replace the credential for ``(user, scope)``."""
        await self._partition.run(lambda conn: _upsert(conn, user, scope, credential))
        _log.info("Stored credential for user %s in scope %s", user, scope)

    async def get_credential(self, user: str, scope: str) -> Credential | None:
        """Return the stored credential as-is, without refreshing."""
        return await self._partition.run(lambda conn: _select(conn, user, scope))

    async def get_valid_access(self, user: str, scope: str) -> str | None:
        """Return an access token valid for at least the safety margin.

        ``None`` means the user must (re-)authorize: either nothing is stored
        or the refresh attempt failed. Concurrent callers for one
        ``(user, scope)`` share a single refresh, since refresh tokens rotate.
        """
        stored = await self.get_credential(user, scope)
        if stored is None:
            return None
        if not stored.expires_within(self._margin_seconds, self._clock()):
            return stored.access

        async with self._refresh_lock(user, scope):
            # Another caller may have refreshed while this one waited.
            stored = await self.get_credential(user, scope)
            if stored is None:
                return None
            now = self._clock()
            if not stored.expires_within(self._margin_seconds, now):
                return stored.access

            try:
                grant = await self._identity.refresh_user_token(stored.refresh)
            except (UpstreamError, httpx.HTTPError) as exc:
                _log.warning(
                    "Failed to refresh credential for user %s in scope %s: %s", user, scope, exc
                )
                return None

            refreshed = Credential(
                access=grant.access,
                refresh=grant.refresh or stored.refresh,
                expires_at=now + grant.expires_in,
            )
            await self.put_credential(user, scope, refreshed)
            return refreshed.access

    def _refresh_lock(self, user: str, scope: str) -> asyncio.Lock:
        return self._refresh_locks.setdefault((user, scope), asyncio.Lock())


def _upsert(conn: sqlite3.Connection, user: str, scope: str, credential: Credential) -> None:
    conn.execute(
        """
        INSERT INTO credentials (user_id, scope, access, refresh, expires_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (user_id, scope) DO UPDATE SET
            access = excluded.access,
            refresh = excluded.refresh,
            expires_at = excluded.expires_at
        """,
        (user, scope, credential.access, credential.refresh, credential.expires_at),
    )


def _select(conn: sqlite3.Connection, user: str, scope: str) -> Credential | None:
    row = conn.execute(
        """
        SELECT access, refresh, expires_at
        FROM credentials
        WHERE user_id = ? AND scope = ?
        """,
        (user, scope),
    ).fetchone()
    if row is None:
        return None
    return Credential(
        access=str(row["access"]),
        refresh=str(row["refresh"]),
        expires_at=int(row["expires_at"]),
    )
