"""Pledge ledger with atomic match-or-create semantics.

Dependencies: escrow.partition, escrow.store_schema, escrow.types
Wired in: escrow/protocol.py → EscrowEngine
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

from quidprquo.escrow.partition import Partition
from quidprquo.escrow.store_schema import utc_now_epoch
from quidprquo.escrow.types import Created, Matched, MatchResult, Pledge, SelfMatchError

_log = logging.getLogger(__name__)


class PledgeLedger:
    """Outstanding one-sided offers for one partition."""

    def __init__(self, partition: Partition, *, clock: Callable[[], int] = utc_now_epoch) -> None:
        self._partition = partition
        self._clock = clock

    async def try_match_or_create(
        self,
        offeror: str,
        target_author: str,
        item_number: int,
        item_scope: str,
    ) -> MatchResult:
        """Consume the reciprocal pledge if one exists, otherwise record a new one.

        The reciprocal pledge is the one keyed ``(target_author, offeror)``. The
        lookup and the resulting delete or insert happen in one transaction, so
        no other operation on the partition can observe the state in between.
        A second pledge for the same ``(offeror, target_author)`` replaces the
        first.

        Raises:
            SelfMatchError: If *offeror* and *target_author* are the same user.
        """
        if offeror == target_author:
            raise SelfMatchError(offeror)
        pledge = Pledge(
            offeror=offeror,
            target_author=target_author,
            item_number=item_number,
            item_scope=item_scope,
            created_at=self._clock(),
        )
        result = await self._partition.run(lambda conn: _match_or_create(conn, pledge))
        if isinstance(result, Matched):
            _log.info(
                "Matched pledge %s->%s (%s#%d) against %s#%d",
                result.partner.offeror,
                result.partner.target_author,
                result.partner.item_scope,
                result.partner.item_number,
                item_scope,
                item_number,
            )
        else:
            _log.info(
                "Created pledge %s->%s for %s#%d", offeror, target_author, item_scope, item_number
            )
        return result

    async def list_pledges(self) -> list[Pledge]:
        """Return every outstanding pledge, oldest first."""
        return await self._partition.run(_select_all)


def _match_or_create(conn: sqlite3.Connection, pledge: Pledge) -> MatchResult:
    row = conn.execute(
        """
        SELECT offeror, target_author, item_number, item_scope, created_at
        FROM pledges
        WHERE offeror = ? AND target_author = ?
        """,
        (pledge.target_author, pledge.offeror),
    ).fetchone()
    if row is not None:
        conn.execute(
            "DELETE FROM pledges WHERE offeror = ? AND target_author = ?",
            (pledge.target_author, pledge.offeror),
        )
        return Matched(partner=_row_to_pledge(row))
    conn.execute(
        """
        INSERT INTO pledges (offeror, target_author, item_number, item_scope, created_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (offeror, target_author) DO UPDATE SET
            item_number = excluded.item_number,
            item_scope = excluded.item_scope,
            created_at = excluded.created_at
        """,
        (
            pledge.offeror,
            pledge.target_author,
            pledge.item_number,
            pledge.item_scope,
            pledge.created_at,
        ),
    )
    return Created(pledge=pledge)


def _select_all(conn: sqlite3.Connection) -> list[Pledge]:
    rows = conn.execute(
        """
        SELECT offeror, target_author, item_number, item_scope, created_at
        FROM pledges
        ORDER BY created_at, rowid
        """
    ).fetchall()
    return [_row_to_pledge(row) for row in rows]


def _row_to_pledge(row: sqlite3.Row) -> Pledge:
    return Pledge(
        offeror=str(row["offeror"]),
        target_author=str(row["target_author"]),
        item_number=int(row["item_number"]),
        item_scope=str(row["item_scope"]),
        created_at=int(row["created_at"]),
    )
