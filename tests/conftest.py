"""Shared test fixtures for quid-pr-quo."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from quidprquo.escrow.partition import PartitionRouter
from quidprquo.escrow.protocol import EscrowCommand
from quidprquo.escrow.service import EscrowService
from quidprquo.escrow.types import TokenGrant, UpstreamError

_START_EPOCH = 1_700_000_000
_PARTITION = "inst-1"
_CALLBACK_BASE = "https://escrow.example"


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, now: int = _START_EPOCH) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeIdentity:
    """Identity provider that hands out numbered access tokens."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.expires_in = 3600
        self.new_refresh: str | None = None
        self.error: Exception | None = None

    async def refresh_user_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return TokenGrant(
            access=f"refreshed-{len(self.calls)}",
            expires_in=self.expires_in,
            refresh=self.new_refresh,
        )


class FakeApprovals:
    """Approval client recording ``(scope, item_number, token)`` calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int, str]] = []
        self.failing: set[tuple[str, int]] = set()

    async def approve(self, scope: str, item_number: int, access_token: str) -> None:
        self.calls.append((scope, item_number, access_token))
        if (scope, item_number) in self.failing:
            raise UpstreamError(f"Failed to approve PR #{item_number}: 403 - forbidden", 403)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture()
def approvals() -> FakeApprovals:
    return FakeApprovals()


@pytest.fixture()
def router(tmp_path: Path) -> PartitionRouter:
    """PartitionRouter backed by temporary SQLite files."""
    return PartitionRouter(tmp_path / "partitions")


@pytest.fixture()
def service(
    router: PartitionRouter,
    identity: FakeIdentity,
    approvals: FakeApprovals,
    clock: FakeClock,
) -> EscrowService:
    return EscrowService(router, identity=identity, approvals=approvals, clock=clock)


@pytest.fixture()
def make_command() -> Callable[..., EscrowCommand]:
    """Build an ``EscrowCommand`` in partition ``inst-1`` with ids derived from logins."""

    def _make(
        offeror: str,
        item_number: int,
        item_scope: str,
        target_author: str | None,
        *,
        scope: str = _PARTITION,
    ) -> EscrowCommand:
        return EscrowCommand(
            offeror=offeror,
            offeror_id=f"id-{offeror}",
            item_number=item_number,
            item_scope=item_scope,
            target_author=target_author,
            target_author_id=f"id-{target_author}" if target_author else None,
            scope=scope,
            authorize_callback_base=_CALLBACK_BASE,
        )

    return _make
