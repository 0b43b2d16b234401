"""Route escrow operations to the partition that owns them.

Dependencies: escrow.partition, escrow.ledger, escrow.credentials, escrow.protocol
Wired in: server/app.py → create_app(), cli.py → main()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from quidprquo.escrow.credentials import DEFAULT_REFRESH_MARGIN_SECONDS, CredentialStore
from quidprquo.escrow.ledger import PledgeLedger
from quidprquo.escrow.partition import PartitionRouter
from quidprquo.escrow.protocol import EscrowCommand, EscrowEngine
from quidprquo.escrow.results import EscrowResult
from quidprquo.escrow.store_schema import utc_now_epoch
from quidprquo.escrow.types import (
    ApprovalClient,
    Credential,
    IdentityProviderClient,
    Pledge,
)


@dataclass(frozen=True)
class PartitionHandle:
    """Components bound to one partition."""

    ledger: PledgeLedger
    credentials: CredentialStore
    engine: EscrowEngine


class EscrowService:
    """Entry point for commands, credential writes and pledge listings."""

    def __init__(
        self,
        router: PartitionRouter,
        *,
        identity: IdentityProviderClient,
        approvals: ApprovalClient,
        margin_seconds: int = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], int] = utc_now_epoch,
    ) -> None:
        self._router = router
        self._identity = identity
        self._approvals = approvals
        self._margin_seconds = margin_seconds
        self._clock = clock
        self._handles: dict[str, PartitionHandle] = {}

    def partition(self, key: str) -> PartitionHandle:
        handle = self._handles.get(key)
        if handle is None:
            partition = self._router.get(key)
            ledger = PledgeLedger(partition, clock=self._clock)
            credentials = CredentialStore(
                partition,
                self._identity,
                margin_seconds=self._margin_seconds,
                clock=self._clock,
            )
            handle = PartitionHandle(
                ledger=ledger,
                credentials=credentials,
                engine=EscrowEngine(ledger, credentials, self._approvals),
            )
            self._handles[key] = handle
        return handle

    async def process_command(self, command: EscrowCommand) -> EscrowResult:
        return await self.partition(command.scope).engine.process_command(command)

    async def store_credential(self, user: str, scope: str, credential: Credential) -> None:
        await self.partition(scope).credentials.put_credential(user, scope, credential)

    async def get_valid_access(self, user: str, scope: str) -> str | None:
        return await self.partition(scope).credentials.get_valid_access(user, scope)

    async def list_pledges(self, key: str) -> list[Pledge]:
        """Return outstanding pledges; a partition with no state yet has none."""
        if self._router.find(key) is None:
            return []
        return await self.partition(key).ledger.list_pledges()
