"""Escrow protocol: one inbound command, one ledger transaction, one typed result.

Flow per command::

    validate → ledger.try_match_or_create (atomic)
        Created  → check offeror credential (advisory) → PledgeCreated | AwaitingAuthorization
        Matched  → resolve both credentials → approve both items concurrently
                 → MutualApprovalCompleted | AwaitingAuthorization | ApprovalFailed

Once a pledge has been matched it stays consumed, even when a credential is
missing or an approval call fails afterwards.

Dependencies: escrow.ledger, escrow.credentials, escrow.results, escrow.types
Wired in: escrow/service.py → EscrowService
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from quidprquo.escrow.credentials import CredentialStore
from quidprquo.escrow.ledger import PledgeLedger
from quidprquo.escrow.results import (
    ApprovalFailed,
    AuthorUnknown,
    AwaitingAuthorization,
    EscrowResult,
    MutualApprovalCompleted,
    PledgeCreated,
    SelfApprovalRejected,
)
from quidprquo.escrow.types import ApprovalClient, Created, UpstreamError

_log = logging.getLogger(__name__)


class EscrowCommand(BaseModel):
    """Validated ``/escrow-approve`` command.

    ``offeror`` wants to approve ``target_author``'s item ``item_number`` in
    ``item_scope``. ``scope`` is the partition (installation) the command
    belongs to. Accepts camelCase or snake_case field names.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        frozen=True,
    )

    offeror: str = Field(min_length=1)
    offeror_id: str = Field(min_length=1)
    item_number: int = Field(gt=0)
    item_scope: str = Field(min_length=1)
    target_author: str | None = None
    target_author_id: str | None = None
    scope: str = Field(min_length=1)
    authorize_callback_base: str = Field(min_length=1)


def build_authorize_url(callback_base: str, scope: str) -> str:
    """Return the link a user follows to (re-)authorize within *scope*."""
    return f"{callback_base.rstrip('/')}/oauth/authorize?{urlencode({'state': scope})}"


class EscrowEngine:
    """Drive one partition's ledger and credentials for inbound commands."""

    def __init__(
        self,
        ledger: PledgeLedger,
        credentials: CredentialStore,
        approvals: ApprovalClient,
    ) -> None:
        self._ledger = ledger
        self._credentials = credentials
        self._approvals = approvals

    async def process_command(self, command: EscrowCommand) -> EscrowResult:
        target_author = command.target_author
        target_author_id = command.target_author_id
        if not target_author or not target_author_id:
            return AuthorUnknown(item_number=command.item_number, item_scope=command.item_scope)
        if command.offeror == target_author:
            return SelfApprovalRejected(user=command.offeror)

        outcome = await self._ledger.try_match_or_create(
            command.offeror, target_author, command.item_number, command.item_scope
        )
        authorize_url = build_authorize_url(command.authorize_callback_base, command.scope)

        if isinstance(outcome, Created):
            # The pledge is already recorded; this only tells the offeror to authorize.
            access = await self._credentials.get_valid_access(command.offeror_id, command.scope)
            if access is None:
                return AwaitingAuthorization(users=(command.offeror,), authorize_url=authorize_url)
            return PledgeCreated(item_number=command.item_number, item_scope=command.item_scope)

        partner = outcome.partner
        offeror_access = await self._credentials.get_valid_access(
            command.offeror_id, command.scope
        )
        author_access = await self._credentials.get_valid_access(target_author_id, command.scope)
        missing = tuple(
            user
            for user, access in ((command.offeror, offeror_access), (target_author, author_access))
            if access is None
        )
        if offeror_access is None or author_access is None:
            _log.warning(
                "Pledge %s->%s consumed but %s not authorized",
                partner.offeror,
                partner.target_author,
                ", ".join(missing),
            )
            return AwaitingAuthorization(users=missing, authorize_url=authorize_url)

        outcomes = await asyncio.gather(
            self._approvals.approve(command.item_scope, command.item_number, offeror_access),
            self._approvals.approve(partner.item_scope, partner.item_number, author_access),
            return_exceptions=True,
        )
        for failure in outcomes:
            if isinstance(failure, (UpstreamError, httpx.HTTPError)):
                _log.error("Approval failed after consuming pledge: %s", failure)
                return ApprovalFailed(reason=str(failure) or type(failure).__name__)
            if isinstance(failure, BaseException):
                raise failure

        return MutualApprovalCompleted(
            item_number=command.item_number,
            item_scope=command.item_scope,
            partner_item_number=partner.item_number,
            partner_item_scope=partner.item_scope,
        )
