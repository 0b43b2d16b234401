"""Closed set of tagged results returned by the escrow engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar


@dataclass(frozen=True)
class PledgeCreated:
    type: ClassVar[str] = "pledge_created"

    item_number: int
    item_scope: str


@dataclass(frozen=True)
class MutualApprovalCompleted:
    """Both items approved.

    ``item_*`` is the item the command was issued on (now approved by the
    offeror); ``partner_item_*`` is the item from the consumed pledge (now
    approved by the target author).
    """

    type: ClassVar[str] = "mutual_approval_completed"

    item_number: int
    item_scope: str
    partner_item_number: int
    partner_item_scope: str


@dataclass(frozen=True)
class AwaitingAuthorization:
    type: ClassVar[str] = "awaiting_authorization"

    users: tuple[str, ...]
    authorize_url: str


@dataclass(frozen=True)
class ApprovalFailed:
    type: ClassVar[str] = "approval_failed"

    reason: str


@dataclass(frozen=True)
class SelfApprovalRejected:
    type: ClassVar[str] = "self_approval_rejected"

    user: str


@dataclass(frozen=True)
class AuthorUnknown:
    type: ClassVar[str] = "author_unknown"

    item_number: int
    item_scope: str


EscrowResult = (
    PledgeCreated
    | MutualApprovalCompleted
    | AwaitingAuthorization
    | ApprovalFailed
    | SelfApprovalRejected
    | AuthorUnknown
)


def to_envelope(result: EscrowResult) -> dict[str, Any]:
    """Serialize *result* as ``{"type": ..., "data": {...}}``."""
    data = asdict(result)
    if isinstance(result, AwaitingAuthorization):
        data["users"] = list(result.users)
    return {"type": result.type, "data": data}
