"""Shared data models, errors and collaborator protocols for the escrow engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class EscrowError(Exception):
    """Base class for escrow engine failures."""


class SelfMatchError(EscrowError, ValueError):
    """Raised when a party tries to pledge against itself."""

    def __init__(self, user: str) -> None:
        super().__init__(f"{user} cannot pledge to approve their own item.")
        self.user = user


class EscrowStorageError(EscrowError):
    """Raised when a partition transaction cannot commit."""


class UpstreamError(EscrowError):
    """Raised when the identity provider or approval API rejects a call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Pledge:
    """An outstanding one-sided offer to approve ``target_author``'s item."""

    offeror: str
    target_author: str
    item_number: int
    item_scope: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "offeror": self.offeror,
            "targetAuthor": self.target_author,
            "itemNumber": self.item_number,
            "itemScope": self.item_scope,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair for one user within one scope."""

    access: str
    refresh: str
    expires_at: int

    def expires_within(self, margin_seconds: int, now: int) -> bool:
        return now > self.expires_at - margin_seconds


@dataclass(frozen=True)
class TokenGrant:
    """Identity provider response to a token exchange or refresh."""

    access: str
    expires_in: int
    refresh: str | None = None


@dataclass(frozen=True)
class Created:
    """Ledger outcome: no reciprocal pledge existed, ``pledge`` was recorded."""

    pledge: Pledge


@dataclass(frozen=True)
class Matched:
    """Ledger outcome: ``partner`` was the reciprocal pledge and has been consumed."""

    partner: Pledge


MatchResult = Created | Matched


class IdentityProviderClient(Protocol):
    async def refresh_user_token(self, refresh_token: str) -> TokenGrant: ...


class ApprovalClient(Protocol):
    async def approve(self, scope: str, item_number: int, access_token: str) -> None: ...
