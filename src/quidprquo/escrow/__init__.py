"""Escrow coordination engine.

Public API: Credential, CredentialStore, EscrowCommand, EscrowEngine,
    EscrowError, EscrowResult, EscrowService, EscrowStorageError, Partition,
    PartitionRouter, Pledge, PledgeLedger, SelfMatchError, TokenGrant,
    UpstreamError, to_envelope
Internal: store_schema
"""

from quidprquo.escrow.credentials import CredentialStore
from quidprquo.escrow.ledger import PledgeLedger
from quidprquo.escrow.partition import Partition, PartitionRouter
from quidprquo.escrow.protocol import EscrowCommand, EscrowEngine
from quidprquo.escrow.results import EscrowResult, to_envelope
from quidprquo.escrow.service import EscrowService
from quidprquo.escrow.types import (
    Credential,
    EscrowError,
    EscrowStorageError,
    Pledge,
    SelfMatchError,
    TokenGrant,
    UpstreamError,
)

__all__ = [
    "Credential",
    "CredentialStore",
    "EscrowCommand",
    "EscrowEngine",
    "EscrowError",
    "EscrowResult",
    "EscrowService",
    "EscrowStorageError",
    "Partition",
    "PartitionRouter",
    "Pledge",
    "PledgeLedger",
    "SelfMatchError",
    "TokenGrant",
    "UpstreamError",
    "to_envelope",
]
