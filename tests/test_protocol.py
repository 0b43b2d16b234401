"""Tests for the escrow protocol engine end to end over real partition storage."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from pydantic import ValidationError

from quidprquo.escrow.protocol import EscrowCommand, build_authorize_url
from quidprquo.escrow.results import (
    ApprovalFailed,
    AuthorUnknown,
    AwaitingAuthorization,
    MutualApprovalCompleted,
    PledgeCreated,
    SelfApprovalRejected,
    to_envelope,
)
from quidprquo.escrow.service import EscrowService
from quidprquo.escrow.types import Credential

from tests.conftest import FakeApprovals, FakeClock

MakeCommand = Callable[..., EscrowCommand]

_AUTHORIZE_URL = "https://escrow.example/oauth/authorize?state=inst-1"


async def _authorize(service: EscrowService, clock: FakeClock, *logins: str) -> None:
    for login in logins:
        await service.store_credential(
            f"id-{login}",
            "inst-1",
            Credential(f"token-{login}", f"refresh-{login}", clock.now + 3600),
        )


@pytest.mark.asyncio()
async def test_round_trip_completes_mutual_approval(
    service: EscrowService,
    approvals: FakeApprovals,
    clock: FakeClock,
    make_command: MakeCommand,
) -> None:
    await _authorize(service, clock, "alice", "bob")

    first = await service.process_command(make_command("alice", 10, "org/r1", "bob"))
    second = await service.process_command(make_command("bob", 20, "org/r2", "alice"))

    assert first == PledgeCreated(item_number=10, item_scope="org/r1")
    assert second == MutualApprovalCompleted(
        item_number=20,
        item_scope="org/r2",
        partner_item_number=10,
        partner_item_scope="org/r1",
    )
    # bob approves alice's PR 20, alice approves bob's PR 10 from her pledge
    assert sorted(approvals.calls) == [
        ("org/r1", 10, "token-alice"),
        ("org/r2", 20, "token-bob"),
    ]
    assert await service.list_pledges("inst-1") == []


@pytest.mark.asyncio()
async def test_self_approval_is_rejected_and_ledger_unchanged(
    service: EscrowService, clock: FakeClock, make_command: MakeCommand
) -> None:
    await _authorize(service, clock, "alice")
    await service.process_command(make_command("alice", 10, "org/r1", "bob"))

    result = await service.process_command(make_command("alice", 11, "org/r1", "alice"))

    assert result == SelfApprovalRejected(user="alice")
    assert [(p.offeror, p.item_number) for p in await service.list_pledges("inst-1")] == [
        ("alice", 10)
    ]


@pytest.mark.asyncio()
async def test_unknown_author_is_reported_before_anything_else(
    service: EscrowService, make_command: MakeCommand
) -> None:
    result = await service.process_command(make_command("alice", 10, "org/r1", None))

    assert result == AuthorUnknown(item_number=10, item_scope="org/r1")
    assert await service.list_pledges("inst-1") == []


@pytest.mark.asyncio()
async def test_unauthorized_offeror_still_records_pledge(
    service: EscrowService, make_command: MakeCommand
) -> None:
    result = await service.process_command(make_command("alice", 10, "org/r1", "bob"))

    assert result == AwaitingAuthorization(users=("alice",), authorize_url=_AUTHORIZE_URL)
    pledges = await service.list_pledges("inst-1")
    assert [(p.offeror, p.target_author, p.item_number) for p in pledges] == [
        ("alice", "bob", 10)
    ]


@pytest.mark.asyncio()
async def test_match_with_missing_credentials_consumes_pledge(
    service: EscrowService,
    approvals: FakeApprovals,
    clock: FakeClock,
    make_command: MakeCommand,
) -> None:
    await service.process_command(make_command("alice", 10, "org/r1", "bob"))

    result = await service.process_command(make_command("bob", 20, "org/r2", "alice"))

    assert result == AwaitingAuthorization(users=("bob", "alice"), authorize_url=_AUTHORIZE_URL)
    assert approvals.calls == []
    assert await service.list_pledges("inst-1") == []


@pytest.mark.asyncio()
async def test_match_names_only_the_missing_party(
    service: EscrowService, clock: FakeClock, make_command: MakeCommand
) -> None:
    await _authorize(service, clock, "bob")
    await service.process_command(make_command("alice", 10, "org/r1", "bob"))

    result = await service.process_command(make_command("bob", 20, "org/r2", "alice"))

    assert isinstance(result, AwaitingAuthorization)
    assert result.users == ("alice",)


@pytest.mark.asyncio()
async def test_failed_approval_reports_reason_and_keeps_pledge_consumed(
    service: EscrowService,
    approvals: FakeApprovals,
    clock: FakeClock,
    make_command: MakeCommand,
) -> None:
    await _authorize(service, clock, "alice", "bob")
    await service.process_command(make_command("alice", 10, "org/r1", "bob"))
    approvals.failing.add(("org/r1", 10))

    result = await service.process_command(make_command("bob", 20, "org/r2", "alice"))

    assert result == ApprovalFailed(reason="Failed to approve PR #10: 403 - forbidden")
    assert len(approvals.calls) == 2
    assert await service.list_pledges("inst-1") == []


@pytest.mark.asyncio()
async def test_second_pledge_overwrites_first_before_match(
    service: EscrowService,
    approvals: FakeApprovals,
    clock: FakeClock,
    make_command: MakeCommand,
) -> None:
    await _authorize(service, clock, "alice", "bob")
    await service.process_command(make_command("alice", 10, "org/r1", "bob"))
    await service.process_command(make_command("alice", 11, "org/r1", "bob"))

    result = await service.process_command(make_command("bob", 20, "org/r2", "alice"))

    assert isinstance(result, MutualApprovalCompleted)
    assert result.partner_item_number == 11
    assert ("org/r1", 11, "token-alice") in approvals.calls
    assert ("org/r1", 10, "token-alice") not in approvals.calls


@pytest.mark.asyncio()
async def test_concurrent_reciprocal_commands_match_exactly_once(
    service: EscrowService, clock: FakeClock, make_command: MakeCommand
) -> None:
    await _authorize(service, clock, "alice", "bob")
    await service.process_command(make_command("alice", 10, "org/r1", "bob"))

    results = await asyncio.gather(
        *(service.process_command(make_command("bob", 20 + i, "org/r2", "alice")) for i in range(8))
    )

    completed = [r for r in results if isinstance(r, MutualApprovalCompleted)]
    created = [r for r in results if isinstance(r, PledgeCreated)]
    assert len(completed) == 1
    assert len(created) == 7
    pledges = await service.list_pledges("inst-1")
    assert [(p.offeror, p.target_author) for p in pledges] == [("bob", "alice")]


@pytest.mark.asyncio()
async def test_concurrent_same_pair_commands_leave_one_pledge(
    service: EscrowService, clock: FakeClock, make_command: MakeCommand
) -> None:
    await _authorize(service, clock, "alice")

    results = await asyncio.gather(
        *(service.process_command(make_command("alice", n, "org/r1", "bob")) for n in range(1, 9))
    )

    assert all(isinstance(r, PledgeCreated) for r in results)
    assert len(await service.list_pledges("inst-1")) == 1


def test_command_accepts_camel_case_wire_names() -> None:
    command = EscrowCommand.model_validate(
        {
            "offeror": "alice",
            "offerorId": 101,
            "itemNumber": 10,
            "itemScope": "org/r1",
            "targetAuthor": "bob",
            "targetAuthorId": "202",
            "scope": "inst-1",
            "authorizeCallbackBase": "https://escrow.example/",
        }
    )

    assert command.offeror_id == "101"
    assert command.target_author_id == "202"
    assert build_authorize_url(command.authorize_callback_base, command.scope) == _AUTHORIZE_URL


def test_command_rejects_non_positive_item_number() -> None:
    with pytest.raises(ValidationError):
        EscrowCommand(
            offeror="alice",
            offeror_id="1",
            item_number=0,
            item_scope="org/r1",
            scope="inst-1",
            authorize_callback_base="https://escrow.example",
        )


def test_result_envelope_shape() -> None:
    envelope = to_envelope(AwaitingAuthorization(users=("alice",), authorize_url=_AUTHORIZE_URL))

    assert envelope == {
        "type": "awaiting_authorization",
        "data": {"users": ["alice"], "authorize_url": _AUTHORIZE_URL},
    }
