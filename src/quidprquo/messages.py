"""Comment text for escrow results posted back to pull requests."""

from __future__ import annotations

from quidprquo.escrow.results import (
    ApprovalFailed,
    AuthorUnknown,
    AwaitingAuthorization,
    EscrowResult,
    MutualApprovalCompleted,
    PledgeCreated,
    SelfApprovalRejected,
)

COMMAND = "/escrow-approve"


def render_acknowledgement(offeror: str, authorize_url: str) -> str:
    return (
        f"👋 @{offeror} I received your `{COMMAND}` command! Processing...\n\n"
        f"🔗 If you need to authorize: {authorize_url}"
    )


def render_result(result: EscrowResult, offeror: str, target_author: str | None) -> str:
    """Return the human-readable comment for *result*."""
    match result:
        case PledgeCreated(item_number=number):
            return (
                f"⏳ Escrow pledge created! @{offeror} is offering to approve "
                f"@{target_author}'s PR #{number}. Now waiting for @{target_author} to write "
                f"{COMMAND} on one of @{offeror}'s PRs to complete the mutual approval."
            )
        case MutualApprovalCompleted(item_number=number, partner_item_number=partner_number):
            return (
                f"🎉 Mutual approval completed! @{target_author} approved @{offeror}'s "
                f"PR #{partner_number} and @{offeror} approved @{target_author}'s PR #{number}"
            )
        case AwaitingAuthorization(users=users, authorize_url=url):
            mentions = [f"@{user}" for user in users]
            if len(mentions) > 1:
                who = f"Both {' and '.join(mentions)} need"
            else:
                who = f"{mentions[0]} needs"
            return f"{who} to authorize the app for this repository. Visit: {url}"
        case ApprovalFailed(reason=reason):
            return f"❌ Failed to approve PRs: {reason}"
        case SelfApprovalRejected(user=user):
            return (
                f"❌ @{user} you cannot use {COMMAND} on your own PR. The escrow system is "
                "for mutual approval between different users."
            )
        case AuthorUnknown():
            return "❌ Could not determine PR author. This might not be a valid PR."
    raise TypeError(f"Unsupported escrow result: {result!r}")
