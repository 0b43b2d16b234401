"""HTTP routes: GitHub webhook, OAuth handshake and partition operations.

The webhook turns an ``issue_comment`` event starting with ``/escrow-approve``
into an ``EscrowCommand`` for the installation's partition and posts the
rendered result back as a comment. Comment failures are logged and never
change the response. The partition routes are for trusted callers and need
the ``X-API-Key`` header.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from pydantic import ValidationError

from quidprquo.escrow.protocol import EscrowCommand, build_authorize_url
from quidprquo.escrow.results import to_envelope
from quidprquo.escrow.service import EscrowService
from quidprquo.escrow.types import Credential, UpstreamError
from quidprquo.github.app_auth import verify_webhook_signature
from quidprquo.github.client import OAuthIdentity
from quidprquo.messages import COMMAND, render_acknowledgement, render_result
from quidprquo.server.auth import verify_api_key
from quidprquo.server.models import (
    HealthResponse,
    PledgeListResponse,
    ResultEnvelope,
    StoreCredentialRequest,
    StoreCredentialResponse,
)

_log = logging.getLogger(__name__)

router = APIRouter()


class OAuthClient(Protocol):
    def authorization_url(self, redirect_uri: str, state: str) -> str: ...

    async def exchange_oauth_code(self, code: str) -> OAuthIdentity: ...


class CommentPoster(Protocol):
    async def post_comment(
        self, scope: str, item_number: int, body: str, installation_id: str
    ) -> None: ...


@dataclass(frozen=True)
class ServerDeps:
    """Collaborators the routes resolve from ``app.state.deps``."""

    service: EscrowService
    oauth: OAuthClient
    comments: CommentPoster
    webhook_secret: str
    clock: Callable[[], int]
    api_key: str | None = None


def _deps(request: Request) -> ServerDeps:
    return request.app.state.deps  # type: ignore[no-any-return]


def _public_base(request: Request) -> str:
    return str(request.base_url).rstrip("/")


# ---------------------------------------------------------------------------
# Service info
# ---------------------------------------------------------------------------


@router.get("/")
async def root() -> PlainTextResponse:
    return PlainTextResponse("🤝 Quid Pro Quo - GitHub PR Escrow Service")


@router.get("/health")
async def health() -> HealthResponse:
    return HealthResponse()


# ---------------------------------------------------------------------------
# GitHub webhook
# ---------------------------------------------------------------------------


@router.post("/webhook")
async def webhook(request: Request) -> Response:
    deps = _deps(request)
    body = await request.body()
    if not verify_webhook_signature(
        body, request.headers.get("X-Hub-Signature-256"), deps.webhook_secret
    ):
        _log.warning("Rejected webhook with invalid signature")
        return PlainTextResponse("Invalid signature", status_code=status.HTTP_401_UNAUTHORIZED)

    event = request.headers.get("X-GitHub-Event")
    try:
        payload = json.loads(body)
    except ValueError:
        return PlainTextResponse("Invalid JSON", status_code=status.HTTP_400_BAD_REQUEST)
    if not _is_escrow_comment(event, payload):
        return PlainTextResponse("ignored")

    installation_id = (payload.get("installation") or {}).get("id")
    if installation_id is None:
        return PlainTextResponse(
            "No installation ID found", status_code=status.HTTP_400_BAD_REQUEST
        )
    try:
        command = _command_from_payload(payload, str(installation_id), _public_base(request))
    except (ValidationError, KeyError, TypeError) as exc:
        _log.warning("Malformed issue_comment payload: %s", exc)
        return PlainTextResponse("Malformed payload", status_code=status.HTTP_400_BAD_REQUEST)

    _log.info(
        "Escrow command from %s on %s#%d (installation %s)",
        command.offeror,
        command.item_scope,
        command.item_number,
        command.scope,
    )
    authorize_url = build_authorize_url(command.authorize_callback_base, command.scope)
    await _post_comment(deps, command, render_acknowledgement(command.offeror, authorize_url))

    result = await deps.service.process_command(command)
    await _post_comment(
        deps, command, render_result(result, command.offeror, command.target_author)
    )
    return JSONResponse(to_envelope(result))


def _is_escrow_comment(event: str | None, payload: Any) -> bool:
    if event != "issue_comment" or not isinstance(payload, dict):
        return False
    if payload.get("action") != "created":
        return False
    comment = payload.get("comment")
    if not isinstance(comment, dict):
        return False
    return str(comment.get("body", "")).strip().startswith(COMMAND)


def _command_from_payload(
    payload: dict[str, Any], installation_id: str, callback_base: str
) -> EscrowCommand:
    comment_user = payload["comment"]["user"]
    issue = payload["issue"]
    issue_user = issue.get("user") or {}
    return EscrowCommand(
        offeror=comment_user["login"],
        offeror_id=str(comment_user["id"]),
        item_number=issue["number"],
        item_scope=payload["repository"]["full_name"],
        target_author=issue_user.get("login"),
        target_author_id=_optional_str(issue_user.get("id")),
        scope=installation_id,
        authorize_callback_base=callback_base,
    )


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


async def _post_comment(deps: ServerDeps, command: EscrowCommand, body: str) -> None:
    try:
        await deps.comments.post_comment(
            command.item_scope, command.item_number, body, command.scope
        )
    except (UpstreamError, httpx.HTTPError, ValueError) as exc:
        _log.warning(
            "Failed to post comment on %s#%d: %s", command.item_scope, command.item_number, exc
        )


# ---------------------------------------------------------------------------
# OAuth handshake
# ---------------------------------------------------------------------------


@router.get("/oauth/authorize")
async def oauth_authorize(request: Request, state: str | None = None) -> Response:
    if not state:
        return PlainTextResponse(
            "Missing installation id", status_code=status.HTTP_400_BAD_REQUEST
        )
    redirect_uri = f"{_public_base(request)}/oauth/callback"
    url = _deps(request).oauth.authorization_url(redirect_uri, state)
    if "application/json" in request.headers.get("accept", ""):
        return JSONResponse(
            {"authorization_url": url, "redirect_uri": redirect_uri, "state": state}
        )
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> PlainTextResponse:
    if error:
        detail = f" - {error_description}" if error_description else ""
        return PlainTextResponse(
            f"OAuth authorization failed: {error}{detail}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    if not code:
        return PlainTextResponse(
            "Missing authorization code", status_code=status.HTTP_400_BAD_REQUEST
        )
    if not state:
        return PlainTextResponse(
            "Missing installation id", status_code=status.HTTP_400_BAD_REQUEST
        )

    deps = _deps(request)
    try:
        identity = await deps.oauth.exchange_oauth_code(code)
    except (UpstreamError, httpx.HTTPError) as exc:
        _log.warning("OAuth code exchange failed: %s", exc)
        return PlainTextResponse(
            f"Authorization failed: {exc}", status_code=status.HTTP_502_BAD_GATEWAY
        )

    grant = identity.grant
    credential = Credential(
        access=grant.access,
        refresh=grant.refresh or "",
        expires_at=deps.clock() + grant.expires_in,
    )
    await deps.service.store_credential(identity.user_id, state, credential)
    return PlainTextResponse(
        f"[SUCCESS] Authorization successful for {identity.login}! "
        f"You can now use {COMMAND} commands."
    )


# ---------------------------------------------------------------------------
# Partition operations
# ---------------------------------------------------------------------------


def _require_same_partition(key: str, scope: str) -> None:
    if key != scope:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Scope {scope!r} does not belong to partition {key!r}.",
        )


@router.post("/partitions/{key}/commands", dependencies=[Depends(verify_api_key)])
async def process_command(key: str, command: EscrowCommand, request: Request) -> ResultEnvelope:
    _require_same_partition(key, command.scope)
    result = await _deps(request).service.process_command(command)
    return ResultEnvelope.model_validate(to_envelope(result))


@router.post("/partitions/{key}/credentials", dependencies=[Depends(verify_api_key)])
async def store_credential(
    key: str, body: StoreCredentialRequest, request: Request
) -> StoreCredentialResponse:
    _require_same_partition(key, body.scope)
    credential = Credential(access=body.access, refresh=body.refresh, expires_at=body.expires_at)
    await _deps(request).service.store_credential(body.user, body.scope, credential)
    return StoreCredentialResponse()


@router.get("/partitions/{key}/pledges", dependencies=[Depends(verify_api_key)])
async def list_pledges(key: str, request: Request) -> PledgeListResponse:
    pledges = await _deps(request).service.list_pledges(key)
    return PledgeListResponse(partition=key, pledges=[pledge.to_dict() for pledge in pledges])
