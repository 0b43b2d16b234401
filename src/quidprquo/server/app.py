"""FastAPI application setup and collaborator wiring."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quidprquo import __version__
from quidprquo.config import Settings
from quidprquo.escrow.partition import PartitionRouter
from quidprquo.escrow.service import EscrowService
from quidprquo.escrow.store_schema import utc_now_epoch
from quidprquo.escrow.types import EscrowStorageError
from quidprquo.github.client import (
    GitHubApprovalClient,
    GitHubCommentClient,
    GitHubIdentityClient,
)
from quidprquo.server.routes import CommentPoster, OAuthClient, ServerDeps, router

_log = logging.getLogger(__name__)


async def _storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    _log.error("Storage failure handling %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": "Internal error"}, status_code=500)


def create_app(
    service: EscrowService,
    *,
    oauth: OAuthClient,
    comments: CommentPoster,
    webhook_secret: str,
    clock: Callable[[], int] = utc_now_epoch,
    api_key: str | None = None,
    http: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the app around already-constructed collaborators.

    The partition routes require *api_key* in ``X-API-Key`` and are closed
    when it is unset. When *http* is given it is closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _log.info("Quid Pro Quo server starting")
        yield
        _log.info("Quid Pro Quo server shutting down")
        if http is not None:
            await http.aclose()

    app = FastAPI(title="Quid Pro Quo", version=__version__, lifespan=lifespan)
    app.state.deps = ServerDeps(
        service=service,
        oauth=oauth,
        comments=comments,
        webhook_secret=webhook_secret,
        clock=clock,
        api_key=api_key,
    )
    app.add_exception_handler(EscrowStorageError, _storage_error_handler)
    app.include_router(router)
    return app


def build_app_from_env(settings: Settings | None = None) -> FastAPI:
    """Wire GitHub clients and partition storage from environment settings."""
    resolved = settings or Settings.from_env()
    http = httpx.AsyncClient(timeout=resolved.http_timeout_seconds)
    identity = GitHubIdentityClient(
        http,
        client_id=resolved.github_client_id,
        client_secret=resolved.github_client_secret,
    )
    service = EscrowService(
        PartitionRouter(resolved.data_dir),
        identity=identity,
        approvals=GitHubApprovalClient(http),
        margin_seconds=resolved.refresh_margin_seconds,
    )
    comments = GitHubCommentClient(
        http,
        app_id=resolved.github_app_id,
        private_key_pem=resolved.github_app_private_key,
    )
    return create_app(
        service,
        oauth=identity,
        comments=comments,
        webhook_secret=resolved.github_webhook_secret,
        api_key=resolved.api_key or None,
        http=http,
    )
