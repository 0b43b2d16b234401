"""API key authentication for the partition routes."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status


def get_api_key(request: Request) -> str | None:
    """Return the configured API key, or None if the partition API is disabled."""
    return request.app.state.deps.api_key or None  # type: ignore[no-any-return]


def verify_api_key(request: Request) -> None:
    """Verify the X-API-Key header against the configured key.

    Partition routes move credentials and consume pledges, so they stay closed
    when no key is configured.
    """
    expected = get_api_key(request)
    if expected is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Partition API is disabled",
        )
    provided = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
