"""Server CLI entry point for ``quid-pr-quo serve``."""

from __future__ import annotations

from quidprquo.config import Settings


def run_server(settings: Settings, host: str | None = None, port: int | None = None) -> None:
    """Start the FastAPI server with uvicorn."""
    import uvicorn

    from quidprquo.server.app import build_app_from_env

    uvicorn.run(
        build_app_from_env(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level="info",
    )
