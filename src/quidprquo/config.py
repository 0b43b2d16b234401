"""Runtime settings loaded from environment variables.

Dependencies: none (leaf module)
Wired in: cli.py → main(), server/app.py → build_app_from_env()
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_REFRESH_MARGIN_SECONDS = 300
_DEFAULT_HTTP_TIMEOUT_SECONDS = 10
_DEFAULT_PORT = 8787


@dataclass(frozen=True)
class Settings:
    """Immutable service configuration."""

    data_dir: Path
    github_app_id: str = ""
    github_app_private_key: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""
    github_webhook_secret: str = ""
    api_key: str = ""
    refresh_margin_seconds: int = _DEFAULT_REFRESH_MARGIN_SECONDS
    http_timeout_seconds: int = _DEFAULT_HTTP_TIMEOUT_SECONDS
    host: str = "127.0.0.1"
    port: int = _DEFAULT_PORT

    @classmethod
    def from_env(cls, *, base_dir: Path | None = None) -> Settings:
        return cls(
            data_dir=_resolve_data_dir(base_dir or Path.cwd()),
            github_app_id=os.getenv("GITHUB_APP_ID", ""),
            github_app_private_key=_read_pem("GITHUB_APP_PRIVATE_KEY"),
            github_client_id=os.getenv("GITHUB_CLIENT_ID", ""),
            github_client_secret=os.getenv("GITHUB_CLIENT_SECRET", ""),
            github_webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET", ""),
            api_key=os.getenv("QPQ_API_KEY", ""),
            refresh_margin_seconds=_read_non_negative_int(
                "QPQ_REFRESH_MARGIN_SECONDS", _DEFAULT_REFRESH_MARGIN_SECONDS
            ),
            http_timeout_seconds=_read_positive_int(
                "QPQ_HTTP_TIMEOUT_SECONDS", _DEFAULT_HTTP_TIMEOUT_SECONDS
            ),
            host=os.getenv("QPQ_HOST", "127.0.0.1"),
            port=_read_positive_int("QPQ_PORT", _DEFAULT_PORT),
        )


def _read_pem(name: str) -> str:
    # Single-line env values carry newlines as literal "\n".
    return os.getenv(name, "").replace("\\n", "\n")


def _read_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be an integer.") from exc
    if value <= 0:
        raise SystemExit(f"{name} must be > 0.")
    return value


def _read_non_negative_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be an integer.") from exc
    if value < 0:
        raise SystemExit(f"{name} must be >= 0.")
    return value


def _resolve_data_dir(base_dir: Path) -> Path:
    explicit = os.getenv("QPQ_DATA_DIR")
    if explicit:
        path = Path(explicit)
        resolved = path if path.is_absolute() else (base_dir / path)
        return resolved.resolve()
    return (base_dir / "data/partitions").resolve()
