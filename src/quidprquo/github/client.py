"""httpx clients for the GitHub identity, review and comment APIs.

Dependencies: escrow.types, github.app_auth
Wired in: server/app.py → build_app_from_env(), cli.py
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from quidprquo.escrow.store_schema import utc_now_epoch
from quidprquo.escrow.types import TokenGrant, UpstreamError
from quidprquo.github.app_auth import create_app_jwt

_log = logging.getLogger(__name__)

GITHUB_WEB_BASE = "https://github.com"
GITHUB_API_BASE = "https://api.github.com"
USER_AGENT = "quid-pr-quo"
APPROVAL_BODY = "Automatic approval via quid-pr-quo escrow exchange"

_DEFAULT_EXPIRES_IN = 3600
_ALREADY_REVIEWED_MARKERS = ("already submitted", "already reviewed", "review already exists")


def _api_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": USER_AGENT,
    }


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamError(
            f"GitHub returned a non-JSON body ({response.status_code}).",
            response.status_code,
        ) from exc


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    raise UpstreamError(
        f"Failed to {action}: {response.status_code} - {response.text}",
        response.status_code,
    )


@dataclass(frozen=True)
class OAuthIdentity:
    """User identity and first credential obtained from an OAuth code."""

    user_id: str
    login: str
    grant: TokenGrant


class GitHubIdentityClient:
    """OAuth code exchange and user-token refresh for a GitHub App."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        client_id: str,
        client_secret: str,
        web_base: str = GITHUB_WEB_BASE,
        api_base: str = GITHUB_API_BASE,
    ) -> None:
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._web_base = web_base.rstrip("/")
        self._api_base = api_base.rstrip("/")

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        query = urlencode(
            {
                "client_id": self._client_id,
                "redirect_uri": redirect_uri,
                "scope": "repo",
                "state": state,
            }
        )
        return f"{self._web_base}/login/oauth/authorize?{query}"

    async def exchange_oauth_code(self, code: str) -> OAuthIdentity:
        grant = await self._token_request({"code": code})
        response = await self._http.get(f"{self._api_base}/user", headers=_api_headers(grant.access))
        _raise_for_status(response, "get user info")
        user = _json_body(response)
        try:
            return OAuthIdentity(user_id=str(user["id"]), login=str(user["login"]), grant=grant)
        except (KeyError, TypeError) as exc:
            raise UpstreamError("GitHub user response is missing id or login.") from exc

    async def refresh_user_token(self, refresh_token: str) -> TokenGrant:
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def _token_request(self, params: dict[str, str]) -> TokenGrant:
        response = await self._http.post(
            f"{self._web_base}/login/oauth/access_token",
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            data={"client_id": self._client_id, "client_secret": self._client_secret, **params},
        )
        _raise_for_status(response, "exchange OAuth token")
        data = _json_body(response)
        if not isinstance(data, dict):
            raise UpstreamError("GitHub token response is not an object.")
        if data.get("error"):
            raise UpstreamError(f"OAuth error: {data.get('error_description') or data['error']}")
        access = data.get("access_token")
        if not isinstance(access, str) or not access:
            raise UpstreamError("GitHub token response has no access_token.")
        refresh = data.get("refresh_token")
        return TokenGrant(
            access=access,
            expires_in=int(data.get("expires_in") or _DEFAULT_EXPIRES_IN),
            refresh=refresh if isinstance(refresh, str) and refresh else None,
        )


class GitHubApprovalClient:
    """Submit pull request approvals with a user's token."""

    def __init__(self, http: httpx.AsyncClient, *, api_base: str = GITHUB_API_BASE) -> None:
        self._http = http
        self._api_base = api_base.rstrip("/")

    async def approve(self, scope: str, item_number: int, access_token: str) -> None:
        """Approve pull request *item_number* in repository *scope*.

        Succeeds without a new review when the token's user has already
        approved, or when GitHub answers 422 because a review already exists.

        Raises:
            UpstreamError: If GitHub rejects the review.
        """
        reviews_url = f"{self._api_base}/repos/{scope}/pulls/{item_number}/reviews"
        headers = _api_headers(access_token)
        if await self._already_approved(reviews_url, headers):
            _log.info("Review on %s#%d already approved, skipping", scope, item_number)
            return

        response = await self._http.post(
            reviews_url, headers=headers, json={"event": "APPROVE", "body": APPROVAL_BODY}
        )
        if response.status_code == 422 and any(
            marker in response.text for marker in _ALREADY_REVIEWED_MARKERS
        ):
            _log.info("GitHub reports an existing review on %s#%d", scope, item_number)
            return
        _raise_for_status(response, f"approve PR #{item_number}")
        _log.info("Approved %s#%d", scope, item_number)

    async def _already_approved(self, reviews_url: str, headers: dict[str, str]) -> bool:
        try:
            reviews_response = await self._http.get(reviews_url, headers=headers)
            if not reviews_response.is_success:
                return False
            user_response = await self._http.get(f"{self._api_base}/user", headers=headers)
            if not user_response.is_success:
                return False
            user_id = user_response.json()["id"]
            return any(
                review.get("user", {}).get("id") == user_id and review.get("state") == "APPROVED"
                for review in reviews_response.json()
            )
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            _log.warning("Could not check existing reviews, proceeding with approval: %s", exc)
            return False


class GitHubCommentClient:
    """Post issue comments as the GitHub App installation."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        app_id: str,
        private_key_pem: str,
        api_base: str = GITHUB_API_BASE,
        clock: Callable[[], int] = utc_now_epoch,
    ) -> None:
        self._http = http
        self._app_id = app_id
        self._private_key_pem = private_key_pem
        self._api_base = api_base.rstrip("/")
        self._clock = clock

    async def post_comment(
        self, scope: str, item_number: int, body: str, installation_id: str
    ) -> None:
        token = await self._installation_token(installation_id)
        response = await self._http.post(
            f"{self._api_base}/repos/{scope}/issues/{item_number}/comments",
            headers=_api_headers(token),
            json={"body": body},
        )
        _raise_for_status(response, "post comment")

    async def _installation_token(self, installation_id: str) -> str:
        app_jwt = create_app_jwt(self._app_id, self._private_key_pem, self._clock())
        response = await self._http.post(
            f"{self._api_base}/app/installations/{installation_id}/access_tokens",
            headers=_api_headers(app_jwt),
        )
        _raise_for_status(response, "get installation token")
        data = _json_body(response)
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise UpstreamError("Installation token response has no token.")
        return token
