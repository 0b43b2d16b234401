"""GitHub App authentication helpers: app JWTs and webhook signatures."""

from __future__ import annotations

import hashlib
import hmac

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

_JWT_BACKDATE_SECONDS = 60
_JWT_LIFETIME_SECONDS = 600
_SIGNATURE_PREFIX = "sha256="


def create_app_jwt(app_id: str, private_key_pem: str, now: int) -> str:
    """Return an RS256 JWT identifying the GitHub App.

    Accepts PKCS#1 (``BEGIN RSA PRIVATE KEY``) and PKCS#8 (``BEGIN PRIVATE KEY``)
    PEM keys. ``iat`` is backdated a minute to tolerate clock drift.

    Raises:
        ValueError: If the key cannot be loaded or is not an RSA key.
    """
    key = serialization.load_pem_private_key(private_key_pem.strip().encode("utf-8"), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("GitHub App private key must be an RSA key.")
    payload = {
        "iat": now - _JWT_BACKDATE_SECONDS,
        "exp": now + _JWT_LIFETIME_SECONDS,
        "iss": app_id,
    }
    return jwt.encode(payload, key, algorithm="RS256")


def verify_webhook_signature(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Check an ``X-Hub-Signature-256`` header against *body*."""
    if not signature_header or not secret:
        return False
    if not signature_header.startswith(_SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header[len(_SIGNATURE_PREFIX) :], expected)
