"""GitHub collaborators for the escrow engine.

Public API: GitHubApprovalClient, GitHubCommentClient, GitHubIdentityClient,
    OAuthIdentity, create_app_jwt, verify_webhook_signature
"""

from quidprquo.github.app_auth import create_app_jwt, verify_webhook_signature
from quidprquo.github.client import (
    GitHubApprovalClient,
    GitHubCommentClient,
    GitHubIdentityClient,
    OAuthIdentity,
)

__all__ = [
    "GitHubApprovalClient",
    "GitHubCommentClient",
    "GitHubIdentityClient",
    "OAuthIdentity",
    "create_app_jwt",
    "verify_webhook_signature",
]
