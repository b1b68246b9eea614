"""
Bitbucket webhook helpers: signature verification and payload parsing.
"""

import hashlib
import hmac
from typing import Optional

from pydantic import BaseModel, Field

SIGNATURE_HEADER = "X-Hub-Signature"
EVENT_HEADER = "X-Event-Key"
SIGNATURE_PREFIX = "sha256="
PR_EVENT_PREFIX = "pullrequest:"


class PullRequestRef(BaseModel):
    id: Optional[int] = None
    title: Optional[str] = None


class RepositoryRef(BaseModel):
    full_name: Optional[str] = None


class WebhookPayload(BaseModel):
    """The parts of a pullrequest:* event body the bot reads."""
    pullrequest: PullRequestRef = Field(default_factory=PullRequestRef)
    repository: RepositoryRef = Field(default_factory=RepositoryRef)


def verify_signature(body: bytes, signature_header: Optional[str], secret: Optional[str]) -> bool:
    """Check X-Hub-Signature ("sha256=<hex>") against the raw body.

    Verification is disabled (always True) when no secret is configured.
    """
    if not secret:
        return True
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    provided = signature_header[len(SIGNATURE_PREFIX):].strip().lower()
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    # Header values may carry arbitrary latin-1 text; a hex digest never does
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("ascii"))


def parse_workspace_repo(full_name: str) -> tuple[str, str]:
    """Split "workspace/repo_slug"; missing parts are returned as ""."""
    parts = (full_name or "").split("/")
    workspace = parts[0]
    repo_slug = parts[1] if len(parts) > 1 else ""
    return workspace, repo_slug
