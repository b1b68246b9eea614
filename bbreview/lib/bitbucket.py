"""
Bitbucket Cloud REST client.

Thin async wrapper over the 2.0 API for the pullrequest endpoints the bot
uses. Every non-2xx response raises BitbucketError with the HTTP status, so
callers (and the retry classifier) can decide what is transient.
"""

import logging
from typing import Any, Optional

import httpx

from bbreview.lib.config import DEFAULT_API_URL, DEFAULT_TOKEN_URL

logger = logging.getLogger(__name__)

# Timeout for Bitbucket API operations (seconds)
BB_TIMEOUT_SECONDS = 30


class BitbucketError(Exception):
    """A Bitbucket API call returned a non-success status."""

    def __init__(self, operation: str, status: int, body: str = ""):
        self.operation = operation
        self.status = status
        self.body = body
        super().__init__(f"{operation}: {status} {body}".rstrip())


def _raise_for_status(operation: str, response: httpx.Response) -> None:
    if response.is_success:
        return
    raise BitbucketError(operation, response.status_code, response.text[:500])


async def get_access_token(
    client: httpx.AsyncClient,
    client_id: str,
    client_secret: str,
    token_url: str = DEFAULT_TOKEN_URL,
) -> str:
    """Exchange OAuth consumer credentials for a bearer token (client_credentials)."""
    response = await client.post(
        token_url,
        auth=(client_id, client_secret),
        data={"grant_type": "client_credentials"},
    )
    _raise_for_status("token", response)
    return response.json()["access_token"]


class BitbucketClient:
    """Pull request operations for one repository."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: str,
        workspace: str,
        repo_slug: str,
        api_url: str = DEFAULT_API_URL,
    ):
        self.http = http
        self.token = token
        self.workspace = workspace
        self.repo_slug = repo_slug
        self.api_url = api_url.rstrip("/")

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def _pr_url(self, pr_id: int, suffix: str = "") -> str:
        return (
            f"{self.api_url}/repositories/{self.workspace}/{self.repo_slug}"
            f"/pullrequests/{pr_id}{suffix}"
        )

    async def get_pr(self, pr_id: int) -> dict[str, Any]:
        response = await self.http.get(self._pr_url(pr_id), headers=self._headers)
        _raise_for_status("getPR", response)
        return response.json()

    async def get_pr_diff(self, pr_id: int) -> str:
        # The diff endpoint redirects to the repository diff URL
        response = await self.http.get(
            self._pr_url(pr_id, "/diff"),
            headers=self._headers,
            follow_redirects=True,
        )
        _raise_for_status("getDiff", response)
        return response.text

    async def update_pr_description(self, pr_id: int, description: str) -> dict[str, Any]:
        response = await self.http.put(
            self._pr_url(pr_id),
            headers=self._headers,
            json={"description": description},
        )
        _raise_for_status("updatePRDescription", response)
        return response.json()

    async def post_pr_comment(self, pr_id: int, text: str) -> dict[str, Any]:
        response = await self.http.post(
            self._pr_url(pr_id, "/comments"),
            headers=self._headers,
            json={"content": {"raw": text}},
        )
        _raise_for_status("postPRComment", response)
        return response.json()

    async def post_inline_comment(
        self,
        pr_id: int,
        path: str,
        line: int,
        text: str,
    ) -> dict[str, Any]:
        """Post a comment anchored to a destination line of a file.

        No retry here: the delivery engine wraps each call.
        """
        response = await self.http.post(
            self._pr_url(pr_id, "/comments"),
            headers=self._headers,
            json={"content": {"raw": text}, "inline": {"path": path, "to": line}},
        )
        _raise_for_status("postInlineComment", response)
        return response.json()


def new_http_client(timeout: Optional[float] = BB_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)
