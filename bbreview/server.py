"""
Webhook HTTP surface.

POST /webhook/bitbucket acknowledges the event immediately and processes
the PR in a background task. Processing outcomes only surface through
posted comments and logs.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Coroutine, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from bbreview.lib.config import ServiceConfig
from bbreview.lib.webhook import (
    EVENT_HEADER,
    PR_EVENT_PREFIX,
    SIGNATURE_HEADER,
    WebhookPayload,
    parse_workspace_repo,
    verify_signature,
)
from bbreview.pipeline import TaskFlags, run_pr_review

logger = logging.getLogger(__name__)

# (config, workspace, repo_slug, pr_id, flags) -> results
Runner = Callable[[ServiceConfig, str, str, int, TaskFlags], Awaitable[Optional[dict]]]


def _query_enabled(value: Optional[str]) -> bool:
    """?describe=false etc. turns a task off; anything else leaves config in charge."""
    return value != "false"


class BackgroundRuns:
    """Tracks fire-and-forget PR runs so none is garbage collected or lost."""

    def __init__(self):
        self.tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, label: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(lambda t: self._done(t, label))
        return task

    def _done(self, task: asyncio.Task, label: str) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background processing cancelled: {label}")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background processing error for {label}: {error}", exc_info=error)

    async def drain(self) -> None:
        if self.tasks:
            logger.info(f"Waiting for {len(self.tasks)} background run(s)")
            await asyncio.gather(*self.tasks, return_exceptions=True)


def create_app(config: ServiceConfig, runner: Runner = run_pr_review) -> FastAPI:
    runs = BackgroundRuns()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await runs.drain()

    app = FastAPI(title="bbreview", lifespan=lifespan)
    app.state.runs = runs

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.post("/webhook/bitbucket")
    async def bitbucket_webhook(
        request: Request,
        describe: Optional[str] = None,
        review: Optional[str] = None,
        inline: Optional[str] = None,
    ):
        logger.info("Webhook event received")
        try:
            body = await request.body()
            if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), config.webhook_secret):
                return JSONResponse(status_code=401, content={"ok": False, "error": "bad signature"})

            event = request.headers.get(EVENT_HEADER, "")
            if not event.startswith(PR_EVENT_PREFIX):
                return {"ok": True, "skipped": event}

            try:
                payload = WebhookPayload.model_validate_json(body or b"{}")
            except ValidationError:
                return JSONResponse(status_code=400, content={"ok": False, "error": "invalid payload"})

            pr_id = payload.pullrequest.id
            if not pr_id:
                return JSONResponse(status_code=400, content={"ok": False, "error": "no pr id"})

            workspace, repo_slug = parse_workspace_repo(payload.repository.full_name or "")
            if not workspace or not repo_slug:
                return JSONResponse(status_code=400, content={"ok": False, "error": "no workspace/repo"})

            flags = TaskFlags(
                describe=_query_enabled(describe) and config.enable_describe,
                review=_query_enabled(review) and config.enable_review,
                inline=_query_enabled(inline) and config.enable_inline,
            )

            runs.spawn(
                runner(config, workspace, repo_slug, pr_id, flags),
                f"{workspace}/{repo_slug}#{pr_id}",
            )
            return {"ok": True, "event": event, "pr": pr_id, "processing": "background"}

        except Exception as e:
            logger.exception("Webhook handler failed")
            return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})

    return app
