"""
PR review pipeline.

One run per webhook event: fetch the PR and its diff, then run the enabled
tasks (describe, review, inline) concurrently. A failing task is recorded in
the result and never stops its siblings. Failing to fetch the PR or diff
ends the run; run_pr_review() logs it and returns None so the host process
keeps serving.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from bbreview.agents.claude import ClaudeAgent, MODE_FREE_TEXT, MODE_JSON
from bbreview.diff.lineformat import format_parsed
from bbreview.diff.parser import parse_diff
from bbreview.lib.agents_config import TASK_DESCRIBE, TASK_INLINE, TASK_REVIEW, load_agents_config
from bbreview.lib.bitbucket import BitbucketClient, get_access_token, new_http_client
from bbreview.lib.config import ServiceConfig
from bbreview.lib.delivery import deliver
from bbreview.lib.extract import extract_json_array
from bbreview.lib.prompts import render_prompt
from bbreview.lib.suggestions import Label, MAX_CANDIDATES, SCORE_THRESHOLD, validate_suggestions

logger = logging.getLogger(__name__)

# Appended once; its presence means the description was already summarized
DESCRIPTION_MARKER = "### 🤖 AI Summary"


class PipelineError(Exception):
    """The PR or its diff could not be fetched; the run cannot continue."""
    pass


@dataclass
class TaskFlags:
    describe: bool = False
    review: bool = False
    inline: bool = False

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "TaskFlags":
        return cls(
            describe=config.enable_describe,
            review=config.enable_review,
            inline=config.enable_inline,
        )

    def any(self) -> bool:
        return self.describe or self.review or self.inline


class PRReviewer:
    """Runs the review tasks for a single pull request."""

    def __init__(self, client: BitbucketClient, agent: ClaudeAgent, config: ServiceConfig, pr_id: int):
        self.client = client
        self.agent = agent
        self.config = config
        self.pr_id = pr_id

    async def describe(self, pr: dict, diff_text: str) -> dict:
        description = pr.get("description") or ""
        if DESCRIPTION_MARKER in description:
            logger.info(f"PR #{self.pr_id} description already has a summary")
            return {"appended": False}

        summary = (await self.agent.generate(
            TASK_DESCRIBE, render_prompt("describe"), diff_text, MODE_FREE_TEXT
        )).strip()
        if not summary:
            return {"appended": False}

        clipped = summary[:self.config.max_desc_append_chars]
        new_description = f"{description}\n\n{DESCRIPTION_MARKER}\n{clipped}".strip()
        await self.client.update_pr_description(self.pr_id, new_description)
        return {"appended": True}

    async def review(self, diff_text: str) -> dict:
        review = (await self.agent.generate(
            TASK_REVIEW, render_prompt("review"), diff_text, MODE_FREE_TEXT
        )).strip()
        if not review:
            return {"posted": False}

        created = await self.client.post_pr_comment(self.pr_id, review)
        return {"posted": True, "id": created.get("id")}

    async def inline(self, diff_text: str) -> dict:
        parsed = parse_diff(diff_text)
        if not parsed.files:
            logger.info(f"PR #{self.pr_id} diff has no hunks, skipping inline comments")
            return {"count": 0, "accepted": 0, "posted": 0, "failed": 0, "items": []}

        prompt = render_prompt(
            "inline",
            max_findings=MAX_CANDIDATES,
            labels=", ".join(label.value for label in Label),
            score_threshold=SCORE_THRESHOLD,
        )
        raw = await self.agent.generate(TASK_INLINE, prompt, format_parsed(parsed), MODE_JSON)

        extracted = extract_json_array(raw)
        if not extracted.ok:
            logger.warning(f"PR #{self.pr_id}: no suggestions extracted: {extracted.error}")

        items = validate_suggestions(extracted.items, parsed, self.config.validation_options())
        logger.info(f"Posting up to {self.config.max_inline_comments} of {len(items)} inline comments")

        outcomes = await deliver(
            items,
            lambda item: self.client.post_inline_comment(self.pr_id, item.path, item.line, item.message),
            limiter=self.config.new_rate_limiter(),
            options=self.config.delivery_options(),
        )
        posted = sum(1 for o in outcomes if o.succeeded)
        return {
            "count": len(outcomes),
            "accepted": len(items),
            "posted": posted,
            "failed": len(outcomes) - posted,
            "items": [o.to_dict() for o in outcomes],
        }

    async def run(self, flags: TaskFlags) -> dict[str, Any]:
        """Fetch the PR and run the enabled tasks.

        Raises:
            PipelineError: If the PR or diff can't be fetched.
        """
        try:
            pr = await self.client.get_pr(self.pr_id)
            diff_text = await self.client.get_pr_diff(self.pr_id)
        except Exception as e:
            raise PipelineError(f"Failed to fetch PR #{self.pr_id}: {e}") from e

        jobs = {}
        if flags.describe:
            jobs["describe"] = self.describe(pr, diff_text)
        if flags.review:
            jobs["review"] = self.review(diff_text)
        if flags.inline:
            jobs["inline"] = self.inline(diff_text)

        results: dict[str, Any] = {"pr": self.pr_id}
        outcomes = await asyncio.gather(*jobs.values(), return_exceptions=True)
        for name, outcome in zip(jobs, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"PR #{self.pr_id} {name} failed: {outcome}")
                results[name] = {"error": str(outcome)}
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[name] = outcome
        return results


async def run_pr_review(
    config: ServiceConfig,
    workspace: str,
    repo_slug: str,
    pr_id: int,
    flags: TaskFlags,
    agent: Optional[ClaudeAgent] = None,
    http: Optional[httpx.AsyncClient] = None,
) -> Optional[dict[str, Any]]:
    """Process one PR end to end. Never raises; failures are logged.

    Returns the per-task results, or None if the run was aborted.
    """
    if not flags.any():
        logger.info(f"PR #{pr_id}: no tasks enabled")
        return {"pr": pr_id}

    if agent is None:
        agent = ClaudeAgent(
            config=load_agents_config(config.agents_config_dir),
            timeout=config.generate_timeout,
        )

    owns_http = http is None
    if http is None:
        http = new_http_client(config.http_timeout)

    try:
        try:
            token = await get_access_token(
                http, config.client_id, config.client_secret, config.token_url
            )
        except Exception as e:
            raise PipelineError(f"Failed to get access token: {e}") from e

        client = BitbucketClient(http, token, workspace, repo_slug, api_url=config.api_url)
        results = await PRReviewer(client, agent, config, pr_id).run(flags)
        logger.info(f"Processing complete for {workspace}/{repo_slug}#{pr_id}: {results}")
        return results

    except PipelineError as e:
        logger.error(f"Run aborted for {workspace}/{repo_slug}#{pr_id}: {e}")
        return None
    except Exception:
        logger.exception(f"Unexpected error processing {workspace}/{repo_slug}#{pr_id}")
        return None
    finally:
        if owns_http:
            await http.aclose()
