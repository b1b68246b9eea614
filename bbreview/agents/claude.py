"""
Claude CLI integration for bbreview.

Claude is the generation engine for all three tasks (describe, review,
inline). It runs headlessly: prompt via -p, diff payload via stdin.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from bbreview.lib.agents_config import AgentsConfig, get_task_command

logger = logging.getLogger(__name__)

MODE_JSON = "json"
MODE_FREE_TEXT = "free-text"
VALID_MODES = (MODE_JSON, MODE_FREE_TEXT)

DEFAULT_TIMEOUT_SECONDS = 300


class GenerationError(Exception):
    """The engine could not be run or exited unsuccessfully."""

    def __init__(self, task: str, message: str, exit_code: Optional[int] = None):
        self.task = task
        self.exit_code = exit_code
        super().__init__(f"[{task}] {message}")


def unwrap_result(stdout: str) -> str:
    """Extract the response text from claude's --output-format json envelope.

    Claude CLI with --output-format json wraps the response in
    {"type": "result", "result": "..."}. Anything else is returned as-is.
    """
    text = stdout.strip()
    try:
        wrapper = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(wrapper, dict) and isinstance(wrapper.get("result"), str):
        return wrapper["result"]
    return text


@dataclass
class ClaudeAgent:
    config: AgentsConfig = field(default_factory=AgentsConfig)
    timeout: int = DEFAULT_TIMEOUT_SECONDS

    async def generate(self, task: str, prompt: str, payload: str, mode: str) -> str:
        """Run the engine for a task and return its raw text output.

        In JSON mode the CLI envelope is unwrapped; the remaining text still
        goes through the tolerant extractor, since the model may fence or
        quote its array.

        Raises:
            GenerationError: on missing binary, timeout, or non-zero exit.
        """
        if mode not in VALID_MODES:
            raise ValueError(f"Unknown mode: {mode}")

        command = get_task_command(self.config, task, prompt)

        # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

        logger.debug(f"Running {task}: {command.cmd[0]} ({len(payload)} chars on stdin)")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command.cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError:
            raise GenerationError(task, f"{command.cmd[0]} not found in PATH") from None

        stdin = command.get_stdin_input(prompt, payload).encode()
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise GenerationError(task, f"Timed out after {self.timeout}s") from None

        out = stdout.decode(errors="replace")
        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip() or out.strip()
            if not err:
                err = "(no output - check 'claude --version' and auth status)"
            raise GenerationError(task, f"exit {proc.returncode}: {err}", proc.returncode)

        if mode == MODE_JSON or command.output_format == "json":
            return unwrap_result(out)
        return out
