"""
Generation engine command configuration.

Loads agents.yaml to determine which CLI command runs each generation task.
If no config file exists, returns defaults that run the claude CLI headlessly.

TASK COMMAND TEMPLATES
======================

Each task maps to a CLI command template. Templates support variable
substitution using {variable_name} syntax.

- {prompt}: The instruction text. If present in the template it is passed as
  a CLI argument. If absent, prompt and payload are both sent via stdin,
  separated by a blank line.

The payload (the PR diff) always goes via stdin: diffs routinely exceed
command line length limits.

Example agents.yaml:

    tasks:
      inline: claude --model sonnet -p {prompt} --output-format json
"""

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

AGENTS_CONFIG_FILENAME = "agents.yaml"

TASK_DESCRIBE = "describe"
TASK_REVIEW = "review"
TASK_INLINE = "inline"

DEFAULT_TASK_COMMANDS = {
    TASK_DESCRIBE: "claude -p {prompt}",
    # PR summary appended to the description -> markdown

    TASK_REVIEW: "claude -p {prompt}",
    # Top-level review comment -> markdown

    TASK_INLINE: "claude -p {prompt} --output-format json",
    # Line-targeted findings -> JSON array of suggestions
}

_PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    tasks: dict[str, str] = field(default_factory=lambda: DEFAULT_TASK_COMMANDS.copy())


def load_agents_config(config_dir: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If config_dir is None or the file doesn't exist, returns defaults.
    Unknown task names in the file are ignored with a warning.
    """
    if config_dir is None:
        return AgentsConfig()

    config_path = config_dir / AGENTS_CONFIG_FILENAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    tasks = DEFAULT_TASK_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("tasks"), dict):
        for name, command in data["tasks"].items():
            if name not in DEFAULT_TASK_COMMANDS:
                logger.warning(f"Ignoring unknown task '{name}' in {config_path}")
                continue
            tasks[name] = str(command)
    return AgentsConfig(tasks=tasks)


@dataclass
class TaskCommand:
    """Result of building a task command."""
    cmd: list[str]  # Command ready for subprocess
    prompt_via_stdin: bool  # True if prompt should be prepended to stdin
    output_format: str | None  # "json" if --output-format json, else None

    def get_stdin_input(self, prompt: str, payload: str) -> str:
        """Build stdin: payload alone, or prompt + payload when prompt isn't an arg."""
        if self.prompt_via_stdin:
            return f"{prompt}\n\n{payload}"
        return payload


def _detect_output_format(parts: list[str]) -> str | None:
    # Handles both "--output-format json" and "--output-format=json"
    for i, part in enumerate(parts):
        if part == "--output-format" and i + 1 < len(parts):
            return parts[i + 1]
        if part.startswith("--output-format="):
            return part.split("=", 1)[1]
    return None


def get_task_command(config: AgentsConfig, task: str, prompt: str) -> TaskCommand:
    """Build the command list for a task.

    Raises:
        ValueError: If task is unknown.

    Example:
        >>> get_task_command(AgentsConfig(), "inline", "find bugs").cmd
        ['claude', '-p', 'find bugs', '--output-format', 'json']
    """
    if task not in config.tasks:
        raise ValueError(f"Unknown task: {task}")

    template = config.tasks[task]
    prompt_via_stdin = "{prompt}" not in template

    # Replace {prompt} with a placeholder before shlex so quotes in the
    # prompt can't break tokenizing
    parts = shlex.split(template.replace("{prompt}", _PROMPT_PLACEHOLDER))
    cmd = [prompt if part == _PROMPT_PLACEHOLDER else part for part in parts]

    return TaskCommand(
        cmd=cmd,
        prompt_via_stdin=prompt_via_stdin,
        output_format=_detect_output_format(parts),
    )


def get_task_binary(config: AgentsConfig, task: str) -> str:
    """Get the binary name for a task (first element of command)."""
    if task not in config.tasks:
        raise ValueError(f"Unknown task: {task}")

    parts = shlex.split(config.tasks[task])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None


@dataclass
class BinaryCheckResult:
    """Result of checking task binaries."""
    ok: bool
    missing_binary: str | None = None
    tasks_affected: list[str] = field(default_factory=list)
    error_message: str | None = None


def validate_task_binaries(config: AgentsConfig, tasks: list[str]) -> BinaryCheckResult:
    """Validate that binaries for the given tasks are available.

    Returns:
        BinaryCheckResult with ok=True if all binaries available,
        or ok=False with details about what's missing and how to fix it.
    """
    binary_to_tasks: dict[str, list[str]] = {}
    for task in tasks:
        if task not in config.tasks:
            continue
        binary_to_tasks.setdefault(get_task_binary(config, task), []).append(task)

    for binary, affected in binary_to_tasks.items():
        if not check_binary_available(binary):
            error_lines = [
                f"Required tool '{binary}' is not installed.",
                "",
                f"Tasks that need it: {', '.join(affected)}",
                "",
                "To fix this, either:",
                f"  1. Install {binary}",
                f"  2. Create {AGENTS_CONFIG_FILENAME} in AGENTS_CONFIG_DIR to use a different tool:",
                "",
                "     tasks:",
            ]
            for task in affected:
                error_lines.append(f"       {task}: claude -p {{prompt}}")

            return BinaryCheckResult(
                ok=False,
                missing_binary=binary,
                tasks_affected=affected,
                error_message="\n".join(error_lines),
            )

    return BinaryCheckResult(ok=True)
