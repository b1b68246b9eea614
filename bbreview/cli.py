#!/usr/bin/env python3
"""bbreview CLI entrypoint."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from bbreview.diff.lineformat import format_diff
from bbreview.diff.parser import extract_line_context, parse_diff
from bbreview.lib.agents_config import (
    DEFAULT_TASK_COMMANDS,
    load_agents_config,
    validate_task_binaries,
)
from bbreview.lib.config import ServiceConfig, load_service_config
from bbreview.lib.webhook import parse_workspace_repo
from bbreview.pipeline import TaskFlags, run_pr_review

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
    )


def load_config(args) -> ServiceConfig:
    try:
        return load_service_config(Path(args.env_file) if args.env_file else None)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)


def read_diff(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text()


def cmd_serve(args, config: ServiceConfig) -> int:
    import uvicorn

    from bbreview.server import create_app

    uvicorn.run(create_app(config), host=args.host, port=args.port or config.port)
    return 0


def cmd_review(args, config: ServiceConfig) -> int:
    workspace, repo_slug = parse_workspace_repo(args.repo)
    if not workspace or not repo_slug:
        print("ERROR: repository must be WORKSPACE/REPO", file=sys.stderr)
        return 2

    flags = TaskFlags(
        describe=not args.no_describe,
        review=not args.no_review,
        inline=not args.no_inline,
    )
    results = asyncio.run(run_pr_review(config, workspace, repo_slug, args.pr_id, flags))
    if results is None:
        return 1

    for task in ("describe", "review", "inline"):
        if task in results:
            print(f"{task}: {results[task]}")
    return 0


def cmd_format_diff(args, config: ServiceConfig) -> int:
    print(format_diff(read_diff(args.file)), end="")
    return 0


def cmd_line_context(args, config: ServiceConfig) -> int:
    parsed = parse_diff(read_diff(args.file))
    parsed_file = parsed.get_file(args.path)
    if parsed_file is None:
        print(f"ERROR: {args.path} not in diff", file=sys.stderr)
        return 1

    context = extract_line_context(parsed_file, args.line, args.context)
    if context is None:
        print(f"ERROR: line {args.line} is not visible in {args.path}", file=sys.stderr)
        return 1

    first = args.line - len(context.before)
    for offset, content in enumerate(context.before + [context.target] + context.after):
        line_no = first + offset
        marker = ">" if line_no == args.line else " "
        print(f"{marker}{line_no:>6}  {content}")
    return 0


def cmd_check(args, config: ServiceConfig) -> int:
    agents = load_agents_config(config.agents_config_dir)
    result = validate_task_binaries(agents, list(DEFAULT_TASK_COMMANDS))
    if not result.ok:
        print(result.error_message, file=sys.stderr)
        return 1
    print("All engine binaries available")
    return 0


def main():
    parser = argparse.ArgumentParser(prog='bbr', description='Bitbucket PR review bot')
    parser.add_argument('--env-file', '-e', help='Path to .env file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # bbr serve
    p_serve = subparsers.add_parser('serve', help='Run the webhook server')
    p_serve.add_argument('--host', default='0.0.0.0', help='Bind address')
    p_serve.add_argument('--port', type=int, help='Port (default: PORT or 8080)')
    p_serve.set_defaults(func=cmd_serve)

    # bbr review
    p_review = subparsers.add_parser('review', help='Review one PR now')
    p_review.add_argument('repo', help='WORKSPACE/REPO')
    p_review.add_argument('pr_id', type=int, help='Pull request ID')
    p_review.add_argument('--no-describe', action='store_true', help='Skip description summary')
    p_review.add_argument('--no-review', action='store_true', help='Skip review comment')
    p_review.add_argument('--no-inline', action='store_true', help='Skip inline comments')
    p_review.set_defaults(func=cmd_review)

    # bbr format-diff
    p_format = subparsers.add_parser('format-diff', help='Print diff with destination line numbers')
    p_format.add_argument('file', help='Unified diff file (- for stdin)')
    p_format.set_defaults(func=cmd_format_diff)

    # bbr line-context
    p_context = subparsers.add_parser('line-context', help='Show diff lines around a destination line')
    p_context.add_argument('file', help='Unified diff file (- for stdin)')
    p_context.add_argument('path', help='Destination file path')
    p_context.add_argument('line', type=int, help='Destination line number')
    p_context.add_argument('--context', '-C', type=int, default=3, help='Lines of context')
    p_context.set_defaults(func=cmd_line_context)

    # bbr check
    p_check = subparsers.add_parser('check', help='Check engine binaries are installed')
    p_check.set_defaults(func=cmd_check)

    args = parser.parse_args()
    config = load_config(args)
    setup_logging(config.log_level, args.verbose)
    sys.exit(args.func(args, config))


if __name__ == '__main__':
    main()
