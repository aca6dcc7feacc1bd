"""junie-gitlab CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import httpx

from junie_gitlab.config import JunieConfig, load_config
from junie_gitlab.gitlab_client import GitLabClient
from junie_gitlab.models import EventContext, context_from_env, context_from_webhook
from junie_gitlab.runner import Runner

logger = logging.getLogger("junie_gitlab")


def _load_context(args: argparse.Namespace, config: JunieConfig) -> EventContext:
    if args.event is None:
        return context_from_env(custom_prompt=config.custom_prompt)

    with open(args.event) as f:
        payload = json.load(f)
    pipeline_id = os.environ.get("CI_PIPELINE_ID")
    return context_from_webhook(
        payload,
        pipeline_id=int(pipeline_id) if pipeline_id else None,
        custom_prompt=config.custom_prompt,
    )


async def _run(args: argparse.Namespace, config: JunieConfig) -> int:
    context = _load_context(args, config)
    logger.info(
        "Handling %s event in project %s (%s)",
        context.event_kind,
        context.project_id,
        type(context).__name__,
    )

    async with GitLabClient(api_v4_url=config.api_v4_url, token=config.gitlab_token) as client:
        runner = Runner(config, client)
        if args.command == "prepare":
            await runner.prepare(context)
            return 0

        await runner.report(context, args.output, created_mr_url=args.mr_url)
        return 0


def main():
    parser = argparse.ArgumentParser(
        prog="junie-gitlab",
        description="Turn GitLab comments and merge request events into tasks for Junie",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML config file (default: $JUNIE_CONFIG, if set)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "-V",
        "--verbose",
        action="store_true",
        help="Shorthand for --log-level DEBUG",
    )

    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--event",
        type=Path,
        help="GitLab webhook payload (JSON). Default: read the event from JUNIE_* variables",
    )
    common.add_argument(
        "--prompt",
        help="Custom instruction overriding the comment text (default: $JUNIE_PROMPT)",
    )

    # junie-gitlab prepare
    subparsers.add_parser(
        "prepare",
        parents=[common],
        help="Classify the event, post start feedback and write the agent task",
    )

    # junie-gitlab report
    report_parser = subparsers.add_parser(
        "report",
        parents=[common],
        help="Post the agent's result back to GitLab",
    )
    report_parser.add_argument(
        "--output",
        type=Path,
        required=True,
        help="Agent JSON output file (with 'result' and 'taskName')",
    )
    report_parser.add_argument(
        "--mr-url",
        help="URL of the merge request created from the agent's changes",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(args.config, custom_prompt=args.prompt)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args, config)))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except httpx.HTTPError as e:
        logger.error("GitLab request failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
