#!/usr/bin/env python3
"""
assistantrelay CLI
Send one prompt through the relay, or inspect the resolved configuration.
"""

import asyncio
import json
import logging
import sys
import uuid

import click
from dotenv import load_dotenv

from assistantrelay.llm import (
    AssistantReplyClient,
    AssistantRequest,
    ChatMessage,
    LLMError,
    RelayConfig,
)
from assistantrelay.utils.logging import LogContext, get_logger

# Load environment variables
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(package_name="assistantrelay")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """
    assistantrelay CLI

    Resilient assistant replies from hosted prediction backends.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    # Package loggers carry their own level, so set each one
    level = logging.DEBUG if verbose else logging.WARNING
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("assistantrelay"):
            logging.getLogger(name).setLevel(level)


@cli.command()
@click.argument("prompt")
@click.option("--system", "system_prompt", default="You are a helpful assistant.", help="System prompt")
@click.option("--model", default=None, help="Backend to request (must be allow-listed)")
@click.option("--image-url", default=None, help="Image to send with the prompt")
@click.option(
    "--history",
    "history_file",
    type=click.File("r"),
    default=None,
    help="JSON file with a list of {role, content} turns",
)
@click.option("--json", "as_json", is_flag=True, help="Print the full reply as JSON")
def ask(prompt, system_prompt, model, image_url, history_file, as_json):
    """Send PROMPT and print the assistant reply."""
    history = []
    if history_file is not None:
        history = [ChatMessage(**turn) for turn in json.load(history_file)]

    request = AssistantRequest(
        system_prompt=system_prompt,
        user_prompt=prompt,
        history=history,
        image_url=image_url,
        model=model,
    )

    async def run():
        async with AssistantReplyClient() as client:
            return await client.generate_reply(request)

    try:
        with LogContext(logger, request_id=str(uuid.uuid4()), command="ask"):
            logger.info(f"Asking {model or 'the default backend'}")
            reply = asyncio.run(run())
    except LLMError as e:
        click.echo(json.dumps(e.to_dict()) if as_json else f"[{e.code}] {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(reply.to_dict(), indent=2))
    else:
        click.echo(reply.text)


@cli.command()
def config():
    """Show the resolved configuration (token masked) and any issues."""
    try:
        relay_config = RelayConfig.from_environment()
    except LLMError as e:
        click.echo(f"[{e.code}] {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(relay_config.describe(), indent=2))

    issues = relay_config.validate()
    for issue in issues:
        click.echo(f"warning: {issue}", err=True)
    if issues:
        sys.exit(1)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
