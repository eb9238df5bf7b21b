"""async-anthropic CLI.

Usage:
    async-anthropic message "Hello"                 # Send a message, print the reply
    async-anthropic message "Hello" --stream        # Stream the reply as it arrives
    async-anthropic models list                     # List available models
    async-anthropic models info <id>                # Show model details
    async-anthropic config                          # Show configuration
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime

import click

from .client import AnthropicClient
from .config import ClientConfig
from .errors import AnthropicError
from .types import CreateMessagesRequest, Message, TextDelta

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

DEFAULT_MODEL = "claude-3-5-sonnet-latest"


def default_model() -> str:
    """Model used when --model is not given."""
    return os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)


def format_datetime(dt: datetime | str | None) -> str:
    """Format datetime for display."""
    if dt is None:
        return "N/A"
    if isinstance(dt, str):
        try:
            dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
        except ValueError:
            return dt
    return dt.strftime("%Y-%m-%d %H:%M")


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _make_client(ctx: click.Context) -> AnthropicClient:
    overrides = {}
    if ctx.obj.get("base_url"):
        overrides["base_url"] = ctx.obj["base_url"]
    return AnthropicClient(config=ClientConfig.from_env(**overrides))


def _run(coro) -> None:
    """Run a coroutine, turning client errors into CLI errors."""
    try:
        asyncio.run(coro)
    except AnthropicError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--base-url", default=None, help="API root (default: ANTHROPIC_BASE_URL)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, base_url: str | None) -> None:
    """Async Anthropic client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url


# =============================================================================
# Messages
# =============================================================================


@main.command("message")
@click.argument("prompt")
@click.option(
    "--model", "-m", default=default_model, help="Model to use (default: ANTHROPIC_MODEL)"
)
@click.option("--max-tokens", default=1024, help="Maximum tokens to generate")
@click.option("--system", default=None, help="System prompt")
@click.option("--stream", "stream_reply", is_flag=True, help="Stream the reply")
@click.pass_context
def message(
    ctx: click.Context,
    prompt: str,
    model: str,
    max_tokens: int,
    system: str | None,
    stream_reply: bool,
) -> None:
    """Send a single user message and print the reply.

    Examples:

        async-anthropic message "Write a haiku"
        async-anthropic message "Write a haiku" --stream --model claude-3-5-haiku-latest
    """
    request = CreateMessagesRequest(
        model=model,
        messages=[Message.user(prompt)],
        max_tokens=max_tokens,
        system=system,
    )

    async def run() -> None:
        async with _make_client(ctx) as client:
            if not stream_reply:
                response = await client.messages.create(request)
                click.echo(response.text())
                return

            async with client.messages.create_stream(request) as stream:
                async for event in stream:
                    if event.type == "content_block_delta" and isinstance(event.delta, TextDelta):
                        click.echo(event.delta.text, nl=False)
            click.echo()

    _run(run())


# =============================================================================
# Model Commands
# =============================================================================


@main.group()
def models() -> None:
    """Inspect available models."""


@models.command("list")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def models_list(ctx: click.Context, output_format: str) -> None:
    """List available models.

    Examples:

        async-anthropic models list
        async-anthropic models list --format json
    """

    async def run() -> None:
        async with _make_client(ctx) as client:
            result = await client.models.list()

        if output_format == FORMAT_JSON:
            click.echo(json.dumps([m.model_dump(by_alias=True) for m in result.data], indent=2))
            return

        click.echo(f"{'ID':<36} {'Name':<28} {'Created':<16}")
        click.echo("-" * 82)
        for m in result.data:
            click.echo(
                f"{truncate(m.id, 36):<36} {truncate(m.display_name, 28):<28} "
                f"{format_datetime(m.created_at):<16}"
            )

    _run(run())


@models.command("info")
@click.argument("model_id")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def models_info(ctx: click.Context, model_id: str, output_json: bool) -> None:
    """Show details for one model."""

    async def run() -> None:
        async with _make_client(ctx) as client:
            model = await client.models.get(model_id)

        if output_json:
            click.echo(json.dumps(model.model_dump(by_alias=True), indent=2))
            return

        click.echo(f"ID:       {model.id}")
        click.echo(f"Name:     {model.display_name}")
        click.echo(f"Created:  {format_datetime(model.created_at)}")

    _run(run())


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show_config(ctx: click.Context, output_json: bool) -> None:
    """Show current configuration (the API key is never printed)."""
    config = _make_client(ctx).config
    backoff = config.backoff
    data = {
        "base_url": config.base_url,
        "version": config.version,
        "beta": config.beta,
        "default_model": default_model(),
        "api_key_configured": bool(config.api_key.get_secret_value()),
        "timeout": config.timeout,
        "backoff": {
            "min_delay": backoff.min_delay,
            "max_delay": backoff.max_delay,
            "factor": backoff.factor,
            "jitter": backoff.jitter,
            "max_attempts": backoff.max_attempts,
        },
        "reconnect_max_attempts": config.reconnect_max_attempts,
    }

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("Anthropic Client Configuration")
    click.echo("-" * 40)
    click.echo(f"Base URL:           {data['base_url']}")
    click.echo(f"API version:        {data['version']}")
    click.echo(f"Beta features:      {data['beta'] or 'none'}")
    click.echo(f"Default model:      {data['default_model']}")
    click.echo(f"API key:            {'configured' if data['api_key_configured'] else 'missing'}")
    click.echo(f"Max attempts:       {backoff.max_attempts or 'unbounded'}")
    click.echo(f"Reconnect attempts: {config.reconnect_max_attempts or 'unbounded'}")


if __name__ == "__main__":
    main()
