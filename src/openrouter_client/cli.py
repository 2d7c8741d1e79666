"""Command-line chat against OpenRouter with streaming output."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import signal
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from openrouter_client.cancel import CancelToken
from openrouter_client.client import OpenRouterClient
from openrouter_client.config import ClientConfig, load_config
from openrouter_client.errors import OpenRouterError
from openrouter_client.types import ChatMessage, RequestConfig, Usage

console = Console()


def _build_messages(prompt: str, system: str | None) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    if system:
        messages.append(ChatMessage(role="system", content=system))
    messages.append(ChatMessage(role="user", content=prompt))
    return messages


def _print_usage(model: str, usage: Usage | None) -> None:
    if usage is None:
        return
    cost = OpenRouterClient.estimate_cost(
        model, usage.prompt_tokens, usage.completion_tokens,
    )
    console.print(
        f"[dim]tokens: {usage.prompt_tokens} in / {usage.completion_tokens} out"
        f"  est. cost: ${cost:.6f}[/dim]"
    )


async def _run_chat(
    config: ClientConfig,
    messages: list[ChatMessage],
    request: RequestConfig,
    stream: bool,
) -> None:
    interrupt = CancelToken()
    request = dataclasses.replace(request, signal=interrupt)
    async with OpenRouterClient(config) as client:

        def _on_interrupt() -> None:
            interrupt.cancel("interrupted")
            client.cancel_all_requests()

        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, _on_interrupt)
        try:
            if not stream:
                response = await client.chat(messages, request)
                console.print(response.text, markup=False, highlight=False)
                _print_usage(response.model or request.model or config.model, response.usage)
                return

            usage: Usage | None = None
            model = request.model or config.model
            async with contextlib.aclosing(client.stream_chat(messages, request)) as chunks:
                async for chunk in chunks:
                    if chunk.text:
                        console.print(chunk.text, end="", markup=False, highlight=False)
                    if chunk.usage is not None:
                        usage = chunk.usage
                    if chunk.model:
                        model = chunk.model
            console.print()
            _print_usage(model, usage)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)


async def _run_models(config: ClientConfig) -> None:
    async with OpenRouterClient(config) as client:
        models = await client.list_models()

    table = Table(title="Models")
    table.add_column("id")
    table.add_column("name")
    table.add_column("context", justify="right")
    for m in models:
        table.add_row(m.id, m.name, str(m.context_length or ""))
    console.print(table)


@click.command()
@click.argument("prompt", required=False)
@click.option("--config", "-c", "config_path", default=None,
              help="Path to openrouter.yaml (auto-detected from CWD or ~/.openrouter/)")
@click.option("--model", "-m", default=None, help="Model id, e.g. openai/gpt-4o-mini")
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--temperature", "-t", type=float, default=None, help="Sampling temperature")
@click.option("--max-tokens", type=int, default=None, help="Maximum completion tokens")
@click.option("--no-stream", is_flag=True, help="Wait for the full response instead of streaming")
@click.option("--models", "list_models", is_flag=True, help="List available models and exit")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(prompt: str | None, config_path: str | None, model: str | None,
         system: str | None, temperature: float | None, max_tokens: int | None,
         no_stream: bool, list_models: bool, verbose: bool):
    """Chat with an OpenRouter model from the terminal."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    config, config_file = load_config(config_path)
    if config_file and verbose:
        console.print(f"[dim]Config: {config_file}[/dim]")

    try:
        if list_models:
            asyncio.run(_run_models(config))
            return
        if not prompt:
            raise click.UsageError("PROMPT is required unless --models is given")
        request = RequestConfig(
            model=model, temperature=temperature, max_tokens=max_tokens,
            stream=not no_stream,
        )
        asyncio.run(_run_chat(config, _build_messages(prompt, system), request, not no_stream))
    except OpenRouterError as e:
        if e.is_aborted:
            console.print("\n[yellow]Cancelled[/yellow]")
        else:
            console.print(f"[red]Error: {escape(e.message)}[/red]")
            if e.code or e.status:
                console.print(f"[dim]status={e.status} code={e.code}[/dim]")
        sys.exit(1)


if __name__ == "__main__":
    main()
