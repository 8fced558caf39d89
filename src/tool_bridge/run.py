# run.py
# Entry point. Config, wiring and the three invocation modes. No loop logic
# lives here.
#
#   --headless --prompt P   run P once and exit
#   --prompt P              run P, then drop into interactive mode
#   (neither)               interactive mode only

import asyncio
import logging
import signal
import sys
import threading

import click
from openai import AsyncOpenAI
from rich.logging import RichHandler

from tool_bridge import display
from tool_bridge.config import AgentConfig, ConfigError, load_config
from tool_bridge.harness import (
    CancellationToken,
    ExecutionCancelled,
    ModelInvocationError,
    StepExecutor,
)
from tool_bridge.models import ExecutionResult
from tool_bridge.normalizer import ContentNormalizer
from tool_bridge.proxy import Tool
from tool_bridge.session import ConnectionFailed, Session
from tool_bridge.storage import OutputStore
from tool_bridge.tools import build_database_tools

logger = logging.getLogger(__name__)

EXIT_WORDS = frozenset({"exit", "quit"})


def setup_logging(level: str = "WARNING") -> None:
    """Route diagnostics through rich, sharing the display console."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Prompt execution
# ---------------------------------------------------------------------------


class PromptRunner:
    """Runs prompts one at a time against a fixed tool set. Never concurrently."""

    def __init__(
        self,
        client: AsyncOpenAI,
        config: AgentConfig,
        tools: list[Tool],
        cancel_token: CancellationToken,
    ) -> None:
        self._client = client
        self._config = config
        self._tools = tools
        self._cancel = cancel_token

    async def execute(self, prompt: str) -> ExecutionResult:
        display.prompt_received(prompt)
        executor = StepExecutor(
            self._client,
            self._config.model,
            self._tools,
            max_steps=self._config.max_steps,
            system_prompt=self._config.system_prompt,
            cancel_token=self._cancel,
        )
        try:
            result = await executor.run(prompt, on_step=display.step)
        except ModelInvocationError as exc:
            display.prompt_error(f"Error executing prompt: {exc}")
            raise
        display.final_result(result)
        return result


async def _read_line() -> str | None:
    """
    Read one line of input without blocking the event loop.

    The reader is a daemon thread so a pending read never holds up process
    exit after a shutdown signal. Returns None at end of input.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str | None] = loop.create_future()

    def deliver(value: str | None) -> None:
        if not future.done():
            future.set_result(value)

    def reader() -> None:
        try:
            line: str | None = display.read_prompt()
        except EOFError:
            line = None
        try:
            loop.call_soon_threadsafe(deliver, line)
        except RuntimeError:
            # Loop already closed during shutdown; nobody is waiting.
            return

    threading.Thread(target=reader, name="prompt-reader", daemon=True).start()
    return await future


async def interactive(runner: PromptRunner) -> None:
    display.interactive_start()
    while True:
        line = await _read_line()
        if line is None:
            display.exiting()
            return

        prompt = line.strip()
        if prompt.lower() in EXIT_WORDS:
            display.exiting()
            return
        if not prompt:
            continue

        try:
            await runner.execute(prompt)
        except ModelInvocationError:
            # Already reported; the next prompt gets a fresh executor.
            continue


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _install_signal_handlers(token: CancellationToken, task: asyncio.Task) -> None:
    loop = asyncio.get_running_loop()

    def on_signal(sig: signal.Signals) -> None:
        display.signal_received(sig.name)
        token.cancel(sig.name)
        # In-flight model or tool calls are abandoned, not awaited.
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported here; relying on KeyboardInterrupt")


async def amain(config: AgentConfig, prompt: str | None, headless: bool) -> int:
    token = CancellationToken()
    task = asyncio.current_task()
    if task is not None:
        _install_signal_handlers(token, task)

    client = AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)
    session = Session(
        config.server_url,
        normalizer=ContentNormalizer(client, config.summary_model),
        capture_tools=config.capture_tools,
    )
    store = OutputStore(config.database_url) if config.database_url else None

    display.banner(config.server_url, config.model, config.max_steps)
    display.connecting(config.server_url)
    try:
        async with session:
            display.connected()
            try:
                tools: list[Tool] = list(await session.list_tools())
                if store is not None:
                    tools.extend(build_database_tools(store))
                display.tools_loaded(tools)

                runner = PromptRunner(client, config, tools, token)
                if headless:
                    await runner.execute(prompt or "")
                else:
                    if prompt:
                        await runner.execute(prompt)
                    await interactive(runner)
            finally:
                display.closing()
        display.closed()
    except ConnectionFailed as exc:
        display.halt(str(exc))
        return 1
    except ModelInvocationError as exc:
        display.halt(f"Fatal error: {exc}")
        return 1
    except (asyncio.CancelledError, ExecutionCancelled):
        if not token.cancelled:
            raise
        return 0
    finally:
        if store is not None:
            store.close()
        await client.close()
    return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="tool-bridge")
@click.option("--url", "-u", default=None, help="MCP server URL. [default: http://localhost:3000/mcp]")
@click.option("--model", "-m", default=None, help="AI model to use. [default: gpt-5]")
@click.option("--prompt", "-p", default=None, help="Prompt to execute.")
@click.option("--headless", is_flag=True, default=False, help="Run the prompt autonomously and exit.")
@click.option("--max-steps", type=click.IntRange(min=1), default=None, help="Maximum number of steps. [default: 20]")
@click.option("--api-key", default=None, help="OpenAI API key (or set OPENAI_API_KEY env var).")
@click.option("--vision-model", default=None, help="Model used to summarize screenshots. [default: --model]")
@click.option(
    "--capture-tool",
    "capture_tools",
    multiple=True,
    help="Tool whose images are summarized to text. Repeatable. [default: browser_take_screenshot]",
)
@click.option("--system-prompt", default=None, help="System instruction sent with every round.")
@click.option("--database-url", default=None, help="SQLAlchemy URL enabling the output-store tools.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Diagnostic log level. [default: WARNING]",
)
def cli(
    url: str | None,
    model: str | None,
    prompt: str | None,
    headless: bool,
    max_steps: int | None,
    api_key: str | None,
    vision_model: str | None,
    capture_tools: tuple[str, ...],
    system_prompt: str | None,
    database_url: str | None,
    log_level: str | None,
) -> None:
    """CLI agent for MCP tools with HTTP transport."""
    try:
        config = load_config(
            api_key=api_key,
            server_url=url,
            model=model,
            max_steps=max_steps,
            vision_model=vision_model,
            capture_tools=capture_tools or None,
            system_prompt=system_prompt,
            database_url=database_url,
            log_level=log_level,
        )
    except ConfigError as exc:
        display.halt(f"Error: {exc}")
        sys.exit(1)

    if headless and not prompt:
        display.halt("Error: --prompt is required when running in headless mode")
        sys.exit(1)

    setup_logging(config.log_level)
    try:
        code = asyncio.run(amain(config, prompt, headless))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
