# display.py
# All terminal output for the tool bridge.
#
# This module owns presentation entirely. harness.py and run.py never format
# strings for the user; they call named functions here. Swap this file to
# change the entire UI.
#
# Colour language:
#   cyan    : session / routing events
#   blue    : prompts and model responses
#   magenta : tool calls and their results
#   green   : success / confirmed
#   yellow  : interactive mode, shutdown
#   red     : failures and halts

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from tool_bridge.models import ExecutionResult, ImageContent, StepRecord, TextContent
from tool_bridge.proxy import Tool, ToolProxy

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _safe(value: str, max_len: int = 120) -> str:
    return escape(_mono(value, max_len))


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Startup and session
# ---------------------------------------------------------------------------


def banner(server_url: str, model: str, max_steps: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]MCP Tool Bridge[/bold cyan]\n"
            "[dim]LLM tool-calling loop over a remote MCP tool provider[/dim]\n\n"
            f"[dim]Server    :[/dim] [white]{server_url}[/white]\n"
            f"[dim]Model     :[/dim] [white]{model}[/white]\n"
            f"[dim]Max steps :[/dim] [white]{max_steps}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def connecting(url: str) -> None:
    console.print()
    console.print(_label("SESSION", "cyan"), f"[cyan] → Connecting to MCP server at {escape(url)}…[/cyan]")


def connected() -> None:
    console.print("  [bold green]✓ Connected to MCP server[/bold green]")


def tools_loaded(tools: list[Tool]) -> None:
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Tool", style="bold white")
    table.add_column("Source", width=10)
    table.add_column("Description", style="dim white")

    for tool in tools:
        if isinstance(tool, ToolProxy):
            source = "remote+img" if tool.summarizes_images else "remote"
        else:
            source = "local"
        summary = tool.description.splitlines()[0] if tool.description else ""
        table.add_row(escape(tool.name), source, _safe(summary, 70))

    console.print()
    console.print(
        Panel(
            table,
            title=_label(f"SESSION: {len(tools)} TOOLS LOADED", "cyan"),
            border_style="cyan",
            padding=(0, 1),
        )
    )


def closing() -> None:
    console.print()
    console.print(_label("SESSION", "cyan"), "[cyan] Closing MCP client…[/cyan]")


def closed() -> None:
    console.print("  [bold green]✓ MCP client closed[/bold green]")


# ---------------------------------------------------------------------------
# Prompt execution
# ---------------------------------------------------------------------------


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[blue]NEW PROMPT[/blue]", style="blue"))
    console.print(
        Panel(
            f"[white]{escape(prompt)}[/white]",
            title=_label("PROMPT", "blue"),
            border_style="blue",
            padding=(0, 2),
        )
    )


def step(record: StepRecord) -> None:
    """Step-completion hook: one block per round, in round order."""
    console.print()
    console.print(f"[bold cyan]  --- Step {record.index} ---[/bold cyan]")

    for call in record.tool_calls:
        console.print(
            f"  [magenta]Call[/magenta]     [bold white]{escape(call.tool_name)}[/bold white]"
            f"  [dim]{_safe(_json(call.arguments), 160)}[/dim]"
        )

    for result in record.tool_results:
        status = "[bold red]✗[/bold red]" if result.is_error else "[bold green]✓[/bold green]"
        for item in result.content or [TextContent(text="(no output)")]:
            if isinstance(item, TextContent):
                body = item.text
            elif isinstance(item, ImageContent):
                body = f"<image {item.mime_type}>"
            else:
                body = _json({"type": item.type, **item.payload})
            console.print(
                f"  [magenta]Result[/magenta]   {status} [white]{escape(result.tool_name)}[/white]"
                f"  [white]{_safe(body, 160)}[/white]"
            )

    if record.text:
        console.print(f"  [blue]Response[/blue] [white]{_safe(record.text, 400)}[/white]")


def final_result(result: ExecutionResult) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result.text or '(no text)')}[/white]",
            title=_label("FINAL RESPONSE", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )

    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("Key", style="dim")
    table.add_column("Value", style="white")
    table.add_row("Total steps", str(len(result.steps)))
    table.add_row("Finish reason", result.finish_reason)
    table.add_row(
        "Usage",
        f"{result.usage.prompt_tokens} prompt / {result.usage.completion_tokens} completion"
        f" / {result.usage.total_tokens} total",
    )
    console.print(table)


def prompt_error(message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]{escape(message)}[/bold red]",
            title=_label("PROMPT FAILED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Interactive mode
# ---------------------------------------------------------------------------


def interactive_start() -> None:
    console.print()
    console.print(Rule("[yellow]INTERACTIVE MODE[/yellow]", style="yellow"))
    console.print('[yellow]  Type your prompts below. Type "exit" or "quit" to stop.[/yellow]')


def read_prompt() -> str:
    """Blocking read of one line. Raises EOFError at end of input."""
    return console.input("\n[bold yellow]>[/bold yellow] ")


def exiting() -> None:
    console.print("[yellow]Exiting…[/yellow]")


# ---------------------------------------------------------------------------
# Failures and shutdown
# ---------------------------------------------------------------------------


def signal_received(name: str) -> None:
    console.print()
    console.print(f"[yellow]Received {name}, shutting down gracefully…[/yellow]")


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
