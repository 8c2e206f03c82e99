"""Rich-based terminal UI rendering."""

import json
import os

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from ollama_agent.ui.prompts import SLASH_COMMANDS

console = Console()


def show_welcome(model: str, working_dir: str, healthy: bool = True):
    """Display welcome banner."""
    console.print()
    status = "[green]connected[/green]" if healthy else "[red]server unreachable[/red]"
    console.print(
        Panel(
            f"[bold cyan]Ollama Agent[/bold cyan] - Terminal Coding Assistant\n"
            f"Model: [green]{model}[/green] ({status})  |  Dir: [dim]{working_dir}[/dim]\n"
            f"Type [bold]/help[/bold] for commands, [bold]Ctrl+C[/bold] to cancel, [bold]Ctrl+D[/bold] to exit",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    console.print()


_COMMAND_USAGE = {"/models": "/models [name]", "/pull": "/pull <name>"}


def show_help():
    """Display help table."""
    table = Table(title="Commands", border_style="dim")
    table.add_column("Command", style="bold cyan", no_wrap=True)
    table.add_column("Description")
    for command, description in SLASH_COMMANDS.items():
        table.add_row(_COMMAND_USAGE.get(command, command), description)
    table.add_row("", "")
    table.add_row("[bold]Shortcuts[/bold]", "")
    table.add_row("Ctrl+C", "Cancel current response")
    table.add_row("Ctrl+D", "Exit")
    table.add_row("Esc+Enter", "Insert newline in input")
    console.print(table)
    console.print()


def show_tool_calls(invocations: list) -> None:
    """Display the tool calls the model requested, one line each."""
    for inv in invocations:
        raw = inv.raw_arguments.strip()
        preview = raw if len(raw) <= 80 else raw[:77] + "..."
        console.print(Text.assemble(("  -> ", "yellow"), (inv.name, "bold yellow"), (f" {preview}", "dim")))


def show_tool_result(tool_name: str, result: str, success: bool = True, tool_args: dict | None = None):
    """Display a tool result panel with optional syntax highlighting."""
    if len(result) > 2000:
        display = result[:2000] + f"\n... [{len(result)} chars total]"
    else:
        display = result

    style = "dim" if success else "red"
    console.print(
        Panel(
            _format_tool_result(tool_name, display, tool_args) if success else Text(display, style="red"),
            title=f"[{style}]Result: {tool_name}[/{style}]",
            border_style=style,
            padding=(0, 1),
        )
    )


def _format_tool_result(tool_name: str, display: str, tool_args: dict | None = None) -> Text | Syntax:
    """Format tool result with syntax highlighting where appropriate."""
    if tool_name == "view_file" and tool_args:
        ext = os.path.splitext(str(tool_args.get("path", "")))[1].lstrip(".")
        if ext:
            code_lines = []
            for line in display.splitlines():
                if line.startswith("File:"):
                    continue
                parts = line.split("\t", 1)
                code_lines.append(parts[1] if len(parts) == 2 else line)
            return Syntax("\n".join(code_lines), ext, theme="monokai", line_numbers=False)

    if tool_name == "str_replace_editor" and "\n---" in display:
        return Syntax(display, "diff", theme="monokai", line_numbers=False)

    if tool_name == "bash":
        return Syntax(display, "bash", theme="monokai", line_numbers=False)

    return Text(display, style="dim")


def confirm_tool(tool_name: str, tool_args: dict) -> tuple[bool, bool]:
    """Show tool call and ask for confirmation. Returns (approved, always)."""
    console.print(
        Panel(
            _format_tool_args(tool_name, tool_args),
            title=f"[bold yellow]Tool: {tool_name}[/bold yellow]",
            border_style="yellow",
            padding=(0, 1),
        )
    )
    try:
        response = console.input("[bold yellow]Allow? (y)es / (n)o / (a)lways this session: [/bold yellow]").strip().lower()
        if response in ("a", "always"):
            return True, True
        return response in ("y", "yes", ""), False
    except (EOFError, KeyboardInterrupt):
        return False, False


def _format_tool_args(tool_name: str, tool_args: dict) -> str:
    """Format tool arguments for display."""
    if tool_name == "bash":
        return str(tool_args.get("command", tool_args))
    if tool_name == "create_file":
        content = str(tool_args.get("content", ""))
        preview = content[:500]
        if len(content) > 500:
            preview += f"\n... [{len(content)} chars total]"
        return f"{tool_args.get('path', '')} ({content.count(chr(10)) + 1} lines)\n{preview}"
    if tool_name == "str_replace_editor":
        return (
            f"{tool_args.get('path', '')}\n"
            f"- {tool_args.get('old_str', '')}\n"
            f"+ {tool_args.get('new_str', '')}"
        )
    return json.dumps(tool_args, indent=2, default=str)


def render_markdown(text: str):
    if text.strip():
        console.print(Markdown(text.strip()))


def start_thinking_spinner() -> Status:
    """Start a thinking spinner. Returns the Status object to stop later."""
    status = Status("[dim]Thinking...[/dim]", spinner="dots", console=console)
    status.start()
    return status


def stop_thinking_spinner(status: Status | None):
    if status is not None:
        status.stop()


def show_token_count(tokens: int):
    console.print(f"[dim]context: ~{tokens} tokens[/dim]")


def show_logs(lines: list[str]):
    if not lines:
        show_info("No logs captured yet.")
        return
    for line in lines:
        console.print(Text(line, style="dim"))


def show_last_error(details: dict | None):
    """Display the last client error and the payload that caused it."""
    if details is None:
        show_info("No errors recorded.")
        return
    body = json.dumps(details, indent=2, default=str)
    console.print(Panel(Syntax(body, "json", theme="monokai"), title="[red]Last error[/red]", border_style="red"))


def show_error(message: str):
    console.print(f"[bold red]Error:[/bold red] {message}")


def show_info(message: str):
    console.print(f"[dim]{message}[/dim]")


def show_model_changed(model: str):
    console.print(f"[green]Switched to model:[/green] [bold]{model}[/bold]")


def show_models(models: list[str], current: str):
    """Display available models, marking the active one."""
    if not models:
        show_info("No models found. Use /pull <name> to download one.")
        return
    table = Table(title="Models", border_style="dim", show_header=False)
    table.add_column("", width=2)
    table.add_column("Model")
    for m in models:
        table.add_row("[cyan]*[/cyan]" if m == current else "", f"[bold]{m}[/bold]" if m == current else m)
    console.print(table)
    console.print()
