"""Ollama Agent - terminal coding assistant. Entry point."""

import os
import sys

import click

from ollama_agent.config import AppConfig, SettingsManager
from ollama_agent.logging_config import setup_logging
from ollama_agent.session import SessionContext


@click.command()
@click.option("-m", "--model", default=None, help="Model to use (default: project setting, then user default)")
@click.option("-u", "--base-url", default=None, help="Ollama server URL (default: $OLLAMA_BASE_URL or http://localhost:11434)")
@click.option("-d", "--directory", "working_dir", default=None, help="Working directory")
@click.option("-p", "--prompt-mode", is_flag=True, help="Process PROMPT once without the interactive UI, then exit")
@click.option("-y", "--auto-accept", is_flag=True, help="Approve all tool calls without asking")
@click.option("-v", "--verbose", is_flag=True, help="Show warnings and token counts")
@click.argument("prompt", required=False, default=None)
def main(model: str | None, base_url: str | None, working_dir: str | None, prompt_mode: bool,
         auto_accept: bool, verbose: bool, prompt: str | None):
    """Ollama Agent - a coding assistant in your terminal, powered by local models."""
    if working_dir:
        wd = os.path.abspath(working_dir)
        if not os.path.isdir(wd):
            click.echo(f"Error: Directory not found: {wd}", err=True)
            sys.exit(1)
    else:
        wd = os.getcwd()

    setup_logging(verbose)

    # Piped stdin becomes part of the prompt
    if not sys.stdin.isatty():
        stdin_content = sys.stdin.read()
        if stdin_content.strip():
            prompt = f"<stdin>\n{stdin_content}\n</stdin>\n\n{prompt}" if prompt else stdin_content
        try:
            sys.stdin = open("/dev/tty", "r")
        except OSError:
            prompt_mode = True

    if prompt_mode and not prompt:
        click.echo("Error: --prompt-mode requires a prompt (positional argument or piped stdin)", err=True)
        sys.exit(1)

    settings = SettingsManager(wd)
    config = AppConfig.from_settings_and_cli(
        {
            "working_dir": wd,
            "model": model,
            "base_url": base_url,
            "auto_accept_tools": auto_accept or prompt_mode,
            "verbose": verbose,
        },
        settings=settings,
    )

    context = SessionContext()
    if config.auto_accept_tools:
        context.flags.all_operations = True

    from ollama_agent.repl import REPL
    repl = REPL(config, context=context, settings=settings)

    if prompt_mode:
        sys.exit(repl.run_print(prompt))
    repl.run(initial_prompt=prompt)


if __name__ == "__main__":
    main()
