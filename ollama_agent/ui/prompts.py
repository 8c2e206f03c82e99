"""prompt_toolkit input: history, slash-command completion, key bindings."""

from __future__ import annotations

import os
from typing import Callable, Iterable

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings

from ollama_agent.config import DATA_DIR, HISTORY_FILE

SLASH_COMMANDS: dict[str, str] = {
    "/help": "Show help",
    "/clear": "Clear conversation history",
    "/models": "List or switch models",
    "/pull": "Download a model",
    "/logs": "Show session logs",
    "/last-error-log": "Show the last request error",
    "/exit": "Exit",
}

# Commands whose argument is a model name
MODEL_COMMANDS = ("/models", "/pull")


class SlashCommandCompleter(Completer):
    """Completes slash commands, and model names after /models and /pull."""

    def __init__(self, model_source: Callable[[], Iterable[str]] | None = None):
        self.model_source = model_source

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor
        if not text.startswith("/"):
            return

        if " " not in text:
            for command, meta in SLASH_COMMANDS.items():
                if command.startswith(text):
                    yield Completion(command, start_position=-len(text), display_meta=meta)
            return

        command, _, partial = text.partition(" ")
        if command not in MODEL_COMMANDS or self.model_source is None:
            return
        for model in sorted(self.model_source()):
            if model.startswith(partial):
                yield Completion(model, start_position=-len(partial))


def create_prompt_session(model_source: Callable[[], Iterable[str]] | None = None) -> PromptSession:
    """Create the REPL's prompt session."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    bindings = KeyBindings()

    @bindings.add("escape", "enter")
    def _(event):
        """Escape+Enter inserts a newline."""
        event.current_buffer.insert_text("\n")

    @bindings.add("enter")
    def _(event):
        event.current_buffer.validate_and_handle()

    return PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        auto_suggest=AutoSuggestFromHistory(),
        completer=SlashCommandCompleter(model_source),
        complete_while_typing=True,
        multiline=False,
        key_bindings=bindings,
        enable_history_search=False,
    )


def get_prompt_text(model_name: str, working_dir: str | None = None) -> str:
    """Prompt showing the model without its tag, and the project folder."""
    short = model_name.split(":")[0]
    if working_dir:
        return f"{short} [{os.path.basename(os.path.normpath(working_dir))}] > "
    return f"{short} > "
