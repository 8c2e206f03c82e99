"""Main REPL orchestration - connects input, agent, and display."""

import sys

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown

from ollama_agent.agent import ERROR_PREFIX, OllamaAgent
from ollama_agent.config import AppConfig, SettingsManager
from ollama_agent.session import SessionContext
from ollama_agent.ui import renderer
from ollama_agent.ui.prompts import create_prompt_session, get_prompt_text

console = Console()


class REPL:
    """Interactive REPL that orchestrates input -> agent -> display."""

    def __init__(self, config: AppConfig, context: SessionContext | None = None, settings: SettingsManager | None = None):
        self.config = config
        self.context = context or SessionContext()
        self.settings = settings or SettingsManager(config.working_dir)
        self.agent = OllamaAgent(config, context=self.context, confirm_callback=self._confirm_tool)
        self.prompt_session = None
        self._running = True

    def _confirm_tool(self, tool_name: str, tool_args: dict) -> bool:
        """Ask before running a tool; 'always' pre-approves its category for the session."""
        approved, always = renderer.confirm_tool(tool_name, tool_args)
        if always:
            tool = self.agent.registry.get(tool_name)
            category = tool.confirmation_category if tool else "all"
            self.context.flags.grant(category)
            renderer.show_info(f"Auto-approving '{category}' operations for this session.")
        return approved

    def _handle_slash_command(self, text: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        parts = text.strip().split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "/help":
            renderer.show_help()
            return True

        if cmd == "/clear":
            self.agent.clear_history()
            renderer.show_info("Conversation history cleared.")
            return True

        if cmd == "/models":
            models = self.agent.refresh_available_models()
            if not arg:
                renderer.show_models(sorted(models), self.agent.current_model)
                return True
            if models and arg not in models:
                renderer.show_error(f"Model '{arg}' is not available. Use /pull {arg} to download it.")
                return True
            self.agent.set_model(arg)
            self.settings.set_current_model(arg)
            renderer.show_model_changed(arg)
            return True

        if cmd == "/pull":
            if not arg:
                renderer.show_info("Usage: /pull <model>")
                return True
            status = renderer.start_thinking_spinner()
            try:
                self.agent.pull_model(arg)
            except Exception as e:
                renderer.show_error(f"Failed to pull {arg}: {e}")
                return True
            finally:
                renderer.stop_thinking_spinner(status)
            renderer.show_info(f"Pulled {arg}.")
            return True

        if cmd == "/logs":
            renderer.show_logs(self.agent.get_logs())
            return True

        if cmd == "/last-error-log":
            details = self.agent.get_last_error_details()
            renderer.show_last_error(details.to_dict() if details else None)
            return True

        if cmd in ("/exit", "/quit"):
            self._running = False
            return True

        return False

    def _process_response(self, chunks):
        """Render streaming chunks from the agent."""
        text_buffer = ""
        live = None
        spinner = renderer.start_thinking_spinner()
        last_tokens = 0

        def stop_live():
            nonlocal live, text_buffer
            if live is not None:
                live.stop()
                live = None
            text_buffer = ""

        try:
            for chunk in chunks:
                if spinner is not None and chunk.type != "token_count":
                    renderer.stop_thinking_spinner(spinner)
                    spinner = None

                if chunk.type == "content":
                    text_buffer += chunk.content
                    if live is None:
                        live = Live(
                            Markdown(text_buffer),
                            console=console,
                            refresh_per_second=10,
                            vertical_overflow="visible",
                        )
                        live.start()
                    else:
                        live.update(Markdown(text_buffer))

                elif chunk.type == "tool_calls":
                    stop_live()
                    renderer.show_tool_calls(chunk.tool_invocations or [])

                elif chunk.type == "tool_result":
                    stop_live()
                    result = chunk.tool_result
                    renderer.show_tool_result(chunk.tool_invocation.name, result.text, result.success)

                elif chunk.type == "token_count":
                    last_tokens = chunk.token_count or 0

                elif chunk.type == "done":
                    break

        except KeyboardInterrupt:
            self.agent.abort_current_operation()
            renderer.show_info("\n[cancelled]")
        finally:
            renderer.stop_thinking_spinner(spinner)
            if live is not None:
                live.stop()

        if self.config.verbose and last_tokens:
            renderer.show_token_count(last_tokens)
        console.print()

    def run(self, initial_prompt: str | None = None):
        """Main REPL loop."""
        renderer.show_welcome(self.agent.current_model, self.config.working_dir, self.agent.check_health())
        connected = self.agent.connect_external_tools()
        if connected:
            renderer.show_info(f"Loaded {connected} MCP tool(s).")

        self.prompt_session = create_prompt_session(self.agent.available_models)

        if initial_prompt:
            renderer.show_info(f"> {initial_prompt[:200]}{'...' if len(initial_prompt) > 200 else ''}")
            self._process_response(self.agent.process_user_message_stream(initial_prompt))

        while self._running:
            try:
                user_input = self.prompt_session.prompt(get_prompt_text(self.agent.current_model, self.config.working_dir)).strip()
                if not user_input:
                    continue

                if user_input.startswith("/") and self._handle_slash_command(user_input):
                    continue

                self._process_response(self.agent.process_user_message_stream(user_input))

            except KeyboardInterrupt:
                console.print()
                continue
            except EOFError:
                break
            except Exception as e:
                renderer.show_error(f"Unexpected error: {e}")
                continue

        self.agent.close()
        console.print("[dim]Goodbye![/dim]")

    def run_print(self, prompt: str) -> int:
        """Non-interactive mode: stream one answer to stdout and exit.

        Returns the process exit code.
        """
        self.agent.connect_external_tools()
        chunks = self.agent.process_user_message_stream(prompt)
        failed = False
        try:
            for chunk in chunks:
                if chunk.type == "content":
                    sys.stdout.write(chunk.content)
                    sys.stdout.flush()
                    if chunk.content.startswith(ERROR_PREFIX):
                        failed = True
                elif chunk.type == "tool_result":
                    sys.stderr.write(f"[tool:{chunk.tool_invocation.name}] {chunk.tool_result.text[:500]}\n")
                elif chunk.type == "done":
                    break
        except KeyboardInterrupt:
            self.agent.abort_current_operation()
            sys.stderr.write("\n[cancelled]\n")
            failed = True
        finally:
            self.agent.close()

        sys.stdout.write("\n")
        sys.stdout.flush()
        return 1 if failed else 0
