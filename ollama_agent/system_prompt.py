"""System prompt template for the terminal agent."""

from __future__ import annotations

import subprocess

_RULES = """
### Tool Strategy
- Use search before asking the user where things are.
- Always view_file before str_replace_editor. Never guess file contents.
- Use create_file only for new files; edit existing files with str_replace_editor.
- For multi-step work, plan with create_todo_list and keep it current with update_todo_list.

### Editing Discipline
- Copy old_str exactly from view_file output, including whitespace and indentation.
- Include enough surrounding context that old_str matches exactly once.
- Only change what was requested. Preserve the existing code style.

### Safety
- Ask before destructive commands (rm -rf, git reset --hard, DROP TABLE).
- If a tool call fails, read the error and adjust. Do not repeat the identical call.
""".strip()


def _get_git_info(working_dir: str) -> str | None:
    """Get git branch and status info if in a git repo."""
    try:
        subprocess.run(
            ["git", "rev-parse", "--is-inside-work-tree"],
            cwd=working_dir,
            capture_output=True,
            text=True,
            timeout=5,
            check=True,
        )
        branch = subprocess.run(
            ["git", "branch", "--show-current"],
            cwd=working_dir,
            capture_output=True,
            text=True,
            timeout=5,
        ).stdout.strip() or "HEAD (detached)"
        status = subprocess.run(
            ["git", "status", "--short"],
            cwd=working_dir,
            capture_output=True,
            text=True,
            timeout=5,
        ).stdout.strip()
        return f"- Git branch: {branch}\n- Git status:" + (f"\n{status}" if status else " (clean)")
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return None


def build_system_prompt(
    working_dir: str,
    model_name: str,
    custom_instructions: str | None = None,
    extra_tool_names: list[str] | None = None,
) -> str:
    prompt = f"""You are Ollama Agent, a coding assistant running in the terminal on a local model. You help with software engineering tasks by viewing, creating and editing files, running shell commands and searching the codebase.

## Environment
- Working directory: {working_dir}
- Model: {model_name}"""

    git_info = _get_git_info(working_dir)
    if git_info:
        prompt += f"\n{git_info}"

    prompt += """

## Tools

You have these tools: view_file, create_file, str_replace_editor, bash, search, create_todo_list, update_todo_list. Use them proactively.
"""
    if extra_tool_names:
        prompt += "External tools: " + ", ".join(extra_tool_names) + "\n"

    prompt += (
        "\nIf your model cannot emit native tool calls, reply with a single ```json block "
        'containing {"name": "<tool>", "arguments": {...}}.\n'
    )
    prompt += f"\n## Rules\n\n{_RULES}\n"

    if custom_instructions:
        prompt += (
            "\n## Custom Instructions\n\n"
            "Follow these instructions in addition to the rules above:\n\n"
            f"{custom_instructions}\n"
        )

    return prompt
