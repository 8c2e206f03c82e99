"""Tests for settings files and AppConfig merging."""

import json
import os
import stat

import pytest

from ollama_agent.config import DEFAULT_MODEL, AppConfig, SettingsManager


@pytest.fixture
def settings(tmp_workdir, tmp_path):
    return SettingsManager(str(tmp_workdir), user_settings_path=tmp_path / "home" / "user-settings.json")


def write_project_settings(workdir, data):
    target = workdir / ".ollama-agent" / "settings.json"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(data))


class TestSettingsManager:
    def test_defaults_when_files_missing(self, settings):
        assert settings.current_model() == DEFAULT_MODEL
        assert settings.mcp_servers() == {}
        assert settings.custom_instructions() is None

    def test_user_settings_saved_private(self, settings):
        settings.save_user_settings({"defaultModel": "llama3.2:3b"})
        mode = stat.S_IMODE(os.stat(settings.user_settings_path).st_mode)
        assert mode == 0o600
        assert settings.load_user_settings()["defaultModel"] == "llama3.2:3b"

    def test_save_merges_existing_keys(self, settings):
        settings.save_user_settings({"baseURL": "http://gpu-box:11434"})
        settings.save_user_settings({"defaultModel": "mistral:7b"})
        loaded = settings.load_user_settings()
        assert loaded["baseURL"] == "http://gpu-box:11434"
        assert settings.base_url() == "http://gpu-box:11434"

    def test_project_model_wins_over_user_default(self, settings):
        settings.save_user_settings({"defaultModel": "mistral:7b"})
        assert settings.current_model() == "mistral:7b"
        settings.set_current_model("codellama:7b")
        assert settings.current_model() == "codellama:7b"

    def test_invalid_json_is_ignored(self, settings, tmp_workdir):
        target = tmp_workdir / ".ollama-agent" / "settings.json"
        target.parent.mkdir()
        target.write_text("{not json")
        assert settings.current_model() == DEFAULT_MODEL

    def test_non_object_settings_ignored(self, settings, tmp_workdir):
        write_project_settings(tmp_workdir, ["model"])
        assert settings.load_project_settings()["model"] is None

    def test_mcp_servers(self, settings, tmp_workdir):
        write_project_settings(tmp_workdir, {"mcpServers": {"fs": {"command": "mcp-fs"}}})
        assert settings.mcp_servers() == {"fs": {"command": "mcp-fs"}}

    def test_custom_instructions(self, settings, tmp_workdir):
        target = tmp_workdir / ".ollama-agent" / "OLLAMA.md"
        target.parent.mkdir()
        target.write_text("  Always use tabs.\n")
        assert settings.custom_instructions() == "Always use tabs."

    def test_blank_custom_instructions(self, settings, tmp_workdir):
        target = tmp_workdir / ".ollama-agent" / "OLLAMA.md"
        target.parent.mkdir()
        target.write_text("\n\n")
        assert settings.custom_instructions() is None


class TestAppConfig:
    def test_merges_settings(self, settings, tmp_workdir):
        write_project_settings(tmp_workdir, {"model": "codellama:7b", "mcpServers": {"x": {"url": "http://x"}}})
        config = AppConfig.from_settings_and_cli({"working_dir": str(tmp_workdir)}, settings)
        assert config.model == "codellama:7b"
        assert config.working_dir == str(tmp_workdir)
        assert config.mcp_servers == {"x": {"url": "http://x"}}

    def test_cli_overrides_settings(self, settings, tmp_workdir):
        write_project_settings(tmp_workdir, {"model": "codellama:7b"})
        config = AppConfig.from_settings_and_cli(
            {"working_dir": str(tmp_workdir), "model": "mistral:7b", "base_url": None, "verbose": True},
            settings,
        )
        assert config.model == "mistral:7b"
        assert config.base_url == settings.base_url()
        assert config.verbose is True

    def test_model_short_name(self):
        assert AppConfig(model="qwen2.5-coder:3b").model_short_name == "qwen2.5-coder"
