"""Tests for CLI commands: catalog, chat, run."""

from __future__ import annotations

import textwrap
from unittest.mock import patch

from click.testing import CliRunner

from switchboard.cli import cli

ECHO_PLUGIN = textwrap.dedent('''
    from switchboard.plugins.base import Model, PluginBase
    from switchboard.plugins.catalog import plugin
    from switchboard.shared.types import ModelInfo, ModelResponse


    @plugin(type="echo-model", name="Echo", description="Repeats the last message")
    class EchoModel(PluginBase, Model):
        async def list_models(self):
            return [ModelInfo(id="echo", name="Echo")]

        async def generate(self, model, messages, options=None):
            return ModelResponse(content=f"echo: {messages[-1].content}")
''')

SETTINGS = textwrap.dedent('''
    plugins:
      - id: echo
        type: echo-model
      - id: hook
        type: webhook
        config:
          callback_url: http://127.0.0.1:9/unused
''')

ASSISTANTS = textwrap.dedent('''
    assistants:
      helper:
        name: Helper
        llm_provider_id: echo
        llm_model: echo
        system_prompt: Repeat things.
''')


def _project(tmp_path, settings=SETTINGS):
    (tmp_path / "config").mkdir()
    (tmp_path / "plugins").mkdir()
    (tmp_path / "plugins" / "echo_model.py").write_text(ECHO_PLUGIN)
    (tmp_path / "config" / "switchboard.yaml").write_text(settings)
    (tmp_path / "config" / "assistants.yaml").write_text(ASSISTANTS)
    return str(tmp_path / "config" / "switchboard.yaml")


def _invoke(tmp_path, args, settings=SETTINGS):
    config = _project(tmp_path, settings)
    with patch("switchboard.cli.config.ENV_FILE", tmp_path / ".env"):
        return CliRunner().invoke(cli, ["--config", config, *args])


class TestCatalog:
    def test_lists_builtin_and_discovered_plugins(self, tmp_path):
        result = _invoke(tmp_path, ["catalog"])
        assert result.exit_code == 0
        assert "echo-model" in result.output
        assert "webhook" in result.output
        assert "[model]" in result.output


class TestChat:
    def test_chat_prints_answer(self, tmp_path):
        result = _invoke(tmp_path, ["chat", "helper", "hello there"])
        assert result.exit_code == 0, result.output
        assert "echo: hello there" in result.output

    def test_unknown_assistant(self, tmp_path):
        result = _invoke(tmp_path, ["chat", "ghost", "hi"])
        assert result.exit_code == 1
        assert "Assistant not found: ghost" in result.output

    def test_invalid_config(self, tmp_path):
        result = _invoke(tmp_path, ["chat", "helper", "hi"], settings="plugins: 3\n")
        assert result.exit_code == 1
        assert "Invalid config" in result.output


class TestRun:
    def test_unknown_automation(self, tmp_path):
        result = _invoke(tmp_path, ["run", "auto_missing"])
        assert result.exit_code == 1
        assert "Automation not found: auto_missing" in result.output
