"""Tests for the shellchat command line: flags, exit codes, wiring."""

import json
from unittest.mock import patch

import pytest

from shellchat import agent
from shellchat.agent import build_parser, main


@pytest.fixture(autouse=True)
def _clean_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in (
        "OPENROUTER_API_KEY",
        "LLM_MODEL",
        "MAX_TOKENS",
        "SYSTEM_PROMPT",
        "TEMPERATURE",
        "OPENROUTER_BASE_URL",
    ):
        monkeypatch.delenv(var, raising=False)


def _exit_code(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.model is None
        assert args.system_prompt is None
        assert args.max_tokens is None
        assert args.temperature is None
        assert args.show_config is False
        assert args.quiet is False
        assert args.report is None

    def test_short_flags(self):
        args = build_parser().parse_args(["-m", "x/y", "-s", "terse", "-t", "64", "-q"])
        assert args.model == "x/y"
        assert args.system_prompt == "terse"
        assert args.max_tokens == "64"
        assert args.quiet is True

    def test_unknown_flag_exits_1(self, capsys):
        assert _exit_code(["--bogus"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_color_flags_exclusive(self):
        assert _exit_code(["--color", "--no-color"]) == 1

    def test_help_mentions_env_vars(self, capsys):
        assert _exit_code(["--help"]) == 0
        out = capsys.readouterr().out
        assert "OPENROUTER_API_KEY" in out
        assert "/clear" in out


def test_version(capsys):
    assert _exit_code(["--version"]) == 0
    assert capsys.readouterr().out.strip()


def test_init_config_prints_template(capsys):
    assert _exit_code(["--init-config"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("# shellchat configuration file")
    assert "config.toml" in out


def test_init_config_project(capsys):
    assert _exit_code(["--init-config", "--project"]) == 0
    assert "shellchat.toml" in capsys.readouterr().out


def test_missing_api_key_exits_1(capsys):
    assert _exit_code([]) == 1
    assert "OPENROUTER_API_KEY not set" in capsys.readouterr().err


def test_invalid_max_tokens_exits_1(capsys, monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    assert _exit_code(["-t", "lots"]) == 1
    assert "Invalid --max-tokens value: 'lots'" in capsys.readouterr().err


def test_show_config(capsys, monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-v1-0123456789abcdef")
    monkeypatch.setenv("LLM_MODEL", "openai/gpt-4o")
    with patch.object(agent, "ChatLoop") as mock_loop:
        main(["--show-config", "-t", "128"])
    mock_loop.assert_not_called()
    out = capsys.readouterr().out
    assert "Model:      openai/gpt-4o" in out
    assert "Max tokens: 128" in out
    assert "sk-or-v1-012..." in out
    assert "abcdef" not in out


def test_show_config_without_key(capsys):
    main(["--show-config"])
    assert "Configuration:" in capsys.readouterr().out


def test_dotenv_file_supplies_key(tmp_path, monkeypatch, capsys):
    # make monkeypatch remove what load_dotenv writes
    monkeypatch.setenv("OPENROUTER_API_KEY", "")
    monkeypatch.delenv("OPENROUTER_API_KEY")
    (tmp_path / ".env").write_text("OPENROUTER_API_KEY=sk-from-dotenv-file\n")

    main(["--show-config"])

    assert "sk-from-dote..." in capsys.readouterr().out


def test_runs_chat_loop_with_resolved_config(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    (tmp_path / "AGENTS.md").write_text("Prefer ripgrep.")
    with patch.object(agent, "ChatLoop") as mock_loop:
        main(["-m", "openai/gpt-4o", "-s", "Be terse", "-q"])

    config, client = mock_loop.call_args.args
    assert config.model == "openai/gpt-4o"
    assert config.system_prompt.startswith("Be terse\n<system-reminder>")
    assert "Prefer ripgrep." in config.system_prompt
    assert client.model == "openai/gpt-4o"
    assert client.verbose is False
    assert mock_loop.call_args.kwargs["verbose"] is False
    mock_loop.return_value.run.assert_called_once()


def test_report_written_on_exit(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    report_path = tmp_path / "report.json"
    with patch.object(agent, "ChatLoop"):
        main(["--report", str(report_path), "-q", "--temperature", "0.4"])

    data = json.loads(report_path.read_text())
    assert data["model"] == "anthropic/claude-sonnet-4"
    assert data["settings"] == {
        "max_tokens": 4096,
        "temperature": 0.4,
        "max_iterations": 20,
    }
    assert data["stats"]["turns"] == 0


def test_report_write_failure_is_reported(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    bad_path = tmp_path / "missing-dir" / "report.json"
    with patch.object(agent, "ChatLoop"):
        main(["--report", str(bad_path), "-q"])
    assert "Failed to write report" in capsys.readouterr().err
