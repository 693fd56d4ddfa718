import pytest

from sandbox_agent.config import load_settings


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("SANDBOX_AGENT_DB_PATH", str(tmp_path / "db" / "runtime.db"))
    for name in ("WORKSPACE_BASE", "SHARED_DIR", "COMMAND_TIMEOUT", "MAX_BLOCKED_COMMANDS", "RUNTIME_TOKEN"):
        monkeypatch.delenv(f"SANDBOX_AGENT_{name}", raising=False)

    settings = load_settings()
    assert settings.command_timeout_seconds == 180
    assert settings.max_output_bytes == 10 * 1024 * 1024
    assert settings.max_blocked_commands == 3
    assert settings.runtime_token == ""
    assert str(settings.shared_dir) == "/workspace/_shared"
    assert (tmp_path / "db").is_dir()


def test_env_overrides_and_bad_numbers(tmp_path, monkeypatch):
    monkeypatch.setenv("SANDBOX_AGENT_DB_PATH", str(tmp_path / "runtime.db"))
    monkeypatch.setenv("SANDBOX_AGENT_WORKSPACE_BASE", str(tmp_path / "ws"))
    monkeypatch.setenv("SANDBOX_AGENT_COMMAND_TIMEOUT", "30")
    monkeypatch.setenv("SANDBOX_AGENT_MAX_OUTPUT_CHARS", "lots")
    monkeypatch.setenv("SANDBOX_AGENT_BACKGROUND_CHECK_SECONDS", "0.5")

    settings = load_settings()
    assert settings.command_timeout_seconds == 30
    assert settings.max_output_chars == 10000
    assert settings.background_check_seconds == 0.5
    assert settings.workspace_for("77") == tmp_path / "ws" / "77"


@pytest.mark.parametrize("user_id", ["", "..", "a/b", "_shared"])
def test_workspace_for_rejects_unsafe_ids(tmp_path, monkeypatch, user_id):
    monkeypatch.setenv("SANDBOX_AGENT_DB_PATH", str(tmp_path / "runtime.db"))
    settings = load_settings()
    with pytest.raises(ValueError):
        settings.workspace_for(user_id)


def test_shared_dir_must_be_single_name(tmp_path, monkeypatch):
    monkeypatch.setenv("SANDBOX_AGENT_DB_PATH", str(tmp_path / "runtime.db"))
    monkeypatch.setenv("SANDBOX_AGENT_SHARED_DIR", "a/b")
    with pytest.raises(RuntimeError):
        load_settings()
