from __future__ import annotations

import importlib
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from sandbox_agent.context import ToolContext


@pytest.fixture
def collection(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def workspace(collection: Path) -> Path:
    root = collection / "123"
    root.mkdir()
    return root


@pytest.fixture
def ctx(workspace: Path) -> ToolContext:
    return ToolContext(workspace_root=workspace, session_id="session-123", chat_id="42")


@pytest.fixture
def isolated_client(tmp_path: Path, collection: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SANDBOX_AGENT_DB_PATH", str(tmp_path / "runtime-test.db"))
    monkeypatch.setenv("SANDBOX_AGENT_WORKSPACE_BASE", str(collection))
    monkeypatch.setenv("SANDBOX_AGENT_BACKGROUND_CHECK_SECONDS", "0.2")
    monkeypatch.delenv("SANDBOX_AGENT_RUNTIME_TOKEN", raising=False)
    monkeypatch.delenv("SANDBOX_AGENT_APPROVAL_WEBHOOK_URL", raising=False)

    import sandbox_agent.main as main_module

    module = importlib.reload(main_module)
    with TestClient(module.app) as client:
        yield client
