from __future__ import annotations

from sandbox_agent.agent.tool_registry import ToolRegistry
from sandbox_agent.agent.turn_guard import SessionTurnGuards
from sandbox_agent.config import Settings
from sandbox_agent.db.repositories import Repository
from sandbox_agent.services.approval_service import ApprovalService
from sandbox_agent.services.task_store import SessionTaskStore

_settings: Settings | None = None
_repo: Repository | None = None
_registry: ToolRegistry | None = None
_approval_service: ApprovalService | None = None
_task_store: SessionTaskStore | None = None
_turn_guards: SessionTurnGuards | None = None


def set_dependencies(
    settings: Settings,
    repo: Repository,
    registry: ToolRegistry,
    approval_service: ApprovalService,
    task_store: SessionTaskStore,
    turn_guards: SessionTurnGuards,
) -> None:
    global _settings, _repo, _registry, _approval_service, _task_store, _turn_guards
    _settings = settings
    _repo = repo
    _registry = registry
    _approval_service = approval_service
    _task_store = task_store
    _turn_guards = turn_guards


def get_settings() -> Settings:
    if _settings is None:
        raise RuntimeError("Settings not initialized")
    return _settings


def get_repo() -> Repository:
    if _repo is None:
        raise RuntimeError("Repository not initialized")
    return _repo


def get_registry() -> ToolRegistry:
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized")
    return _registry


def get_approval_service() -> ApprovalService:
    if _approval_service is None:
        raise RuntimeError("ApprovalService not initialized")
    return _approval_service


def get_task_store() -> SessionTaskStore:
    if _task_store is None:
        raise RuntimeError("SessionTaskStore not initialized")
    return _task_store


def get_turn_guards() -> SessionTurnGuards:
    if _turn_guards is None:
        raise RuntimeError("SessionTurnGuards not initialized")
    return _turn_guards
