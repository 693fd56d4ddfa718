"""
approval_service.py — human approval for commands classified as dangerous

A dangerous command is parked as a PendingCommand, the chat transport is asked
to render approve/deny buttons, and the command runs at most once when the
owning session approves it.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx

from sandbox_agent.errors import SandboxApiError, ToolResult
from sandbox_agent.observability.metrics import RuntimeMetrics, get_runtime_metrics
from sandbox_agent.trace import get_current_trace_id

if TYPE_CHECKING:
    from sandbox_agent.services.audit_service import AuditService
    from sandbox_agent.services.executor import CommandExecutor

logger = logging.getLogger("sandbox_agent.runtime")

APPROVE_CALLBACK_PREFIX = "approve:"
DENY_CALLBACK_PREFIX = "deny:"


@dataclass(slots=True)
class PendingCommand:
    id: str
    session_id: str
    chat_id: str
    command: str
    cwd: str
    reason: str
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PendingCommandStore:
    """In-memory pending commands; every read and removal holds the lock."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._items: dict[str, PendingCommand] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def store(self, session_id: str, chat_id: str, command: str, cwd: str, reason: str) -> PendingCommand:
        pending = PendingCommand(
            id=uuid.uuid4().hex[:16],
            session_id=str(session_id),
            chat_id=str(chat_id),
            command=command,
            cwd=str(cwd),
            reason=reason,
            created_at=self._clock(),
        )
        with self._lock:
            self._items[pending.id] = pending
        return pending

    def get(self, pending_id: str) -> PendingCommand | None:
        with self._lock:
            return self._items.get(pending_id)

    def list(self, session_id: str | None = None) -> list[PendingCommand]:
        """All pending commands, or one session's when ``session_id`` is given."""
        with self._lock:
            snapshot = list(self._items.values())
        if session_id is None:
            return snapshot
        return [item for item in snapshot if item.session_id == str(session_id)]

    def resolve(self, pending_id: str) -> PendingCommand | None:
        with self._lock:
            return self._items.pop(pending_id, None)

    def sweep(self, max_age_seconds: float) -> int:
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            expired = [key for key, item in self._items.items() if item.created_at < cutoff]
            for key in expired:
                del self._items[key]
        return len(expired)


class ApprovalNotifier(Protocol):
    async def notify_pending(self, pending: PendingCommand) -> None: ...


def render_approval_message(pending: PendingCommand) -> dict[str, Any]:
    return {
        "chat_id": pending.chat_id,
        "text": f"⚠️ Command requires approval ({pending.reason}):\n\n{pending.command}",
        "buttons": [
            {"text": "✅ Approve", "callback_data": f"{APPROVE_CALLBACK_PREFIX}{pending.id}"},
            {"text": "❌ Deny", "callback_data": f"{DENY_CALLBACK_PREFIX}{pending.id}"},
        ],
    }


def parse_callback_data(data: str) -> tuple[str, bool] | None:
    """Map button callback data back to (pending_id, approved)."""
    if data.startswith(APPROVE_CALLBACK_PREFIX):
        return data[len(APPROVE_CALLBACK_PREFIX):], True
    if data.startswith(DENY_CALLBACK_PREFIX):
        return data[len(DENY_CALLBACK_PREFIX):], False
    return None


class NullNotifier:
    async def notify_pending(self, pending: PendingCommand) -> None:
        logger.info(
            "approval_requested",
            extra={"pending_id": pending.id, "session_id": pending.session_id, "chat_id": pending.chat_id},
        )


class WebhookNotifier:
    """Posts approval prompts to the chat transport's webhook."""

    def __init__(self, url: str, *, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._url = url
        self._client = client
        self._timeout = timeout

    async def notify_pending(self, pending: PendingCommand) -> None:
        payload = render_approval_message(pending)
        if self._client is not None:
            response = await self._client.post(self._url, json=payload)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, json=payload)
            response.raise_for_status()


def build_notifier(webhook_url: str) -> ApprovalNotifier:
    if webhook_url:
        return WebhookNotifier(webhook_url)
    return NullNotifier()


class ApprovalService:
    def __init__(
        self,
        store: PendingCommandStore,
        executor: CommandExecutor,
        *,
        notifier: ApprovalNotifier | None = None,
        audit_service: AuditService | None = None,
        metrics: RuntimeMetrics | None = None,
    ) -> None:
        self.store = store
        self.executor = executor
        self.notifier = notifier or NullNotifier()
        self.audit_service = audit_service
        self.metrics = metrics or get_runtime_metrics()

    async def request(self, *, session_id: str, chat_id: str, command: str, cwd: str, reason: str) -> PendingCommand:
        pending = self.store.store(session_id, chat_id, command, cwd, reason)
        self.metrics.increment("approval_required_total")
        self.metrics.set_pending(len(self.store))

        try:
            await self.notifier.notify_pending(pending)
        except Exception as exc:  # noqa: BLE001
            self.metrics.increment("notify_failures_total")
            logger.warning(
                "approval_notify_failed",
                extra={"pending_id": pending.id, "session_id": session_id, "reason": str(exc)},
            )
        return pending

    def list(self, session_id: str) -> list[PendingCommand]:
        if not session_id:
            raise _owner_required("session_id")
        return self.store.list(session_id)

    async def resolve(
        self,
        pending_id: str,
        approve: bool,
        *,
        session_id: str | None = None,
        chat_id: str | None = None,
    ) -> tuple[PendingCommand, ToolResult | None]:
        """Run or discard a pending command on behalf of its owner.

        The caller names the owner by session, or by chat for transport
        callbacks; every name given must match the stored command.
        """
        if not session_id and not chat_id:
            raise _owner_required("session_id or chat_id")
        existing = self.store.get(pending_id)
        if existing is None:
            raise _pending_not_found(pending_id)
        if (session_id and existing.session_id != str(session_id)) or (chat_id and existing.chat_id != str(chat_id)):
            raise SandboxApiError(
                code="E_PENDING_FORBIDDEN",
                message="Pending command belongs to another session.",
                retryable=False,
                status_code=403,
                details={"pending_id": pending_id},
                cause="session_mismatch",
            )

        pending = self.store.resolve(pending_id)
        if pending is None:
            # Resolved concurrently between get and pop.
            raise _pending_not_found(pending_id)
        self.metrics.set_pending(len(self.store))

        result: ToolResult | None = None
        if approve:
            result = await self.executor.run_async(pending.command, pending.cwd)

        outcome = "denied"
        if approve:
            outcome = "executed" if result is not None and result.success else "failed"
        logger.info(
            "pending_command_resolved",
            extra={"pending_id": pending.id, "session_id": pending.session_id, "outcome": outcome},
        )
        if self.audit_service is not None:
            await self.audit_service.record(
                trace_id=get_current_trace_id(),
                session_id=pending.session_id,
                chat_id=pending.chat_id,
                action="pending_command_resolved",
                tool_name="run_command",
                args={"command": pending.command, "cwd": pending.cwd},
                result=result.to_dict() if result is not None else None,
                requires_approval=True,
                decision="approve" if approve else "deny",
                outcome=outcome,
            )
        return pending, result

    def sweep(self, max_age_seconds: float) -> int:
        removed = self.store.sweep(max_age_seconds)
        self.metrics.set_pending(len(self.store))
        if removed:
            logger.info("pending_commands_swept", extra={"outcome": removed})
        return removed


def _owner_required(fields: str) -> SandboxApiError:
    return SandboxApiError(
        code="E_SCHEMA_INVALID",
        message=f"{fields} of the owning session is required.",
        retryable=False,
        status_code=400,
        cause="owner_missing",
    )


def _pending_not_found(pending_id: str) -> SandboxApiError:
    return SandboxApiError(
        code="E_PENDING_NOT_FOUND",
        message="Pending command not found or already resolved.",
        retryable=False,
        status_code=404,
        details={"pending_id": pending_id},
        cause="pending_missing",
    )
