from __future__ import annotations

from sandbox_agent.context import ToolContext
from sandbox_agent.errors import ToolResult, approval_required, blocked
from sandbox_agent.security.command_guard import classify_command
from sandbox_agent.services.approval_service import ApprovalService
from sandbox_agent.services.executor import CommandExecutor


async def run_command(
    ctx: ToolContext,
    command: str,
    *,
    executor: CommandExecutor,
    approval_service: ApprovalService,
) -> ToolResult:
    verdict = classify_command(
        command,
        ctx.chat_type,
        cwd=ctx.cwd,
        workspace_root=ctx.workspace_root,
        shared_dir=ctx.shared_dir,
    )
    if verdict.blocked:
        return blocked(verdict.reason or "command is not allowed")

    if verdict.dangerous:
        pending = await approval_service.request(
            session_id=ctx.session_id,
            chat_id=ctx.chat_id,
            command=command,
            cwd=str(ctx.cwd),
            reason=verdict.reason or "dangerous command",
        )
        return approval_required(pending.id, verdict.reason or "dangerous command")

    ctx.ensure_workspace()
    return await executor.run_async(command, ctx.cwd)
