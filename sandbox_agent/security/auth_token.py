from __future__ import annotations

from fastapi import Depends, Header

from sandbox_agent.config import Settings
from sandbox_agent.deps import get_settings
from sandbox_agent.errors import SandboxApiError


def require_runtime_token(
    x_runtime_token: str = Header(default=""),
    settings: Settings = Depends(get_settings),
) -> None:
    """No-op when no token is configured."""
    if settings.runtime_token and x_runtime_token != settings.runtime_token:
        raise SandboxApiError(
            code="E_RUNTIME_AUTH",
            message="Invalid runtime token.",
            retryable=False,
            status_code=401,
            cause="runtime_token",
        )
