from __future__ import annotations

import os
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path

from sandbox_agent.security.patterns import (
    DANGEROUS_CODE_PATTERNS,
    FILE_READ_RE,
    SECRET_SEARCH_RE,
    SECRETS_MOUNT_PATHS,
    SENSITIVE_DIRECTORY_MARKERS,
    SENSITIVE_FILES,
    SENSITIVE_PATH_PATTERNS,
    SENSITIVE_SEND_PATTERNS,
    SERVER_CODE_RE,
    USER_CONTROLLED_PATH_RE,
)

_SEPARATOR_RUN_RE = re.compile(r"/{2,}")


@dataclass(slots=True, frozen=True)
class ContentVerdict:
    dangerous: bool
    reason: str | None = None


def _normalized_name(path: str | Path) -> str:
    raw = _SEPARATOR_RUN_RE.sub("/", str(path).replace("\\", "/"))
    return posixpath.normpath(raw).lower() if raw else ""


def is_sensitive_file(path: str | Path) -> bool:
    full_path = _normalized_name(path)
    file_name = os.path.basename(full_path)

    if file_name in SENSITIVE_FILES:
        return True
    if any(pattern.search(full_path) for pattern in SENSITIVE_PATH_PATTERNS):
        return True
    bounded = f"/{full_path}/"
    if any(marker in bounded for marker in SENSITIVE_DIRECTORY_MARKERS):
        return True
    return any(full_path == mount or mount + "/" in full_path for mount in SECRETS_MOUNT_PATHS)


def is_sensitive_send(path: str | Path) -> bool:
    full_path = str(path)
    file_name = os.path.basename(full_path)
    return any(pattern.search(file_name) or pattern.search(full_path) for pattern in SENSITIVE_SEND_PATTERNS)


def is_secret_search(pattern: str) -> bool:
    return SECRET_SEARCH_RE.search(pattern) is not None


def classify_content(text: str) -> ContentVerdict:
    """Scan file or script source for secret-reading and exfiltration code.

    Matching is regex over source text, so false positives are expected and
    accepted. The first matching family wins and names the reason.
    """
    for pattern, reason in DANGEROUS_CODE_PATTERNS:
        if pattern.search(text):
            return ContentVerdict(True, reason)

    if looks_like_exfiltration_server(text):
        return ContentVerdict(True, "file exfiltration server pattern")

    return ContentVerdict(False)


def looks_like_exfiltration_server(text: str) -> bool:
    # Each of the three is ordinary code on its own.
    return (
        SERVER_CODE_RE.search(text) is not None
        and FILE_READ_RE.search(text) is not None
        and USER_CONTROLLED_PATH_RE.search(text) is not None
    )
