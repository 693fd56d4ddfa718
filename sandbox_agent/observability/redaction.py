from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any

from sandbox_agent.security.patterns import (
    AUTH_HEADER_RE,
    BASE64_RUN_RE,
    ENV_DUMP_MIN_KEYS,
    ENV_JSON_KEY_RE,
    ENV_LINE_RE,
    MASK_KEEP_PREFIX,
    MASK_SUFFIX,
    OUTPUT_BLOCKED_MARKER,
    PRIVATE_KEY_BLOCK_RE,
    REDACTED,
    SECRET_ASSIGNMENT_RE,
    SECRET_INDICATORS,
    SECRET_KEY_WORDS,
    SECRET_TOKEN_PATTERNS,
    TRUNCATION_MARKER,
)

_SENSITIVE_KEYWORDS = ("authorization", "api_key", "apikey", "token", "secret", "password", "credential")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower()
    return any(word in normalized for word in _SENSITIVE_KEYWORDS)


def redact(value: Any, key: str = "") -> Any:
    """Mask sensitive values inside structured audit and log payloads."""
    if isinstance(value, dict):
        return {k: redact(v, str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(item, key) for item in value]
    if isinstance(value, str):
        if _is_sensitive_key(key):
            return "<redacted>"
        return sanitize_output(value)
    return value


def sanitize_output(text: str) -> str:
    """Strip secrets from captured command output.

    Bulk dumps are suppressed entirely; only when neither dump heuristic
    fires are individual matches redacted in place.
    """
    if not text:
        return text
    if contains_encoded_secret(text) or looks_like_env_dump(text):
        return OUTPUT_BLOCKED_MARKER
    return redact_secrets(text)


def contains_encoded_secret(text: str) -> bool:
    for match in BASE64_RUN_RE.finditer(text):
        decoded = _decode_base64(match.group(0))
        if decoded and _has_secret_indicator(decoded):
            return True
    return False


def _decode_base64(candidate: str) -> str | None:
    stripped = candidate.rstrip("=")
    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        if "-" in padded or "_" in padded:
            raw = base64.urlsafe_b64decode(padded)
        else:
            raw = base64.b64decode(padded)
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="ignore")


def _has_secret_indicator(decoded: str) -> bool:
    upper = decoded.upper()
    if any(indicator in upper for indicator in SECRET_INDICATORS):
        return True
    return any(pattern.search(decoded) for pattern, _ in SECRET_TOKEN_PATTERNS)


def _is_secret_key_name(key: str) -> bool:
    upper = key.upper()
    return any(word in upper for word in SECRET_KEY_WORDS)


def looks_like_env_dump(text: str) -> bool:
    keys = _json_env_keys(text)
    if len(keys) > ENV_DUMP_MIN_KEYS and any(_is_secret_key_name(key) for key in keys):
        return True

    line_keys = [match.group("key") for match in ENV_LINE_RE.finditer(text)]
    return len(line_keys) > ENV_DUMP_MIN_KEYS and any(_is_secret_key_name(key) for key in line_keys)


def _json_env_keys(text: str) -> list[str]:
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return []
    try:
        payload = json.loads(match.group(0))
    except ValueError:
        return []
    if not isinstance(payload, dict):
        return []
    return [key for key in payload if isinstance(key, str) and ENV_JSON_KEY_RE.match(key)]


def mask_token(value: str) -> str:
    return value[:MASK_KEEP_PREFIX] + MASK_SUFFIX


def redact_secrets(text: str) -> str:
    text = PRIVATE_KEY_BLOCK_RE.sub("[REDACTED PRIVATE KEY]", text)
    text = SECRET_ASSIGNMENT_RE.sub(
        lambda m: f"{m.group('key')}{m.group('sep')}{m.group('quote')}{REDACTED}",
        text,
    )
    text = AUTH_HEADER_RE.sub(lambda m: f"{m.group('scheme')} {mask_token(m.group('value'))}", text)
    for pattern, _ in SECRET_TOKEN_PATTERNS:
        text = pattern.sub(lambda m: mask_token(m.group(0)), text)
    return text


def truncate_output(text: str, max_chars: int) -> str:
    """Keep a head and a tail slice. Runs after sanitization."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    head = max_chars // 2
    tail = max_chars * 3 // 10
    return text[:head] + TRUNCATION_MARKER + text[-tail:]
