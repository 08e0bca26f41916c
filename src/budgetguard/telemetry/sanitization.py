"""Sanitize error messages before they reach spans, logs or notifications.

Git remotes embed access tokens in URLs (``https://<token>@host/repo``) and
controller errors can echo credentials, so anything derived from an
exception is passed through sanitize_error_message() first.
"""

from __future__ import annotations

import re

_SENSITIVE_KEY_PATTERN = re.compile(
    r"(password|secret|token|api_key|routing_key|authorization|credential)"
    r"\s*[=:]\s*\S+",
    re.IGNORECASE,
)
_URL_CREDENTIAL_PATTERN = re.compile(
    r"://[^@/\s]+@",
)


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """Sanitize an error message by redacting credentials and truncating.

    Args:
        msg: Raw error message to sanitize.
        max_length: Maximum length of returned message.

    Returns:
        Sanitized and truncated error message.

    Example:
        >>> sanitize_error_message("clone https://ghp_abc@github.com/org/repo failed")
        'clone https://<REDACTED>@github.com/org/repo failed'
        >>> sanitize_error_message("login failed: password=hunter2")
        'login failed: password=<REDACTED>'
    """
    sanitized = _URL_CREDENTIAL_PATTERN.sub("://<REDACTED>@", msg)
    sanitized = _SENSITIVE_KEY_PATTERN.sub(
        lambda m: m.group(0).split("=", 1)[0] + "=<REDACTED>"
        if "=" in m.group(0)
        else m.group(0).split(":", 1)[0] + ": <REDACTED>",
        sanitized,
    )
    return sanitized[:max_length]


__all__ = ["sanitize_error_message"]
