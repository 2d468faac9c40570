"""
Redaction and length-capping of diagnostic text before it is persisted.

Error messages stored on failed queue items come from the external tool's
stderr, which may echo credentials from the tool's environment. Every such
message passes through ``sanitize_error_message`` on its way into the store.
"""

import re

REDACTED = "[REDACTED]"
TRUNCATION_SUFFIX = "... (truncated)"

# (pattern, replacement) applied in order
SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Authorization: Bearer <token>, Authorization: Basic <credentials>
    (re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9._~+/=-]+"), rf"\1 {REDACTED}"),
    # api_key=..., API-KEY: "...", access_token=..., password=...
    (
        re.compile(
            r"(?i)\b([a-z0-9_-]*(?:api[_-]?key|token|secret|password|passwd|credential)s?)"
            r"(\s*[:=]\s*)(?:\"[^\"]*\"|'[^']*'|[^\s\"',;&]+)"
        ),
        rf"\1\2{REDACTED}",
    ),
    # credentials embedded in URLs
    (re.compile(r"(://)[^/\s:@]+:[^/\s@]+@"), rf"\1{REDACTED}@"),
    # bare provider keys
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), REDACTED),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{16,}"), REDACTED),
    # JWTs
    (re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]*)?"), REDACTED),
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def redact_secrets(text: str) -> str:
    """Replace credential-like substrings with ``[REDACTED]``."""
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_error_message(message: str | None, limit: int = 4096) -> str | None:
    """Make an error message safe to persist.

    Control characters other than newline and tab are removed, secrets are
    redacted, and the result is cut so that it is never longer than
    ``limit`` characters, truncation suffix included.

    Args:
        message: Raw message; None passes through.
        limit: Maximum length of the returned string.

    Returns:
        The sanitized message, or None.
    """
    if message is None:
        return None

    sanitized = redact_secrets(_CONTROL_CHARS.sub("", message))

    if len(sanitized) > limit:
        keep = max(limit - len(TRUNCATION_SUFFIX), 0)
        sanitized = (sanitized[:keep] + TRUNCATION_SUFFIX)[:limit]
    return sanitized
