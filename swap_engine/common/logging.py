from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

MASK = "***"

# Keys whose values are wallet credentials; never written to a log record.
SECRET_FIELD_NAMES = frozenset({"secret", "private_key", "keypair", "user_keypair", "userKeypair"})

_URL_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,);]}"
_TEXT_MASKS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)([?&]api[-_]?key=)[^&#\s]+"), rf"\1{MASK}"),
    (re.compile(r"(?i)(api[-_]?key\s*[:=]\s*)[^\s,;\"'&]+"), rf"\1{MASK}"),
    # A 64-byte ed25519 keypair is 86-88 base58 characters; signatures and
    # public keys are shorter and stay readable.
    (re.compile(r"\b[1-9A-HJ-NP-Za-km-z]{86,88}\b"), MASK),
)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "exception": logging.ERROR,
}


def _strip_url(match: re.Match[str]) -> str:
    url = match.group(0)
    suffix_start = len(url.rstrip(_TRAILING_PUNCTUATION))
    url, suffix = url[:suffix_start], url[suffix_start:]

    parts = urlsplit(url)
    if parts.netloc and parts.scheme.lower() in {"http", "https"}:
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return url + suffix


def sanitize_text(value: str) -> str:
    """Drop URL query strings and mask API keys and keypair secrets."""
    text = _URL_RE.sub(_strip_url, value)
    for pattern, replacement in _TEXT_MASKS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_value(value: Any, *, key: str | None = None) -> Any:
    if key in SECRET_FIELD_NAMES:
        return MASK
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {child_key: sanitize_value(child, key=child_key) for child_key, child in value.items()}
    if isinstance(value, (list, tuple)):
        items = [sanitize_value(item) for item in value]
        return items if isinstance(value, list) else tuple(items)
    return value


def log_event(
    logger: logging.Logger,
    *,
    level: str,
    event: str,
    message: str,
    **fields: Any,
) -> None:
    """Emit ``message`` with ``event`` and ``fields`` attached as record extras.

    ``level="exception"`` logs at ERROR with the active exception's traceback.
    Unknown levels fall back to INFO.
    """
    levelno = _LEVELS.get(level, logging.INFO)
    if not logger.isEnabledFor(levelno):
        return

    extra: dict[str, Any] = {"event": sanitize_text(event)}
    for key, value in fields.items():
        extra[key] = sanitize_value(value, key=key)

    logger.log(levelno, sanitize_text(message), extra=extra, exc_info=level == "exception")
