"""Shared helpers: prefixed ids, env expansion, prompt sanitizing, logging."""

from __future__ import annotations

import json
import logging
import os
import re
import unicodedata
import uuid
from datetime import UTC, datetime
from typing import Any

from switchboard.shared.trace import current_trace_id


def new_id(prefix: str) -> str:
    """``<prefix>_<12 hex chars>``, e.g. ``auto_3f9c0a1b2d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def truncate(text: str, max_len: int = 200) -> str:
    if len(text) > max_len:
        return f"{text[:max_len - 3]}..."
    return text


def config_digest(config: dict[str, Any]) -> str:
    """Stable serialization of a plugin config, used to detect changes."""
    return json.dumps(config, sort_keys=True, default=str)


_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def expand_env(value: Any) -> Any:
    """Replace ``${NAME}`` references in strings (recursively) with env values.

    Unset variables expand to the empty string.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


# ── tool output sanitizing ───────────────────────────────────

# Control/format/private-use/surrogate/unassigned code points are dropped,
# except the ones below that carry meaning in normal text.
_INVISIBLE = {"Cc", "Cf", "Co", "Cs", "Cn"}
_KEPT = {"\t", "\n", "\r", "\u200c", "\u200d", "\ufe0e", "\ufe0f"}
_LINE_BREAKS = {"\u2028": "\n", "\u2029": "\n"}


def _is_hidden_mark(cp: int) -> bool:
    # variation selectors other than text/emoji presentation,
    # the combining grapheme joiner and the object replacement character
    return 0xFE00 <= cp < 0xFE0E or 0xE0100 <= cp < 0xE01F0 or cp in (0x034F, 0xFFFC)


def sanitize_for_prompt(text: str) -> str:
    """Remove invisible characters from tool output before a model reads it."""
    if not text or not isinstance(text, str):
        return ""
    kept = []
    for ch in text:
        if ch in _LINE_BREAKS:
            kept.append(_LINE_BREAKS[ch])
        elif ch in _KEPT:
            kept.append(ch)
        elif not _is_hidden_mark(ord(ch)) and unicodedata.category(ch) not in _INVISIBLE:
            kept.append(ch)
    return "".join(kept)


# ── logging ──────────────────────────────────────────────────

class StructuredFormatter(logging.Formatter):
    """One JSON object per line, with ``extra_data`` merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        trace_id = current_trace_id.get()
        if trace_id:
            entry["trace_id"] = trace_id
        entry.update(getattr(record, "extra_data", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        trace_id = current_trace_id.get()
        parts = [datetime.now(UTC).strftime("%H:%M:%S"), f"[{record.levelname:<5}]"]
        if trace_id:
            parts.append(f"[{trace_id}]")
        parts.append(f"{record.name}: {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(name: str, level: str | None = None) -> logging.Logger:
    """Return the named logger, attaching a stderr handler on first use.

    SWITCHBOARD_LOG_FORMAT selects ``json`` (default) or ``text`` output.
    The level comes from ``level``, then SWITCHBOARD_LOG_LEVEL, then INFO.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    if logger.level == logging.NOTSET:
        level_name = (level or os.environ.get("SWITCHBOARD_LOG_LEVEL") or "INFO").upper()
        logger.setLevel(getattr(logging, level_name, logging.INFO))
    text = os.environ.get("SWITCHBOARD_LOG_FORMAT", "json").lower() == "text"
    handler = logging.StreamHandler()
    handler.setFormatter(TextFormatter() if text else StructuredFormatter())
    logger.addHandler(handler)
    return logger
