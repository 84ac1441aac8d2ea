"""Trace ids for following one request through the process.

A trace id (``tr_<12 hex>``) is bound per channel message, automation run
and API chat. It rides a context variable through the agent loop, shows
up in every log line, and is forwarded as ``X-Trace-Id`` on outbound
HTTP calls made by plugins.
"""

from __future__ import annotations

import secrets
from contextvars import ContextVar

TRACE_HEADER = "X-Trace-Id"

current_trace_id: ContextVar[str | None] = ContextVar("switchboard_trace_id", default=None)


def start_trace() -> str:
    trace_id = f"tr_{secrets.token_hex(6)}"
    current_trace_id.set(trace_id)
    return trace_id


def trace_headers() -> dict[str, str]:
    """Headers to forward the active trace, empty when none is bound."""
    trace_id = current_trace_id.get()
    if trace_id is None:
        return {}
    return {TRACE_HEADER: trace_id}
