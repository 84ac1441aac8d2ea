"""Error taxonomy shared by the registry, agent loop, stores and HTTP layer.

Each error carries the HTTP status the API maps it to.
"""

from __future__ import annotations

from typing import Any


class SwitchboardError(Exception):
    status_code = 500


class NotFoundError(SwitchboardError, LookupError):
    """Unknown plugin type, instance, tool, assistant or automation."""

    status_code = 404


class DisabledError(NotFoundError):
    """Target exists but is disabled. Callers may treat it as not found."""

    status_code = 409


class ValidationFailure(SwitchboardError, ValueError):
    """Malformed request or configuration."""

    status_code = 400


class UpstreamFailure(SwitchboardError):
    """A model provider (or other remote dependency) failed."""

    status_code = 502


class OperationCancelled(SwitchboardError):
    status_code = 499


class DeadlineExceeded(OperationCancelled):
    status_code = 504


TOOL_FAILURE_MESSAGE = (
    'The tool "{name}" encountered a technical error. Please inform the user '
    "that there was a problem and suggest they try again later."
)


class ToolExecutionFailure(SwitchboardError):
    """A tool handler raised. Converted into a tool result, never propagated."""

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        self.detail = str(cause) or type(cause).__name__
        super().__init__(f"Tool {tool_name} failed: {self.detail}")

    def to_result(self) -> dict[str, Any]:
        """Tool result payload the model sees in place of the handler output."""
        return {
            "success": False,
            "error": self.detail,
            "message": TOOL_FAILURE_MESSAGE.format(name=self.tool_name),
        }
