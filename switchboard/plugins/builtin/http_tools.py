"""HTTP request tool provider.

Config:
  allowed_methods: methods that run without approval (default GET, HEAD)
  allowed_hosts:   optional host allow-list, also enforced on each redirect hop
  timeout:         default request timeout in seconds (default 30)
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

import httpx

from switchboard.plugins.base import PluginBase, Tooling, ToolWithHandler
from switchboard.plugins.catalog import plugin
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.trace import trace_headers
from switchboard.shared.types import ToolContext, ToolParameter
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.http")

_MAX_BODY = 50_000
_MAX_REDIRECTS = 10
_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]


@plugin(
    type="http",
    name="HTTP Requests",
    description="Lets the assistant call HTTP APIs and fetch web pages.",
    config_schema=[
        {"key": "allowed_methods", "type": "list", "default": ["GET", "HEAD"]},
        {"key": "allowed_hosts", "type": "list", "required": False},
        {"key": "timeout", "type": "number", "default": 30},
    ],
)
class HttpToolsPlugin(PluginBase, Tooling):
    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        methods = config.get("allowed_methods", ["GET", "HEAD"])
        if not isinstance(methods, list):
            raise ValidationFailure("allowed_methods must be a list")
        self.allowed_methods = {m.upper() for m in methods}
        hosts = config.get("allowed_hosts")
        self.allowed_hosts = {h.lower() for h in hosts} if hosts else None
        self.timeout = float(config.get("timeout", 30))
        self._tools = [
            ToolWithHandler(
                name="http_request",
                description=(
                    "Make an HTTP request. Use this to call APIs, download web pages, "
                    "or interact with any HTTP service."
                ),
                handler=self.http_request,
                parameters=[
                    ToolParameter(name="url", description="Full URL to request", required=True),
                    ToolParameter(
                        name="method",
                        description="HTTP method",
                        enum=list(_METHODS),
                    ),
                    ToolParameter(name="headers", type="object", description="HTTP headers"),
                    ToolParameter(name="body", description="Request body for POST/PUT/PATCH"),
                ],
                requires_approval=not self.allowed_methods.issuperset(_METHODS),
            ),
        ]

    def get_tools(self) -> list[ToolWithHandler]:
        return list(self._tools)

    async def request_approval(
        self, tool: ToolWithHandler, input: dict[str, Any], context: ToolContext,
    ) -> bool:
        method = str(input.get("method") or "GET").upper()
        if method not in self.allowed_methods:
            logger.info(f"Denied {method} request from {context.platform}:{context.user_id}")
            return False
        host = urlparse(str(input.get("url", ""))).hostname or ""
        if not self._host_allowed(host):
            logger.info(f"Denied request to host {host!r}")
            return False
        return True

    def _host_allowed(self, host: str) -> bool:
        return self.allowed_hosts is None or host.lower() in self.allowed_hosts

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    async def http_request(self, input: dict[str, Any], context: ToolContext) -> dict:
        url = input.get("url")
        if not url:
            return {"error": "url is required", "status_code": 0}
        method = str(input.get("method") or "GET").upper()
        headers = {**trace_headers(), **(input.get("headers") or {})}
        body = input.get("body") or None
        try:
            async with self._client() as client:
                response = await client.request(
                    method, url, headers=headers, content=body, follow_redirects=False,
                )
                # every hop is checked against the host allow-list
                for _ in range(_MAX_REDIRECTS):
                    next_request = response.next_request
                    if next_request is None:
                        break
                    host = next_request.url.host
                    if not self._host_allowed(host):
                        logger.info(f"Blocked redirect to host {host!r}")
                        return {
                            "error": f"Redirect to host not allowed: {host}",
                            "status_code": response.status_code,
                        }
                    response = await client.send(next_request, follow_redirects=False)
                else:
                    if response.next_request is not None:
                        return {"error": "Too many redirects", "status_code": response.status_code}
        except httpx.TimeoutException:
            return {"error": f"Request timed out after {self.timeout:g}s", "status_code": 0}
        except httpx.HTTPError as e:
            return {"error": str(e), "status_code": 0}
        text = response.text
        return {
            "status_code": response.status_code,
            "headers": dict(response.headers),
            "body": text[:_MAX_BODY],
            "truncated": len(text) > _MAX_BODY,
        }
