"""
Backend Plugin Client

Calls into plugin backend processes.  Each backend plugin registers the
base URL of its process; the client then issues plain HTTP requests:

    GET  {address}/health             -> {"status", "message", "jsonDetails"}
    ANY  {address}/resources/{path}   -> relayed as-is
    GET  {address}/metrics            -> Prometheus text exposition

Transport failures and missing endpoints are reported as plugin errors so
the HTTP layer can translate them uniformly.
"""

from __future__ import annotations

import enum
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from plugin_server.plugins.errors import (
    HealthCheckFailedError,
    MethodNotImplementedError,
    PluginError,
    PluginNotRegisteredError,
    PluginUnavailableError,
)

if TYPE_CHECKING:
    from plugin_server.plugins.context import PluginContext

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Never forwarded to a plugin: credentials of the caller and framing headers
_STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length", "authorization", "cookie"}

# httpx has already decoded the body and will recompute framing
_STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


class HealthStatus(str, enum.Enum):
    UNKNOWN = "UNKNOWN"
    OK = "OK"
    ERROR = "ERROR"


@dataclass
class CheckHealthResult:
    status: HealthStatus
    message: str = ""
    json_details: bytes = b""


@dataclass
class ResourceRequest:
    method: str
    query: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""


@dataclass
class ResourceResponse:
    status: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""


def filter_request_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop headers a plugin must not see, including spoofed context headers.  Repeats are kept."""
    return [
        (k, v)
        for k, v in headers
        if k.lower() not in _STRIPPED_REQUEST_HEADERS and not k.lower().startswith("x-plugin-")
    ]


def filter_response_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    return [(k, v) for k, v in headers.multi_items() if k.lower() not in _STRIPPED_RESPONSE_HEADERS]


class BackendPluginClient:
    """HTTP client for registered backend plugin processes."""

    def __init__(
        self,
        addresses: dict[str, str] | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._addresses: dict[str, str] = {}
        self.timeout = timeout
        self._transport = transport
        for plugin_id, address in (addresses or {}).items():
            self.register(plugin_id, address)

    # ── Registration ──────────────────────────────────────────────────────────

    def register(self, plugin_id: str, address: str) -> None:
        self._addresses[plugin_id] = address.rstrip("/")
        logger.info("Backend plugin registered: %s at %s", plugin_id, address)

    def unregister(self, plugin_id: str) -> None:
        if self._addresses.pop(plugin_id, None) is not None:
            logger.info("Backend plugin unregistered: %s", plugin_id)

    def is_registered(self, plugin_id: str) -> bool:
        return plugin_id in self._addresses

    def _address(self, plugin_id: str) -> str:
        try:
            return self._addresses[plugin_id]
        except KeyError:
            raise PluginNotRegisteredError(plugin_id) from None

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _send(self, plugin_id: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Backend plugin %s timed out: %s %s", plugin_id, method, url)
            raise PluginUnavailableError(plugin_id, "request timed out") from e
        except httpx.RequestError as e:
            logger.warning("Backend plugin %s unreachable: %s", plugin_id, e)
            raise PluginUnavailableError(plugin_id, str(e)) from e

    # ── Operations ────────────────────────────────────────────────────────────

    async def check_health(self, ctx: PluginContext) -> CheckHealthResult:
        """
        Ask the plugin for its health.

        Raises:
            PluginNotRegisteredError:  no backend process registered.
            MethodNotImplementedError: the plugin does not expose /health.
            PluginUnavailableError:    the process cannot be reached.
            HealthCheckFailedError:    the reply cannot be understood.
        """
        address = self._address(ctx.plugin_id)
        response = await self._send(ctx.plugin_id, "GET", f"{address}/health", headers=ctx.to_headers())

        if response.status_code in (404, 501):
            raise MethodNotImplementedError("CheckHealth")
        if response.status_code >= 400:
            raise HealthCheckFailedError(ctx.plugin_id, f"backend returned {response.status_code}")

        try:
            payload = response.json()
            status = HealthStatus(str(payload.get("status", "")).upper())
        except (ValueError, AttributeError) as e:
            raise HealthCheckFailedError(ctx.plugin_id, "invalid health check response") from e

        details = payload.get("jsonDetails")
        if details is None or details == "":
            json_details = b""
        elif isinstance(details, str):
            json_details = details.encode("utf-8")
        else:
            json_details = json.dumps(details).encode("utf-8")

        return CheckHealthResult(status=status, message=payload.get("message") or "", json_details=json_details)

    async def call_resource(self, ctx: PluginContext, request: ResourceRequest, path: str) -> ResourceResponse:
        """
        Forward a resource request to the plugin and return its reply unchanged.

        A 501 from the plugin means it has no resource handler at all; any
        other status, including 404, belongs to the plugin's own API.
        """
        address = self._address(ctx.plugin_id)
        url = f"{address}/resources/{path.lstrip('/')}"
        if request.query:
            url = f"{url}?{request.query}"

        headers = filter_request_headers(request.headers) + list(ctx.to_headers().items())

        response = await self._send(ctx.plugin_id, request.method, url, headers=headers, content=request.body)
        if response.status_code == 501:
            raise MethodNotImplementedError("CallResource")

        return ResourceResponse(
            status=response.status_code,
            headers=filter_response_headers(response.headers),
            body=response.content,
        )

    async def collect_metrics(self, plugin_id: str) -> bytes:
        """Fetch the plugin's metrics in Prometheus text format."""
        address = self._address(plugin_id)
        response = await self._send(plugin_id, "GET", f"{address}/metrics")

        if response.status_code in (404, 501):
            raise MethodNotImplementedError("CollectMetrics")
        if response.status_code >= 400:
            raise PluginError(f"collecting metrics of plugin '{plugin_id}' failed with status {response.status_code}")
        return response.content
