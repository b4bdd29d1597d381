"""
minerweb - Forward Proxy
==========================
Relays a request to a co-located backend (wallet or pool) and hands its
response back to the original caller unmodified.

The inbound method, headers and body are replayed against the backend
address configured for the host type. The backend's status code, headers
and raw body bytes are streamed back as they arrive; nothing is decoded or
rewritten. Only hop-by-hop headers, which describe a single connection
rather than the message, are dropped in both directions.

A backend that cannot be reached (refused, DNS failure, timeout) raises
BackendUnavailableError, which the application turns into a 502. Failed
forwards are logged and not retried.
"""

import logging
from enum import Enum
from typing import Mapping

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse

from minerweb.errors import BackendUnavailableError


logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


class HostType(str, Enum):
    """Backends a request can be forwarded to."""
    WALLET = "wallet"
    POOL = "pool"


class ForwardProxy:
    """
    Replays requests against configured backends.

    Attributes:
        backends: Mapping of host type name ("wallet", "pool") to base URL.
    """

    def __init__(
        self,
        backends: Mapping[str, str],
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            backends: Base URL per host type, e.g. {"wallet": "http://127.0.0.1:8125"}.
            timeout:  Per-request timeout in seconds.
            client:   Pre-built client; tests pass one with a mock transport.
        """
        self.backends = dict(backends)
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    def resolve(self, host_type: HostType) -> str:
        """
        Return the base URL for a host type.

        Raises:
            BackendUnavailableError: If no backend is configured for it.
        """
        base_url = self.backends.get(HostType(host_type).value)
        if not base_url:
            logger.error("No backend configured for host type '%s'", host_type)
            raise BackendUnavailableError()
        return base_url.rstrip("/")

    async def forward(
        self,
        request: Request,
        host_type: HostType,
        path: str | None = None,
        params: Mapping[str, str] | None = None,
    ) -> StreamingResponse:
        """
        Forward a request and stream the backend's response back.

        Args:
            request:   The inbound request.
            host_type: Which backend receives it.
            path:      Backend path; defaults to the inbound path.
            params:    Query parameters; default to the inbound query string.

        Returns:
            A streaming response mirroring the backend's status, headers and body.

        Raises:
            BackendUnavailableError: If the backend cannot be reached.
        """
        url = self.resolve(host_type) + (path or request.url.path)
        if params is None and request.url.query:
            url = f"{url}?{request.url.query}"

        headers = [
            (name, value)
            for name, value in request.headers.raw
            if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
            and name.decode("latin-1").lower() != "host"
        ]
        body = await request.body()

        outbound = self._client.build_request(
            request.method, url, params=params, headers=headers, content=body,
        )
        try:
            upstream = await self._client.send(outbound, stream=True)
        except httpx.HTTPError as e:
            logger.error(
                "Forwarding %s %s to %s backend failed: %s",
                request.method, request.url.path, HostType(host_type).value, e,
            )
            raise BackendUnavailableError() from e

        logger.debug(
            "Forwarded %s %s to %s -> %d",
            request.method, request.url.path, url, upstream.status_code,
        )

        async def _relay():
            try:
                async for chunk in upstream.aiter_raw():
                    yield chunk
            except httpx.HTTPError as e:
                logger.warning("Backend stream from %s broke off: %s", url, e)
            finally:
                await upstream.aclose()

        response = StreamingResponse(_relay(), status_code=upstream.status_code)
        response.raw_headers = [
            (name.lower(), value)
            for name, value in upstream.headers.raw
            if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        return response

    async def aclose(self) -> None:
        """Close the outbound connection pool."""
        await self._client.aclose()
