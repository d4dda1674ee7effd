# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Connectivity verification for MCP servers.

Performs the MCP ``initialize`` JSON-RPC handshake over the configured
transport and reports the server's answer. Verification never raises and
never touches stored state: every failure, including a timeout, comes back
as an unsuccessful ``VerificationResult``.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

import aiohttp
import httpx

from gengar_bark import __version__
from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.models import TransportType, VerificationRequest, VerificationResult


logger = get_logger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "gengar-bark"
INITIALIZE_REQUEST_ID = 1


class MCPHandshakeError(Exception):
    """The server answered, but not with a usable initialize response."""


def build_initialize_request(request_id: int = INITIALIZE_REQUEST_ID) -> Dict[str, Any]:
    """Build the JSON-RPC ``initialize`` request sent to MCP servers."""
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {
                "name": CLIENT_NAME,
                "version": __version__,
            },
        },
    }


def parse_sse_message(content: str) -> Dict[str, Any]:
    """
    Extract the first JSON payload from an SSE body.

    Streamable HTTP servers may answer a POST with ``text/event-stream``:
    data: {"jsonrpc": "2.0", "id": 1, "result": {...}}
    """
    for line in content.splitlines():
        if line.startswith("data:"):
            try:
                return json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue
    raise MCPHandshakeError("No JSON-RPC message found in event stream")


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, str]]:
    """Group an SSE line stream into ``(event, data)`` pairs."""
    event = "message"
    data = []
    async for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data.append(line[5:].lstrip())
    if data:
        yield event, "\n".join(data)


def extract_initialize_result(message: Any) -> Dict[str, Any]:
    """
    Pull the ``result`` object out of a JSON-RPC initialize response.

    Raises:
        MCPHandshakeError: On a JSON-RPC error or malformed response
    """
    if not isinstance(message, dict):
        raise MCPHandshakeError("Invalid JSON-RPC response")

    if message.get("error"):
        error = message["error"]
        detail = error.get("message") if isinstance(error, dict) else str(error)
        raise MCPHandshakeError(f"MCP server returned error: {detail}")

    result = message.get("result")
    if not isinstance(result, dict):
        raise MCPHandshakeError("Invalid initialize response: missing result")
    return result


def _websocket_url(url: str) -> str:
    parts = urlsplit(url)
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme.lower(), parts.scheme)
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


class ConnectivityVerifier:
    """
    Verifies that an MCP server accepts an ``initialize`` handshake.

    Supports the ``streamablehttp`` and ``sse`` transports through httpx and
    ``websocket`` through aiohttp. Redirects are not followed, so a server
    cannot bounce the check to an address the URL validator never saw.
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        ws_session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        """
        Initialize the verifier.

        Args:
            timeout_seconds: Upper bound for the whole handshake
            http_transport: Optional httpx transport (tests use MockTransport)
            ws_session_factory: Optional factory for the websocket client session
        """
        self.timeout_seconds = timeout_seconds
        self.http_transport = http_transport
        self.ws_session_factory = ws_session_factory or aiohttp.ClientSession

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """
        Perform the handshake and report the outcome.

        Args:
            request: Live connection parameters

        Returns:
            VerificationResult with the server's initialize result on success
        """
        handshakes = {
            TransportType.STREAMABLE_HTTP: self._verify_streamable_http,
            TransportType.SSE: self._verify_sse,
            TransportType.WEBSOCKET: self._verify_websocket,
        }
        handshake = handshakes[request.transport_type]

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            capabilities = await asyncio.wait_for(
                handshake(request),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            result = VerificationResult.failed("timeout")
        except MCPHandshakeError as e:
            result = VerificationResult.failed(str(e))
        except httpx.HTTPError as e:
            result = VerificationResult.failed(f"Connection failed: {e}")
        except aiohttp.ClientError as e:
            result = VerificationResult.failed(f"Connection failed: {e}")
        except Exception as e:
            logger.error(
                "Unexpected error during MCP verification",
                extra={"server_name": request.server_name, "error": str(e)},
                exc_info=True,
            )
            result = VerificationResult.failed(f"Unexpected error during verification: {e}")
        else:
            result = VerificationResult(success=True, capabilities=capabilities)

        logger.info(
            "MCP verification completed",
            extra={
                "server_name": request.server_name,
                "transport_type": request.transport_type.value,
                "success": result.success,
                "error": result.error,
                "duration_ms": round((loop.time() - started) * 1000, 2),
            },
        )
        return result

    def _headers(self, request: VerificationRequest, accept: str) -> Dict[str, str]:
        headers = {"Accept": accept}
        if request.auth_token:
            headers["Authorization"] = f"Bearer {request.auth_token}"
        return headers

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self.http_transport,
            follow_redirects=False,
        )

    @staticmethod
    def _check_status(response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise MCPHandshakeError(
                f"HTTP {response.status_code}: {response.reason_phrase or 'request failed'}"
            )

    @staticmethod
    def _decode_response(response: httpx.Response) -> Dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            return parse_sse_message(response.text)
        try:
            return response.json()
        except ValueError as e:
            raise MCPHandshakeError("Invalid JSON in initialize response") from e

    async def _verify_streamable_http(self, request: VerificationRequest) -> Dict[str, Any]:
        headers = self._headers(request, "application/json, text/event-stream")
        async with self._http_client() as client:
            response = await client.post(
                request.url,
                json=build_initialize_request(),
                headers=headers,
            )
            self._check_status(response)
            return extract_initialize_result(self._decode_response(response))

    async def _verify_sse(self, request: VerificationRequest) -> Dict[str, Any]:
        async with self._http_client() as client:
            async with client.stream(
                "GET",
                request.url,
                headers=self._headers(request, "text/event-stream"),
            ) as stream:
                self._check_status(stream)
                events = iter_sse_events(stream.aiter_lines())

                endpoint = None
                async for event, data in events:
                    if event == "endpoint":
                        endpoint = urljoin(request.url, data.strip())
                        break
                if endpoint is None:
                    raise MCPHandshakeError("SSE stream closed before endpoint event")
                if urlsplit(endpoint).netloc != urlsplit(request.url).netloc:
                    raise MCPHandshakeError("SSE endpoint points to a different host")

                response = await client.post(
                    endpoint,
                    json=build_initialize_request(),
                    headers=self._headers(request, "application/json, text/event-stream"),
                )
                self._check_status(response)

                # Some servers answer on the POST itself, the rest on the stream
                if response.content and response.status_code != 202:
                    return extract_initialize_result(self._decode_response(response))

                async for event, data in events:
                    if event != "message":
                        continue
                    try:
                        message = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise MCPHandshakeError("Invalid JSON in SSE message") from e
                    if isinstance(message, dict) and message.get("id") == INITIALIZE_REQUEST_ID:
                        return extract_initialize_result(message)

        raise MCPHandshakeError("SSE stream closed before initialize response")

    async def _verify_websocket(self, request: VerificationRequest) -> Dict[str, Any]:
        headers = {}
        if request.auth_token:
            headers["Authorization"] = f"Bearer {request.auth_token}"

        async with self.ws_session_factory() as session:
            async with session.ws_connect(
                _websocket_url(request.url),
                protocols=("mcp",),
                headers=headers,
                autoclose=True,
            ) as ws:
                await ws.send_json(build_initialize_request())
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        try:
                            message = json.loads(msg.data)
                        except json.JSONDecodeError as e:
                            raise MCPHandshakeError("Invalid JSON in WebSocket message") from e
                        if isinstance(message, dict) and message.get("id") == INITIALIZE_REQUEST_ID:
                            return extract_initialize_result(message)
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break

        raise MCPHandshakeError("WebSocket closed before initialize response")
