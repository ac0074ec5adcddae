"""HTTP forwarder: rewrites a matched request onto its backend and streams the reply."""

from typing import FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import quote, quote_from_bytes, urlsplit

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from ..rules.models import RouteRule
from ..shared.config import Config
from ..shared.logging import get_logger
from .matcher import split_host, strip_prefix, strip_raw_prefix

logger = get_logger("forwarder")

HOP_BY_HOP_HEADERS = frozenset([
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'proxy-connection',
    'te',
    'trailer',
    'transfer-encoding',
    'upgrade',
])

FORWARDED_HEADERS = frozenset(['x-forwarded-for', 'x-forwarded-host', 'x-forwarded-proto'])

DEFAULT_PORTS = {"https": 443, "http": 80}

# Characters left unescaped in a forwarded path (RFC 3986 pchar plus "/")
PATH_SAFE_CHARS = "/:@!$&'()*+,;="


def resolve_target(target: str, inbound_host: str) -> Tuple[str, str, str]:
    """Work out scheme, authority and base path for a backend target.

    A target without an explicit port takes the port of the inbound Host
    header when it has one, otherwise the scheme default (443 for https,
    80 for everything else).

    Returns:
        Tuple of (scheme, host:port authority, base path without trailing slash)
    """
    parts = urlsplit(target)
    scheme = parts.scheme.lower() or "http"
    hostname = parts.hostname or ""
    port = parts.port
    if port is None:
        _, inbound_port = split_host(inbound_host)
        port = inbound_port or DEFAULT_PORTS.get(scheme, 80)

    host = f"[{hostname}]" if ":" in hostname else hostname
    return scheme, f"{host}:{port}", parts.path.rstrip("/")


def connection_tokens(values: Iterable[str]) -> FrozenSet[str]:
    """Header names listed in ``Connection`` headers, which are hop-by-hop too."""
    return frozenset(
        token.strip().lower()
        for value in values
        for token in value.split(',')
        if token.strip()
    )


def raw_request_path(request: Request) -> str:
    """Percent-encoded request path as the client sent it, without the query.

    Matching works on the decoded path; forwarding uses this one so escapes
    such as ``%2F`` or ``%3F`` reach the backend unchanged.
    """
    raw = request.scope.get("raw_path")
    if raw:
        return quote_from_bytes(raw.split(b"?", 1)[0], safe=PATH_SAFE_CHARS + "%")
    return quote(request.url.path, safe=PATH_SAFE_CHARS)


def build_target_url(rule: RouteRule, inbound_host: str, path: str, query: str, prefix: str = "") -> Tuple[str, str]:
    """Build the outbound URL for a request.

    Args:
        rule: The matched rule
        inbound_host: Host header of the inbound request
        path: Inbound request path, percent-encoded
        query: Inbound query string (without the ``?``)
        prefix: Decoded path prefix to strip (path rules only)

    Returns:
        Tuple of (outbound URL, authority used for the Host header)
    """
    scheme, authority, base_path = resolve_target(rule.target, inbound_host)
    if prefix:
        forwarded_path = strip_raw_prefix(path, prefix)
        if forwarded_path is None:
            forwarded_path = strip_prefix(path, prefix)
    else:
        forwarded_path = path or "/"
    url = f"{scheme}://{authority}{base_path}{forwarded_path}"
    if query:
        url += f"?{query}"
    return url, authority


class HTTPForwarder:
    """Forwards requests for one listener to the backends of its rules."""

    def __init__(self, connect_timeout: Optional[float] = None, request_timeout: Optional[float] = None):
        connect_timeout = float(connect_timeout if connect_timeout is not None else Config.PROXY_CONNECT_TIMEOUT)
        request_timeout = float(request_timeout if request_timeout is not None else Config.PROXY_REQUEST_TIMEOUT)

        self.client = httpx.AsyncClient(
            follow_redirects=False,
            verify=False,  # Backends are operator-configured, often self-signed
            trust_env=False,
            timeout=httpx.Timeout(
                connect=connect_timeout,
                read=request_timeout,
                write=request_timeout,
                pool=None
            ),
            limits=httpx.Limits(max_keepalive_connections=100)
        )

    def _build_request_headers(self, request: Request, authority: str) -> List[Tuple[str, str]]:
        dropped = HOP_BY_HOP_HEADERS | FORWARDED_HEADERS | connection_tokens(request.headers.getlist('connection'))
        headers = []
        for name, value in request.headers.items():
            lowered = name.lower()
            if lowered in dropped or lowered == 'host':
                continue
            headers.append((name, value))

        client_ip = request.client.host if request.client else None
        forwarded_for = request.headers.get('x-forwarded-for')
        if client_ip:
            forwarded_for = f"{forwarded_for}, {client_ip}" if forwarded_for else client_ip

        if forwarded_for:
            headers.append(('X-Forwarded-For', forwarded_for))
        headers.append(('X-Forwarded-Host', request.headers.get('host', '')))
        headers.append(('X-Forwarded-Proto', request.url.scheme))
        headers.append(('Host', authority))
        return headers

    @staticmethod
    def _has_body(request: Request) -> bool:
        return 'content-length' in request.headers or 'transfer-encoding' in request.headers

    async def forward(self, request: Request, rule: RouteRule, prefix: str = "") -> Response:
        """Proxy ``request`` to the backend of ``rule``.

        Args:
            request: Inbound request
            rule: Matched rule
            prefix: Path prefix to strip before forwarding (path rules only)

        Returns:
            Streaming response relaying the backend reply, or a 502/504 error
        """
        inbound_host = request.headers.get('host', '')
        target_url, authority = build_target_url(
            rule, inbound_host, raw_request_path(request), request.url.query, prefix
        )
        headers = self._build_request_headers(request, authority)
        client_ip = request.client.host if request.client else 'unknown'

        logger.debug(
            "Forwarding request",
            method=request.method,
            path=request.url.path,
            target_url=target_url,
            client_ip=client_ip
        )

        backend_request = self.client.build_request(
            request.method,
            target_url,
            headers=headers,
            content=request.stream() if self._has_body(request) else None,
        )

        try:
            backend_response = await self.client.send(backend_request, stream=True)
        except httpx.ConnectTimeout as e:
            logger.warning("Backend connect timeout", target_url=target_url, error=str(e), client_ip=client_ip)
            return PlainTextResponse("Bad Gateway", status_code=502)
        except httpx.TimeoutException as e:
            logger.warning("Backend request timeout", target_url=target_url, error=str(e), client_ip=client_ip)
            return PlainTextResponse("Gateway Timeout", status_code=504)
        except httpx.RequestError as e:
            logger.warning("Backend request error", target_url=target_url, error=str(e), client_ip=client_ip)
            return PlainTextResponse("Bad Gateway", status_code=502)

        logger.debug("Backend response", status=backend_response.status_code, target_url=target_url)

        response = StreamingResponse(
            backend_response.aiter_raw(),
            status_code=backend_response.status_code,
            background=BackgroundTask(backend_response.aclose),
        )
        dropped = HOP_BY_HOP_HEADERS | connection_tokens(backend_response.headers.get_list('connection'))
        # Raw header list keeps repeated headers such as Set-Cookie
        response.raw_headers = [
            (name.lower(), value)
            for name, value in backend_response.headers.raw
            if name.decode('latin-1').lower() not in dropped
        ]
        return response

    async def close(self):
        """Close the backend connection pool."""
        await self.client.aclose()
