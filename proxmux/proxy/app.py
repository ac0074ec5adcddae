"""Minimal ASGI application served by each HTTP listener.

Each listener gets its own app closed over the immutable route tuple it was
started with, so a request is always matched against the rule generation of
the listener that accepted it.
"""

import asyncio
from typing import Iterable, Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from ..rules.models import RouteRule, RuleKind
from ..shared.logging import get_logger
from .forwarder import HTTPForwarder
from .matcher import match, sort_routes

logger = get_logger("proxy_app")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "TRACE"]


class ProxyOnlyApp:
    """Catch-all proxy application for one listening port."""

    def __init__(self, port: int, routes: Iterable[RouteRule], forwarder: Optional[HTTPForwarder] = None):
        self.port = port
        self.routes = sort_routes(routes)
        self.forwarder = forwarder or HTTPForwarder()

        self.app = Starlette(
            routes=[
                Route("/{path:path}", self.handle_proxy, methods=PROXY_METHODS),
            ]
        )

    async def close(self):
        """Release the backend connection pool."""
        await self.forwarder.close()

    async def handle_proxy(self, request: Request) -> Response:
        """Match the request against this listener's routes and forward it."""
        host = request.headers.get("host", "")
        path = request.url.path

        logger.debug("Request received", port=self.port, method=request.method, host=host, path=path)

        rule = match(self.routes, host, path)
        if rule is None:
            logger.info("No rule found", port=self.port, host=host, path=path)
            return PlainTextResponse("404 page not found", status_code=404)

        logger.debug("Rule matched", port=self.port, kind=rule.kind.value, key=rule.key, target=rule.target)
        prefix = rule.key if rule.kind == RuleKind.PATH else ""
        try:
            return await self.forwarder.forward(request, rule, prefix)
        except asyncio.CancelledError:
            # Client went away mid-request
            logger.debug("Client disconnected during request", port=self.port, path=path)
            raise
        except (ConnectionResetError, BrokenPipeError, ConnectionAbortedError) as e:
            logger.debug("Client connection lost", port=self.port, error=type(e).__name__)
            return PlainTextResponse("", status_code=499)

    def get_asgi_app(self):
        """Return the ASGI application."""
        return self.app


def create_proxy_app(port: int, routes: Iterable[RouteRule], forwarder: Optional[HTTPForwarder] = None):
    """Factory function to create a proxy-only ASGI app."""
    proxy_app = ProxyOnlyApp(port, routes, forwarder)
    return proxy_app.get_asgi_app()
