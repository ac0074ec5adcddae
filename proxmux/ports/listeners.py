"""Listener instances: one HTTP server or TCP sniff server bound to one port.

Instances are single-use. ``start()`` binds the port before its first await,
so a bind conflict surfaces immediately as ``ListenerBindError``.

Each listener holds the socket it bound and serves from a duplicate. The
server closes only the duplicate when it shuts down; the held socket is
closed as the last step of ``stop()``. A replacement listener therefore
binds with no event loop iteration in between, and nothing else can take
the port while it changes hands.
"""

import asyncio
import socket
from typing import Iterable, Mapping, Optional, Tuple

from hypercorn.app_wrappers import ASGIWrapper
from hypercorn.asyncio.run import worker_serve
from hypercorn.config import Config as HypercornConfig
from hypercorn.config import Sockets

from ..dispatcher.tcp_dispatcher import TCPSniffDispatcher
from ..proxy.app import ProxyOnlyApp
from ..rules.models import RouteRule
from ..shared.config import Config
from ..shared.errors import ListenerBindError
from ..shared.logging import get_logger
from .models import ListenerKind

logger = get_logger("listener")

# Extra time allowed past the grace period before a server task is cancelled
STOP_MARGIN_SECONDS = 1.0


def format_bind(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def bind_socket(host: str, port: int, backlog: int = 100) -> socket.socket:
    """Bind and listen on ``host:port`` synchronously."""
    host = host.strip("[]")
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.create_server((host, port), family=family, backlog=backlog)
    sock.setblocking(False)
    return sock


def duplicate_sockets(sockets: Sockets) -> Sockets:
    return Sockets(
        [sock.dup() for sock in sockets.secure_sockets],
        [sock.dup() for sock in sockets.insecure_sockets],
        [sock.dup() for sock in sockets.quic_sockets],
    )


def close_sockets(*groups: Optional[Sockets]):
    for sockets in groups:
        if sockets is None:
            continue
        for sock in (*sockets.secure_sockets, *sockets.insecure_sockets, *sockets.quic_sockets):
            sock.close()


class HTTPListener:
    """Hypercorn server running the catch-all proxy app for one port."""

    kind = ListenerKind.HTTP

    def __init__(self, port: int, routes: Iterable[RouteRule], host: Optional[str] = None,
                 grace: Optional[float] = None):
        self.port = port
        self.routes = tuple(routes)
        self.host = host or Config.SERVER_HOST
        self.grace = grace if grace is not None else Config.SHUTDOWN_GRACE_SECONDS
        self.proxy_app: Optional[ProxyOnlyApp] = None
        self._sockets: Optional[Sockets] = None
        self._serving_sockets: Optional[Sockets] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _build_config(self) -> HypercornConfig:
        config = HypercornConfig()
        config.bind = [format_bind(self.host, self.port)]
        config.loglevel = Config.LOG_LEVEL
        config.graceful_timeout = self.grace
        config.shutdown_timeout = self.grace
        config.keep_alive_timeout = 60
        return config

    async def start(self):
        """Bind the port and start serving in a background task."""
        config = self._build_config()
        try:
            # Binds synchronously so conflicts are reported here
            self._sockets = config.create_sockets()
            for sock in self._sockets.insecure_sockets:
                sock.listen(config.backlog)
        except OSError as e:
            self._release_sockets()
            raise ListenerBindError(self.port, self.host, e)
        self._serving_sockets = duplicate_sockets(self._sockets)

        self.proxy_app = ProxyOnlyApp(self.port, self.routes)
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(
            worker_serve(
                ASGIWrapper(self.proxy_app.get_asgi_app()),
                config,
                sockets=self._serving_sockets,
                shutdown_trigger=self._shutdown_event.wait,
            ),
            name=f"http-listener-{self.port}",
        )
        self._task.add_done_callback(self._on_task_done)
        logger.info("HTTP listener started", host=self.host, port=self.port, routes=len(self.routes))

    def _on_task_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("HTTP listener failed", port=self.port, error=str(error))

    async def stop(self):
        """Signal graceful shutdown and wait for the server to finish."""
        if self._task is None:
            return

        self._shutdown_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=self.grace + STOP_MARGIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("HTTP listener did not stop in time, cancelling", port=self.port)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        except Exception as e:
            logger.error("HTTP listener exited with error", port=self.port, error=str(e))
        finally:
            self._task = None
            try:
                if self.proxy_app is not None:
                    await self.proxy_app.close()
            finally:
                # Port stays held until here; no await may follow
                self._release_sockets()

        logger.info("HTTP listener stopped", port=self.port)

    def _release_sockets(self):
        close_sockets(self._serving_sockets, self._sockets)
        self._serving_sockets = None
        self._sockets = None


class TCPSniffListener:
    """asyncio server dispatching raw connections by sniffed Host header."""

    kind = ListenerKind.TCP_SNIFF

    def __init__(self, port: int, table: Mapping[str, Tuple[str, int]], host: Optional[str] = None,
                 grace: Optional[float] = None):
        self.port = port
        self.host = host or Config.SERVER_HOST
        self.grace = grace if grace is not None else Config.SHUTDOWN_GRACE_SECONDS
        self.dispatcher = TCPSniffDispatcher(table)
        self.server: Optional[asyncio.AbstractServer] = None
        self._socket: Optional[socket.socket] = None

    @property
    def running(self) -> bool:
        return self.server is not None and self.server.is_serving()

    async def start(self):
        try:
            self._socket = bind_socket(self.host, self.port)
        except OSError as e:
            raise ListenerBindError(self.port, self.host, e)
        try:
            self.server = await asyncio.start_server(self.dispatcher.handle_connection, sock=self._socket.dup())
        except OSError as e:
            self._release_socket()
            raise ListenerBindError(self.port, self.host, e)
        logger.info(
            "TCP sniff listener started",
            host=self.host,
            port=self.port,
            subdomains=sorted(self.dispatcher.subdomains)
        )

    async def stop(self):
        if self.server is None:
            return
        self.server.close()
        await self.dispatcher.cancel_connections(self.grace)
        try:
            await asyncio.wait_for(self.server.wait_closed(), timeout=self.grace)
        except asyncio.TimeoutError:
            logger.warning("TCP sniff listener did not close in time", port=self.port)
        finally:
            self.server = None
            self._release_socket()
        logger.info("TCP sniff listener stopped", port=self.port)

    def _release_socket(self):
        if self._socket is not None:
            self._socket.close()
            self._socket = None
