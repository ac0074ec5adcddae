"""Listener lifecycle management.

The manager owns every running listener and reconciles them against the
bindings derived from a RuleSet. A port's old listener is always fully
stopped before its replacement binds, so no two listeners ever hold the
same port.
"""

from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..rules.models import RouteRule
from ..shared.config import Config
from ..shared.logging import get_logger
from .listeners import HTTPListener, TCPSniffListener
from .models import PortBinding

logger = get_logger("listener_manager")

HTTPListenerFactory = Callable[[int, Tuple[RouteRule, ...]], HTTPListener]
SniffListenerFactory = Callable[[int, Mapping[str, Tuple[str, int]]], TCPSniffListener]


class ListenerManager:
    """Starts, stops and replaces listeners per reconciliation."""

    def __init__(
        self,
        host: Optional[str] = None,
        sniff_port: Optional[int] = None,
        grace: Optional[float] = None,
        http_factory: Optional[HTTPListenerFactory] = None,
        sniff_factory: Optional[SniffListenerFactory] = None,
    ):
        """Initialize the manager.

        Args:
            host: Interface every listener binds to
            sniff_port: Port of the TCP sniff listener
            grace: Graceful shutdown bound per listener, in seconds
            http_factory: Builds HTTP listeners (tests inject fakes here)
            sniff_factory: Builds TCP sniff listeners
        """
        self.host = host or Config.SERVER_HOST
        self.sniff_port = sniff_port if sniff_port is not None else Config.TCP_SNIFF_PORT
        self.grace = grace if grace is not None else Config.SHUTDOWN_GRACE_SECONDS
        self._http_factory = http_factory or self._default_http_factory
        self._sniff_factory = sniff_factory or self._default_sniff_factory

        self.instances: Dict[int, HTTPListener] = {}
        self.sniff_instance: Optional[TCPSniffListener] = None

    def _default_http_factory(self, port, routes):
        return HTTPListener(port, routes, host=self.host, grace=self.grace)

    def _default_sniff_factory(self, port, table):
        return TCPSniffListener(port, table, host=self.host, grace=self.grace)

    async def apply(self, bindings: Mapping[int, PortBinding], sniff_table: Mapping[str, Tuple[str, int]]):
        """Reconcile running listeners with freshly derived bindings.

        Raises:
            ListenerBindError: If a listener cannot bind its port
        """
        await self._apply_sniff(sniff_table)

        for port, binding in bindings.items():
            if self.sniff_instance is not None and port == self.sniff_port:
                logger.error("Allowed port collides with the TCP sniff port, skipping", port=port)
                continue

            await self._stop_port(port)
            if binding.is_empty:
                logger.info("No routes for port, listener removed", port=port)
                continue

            listener = self._http_factory(port, binding.routes)
            await listener.start()
            self.instances[port] = listener

        for port in [p for p in self.instances if p not in bindings]:
            logger.info("Port no longer allowed, stopping listener", port=port)
            await self._stop_port(port)

        logger.info("Listeners reconciled", **self.running_ports())

    async def _apply_sniff(self, sniff_table: Mapping[str, Tuple[str, int]]):
        if self.sniff_instance is not None:
            await self.sniff_instance.stop()
            self.sniff_instance = None

        if not sniff_table:
            return

        if self.sniff_port in self.instances:
            await self._stop_port(self.sniff_port)
        listener = self._sniff_factory(self.sniff_port, dict(sniff_table))
        await listener.start()
        self.sniff_instance = listener

    async def _stop_port(self, port: int):
        listener = self.instances.pop(port, None)
        if listener is not None:
            await listener.stop()

    async def stop_all(self):
        """Stop every listener, sniff listener included."""
        for port in list(self.instances):
            await self._stop_port(port)
        if self.sniff_instance is not None:
            await self.sniff_instance.stop()
            self.sniff_instance = None
        logger.info("All listeners stopped")

    def running_ports(self) -> Dict[str, List[int]]:
        """Ports currently served, by listener kind."""
        return {
            "http_ports": sorted(self.instances),
            "sniff_ports": [self.sniff_instance.port] if self.sniff_instance is not None else [],
        }
