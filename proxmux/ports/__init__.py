"""Listener lifecycle: port bindings, listener instances and their manager."""

from .listeners import HTTPListener, TCPSniffListener
from .manager import ListenerManager
from .models import ListenerKind, PortBinding, derive_port_bindings, derive_sniff_table

__all__ = [
    'HTTPListener',
    'ListenerKind',
    'ListenerManager',
    'PortBinding',
    'TCPSniffListener',
    'derive_port_bindings',
    'derive_sniff_table',
]
