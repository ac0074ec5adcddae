"""TCP dispatcher: Host-header sniffing and byte splicing for the multiplexing port."""

from .sniffer import extract_hostname, looks_like_http, sniff_subdomain
from .tcp_dispatcher import TCPSniffDispatcher

__all__ = [
    'TCPSniffDispatcher',
    'extract_hostname',
    'looks_like_http',
    'sniff_subdomain',
]
