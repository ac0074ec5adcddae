"""proxmux - hot-reloading multi-port reverse proxy with TCP Host sniffing."""

__version__ = "0.1.0"
