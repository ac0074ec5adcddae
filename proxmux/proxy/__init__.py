"""HTTP proxying: route matching, forwarding and the per-listener app."""

from .app import ProxyOnlyApp, create_proxy_app
from .forwarder import HTTPForwarder, build_target_url, resolve_target
from .matcher import match, path_matches, sort_routes, split_host, strip_prefix

__all__ = [
    'ProxyOnlyApp',
    'create_proxy_app',
    'HTTPForwarder',
    'build_target_url',
    'resolve_target',
    'match',
    'path_matches',
    'sort_routes',
    'split_host',
    'strip_prefix',
]
