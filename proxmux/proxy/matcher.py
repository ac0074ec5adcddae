"""Route matching for HTTP requests and sniffed TCP connections."""

from typing import Iterable, Optional, Tuple

from ..rules.models import RouteRule, RuleKind

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def split_host(host_header: str) -> Tuple[str, Optional[int]]:
    """Split a Host header value into hostname and optional port.

    Handles bracketed IPv6 literals (``[::1]:8080``). The hostname is
    lower-cased; an unparseable port is treated as absent.
    """
    host_header = (host_header or "").strip()
    if host_header.startswith("["):
        end = host_header.find("]")
        if end == -1:
            return host_header.lower(), None
        host = host_header[1:end]
        rest = host_header[end + 1:]
        port_str = rest[1:] if rest.startswith(":") else ""
    elif host_header.count(":") == 1:
        host, port_str = host_header.split(":", 1)
    else:
        host, port_str = host_header, ""

    port = int(port_str) if port_str.isdigit() else None
    return host.lower(), port


def sort_routes(rules: Iterable[RouteRule]) -> Tuple[RouteRule, ...]:
    """Order rules the way ``match`` evaluates them."""
    return tuple(sorted(rules, key=lambda rule: rule.sort_key))


def path_matches(key: str, path: str) -> bool:
    """Segment-aware prefix test.

    ``/api`` matches ``/api`` and ``/api/users`` but not ``/apiary``.
    A key ending in ``/`` matches anything below it.
    """
    if not key:
        return False
    if key.endswith("/"):
        return path.startswith(key)
    return path == key or path.startswith(key + "/")


def subdomain_label(host: str) -> Optional[str]:
    """First dot-delimited label of a host with at least two labels."""
    parts = host.split(".")
    if len(parts) < 2 or not parts[0]:
        return None
    return parts[0]


def rule_matches(rule: RouteRule, host: str, path: str) -> bool:
    """Check a single rule against a normalized host and path."""
    if rule.kind == RuleKind.DOMAIN:
        return host == rule.key.lower()
    if rule.kind == RuleKind.SUBDOMAIN:
        return subdomain_label(host) == rule.key.lower()
    if rule.kind == RuleKind.PATH:
        return path_matches(rule.key, path)
    return False


def match(rules: Iterable[RouteRule], request_host: str, request_path: str) -> Optional[RouteRule]:
    """Return the first rule matching the request, or None.

    Rules are tried in the order given; callers pass them already ordered
    by ``sort_routes`` (listeners sort their route tuple once at start).

    Args:
        rules: Candidate rules for the listener's port, in matching order
        request_host: Host header value (a port suffix is ignored)
        request_path: Request path without the query string

    Returns:
        The matching rule, or None when nothing matches
    """
    host, _ = split_host(request_host)
    path = request_path or "/"
    for rule in rules:
        if rule_matches(rule, host, path):
            return rule
    return None


def strip_prefix(path: str, prefix: str) -> str:
    """Remove a matched path prefix, never returning an empty path."""
    if prefix and path.startswith(prefix):
        path = path[len(prefix):]
    if not path.startswith("/"):
        path = "/" + path
    return path


def strip_raw_prefix(raw_path: str, prefix: str) -> Optional[str]:
    """Remove a decoded prefix from a percent-encoded path, keeping the rest encoded.

    Walks the raw path one character or ``%XX`` escape at a time until the
    decoded bytes consumed equal the prefix. Returns None when the raw path
    does not decode to something starting with ``prefix``.
    """
    target = prefix.encode("utf-8")
    consumed = bytearray()
    i = 0
    while len(consumed) < len(target) and i < len(raw_path):
        token = raw_path[i:i + 3]
        if len(token) == 3 and token[0] == "%" and all(c in _HEX_DIGITS for c in token[1:]):
            consumed.append(int(token[1:], 16))
            i += 3
        else:
            consumed.extend(raw_path[i].encode("utf-8"))
            i += 1

    if bytes(consumed) != target:
        return None
    return strip_prefix(raw_path[i:], "")
