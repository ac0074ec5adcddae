"""Port binding models derived from a RuleSet."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from ..proxy.matcher import sort_routes
from ..rules.models import RouteRule, RuleKind, RuleSet
from ..shared.logging import get_logger

logger = get_logger("ports")

HTTP_SCHEMES = ("http", "https")
HTTP_RULE_KINDS = (RuleKind.DOMAIN, RuleKind.SUBDOMAIN, RuleKind.PATH)


class ListenerKind(str, Enum):
    """Kinds of listener the manager runs."""
    HTTP = "http"
    TCP_SNIFF = "tcp_sniff"


@dataclass(frozen=True)
class PortBinding:
    """Routes served by one allowed port, in matching order."""
    port: int
    routes: Tuple[RouteRule, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.routes


def derive_port_bindings(ruleset: RuleSet) -> Dict[int, PortBinding]:
    """Compute the route list of every allowed port.

    A rule with an explicit port lands only on that port, and only when the
    port is allowed. A rule without one is replicated onto every allowed
    port. Ports with no routes are still present, with an empty route tuple.
    """
    allowed = set(ruleset.allowed_ports)
    per_port: Dict[int, list] = {port: [] for port in ruleset.allowed_ports}

    for rule in ruleset.rules(*HTTP_RULE_KINDS):
        if rule.scheme not in HTTP_SCHEMES:
            continue
        if rule.port is None:
            for port in ruleset.allowed_ports:
                per_port[port].append(rule)
        elif rule.port in allowed:
            per_port[rule.port].append(rule)
        else:
            logger.warning(
                "Rule bound to a port that is not allowed",
                kind=rule.kind.value,
                key=rule.key,
                port=rule.port
            )

    return {port: PortBinding(port=port, routes=sort_routes(rules)) for port, rules in per_port.items()}


def derive_sniff_table(ruleset: RuleSet) -> Dict[str, Tuple[str, int]]:
    """Map subdomain labels to backend addresses for tcp:// subdomain rules."""
    table = {}
    for rule in ruleset.rules(RuleKind.SUBDOMAIN):
        if rule.is_tcp:
            table[rule.key.lower()] = rule.tcp_address
    return table
