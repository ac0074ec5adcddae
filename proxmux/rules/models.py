"""Rule models: the decoded form of the rule file."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator, model_validator


SUPPORTED_SCHEMES = ("http", "https", "tcp")


class RuleKind(str, Enum):
    """Rule categories, one per top-level mapping in the rule file."""
    PATH = "path"
    SUBDOMAIN = "subdomain"
    DOMAIN = "domain"
    TCP = "tcp"


# Matching order across kinds
KIND_PRECEDENCE = {
    RuleKind.DOMAIN: 0,
    RuleKind.SUBDOMAIN: 1,
    RuleKind.PATH: 2,
    RuleKind.TCP: 3,
}


class RouteEntry(BaseModel):
    """Normalized ``{target, port}`` shape of one rule entry.

    The rule file allows either a bare string (the target) or an object with
    ``target`` and an optional ``port``. Both decode to this model.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    target: StrictStr = Field("", description="Backend URL (http, https or tcp scheme)")
    port: Optional[StrictInt] = Field(None, description="Inbound port this rule is bound to (None = every allowed port)")

    @model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        """Accept the bare string shorthand for ``{"target": <string>}``."""
        if isinstance(data, str):
            return {"target": data}
        return data

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Normalize the target URL, prepending http:// when no scheme is given."""
        v = v.strip()
        if not v:
            return v
        if "://" not in v:
            v = f"http://{v}"
        parts = urlsplit(v)
        scheme = parts.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise ValueError(f"Unsupported target scheme '{parts.scheme}' (expected one of {', '.join(SUPPORTED_SCHEMES)})")
        if not parts.hostname:
            raise ValueError(f"Target '{v}' has no host")
        try:
            parts.port
        except ValueError:
            raise ValueError(f"Target '{v}' has an invalid port")
        if scheme == "tcp" and parts.port is None:
            raise ValueError(f"TCP target '{v}' must include a port")
        return v

    @field_validator("port")
    @classmethod
    def normalize_port(cls, v: Optional[int]) -> Optional[int]:
        """Port 0 means "no explicit port"."""
        if v is None or v == 0:
            return None
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v


class RouteRule(BaseModel):
    """One routing rule: match discriminator plus backend target."""
    model_config = ConfigDict(frozen=True)

    kind: RuleKind
    key: str
    target: str
    port: Optional[int] = None

    @property
    def scheme(self) -> str:
        return urlsplit(self.target).scheme.lower()

    @property
    def is_tcp(self) -> bool:
        return self.scheme == "tcp"

    @property
    def tcp_address(self) -> Tuple[str, int]:
        """``(host, port)`` of a tcp:// target."""
        parts = urlsplit(self.target)
        return parts.hostname, parts.port

    @property
    def sort_key(self) -> Tuple[int, int, str, int]:
        """Deterministic matching order.

        Kinds in precedence order, longer path prefixes first, then keys
        lexicographically, and a port-bound rule ahead of a port-agnostic one.
        """
        length = -len(self.key) if self.kind == RuleKind.PATH else 0
        return (KIND_PRECEDENCE[self.kind], length, self.key, 0 if self.port is not None else 1)

    @classmethod
    def from_entry(cls, kind: RuleKind, key: str, entry: RouteEntry) -> "RouteRule":
        return cls(kind=kind, key=key, target=entry.target, port=entry.port)


def _freeze(entries: Optional[Dict[str, RouteEntry]]) -> Mapping[str, RouteEntry]:
    return MappingProxyType(dict(entries or {}))


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of the loaded rule file."""
    path: Mapping[str, RouteEntry] = field(default_factory=lambda: _freeze(None))
    subdomain: Mapping[str, RouteEntry] = field(default_factory=lambda: _freeze(None))
    domain: Mapping[str, RouteEntry] = field(default_factory=lambda: _freeze(None))
    tcp: Mapping[str, RouteEntry] = field(default_factory=lambda: _freeze(None))
    allowed_ports: Tuple[int, ...] = ()

    @classmethod
    def build(
        cls,
        path: Optional[Dict[str, RouteEntry]] = None,
        subdomain: Optional[Dict[str, RouteEntry]] = None,
        domain: Optional[Dict[str, RouteEntry]] = None,
        tcp: Optional[Dict[str, RouteEntry]] = None,
        allowed_ports=(),
    ) -> "RuleSet":
        """Create a RuleSet, copying the mappings into read-only views."""
        ports = tuple(dict.fromkeys(allowed_ports))
        return cls(
            path=_freeze(path),
            subdomain=_freeze(subdomain),
            domain=_freeze(domain),
            tcp=_freeze(tcp),
            allowed_ports=ports,
        )

    def category(self, kind: RuleKind) -> Mapping[str, RouteEntry]:
        return getattr(self, kind.value)

    def rules(self, *kinds: RuleKind):
        """Yield RouteRule values for the given kinds (all kinds if none given)."""
        for kind in kinds or tuple(RuleKind):
            for key, entry in self.category(kind).items():
                yield RouteRule.from_entry(kind, key, entry)

    def summary(self) -> Dict[str, int]:
        """Per-category rule counts for logging."""
        counts = {kind.value: len(self.category(kind)) for kind in RuleKind}
        counts["allowed_ports"] = len(self.allowed_ports)
        return counts
