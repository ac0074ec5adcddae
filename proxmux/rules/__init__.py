"""Rule Store: rule models and the JSON rule file loader."""

from .models import RouteEntry, RouteRule, RuleKind, RuleSet
from .store import dump_rules, load_rules, parse_document

__all__ = [
    'RouteEntry',
    'RouteRule',
    'RuleKind',
    'RuleSet',
    'dump_rules',
    'load_rules',
    'parse_document',
]
