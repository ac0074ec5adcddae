"""Rule Store: loads the JSON rule file into an immutable RuleSet.

Loading is tolerant per entry and strict per document. A malformed rule is
logged and left out of the RuleSet; a document that cannot be read or whose
top-level shape is wrong raises ``RuleLoadError`` so the caller can keep the
previous generation running.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from pydantic import ValidationError

from ..shared.errors import RuleLoadError
from ..shared.logging import get_logger
from .models import RouteEntry, RuleKind, RuleSet

logger = get_logger("rule_store")


class _PairsDict(dict):
    """dict that remembers which keys appeared more than once in the source."""

    def __init__(self, pairs: List[Tuple[str, Any]]):
        super().__init__()
        self.duplicates: List[str] = []
        for key, value in pairs:
            if key in self and key not in self.duplicates:
                self.duplicates.append(key)
            # Last occurrence wins, as with a plain dict
            self[key] = value


def parse_document(content: Union[str, bytes], source: str = "<memory>") -> RuleSet:
    """Parse rule file content into a RuleSet.

    Args:
        content: Raw JSON document
        source: Name used in log messages and errors

    Returns:
        The decoded RuleSet

    Raises:
        RuleLoadError: If the document is not valid JSON or has the wrong shape
    """
    try:
        raw = json.loads(content, object_pairs_hook=_PairsDict)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RuleLoadError(source, f"invalid JSON: {e}")

    if not isinstance(raw, dict):
        raise RuleLoadError(source, f"top-level value must be an object, got {type(raw).__name__}")

    for key in getattr(raw, "duplicates", ()):
        logger.warning("Duplicate top-level key, last value wins", key=key, source=source)

    categories: Dict[RuleKind, Dict[str, RouteEntry]] = {}
    for kind in RuleKind:
        categories[kind] = _parse_category(raw.get(kind.value), kind, source)

    allowed_ports = _parse_allowed_ports(raw.get("allowed_ports"), source)

    return RuleSet.build(
        path=categories[RuleKind.PATH],
        subdomain=categories[RuleKind.SUBDOMAIN],
        domain=categories[RuleKind.DOMAIN],
        tcp=categories[RuleKind.TCP],
        allowed_ports=allowed_ports,
    )


def _parse_category(raw: Any, kind: RuleKind, source: str) -> Dict[str, RouteEntry]:
    """Decode one category mapping, skipping malformed entries."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise RuleLoadError(source, f"'{kind.value}' must be an object, got {type(raw).__name__}")

    for key in getattr(raw, "duplicates", ()):
        logger.warning("Duplicate rule key, last value wins", kind=kind.value, key=key, source=source)

    entries: Dict[str, RouteEntry] = {}
    for key, value in raw.items():
        try:
            entry = RouteEntry.model_validate(value)
        except ValidationError as e:
            errors = "; ".join(err["msg"] for err in e.errors())
            logger.warning("Skipping malformed rule", kind=kind.value, key=key, error=errors)
            continue

        if not entry.target:
            logger.debug("Dropping rule with empty target", kind=kind.value, key=key)
            continue

        logger.debug("Loaded rule", kind=kind.value, key=key, target=entry.target, port=entry.port)
        entries[key] = entry
    return entries


def _parse_allowed_ports(raw: Any, source: str) -> List[int]:
    """Decode ``allowed_ports``, skipping members that are not valid ports."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RuleLoadError(source, f"'allowed_ports' must be a list, got {type(raw).__name__}")

    ports: List[int] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, int) or not (1 <= value <= 65535):
            logger.warning("Skipping invalid allowed port", value=value, source=source)
            continue
        if value in ports:
            logger.debug("Ignoring repeated allowed port", port=value)
            continue
        ports.append(value)
    return ports


def load_rules(path: Union[str, Path]) -> RuleSet:
    """Read and parse the rule file.

    Raises:
        RuleLoadError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise RuleLoadError(str(path), f"cannot read file: {e}")

    rules = parse_document(content, source=str(path))
    logger.info("Rules loaded", source=str(path), **rules.summary())
    return rules


def dump_rules(rules: RuleSet) -> Dict[str, Any]:
    """Serialize a RuleSet back into the rule file document shape."""
    document: Dict[str, Any] = {}
    for kind in RuleKind:
        document[kind.value] = {
            key: entry.model_dump(exclude_none=True)
            for key, entry in sorted(rules.category(kind).items())
        }
    document["allowed_ports"] = list(rules.allowed_ports)
    return document
