"""Decide whether the sidecar must carry an explicit entrypoint.

Some node pools (for example Windows or sandboxed runtimes) ignore the image
entrypoint. Operators list the taints of such pools as a JSON array of
``{"key": ..., "effect": ...}`` objects; a pod tolerating any of them gets the
daprd binary in ``command`` rather than relying on the image.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class TolerationRule(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    key: str = ""
    effect: str = ""

    def matches(self, toleration: Dict[str, Any]) -> bool:
        return (toleration.get("key") or "") == self.key and (toleration.get("effect") or "") == self.effect


_RULES_ADAPTER = TypeAdapter(List[TolerationRule])


def parse_toleration_rules(raw: Optional[str]) -> List[TolerationRule]:
    """Parse the allow-list; anything malformed yields an empty list."""

    if not raw or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("ignoring malformed entrypoint toleration list: %s", exc)
        return []
    if not isinstance(data, list):
        logger.warning("ignoring entrypoint toleration list: top level is not an array")
        return []
    # Field names are matched case-insensitively ("Effect" and "effect" are the same field).
    normalised = [
        {str(name).lower(): value for name, value in entry.items()} if isinstance(entry, dict) else entry
        for entry in data
    ]
    try:
        return _RULES_ADAPTER.validate_python(normalised)
    except ValidationError as exc:
        logger.warning("ignoring invalid entrypoint toleration list: %s", exc)
        return []


def requires_explicit_entrypoint(
    pod_tolerations: Optional[Iterable[Dict[str, Any]]],
    allow_list: Optional[str],
) -> bool:
    rules = parse_toleration_rules(allow_list)
    tolerations = [t for t in pod_tolerations or () if isinstance(t, dict)]
    if not rules or not tolerations:
        return False
    return any(rule.matches(toleration) for rule in rules for toleration in tolerations)


__all__ = ["TolerationRule", "parse_toleration_rules", "requires_explicit_entrypoint"]
