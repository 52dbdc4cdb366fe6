from __future__ import annotations

from typing import Any, Dict, List

import jsonpatch


class InjectionError(Exception):
    """Raised when the sidecar cannot be built for a pod."""


def validate_patch_applies(pod: Dict[str, Any], patch_ops: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply ``patch_ops`` to a copy of ``pod`` and return the patched document."""

    if pod is None:
        raise InjectionError("pod document unavailable for validation")
    for op in patch_ops:
        if op.get("op") != "add":
            raise InjectionError(f"unexpected patch operation {op.get('op')!r}")
    try:
        return jsonpatch.apply_patch(pod, patch_ops, in_place=False)
    except Exception as exc:
        raise InjectionError(f"bad path or conflict: {exc}") from exc


__all__ = ["InjectionError", "validate_patch_applies"]
