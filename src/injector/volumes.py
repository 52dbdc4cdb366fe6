from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from src.common import annotations as ann

from .defaults import DEFAULTS, SidecarDefaults

logger = logging.getLogger(__name__)


def pod_annotations(pod: Dict[str, Any]) -> Dict[str, str]:
    metadata = pod.get("metadata")
    if not isinstance(metadata, dict):
        return {}
    annotations = metadata.get("annotations")
    if not isinstance(annotations, dict):
        return {}
    return {str(key): _annotation_text(value) for key, value in annotations.items()}


def _annotation_text(value: Any) -> str:
    # Hand-written manifests often carry unquoted numbers or booleans.
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _pod_volumes(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    spec = pod.get("spec")
    if not isinstance(spec, dict):
        return []
    volumes = spec.get("volumes")
    if not isinstance(volumes, list):
        return []
    return [volume for volume in volumes if isinstance(volume, dict)]


def ensure_socket_volume(
    pod: Dict[str, Any],
    defaults: SidecarDefaults = DEFAULTS,
) -> Optional[Dict[str, Any]]:
    """Prepend the in-memory socket volume to ``pod`` and return its mount.

    Mutates ``pod`` in place and does not check for an existing volume of the
    same name, so call it at most once per pod.
    """

    socket_path = ann.get_string(pod_annotations(pod), ann.KEY_UNIX_DOMAIN_SOCKET_PATH)
    if not socket_path:
        return None
    spec = pod.setdefault("spec", {})
    volumes = spec.get("volumes")
    if not isinstance(volumes, list):
        volumes = []
    spec["volumes"] = [
        {"name": defaults.socket_volume_name, "emptyDir": {"medium": "Memory"}},
        *volumes,
    ]
    logger.debug("added socket volume %s for %s", defaults.socket_volume_name, socket_path)
    return {"name": defaults.socket_volume_name, "mountPath": socket_path}


def has_volume(pod: Dict[str, Any], name: str) -> bool:
    return any(volume.get("name") == name for volume in _pod_volumes(pod))


def resolve_extra_mounts(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    annotations = pod_annotations(pod)
    mounts: List[Dict[str, Any]] = []
    for key, read_only in (
        (ann.KEY_VOLUME_MOUNTS_READ_ONLY, True),
        (ann.KEY_VOLUME_MOUNTS_READ_WRITE, False),
    ):
        for name, mount_path in ann.get_pairs(annotations, key, ":"):
            if not has_volume(pod, name):
                logger.debug("volume %s named in %s is not declared on the pod; skipping", name, key)
                continue
            mounts.append({"name": name, "mountPath": mount_path, "readOnly": read_only})
    return mounts


__all__ = ["ensure_socket_volume", "has_volume", "pod_annotations", "resolve_extra_mounts"]
