from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from .defaults import DEFAULTS, SidecarDefaults

logger = logging.getLogger(__name__)

CONTAINERS_PATH = "/spec/containers"

USER_CONTAINER_HTTP_PORT_NAME = "DAPR_HTTP_PORT"
USER_CONTAINER_GRPC_PORT_NAME = "DAPR_GRPC_PORT"

ConflictCheck = Callable[[Dict[str, Any], Dict[str, Any]], bool]


def _same_name(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    return existing.get("name") == desired.get("name")


def _same_name_or_mount_path(existing: Dict[str, Any], desired: Dict[str, Any]) -> bool:
    if existing.get("name") == desired.get("name"):
        return True
    return existing.get("mountPath") == desired.get("mountPath")


def filter_conflicts(
    existing: Sequence[Dict[str, Any]],
    desired: Sequence[Dict[str, Any]],
    conflicts: ConflictCheck,
) -> List[Dict[str, Any]]:
    """Keep the desired entries that collide with nothing already declared."""

    surviving: List[Dict[str, Any]] = []
    for entry in desired:
        clash = next((item for item in existing if isinstance(item, dict) and conflicts(item, entry)), None)
        if clash is not None:
            logger.debug("skipping %s: conflicts with existing entry %s", entry.get("name"), clash)
            continue
        surviving.append(entry)
    return surviving


def patch_missing(
    containers: Sequence[Any],
    desired: Sequence[Dict[str, Any]],
    *,
    field: str,
    conflicts: ConflictCheck = _same_name,
    base_path: str = CONTAINERS_PATH,
) -> List[Dict[str, Any]]:
    """Emit add operations that graft ``desired`` onto each container's ``field``.

    An absent or empty array is created whole; a populated one gets one
    ``/-`` append per entry, in ``desired`` order. Indices follow ``containers``
    as given, and entries that are not mappings are skipped.
    """

    ops: List[Dict[str, Any]] = []
    for idx, container in enumerate(containers):
        if not isinstance(container, dict):
            continue
        current = container.get(field)
        existing = current if isinstance(current, list) else []
        additions = filter_conflicts(existing, desired, conflicts)
        if not additions:
            continue
        path = f"{base_path}/{idx}/{field}"
        if existing:
            for entry in additions:
                ops.append({"op": "add", "path": f"{path}/-", "value": dict(entry)})
        else:
            ops.append({"op": "add", "path": path, "value": [dict(entry) for entry in additions]})
    return ops


def app_container_env(defaults: SidecarDefaults = DEFAULTS) -> List[Dict[str, Any]]:
    return [
        {"name": USER_CONTAINER_HTTP_PORT_NAME, "value": str(defaults.http_port)},
        {"name": USER_CONTAINER_GRPC_PORT_NAME, "value": str(defaults.api_grpc_port)},
    ]


def add_env_vars_to_containers(
    containers: Sequence[Any],
    env: Optional[Sequence[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    desired = app_container_env() if env is None else env
    return patch_missing(containers, desired, field="env")


def add_volume_mounts_to_containers(
    containers: Sequence[Any],
    mount: Optional[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    if mount is None:
        return []
    return patch_missing(containers, [mount], field="volumeMounts", conflicts=_same_name_or_mount_path)


__all__ = [
    "USER_CONTAINER_GRPC_PORT_NAME",
    "USER_CONTAINER_HTTP_PORT_NAME",
    "add_env_vars_to_containers",
    "add_volume_mounts_to_containers",
    "app_container_env",
    "filter_conflicts",
    "patch_missing",
]
