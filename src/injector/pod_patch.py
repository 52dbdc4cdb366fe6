from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List

from src.common import annotations as ann

from .config import InjectorConfig
from .defaults import DEFAULTS, SidecarDefaults
from .patches import add_env_vars_to_containers, add_volume_mounts_to_containers, app_container_env
from .sidecar import SidecarConfig, build_sidecar_container
from .volumes import ensure_socket_volume, pod_annotations, resolve_extra_mounts

logger = logging.getLogger(__name__)


def _metadata(pod: Dict[str, Any]) -> Dict[str, Any]:
    metadata = pod.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _spec(pod: Dict[str, Any]) -> Dict[str, Any]:
    spec = pod.get("spec")
    return spec if isinstance(spec, dict) else {}


def _raw_containers(pod: Dict[str, Any]) -> List[Any]:
    containers = _spec(pod).get("containers")
    return containers if isinstance(containers, list) else []


def _containers(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [c for c in _raw_containers(pod) if isinstance(c, dict)]


def injection_enabled(pod: Dict[str, Any]) -> bool:
    return ann.get_bool(pod_annotations(pod), ann.KEY_ENABLED, False)


def sidecar_present(pod: Dict[str, Any], defaults: SidecarDefaults = DEFAULTS) -> bool:
    return any(c.get("name") == defaults.container_name for c in _containers(pod))


def workload_identity(pod: Dict[str, Any]) -> str:
    namespace = _metadata(pod).get("namespace") or "default"
    service_account = _spec(pod).get("serviceAccountName") or "default"
    return f"{namespace}:{service_account}"


def get_pod_patch_operations(
    pod: Dict[str, Any],
    config: InjectorConfig,
    defaults: SidecarDefaults = DEFAULTS,
) -> List[Dict[str, Any]]:
    """Return the JSON Patch that injects the sidecar into ``pod``.

    ``pod`` is not modified. Raises ``InjectionError`` when the sidecar cannot be built.
    """

    metadata = _metadata(pod)
    pod_name = metadata.get("name") or metadata.get("generateName") or ""
    if not injection_enabled(pod):
        logger.debug("injection not enabled for pod %s", pod_name)
        return []
    if sidecar_present(pod, defaults):
        logger.debug("pod %s already carries container %s", pod_name, defaults.container_name)
        return []

    working = copy.deepcopy(pod)
    annotations = pod_annotations(working)
    socket_mount = ensure_socket_volume(working, defaults)
    extra_mounts = resolve_extra_mounts(working)
    # Raw list so patch indices line up with the pod, malformed entries included.
    app_containers = _raw_containers(working)

    sidecar_config = SidecarConfig(
        app_id=ann.get_string(annotations, ann.KEY_APP_ID) or pod_name,
        annotations=annotations,
        sidecar_image=config.sidecar_image,
        image_pull_policy=config.sidecar_image_pull_policy,
        namespace=metadata.get("namespace") or "default",
        control_plane_address=config.control_plane_address,
        placement_address=config.placement_address,
        sentry_address=config.sentry_address,
        mtls_enabled=config.mtls_enabled,
        identity=workload_identity(pod),
        socket_volume_mount=socket_mount,
        tolerations=tuple(_spec(working).get("tolerations") or ()),
        ignore_entrypoint_tolerations=config.ignore_entrypoint_tolerations,
        trust_anchors=config.trust_anchors,
        cert_chain=config.cert_chain,
        cert_key=config.cert_key,
        defaults=defaults,
    )
    sidecar = build_sidecar_container(sidecar_config)
    mounted = {mount.get("name") for mount in sidecar.volume_mounts}
    for mount in extra_mounts:
        if mount["name"] not in mounted:
            sidecar.volume_mounts.append(mount)
            mounted.add(mount["name"])

    ops: List[Dict[str, Any]] = []
    if socket_mount is not None:
        ops.append({"op": "add", "path": "/spec/volumes", "value": _spec(working)["volumes"]})
    if isinstance(_spec(working).get("containers"), list):
        ops.append({"op": "add", "path": "/spec/containers/-", "value": sidecar.to_dict()})
    else:
        ops.append({"op": "add", "path": "/spec/containers", "value": [sidecar.to_dict()]})
    ops.extend(add_env_vars_to_containers(app_containers, app_container_env(defaults)))
    ops.extend(add_volume_mounts_to_containers(app_containers, socket_mount))
    logger.info("injecting %s into pod %s with %d patch operation(s)", defaults.container_name, pod_name, len(ops))
    return ops


__all__ = [
    "get_pod_patch_operations",
    "injection_enabled",
    "sidecar_present",
    "workload_identity",
]
