"""Sidecar injector package: builds the daprd container and pod patches."""

from .guards import InjectionError
from .pod_patch import get_pod_patch_operations
from .sidecar import ContainerSpec, SidecarConfig, build_sidecar_container

__all__ = [
    "ContainerSpec",
    "InjectionError",
    "SidecarConfig",
    "build_sidecar_container",
    "get_pod_patch_operations",
]
