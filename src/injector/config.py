from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import TypeAdapter, ValidationError

DEFAULT_CONTROL_PLANE_NAMESPACE = "dapr-system"
DEFAULT_CLUSTER_DOMAIN = "cluster.local"

API_SERVICE = "dapr-api"
API_PORT = 80
PLACEMENT_SERVICE = "dapr-placement-server"
PLACEMENT_PORT = 50005
SENTRY_SERVICE = "dapr-sentry"
SENTRY_PORT = 80

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class InjectorConfig:
    sidecar_image: str = ""
    sidecar_image_pull_policy: str = ""
    namespace: str = DEFAULT_CONTROL_PLANE_NAMESPACE
    kube_cluster_domain: str = DEFAULT_CLUSTER_DOMAIN
    ignore_entrypoint_tolerations: str = ""
    mtls_enabled: bool = True
    trust_anchors: str = ""
    cert_chain: str = ""
    cert_key: str = ""

    def _service_address(self, service: str, port: int) -> str:
        return f"{service}.{self.namespace}.svc.{self.kube_cluster_domain}:{port}"

    @property
    def control_plane_address(self) -> str:
        return self._service_address(API_SERVICE, API_PORT)

    @property
    def placement_address(self) -> str:
        return self._service_address(PLACEMENT_SERVICE, PLACEMENT_PORT)

    @property
    def sentry_address(self) -> str:
        return self._service_address(SENTRY_SERVICE, SENTRY_PORT)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "InjectorConfig":
        env = os.environ if environ is None else environ
        mtls_raw = env.get("MTLS_ENABLED")
        return cls(
            sidecar_image=env.get("SIDECAR_IMAGE", ""),
            sidecar_image_pull_policy=env.get("SIDECAR_IMAGE_PULL_POLICY", ""),
            namespace=env.get("NAMESPACE") or DEFAULT_CONTROL_PLANE_NAMESPACE,
            kube_cluster_domain=env.get("KUBE_CLUSTER_DOMAIN") or DEFAULT_CLUSTER_DOMAIN,
            ignore_entrypoint_tolerations=env.get("IGNORE_ENTRYPOINT_TOLERATIONS", ""),
            mtls_enabled=True if mtls_raw is None else mtls_raw.strip().lower() in _TRUTHY,
            trust_anchors=env.get("TRUST_ANCHORS", ""),
            cert_chain=env.get("CERT_CHAIN", ""),
            cert_key=env.get("CERT_KEY", ""),
        )

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "InjectorConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown injector config keys: {', '.join(unknown)}")
        try:
            return _CONFIG_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise ValueError(f"invalid injector config: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: Path) -> "InjectorConfig":
        if not path.exists():
            raise FileNotFoundError(f"Injector config not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Injector config is not valid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("Injector config must be a mapping")
        section = data.get("injector", data)
        if not isinstance(section, dict):
            raise ValueError("'injector' section must be a mapping")
        return cls.from_mapping(section)


_CONFIG_ADAPTER = TypeAdapter(InjectorConfig)


__all__ = ["InjectorConfig"]
