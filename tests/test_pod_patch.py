import copy

import jsonpatch
import pytest
import yaml

from src.injector.config import InjectorConfig
from src.injector.guards import InjectionError, validate_patch_applies
from src.injector.pod_patch import get_pod_patch_operations, workload_identity

ANNOTATED_POD = """
apiVersion: v1
kind: Pod
metadata:
  name: orders
  namespace: shop
  annotations:
    dapr.io/enabled: "true"
    dapr.io/app-id: orders-api
    dapr.io/app-port: "8080"
    dapr.io/unix-domain-socket-path: /tmp/dapr
    dapr.io/volume-mounts: certs:/etc/certs,missing:/nowhere
spec:
  serviceAccountName: orders-sa
  tolerations:
    - key: sandbox.gke.io/runtime
      effect: NoSchedule
  containers:
    - name: app
      image: shop/orders:1.4.2
      env:
        - name: DAPR_GRPC_PORT
          value: "60001"
    - name: worker
      image: shop/worker:1.4.2
  volumes:
    - name: certs
      secret:
        secretName: orders-certs
"""

PLAIN_POD = """
apiVersion: v1
kind: Pod
metadata:
  name: plain
spec:
  containers:
    - name: app
      image: nginx:1.25
"""


def _config() -> InjectorConfig:
    return InjectorConfig(
        sidecar_image="docker.io/daprio/daprd:1.10.0",
        namespace="dapr-system",
        ignore_entrypoint_tolerations='[{"key":"sandbox.gke.io/runtime","effect":"NoSchedule"}]',
    )


class TestPodPatchOperations:
    def setup_method(self) -> None:
        self.pod = yaml.safe_load(ANNOTATED_POD)

    def test_injection_disabled_returns_nothing(self) -> None:
        assert get_pod_patch_operations(yaml.safe_load(PLAIN_POD), _config()) == []

    def test_input_pod_is_not_mutated(self) -> None:
        original = copy.deepcopy(self.pod)
        get_pod_patch_operations(self.pod, _config())
        assert self.pod == original

    def test_operation_order_and_paths(self) -> None:
        ops = get_pod_patch_operations(self.pod, _config())
        assert [op["path"] for op in ops] == [
            "/spec/volumes",
            "/spec/containers/-",
            "/spec/containers/0/env/-",
            "/spec/containers/1/env",
            "/spec/containers/0/volumeMounts",
            "/spec/containers/1/volumeMounts",
        ]
        assert all(op["op"] == "add" for op in ops)
        assert [v["name"] for v in ops[0]["value"]] == ["dapr-unix-domain-socket", "certs"]
        # DAPR_GRPC_PORT is already declared by the user and must not be overridden.
        assert ops[2]["value"] == {"name": "DAPR_HTTP_PORT", "value": "3500"}

    def test_sidecar_container(self) -> None:
        ops = get_pod_patch_operations(self.pod, _config())
        sidecar = ops[1]["value"]
        assert sidecar["name"] == "daprd"
        assert sidecar["image"] == "docker.io/daprio/daprd:1.10.0"
        assert sidecar["command"] == ["/daprd"]
        args = sidecar["args"]
        assert args[args.index("--app-id") + 1] == "orders-api"
        assert args[args.index("--app-port") + 1] == "8080"
        assert args[args.index("--control-plane-address") + 1] == "dapr-api.dapr-system.svc.cluster.local:80"
        assert args[args.index("--placement-host-address") + 1] == (
            "dapr-placement-server.dapr-system.svc.cluster.local:50005"
        )
        assert args[-1] == "--enable-mtls"
        assert sidecar["volumeMounts"] == [
            {"name": "dapr-unix-domain-socket", "mountPath": "/tmp/dapr"},
            {"name": "certs", "mountPath": "/etc/certs", "readOnly": True},
        ]
        env = {entry["name"]: entry for entry in sidecar["env"]}
        assert env["NAMESPACE"]["value"] == "shop"
        assert env["SENTRY_LOCAL_IDENTITY"]["value"] == "shop:orders-sa"

    def test_patch_applies_and_reinjection_is_a_noop(self) -> None:
        ops = get_pod_patch_operations(self.pod, _config())
        patched = validate_patch_applies(self.pod, ops)
        assert [c["name"] for c in patched["spec"]["containers"]] == ["app", "worker", "daprd"]
        assert get_pod_patch_operations(patched, _config()) == []

    def test_pod_without_containers_gets_creation_form(self) -> None:
        pod = {"metadata": {"name": "bare", "annotations": {"dapr.io/enabled": "true"}}, "spec": {}}
        ops = get_pod_patch_operations(pod, _config())
        assert ops[0]["path"] == "/spec/containers"
        patched = jsonpatch.apply_patch(pod, ops, in_place=False)
        sidecar = patched["spec"]["containers"][0]
        assert sidecar["name"] == "daprd"
        assert sidecar["args"][sidecar["args"].index("--app-id") + 1] == "bare"

    def test_unquoted_annotation_values_are_read_as_text(self) -> None:
        annotations = self.pod["metadata"]["annotations"]
        annotations["dapr.io/enabled"] = True
        annotations["dapr.io/app-port"] = 8080
        annotations["dapr.io/enable-metrics"] = False
        ops = get_pod_patch_operations(self.pod, _config())
        args = ops[1]["value"]["args"]
        assert args[args.index("--app-port") + 1] == "8080"
        assert "--enable-metrics=false" in args

    def test_malformed_container_entry_does_not_shift_paths(self) -> None:
        self.pod["spec"]["containers"].insert(0, "garbage")
        ops = get_pod_patch_operations(self.pod, _config())
        assert [op["path"] for op in ops[2:]] == [
            "/spec/containers/1/env/-",
            "/spec/containers/2/env",
            "/spec/containers/1/volumeMounts",
            "/spec/containers/2/volumeMounts",
        ]

    def test_invalid_image_annotation_propagates(self) -> None:
        self.pod["metadata"]["annotations"]["dapr.io/sidecar-image"] = "Bad Image"
        with pytest.raises(InjectionError):
            get_pod_patch_operations(self.pod, _config())

    def test_workload_identity_defaults(self) -> None:
        assert workload_identity({}) == "default:default"


class TestValidatePatchApplies:
    def test_rejects_non_add_operations(self) -> None:
        with pytest.raises(InjectionError):
            validate_patch_applies({"spec": {}}, [{"op": "remove", "path": "/spec"}])

    def test_rejects_bad_paths(self) -> None:
        ops = [{"op": "add", "path": "/spec/containers/3/env/-", "value": {"name": "A"}}]
        with pytest.raises(InjectionError):
            validate_patch_applies({"spec": {"containers": []}}, ops)
