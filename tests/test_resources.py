"""Tests for building the deployment objects."""

from typing import Any

import pytest

from csi_driver_lvm.exceptions import ImageResolutionError, InvalidConfigError
from csi_driver_lvm.image import ImageReference, ImageResolver, ImageVector
from csi_driver_lvm.merge import MergedConfig
from csi_driver_lvm.resources import (
    CONTROLLER_NAME,
    IMAGE_NAMES,
    PLUGIN_NAME,
    DesiredObjectSet,
    build,
    lvm_host_paths,
)

NAMESPACE = "kube-system"
MERGED = MergedConfig(host_write_path="/data/lvm", device_pattern="/dev/sd*")


class RecordingResolver(ImageResolver):
    """Resolver that records lookups and fails on a configured name."""

    def __init__(self, vector: ImageVector, missing: str | None = None) -> None:
        self._vector = vector
        self._missing = missing
        self.calls: list[str] = []

    def resolve(self, name: str) -> ImageReference:
        self.calls.append(name)
        if name == self._missing:
            raise ImageResolutionError(name, "not in vector")
        return self._vector.resolve(name)


def find(objects: list[dict[str, Any]], kind: str, name: str | None = None) -> dict[str, Any]:
    matches = [
        obj
        for obj in objects
        if obj["kind"] == kind and (name is None or obj["metadata"]["name"] == name)
    ]
    assert len(matches) == 1, f"Expected one {kind} {name}, got {len(matches)}"
    return matches[0]


def containers(workload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        container["name"]: container
        for container in workload["spec"]["template"]["spec"]["containers"]
    }


def test_build_is_deterministic(image_vector: ImageVector) -> None:
    """Test equal inputs produce equal object sets."""
    first = build(MERGED, NAMESPACE, image_vector)
    second = build(MERGED, NAMESPACE, image_vector)
    assert first == second
    assert first.objects == second.objects


def test_build_object_inventory(image_vector: ImageVector) -> None:
    """Test the kinds of objects in each tier."""
    desired = build(MERGED, NAMESPACE, image_vector)
    assert [(obj["kind"], obj["metadata"]["name"]) for obj in desired.controller] == [
        ("ServiceAccount", CONTROLLER_NAME),
        ("ClusterRole", CONTROLLER_NAME),
        ("ClusterRoleBinding", CONTROLLER_NAME),
        ("StatefulSet", CONTROLLER_NAME),
    ]
    assert [(obj["kind"], obj["metadata"]["name"]) for obj in desired.plugin] == [
        ("CSIDriver", "csi-driver-lvm"),
        ("ServiceAccount", PLUGIN_NAME),
        ("ClusterRole", PLUGIN_NAME),
        ("ClusterRoleBinding", PLUGIN_NAME),
        ("StorageClass", "csi-lvm"),
        ("StorageClass", "csi-driver-lvm-linear"),
        ("StorageClass", "csi-driver-lvm-mirror"),
        ("StorageClass", "csi-driver-lvm-striped"),
        ("DaemonSet", PLUGIN_NAME),
    ]
    assert len(desired) == 13


def test_namespaced_objects_use_namespace(image_vector: ImageVector) -> None:
    """Test namespaced objects are placed in the target namespace."""
    desired = build(MERGED, "other", image_vector)
    for kind in ("ServiceAccount", "StatefulSet", "DaemonSet"):
        for obj in desired.objects:
            if obj["kind"] == kind:
                assert obj["metadata"]["namespace"] == "other"
    binding = find(desired.objects, "ClusterRoleBinding", PLUGIN_NAME)
    assert binding["subjects"][0]["namespace"] == "other"
    assert "namespace" not in find(desired.objects, "ClusterRole", PLUGIN_NAME)["metadata"]


def test_driver_args(image_vector: ImageVector) -> None:
    """Test the plugin container receives the merged config."""
    desired = build(MERGED, NAMESPACE, image_vector)
    plugin = containers(find(desired.objects, "DaemonSet"))[PLUGIN_NAME]
    assert plugin["image"] == "example.com/csi-driver-lvm:v1.0.0"
    assert "--hostwritepath=/data/lvm" in plugin["args"]
    assert "--devices=/dev/sd*" in plugin["args"]
    assert (
        "--provisionerImage=example.com/csi-driver-lvm-provisioner:v1.0.0"
        in plugin["args"]
    )
    assert "--drivername=lvm.csi.metal-stack.io" in plugin["args"]


def test_liveness_probe(image_vector: ImageVector) -> None:
    """Test the plugin liveness probe settings."""
    desired = build(MERGED, NAMESPACE, image_vector)
    plugin = containers(find(desired.objects, "DaemonSet"))[PLUGIN_NAME]
    assert plugin["livenessProbe"] == {
        "failureThreshold": 5,
        "initialDelaySeconds": 10,
        "periodSeconds": 2,
        "successThreshold": 1,
        "timeoutSeconds": 3,
        "httpGet": {"path": "/healthz", "port": 9898, "scheme": "HTTP"},
    }
    assert plugin["ports"] == [
        {"name": "healthz", "protocol": "TCP", "containerPort": 9898}
    ]


def test_lvm_host_paths(image_vector: ImageVector) -> None:
    """Test the lvm metadata directories live below the host write path."""
    desired = build(MERGED, NAMESPACE, image_vector)
    daemonset = find(desired.objects, "DaemonSet")
    volumes = {
        volume["name"]: volume["hostPath"]["path"]
        for volume in daemonset["spec"]["template"]["spec"]["volumes"]
    }
    assert volumes["lvmlock"] == "/data/lvm/lock"
    assert volumes["lvmbackup"] == "/data/lvm/backup"
    assert volumes["lvmcache"] == "/data/lvm/cache"
    assert volumes["lvmarchive"] == "/data/lvm/archive"


def test_lvm_host_paths_trailing_slash() -> None:
    """Test a trailing slash does not produce a double slash."""
    assert lvm_host_paths("/data/lvm/")["lvmlock"] == "/data/lvm/lock"


def test_storage_classes(image_vector: ImageVector) -> None:
    """Test the storage classes offered by the driver."""
    desired = build(MERGED, NAMESPACE, image_vector)
    classes = {
        obj["metadata"]["name"]: obj for obj in desired.objects if obj["kind"] == "StorageClass"
    }
    assert {name: sc["parameters"]["type"] for name, sc in classes.items()} == {
        "csi-lvm": "linear",
        "csi-driver-lvm-linear": "linear",
        "csi-driver-lvm-mirror": "mirror",
        "csi-driver-lvm-striped": "striped",
    }
    for storage_class in classes.values():
        assert storage_class["provisioner"] == "lvm.csi.metal-stack.io"
        assert storage_class["volumeBindingMode"] == "WaitForFirstConsumer"
        assert storage_class["allowVolumeExpansion"] is True


def test_controller_statefulset(image_vector: ImageVector) -> None:
    """Test the controller runs a single replica with anti-affinity."""
    desired = build(MERGED, NAMESPACE, image_vector)
    statefulset = find(desired.objects, "StatefulSet", CONTROLLER_NAME)
    assert statefulset["spec"]["replicas"] == 1
    affinity = statefulset["spec"]["template"]["spec"]["affinity"]
    term = affinity["podAntiAffinity"]["requiredDuringSchedulingIgnoredDuringExecution"][0]
    assert term["topologyKey"] == "kubernetes.io/hostname"
    assert term["labelSelector"]["matchExpressions"][0]["values"] == [CONTROLLER_NAME]
    assert {name: c["image"] for name, c in containers(statefulset).items()} == {
        "csi-attacher": "example.com/csi-attacher:v1.0.0",
        "csi-resizer": "example.com/csi-resizer:v1.0.0",
    }


def test_cluster_role_rules(image_vector: ImageVector) -> None:
    """Test the cluster roles grant access to storage classes."""
    desired = build(MERGED, NAMESPACE, image_vector)
    role = find(desired.objects, "ClusterRole", CONTROLLER_NAME)
    resources = [rule["resources"][0] for rule in role["rules"]]
    assert "storageclasses" in resources
    assert "volumeattachments/status" in resources


@pytest.mark.parametrize("missing", IMAGE_NAMES)
def test_missing_image_builds_nothing(image_vector: ImageVector, missing: str) -> None:
    """Test any unresolvable image aborts the whole build."""
    resolver = RecordingResolver(image_vector, missing=missing)
    with pytest.raises(ImageResolutionError, match=missing):
        build(MERGED, NAMESPACE, resolver)
    assert resolver.calls[-1] == missing


def test_empty_host_write_path(image_vector: ImageVector) -> None:
    """Test an empty host write path is rejected before resolving images."""
    resolver = RecordingResolver(image_vector)
    with pytest.raises(InvalidConfigError, match="hostWritePath"):
        build(MergedConfig(host_write_path="", device_pattern="/dev/sd*"), NAMESPACE, resolver)
    assert resolver.calls == []


def test_empty_device_pattern_is_passed_through(image_vector: ImageVector) -> None:
    """Test an empty device pattern is handed to the driver unchanged."""
    desired = build(
        MergedConfig(host_write_path="/etc/lvm", device_pattern=""), NAMESPACE, image_vector
    )
    plugin = containers(find(desired.objects, "DaemonSet"))[PLUGIN_NAME]
    assert "--devices=" in plugin["args"]


def test_desired_object_set_dedupes() -> None:
    """Test objects are unique by kind and name with the first one kept."""
    first = {"kind": "ServiceAccount", "metadata": {"name": "a", "namespace": "x"}}
    second = {"kind": "ServiceAccount", "metadata": {"name": "a", "namespace": "y"}}
    other = {"kind": "ClusterRole", "metadata": {"name": "a"}}
    desired = DesiredObjectSet.create([first, other], [second])
    assert desired.controller == (first, other)
    assert desired.plugin == ()
    assert len(desired) == 2
