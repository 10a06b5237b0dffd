"""Build the cluster objects that make up the csi-driver-lvm deployment.

The objects are split into a controller tier, a single attacher/resizer pod
pinned by anti-affinity, and a node tier, a DaemonSet that registers the
driver with the kubelet of every node together with the storage classes. The
output only depends on the merged config, the namespace and the answers of
the image resolver so that repeated builds produce identical objects.
"""

from dataclasses import dataclass, field
import logging
from typing import Any

from .exceptions import InvalidConfigError
from .image import ImageResolver
from .merge import MergedConfig

__all__ = [
    "DesiredObjectSet",
    "build",
    "controller_objects",
    "plugin_objects",
    "resolve_images",
]

_LOGGER = logging.getLogger(__name__)

DRIVER_NAME = "lvm.csi.metal-stack.io"
VOLUME_GROUP = "csi-lvm"
CONTROLLER_NAME = "csi-driver-lvm-controller"
PLUGIN_NAME = "csi-driver-lvm-plugin"
CSI_DRIVER_NAME = "csi-driver-lvm"
DEFAULT_STORAGE_CLASS = "csi-lvm"
PULL_POLICY = "IfNotPresent"

SOCKET_DIR = "/var/lib/kubelet/plugins/csi-driver-lvm"
CSI_ADDRESS = "/csi/csi.sock"
HEALTH_PORT = 9898
HEALTH_PATH = "/healthz"

IMAGE_ATTACHER = "csi-attacher"
IMAGE_RESIZER = "csi-resizer"
IMAGE_REGISTRAR = "csi-node-driver-registrar"
IMAGE_LIVENESSPROBE = "livenessprobe"
IMAGE_DRIVER = "csi-driver-lvm"
IMAGE_PROVISIONER = "csi-driver-lvm-provisioner"

# Resolution order; the first missing image aborts the build.
IMAGE_NAMES = (
    IMAGE_ATTACHER,
    IMAGE_RESIZER,
    IMAGE_REGISTRAR,
    IMAGE_LIVENESSPROBE,
    IMAGE_DRIVER,
    IMAGE_PROVISIONER,
)

# Volume name and host path suffix for each lvm metadata directory
LVM_DIRS = (
    ("lvmbackup", "backup"),
    ("lvmcache", "cache"),
    ("lvmarchive", "archive"),
    ("lvmlock", "lock"),
)

STORAGE_CLASSES = (
    (DEFAULT_STORAGE_CLASS, "linear"),
    ("csi-driver-lvm-linear", "linear"),
    ("csi-driver-lvm-mirror", "mirror"),
    ("csi-driver-lvm-striped", "striped"),
)

READ_WRITE_VERBS = ["get", "list", "watch", "update", "patch"]
ALL_VERBS = ["get", "list", "watch", "update", "patch", "create", "delete"]
READ_VERBS = ["get", "list", "watch"]

CONTROLLER_RULES = [
    ("", "persistentvolumes", ALL_VERBS),
    ("storage.k8s.io", "csinodes", READ_VERBS),
    ("storage.k8s.io", "volumeattachments", READ_WRITE_VERBS),
    ("", "persistentvolumeclaims", READ_WRITE_VERBS),
    ("", "persistentvolumeclaims/status", ["update", "patch"]),
    ("storage.k8s.io", "storageclasses", READ_VERBS),
    ("", "events", ALL_VERBS),
    ("", "nodes", READ_VERBS),
    ("storage.k8s.io", "volumeattachments/status", ["patch"]),
    ("", "pods", READ_VERBS),
]

PLUGIN_RULES = [
    ("", "persistentvolumes", ALL_VERBS),
    ("", "persistentvolumeclaims", READ_VERBS),
    ("", "persistentvolumeclaims/status", ["update", "patch"]),
    ("", "events", ["list", "watch", "update", "patch", "create"]),
    ("", "nodes", READ_VERBS),
    ("", "pods", ["get", "list", "watch", "create", "delete"]),
]


def _object_key(obj: dict[str, Any]) -> tuple[str, str]:
    return (obj["kind"], obj["metadata"]["name"])


def _dedupe(objects: list[dict[str, Any]], seen: set[tuple[str, str]]) -> tuple[dict[str, Any], ...]:
    result = []
    for obj in objects:
        if (key := _object_key(obj)) in seen:
            _LOGGER.debug("Skipping duplicate object %s/%s", *key)
            continue
        seen.add(key)
        result.append(obj)
    return tuple(result)


@dataclass(frozen=True)
class DesiredObjectSet:
    """The objects to synchronize, partitioned by workload tier.

    Objects are unique by (kind, name); the first occurrence wins.
    """

    controller: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    plugin: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def create(
        cls, controller: list[dict[str, Any]], plugin: list[dict[str, Any]]
    ) -> "DesiredObjectSet":
        seen: set[tuple[str, str]] = set()
        return cls(controller=_dedupe(controller, seen), plugin=_dedupe(plugin, seen))

    @property
    def objects(self) -> list[dict[str, Any]]:
        """Return all objects, controller tier first."""
        return [*self.controller, *self.plugin]

    def __len__(self) -> int:
        return len(self.controller) + len(self.plugin)


def resolve_images(resolver: ImageResolver) -> dict[str, str]:
    """Resolve every image used by the deployment.

    Raises ImageResolutionError for the first name that cannot be resolved.
    """
    return {name: str(resolver.resolve(name)) for name in IMAGE_NAMES}


def _metadata(name: str, namespace: str | None = None) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name}
    if namespace is not None:
        metadata["namespace"] = namespace
    return metadata


def _service_account(name: str, namespace: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(name, namespace),
    }


def _cluster_role(name: str, rules: list[tuple[str, str, list[str]]]) -> dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRole",
        "metadata": _metadata(name),
        "rules": [
            {"apiGroups": [group], "resources": [resource], "verbs": list(verbs)}
            for group, resource, verbs in rules
        ],
    }


def _cluster_role_binding(name: str, namespace: str) -> dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": _metadata(name),
        "subjects": [
            {"kind": "ServiceAccount", "name": name, "namespace": namespace}
        ],
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": name,
        },
    }


def _host_path_volume(name: str, path: str, path_type: str | None = None) -> dict[str, Any]:
    host_path: dict[str, Any] = {"path": path}
    if path_type:
        host_path["type"] = path_type
    return {"name": name, "hostPath": host_path}


def _node_name_env() -> list[dict[str, Any]]:
    return [
        {
            "name": "KUBE_NODE_NAME",
            "valueFrom": {
                "fieldRef": {"apiVersion": "v1", "fieldPath": "spec.nodeName"}
            },
        }
    ]


def _container(
    name: str,
    image: str,
    args: list[str],
    security_context: dict[str, Any],
    volume_mounts: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "name": name,
        "image": image,
        "imagePullPolicy": PULL_POLICY,
        "args": args,
        "securityContext": security_context,
        "volumeMounts": volume_mounts,
    }


def _storage_class(name: str, lvm_type: str) -> dict[str, Any]:
    return {
        "apiVersion": "storage.k8s.io/v1",
        "kind": "StorageClass",
        "metadata": _metadata(name),
        "provisioner": DRIVER_NAME,
        "reclaimPolicy": "Delete",
        "volumeBindingMode": "WaitForFirstConsumer",
        "allowVolumeExpansion": True,
        "parameters": {"type": lvm_type},
    }


def controller_objects(namespace: str, images: dict[str, str]) -> list[dict[str, Any]]:
    """Return the attacher/resizer controller objects."""
    socket_mount = [{"mountPath": "/csi", "name": "socket-dir"}]
    statefulset = {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": _metadata(CONTROLLER_NAME, namespace),
        "spec": {
            "replicas": 1,
            "serviceName": CONTROLLER_NAME,
            "selector": {"matchLabels": {"app": CONTROLLER_NAME}},
            "template": {
                "metadata": {"labels": {"app": CONTROLLER_NAME}},
                "spec": {
                    "affinity": {
                        "podAntiAffinity": {
                            "requiredDuringSchedulingIgnoredDuringExecution": [
                                {
                                    "labelSelector": {
                                        "matchExpressions": [
                                            {
                                                "key": "app",
                                                "operator": "In",
                                                "values": [CONTROLLER_NAME],
                                            }
                                        ]
                                    },
                                    "topologyKey": "kubernetes.io/hostname",
                                }
                            ]
                        }
                    },
                    "serviceAccountName": CONTROLLER_NAME,
                    "containers": [
                        _container(
                            IMAGE_ATTACHER,
                            images[IMAGE_ATTACHER],
                            ["--v=5", f"--csi-address={CSI_ADDRESS}", "--feature-gates=Topology=true"],
                            {"readOnlyRootFilesystem": True, "privileged": True},
                            socket_mount,
                        ),
                        _container(
                            IMAGE_RESIZER,
                            images[IMAGE_RESIZER],
                            ["--v=5", f"--csi-address={CSI_ADDRESS}"],
                            {"readOnlyRootFilesystem": True, "privileged": True},
                            socket_mount,
                        ),
                    ],
                    "volumes": [
                        _host_path_volume("socket-dir", SOCKET_DIR, "DirectoryOrCreate")
                    ],
                },
            },
        },
    }
    return [
        _service_account(CONTROLLER_NAME, namespace),
        _cluster_role(CONTROLLER_NAME, CONTROLLER_RULES),
        _cluster_role_binding(CONTROLLER_NAME, namespace),
        statefulset,
    ]


def lvm_host_paths(host_write_path: str) -> dict[str, str]:
    """Return the host path of each lvm metadata volume."""
    base = host_write_path.rstrip("/")
    return {volume: f"{base}/{suffix}" for volume, suffix in LVM_DIRS}


def _driver_args(merged: MergedConfig, provisioner_image: str) -> list[str]:
    return [
        f"--drivername={DRIVER_NAME}",
        f"--endpoint=unix://{CSI_ADDRESS}",
        f"--hostwritepath={merged.host_write_path}",
        f"--devices={merged.device_pattern}",
        "--nodeid=$(KUBE_NODE_NAME)",
        f"--vgname={VOLUME_GROUP}",
        "--namespace=kube-system",
        f"--provisionerImage={provisioner_image}",
        f"--pullpolicy={PULL_POLICY}",
    ]


def _daemonset(namespace: str, merged: MergedConfig, images: dict[str, str]) -> dict[str, Any]:
    bidirectional = {"mountPropagation": "Bidirectional"}
    host_paths = lvm_host_paths(merged.host_write_path)

    registrar = _container(
        IMAGE_REGISTRAR,
        images[IMAGE_REGISTRAR],
        [
            "--v=5",
            f"--csi-address={CSI_ADDRESS}",
            f"--kubelet-registration-path={SOCKET_DIR}/csi.sock",
        ],
        {"readOnlyRootFilesystem": False},
        [
            {"mountPath": "/csi", "name": "socket-dir"},
            {"mountPath": f"{SOCKET_DIR}/csi.sock", "name": "socket-dir"},
            {"mountPath": "/registration", "name": "registration-dir"},
        ],
    )
    registrar["env"] = _node_name_env()

    plugin = _container(
        PLUGIN_NAME,
        images[IMAGE_DRIVER],
        _driver_args(merged, images[IMAGE_PROVISIONER]),
        {"readOnlyRootFilesystem": False, "privileged": True},
        [
            {"mountPath": "/csi", "name": "socket-dir"},
            {"mountPath": "/var/lib/kubelet/pods", "name": "mountpoint-dir", **bidirectional},
            {"mountPath": "/var/lib/kubelet/plugins", "name": "plugins-dir", **bidirectional},
            {"mountPath": "/dev", "name": "dev-dir", **bidirectional},
            {"mountPath": "/lib/modules", "name": "mod-dir"},
        ]
        + [
            {"mountPath": f"/etc/lvm/{suffix}", "name": volume, **bidirectional}
            for volume, suffix in LVM_DIRS
        ],
    )
    plugin["env"] = _node_name_env()
    plugin["livenessProbe"] = {
        "failureThreshold": 5,
        "initialDelaySeconds": 10,
        "periodSeconds": 2,
        "successThreshold": 1,
        "timeoutSeconds": 3,
        "httpGet": {"path": HEALTH_PATH, "port": HEALTH_PORT, "scheme": "HTTP"},
    }
    plugin["ports"] = [
        {"name": "healthz", "protocol": "TCP", "containerPort": HEALTH_PORT}
    ]

    livenessprobe = _container(
        IMAGE_LIVENESSPROBE,
        images[IMAGE_LIVENESSPROBE],
        [f"--csi-address={CSI_ADDRESS}", f"--health-port={HEALTH_PORT}"],
        {"readOnlyRootFilesystem": True},
        [{"mountPath": "/csi", "name": "socket-dir"}],
    )

    volumes = [
        _host_path_volume("socket-dir", SOCKET_DIR, "DirectoryOrCreate"),
        _host_path_volume("mountpoint-dir", "/var/lib/kubelet/pods", "DirectoryOrCreate"),
        _host_path_volume("registration-dir", "/var/lib/kubelet/plugins_registry", "Directory"),
        _host_path_volume("plugins-dir", "/var/lib/kubelet/plugins", "Directory"),
        _host_path_volume("dev-dir", "/dev", "Directory"),
        _host_path_volume("mod-dir", "/lib/modules"),
    ] + [
        _host_path_volume(volume, host_paths[volume], "DirectoryOrCreate")
        for volume, _ in LVM_DIRS
    ]

    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": _metadata(PLUGIN_NAME, namespace),
        "spec": {
            "revisionHistoryLimit": 10,
            "selector": {"matchLabels": {"app": PLUGIN_NAME}},
            "template": {
                "metadata": {"labels": {"app": PLUGIN_NAME}},
                "spec": {
                    "serviceAccountName": PLUGIN_NAME,
                    "containers": [registrar, plugin, livenessprobe],
                    "volumes": volumes,
                },
            },
        },
    }


def plugin_objects(
    namespace: str, merged: MergedConfig, images: dict[str, str]
) -> list[dict[str, Any]]:
    """Return the node plugin objects and the storage classes."""
    csi_driver = {
        "apiVersion": "storage.k8s.io/v1",
        "kind": "CSIDriver",
        "metadata": _metadata(CSI_DRIVER_NAME),
        "spec": {
            "volumeLifecycleModes": ["Persistent", "Ephemeral"],
            "podInfoOnMount": True,
            "attachRequired": False,
        },
    }
    return [
        csi_driver,
        _service_account(PLUGIN_NAME, namespace),
        _cluster_role(PLUGIN_NAME, PLUGIN_RULES),
        _cluster_role_binding(PLUGIN_NAME, namespace),
        *(_storage_class(name, lvm_type) for name, lvm_type in STORAGE_CLASSES),
        _daemonset(namespace, merged, images),
    ]


def build(
    merged: MergedConfig, namespace: str, resolver: ImageResolver
) -> DesiredObjectSet:
    """Build the desired objects for the merged config.

    Nothing is returned unless every image resolves; an empty host write path
    is rejected with InvalidConfigError.
    """
    if not merged.host_write_path:
        raise InvalidConfigError(
            "hostWritePath is empty: set it in the provider config or configure defaultHostWritePath"
        )
    images = resolve_images(resolver)
    desired = DesiredObjectSet.create(
        controller_objects(namespace, images),
        plugin_objects(namespace, merged, images),
    )
    _LOGGER.debug(
        "Built %d controller and %d plugin objects",
        len(desired.controller),
        len(desired.plugin),
    )
    return desired
