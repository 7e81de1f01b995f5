"""
The desired-state builder turns a RolloutManagerSpec into the ordered list of
manifests the operator manages. It is deterministic and performs no I/O.
"""

# Standard
from dataclasses import dataclass
from typing import Dict, List, Optional
import copy

# First Party
import alog

# Local
from . import constants
from .api import RolloutManagerSpec
from .metadata import provenance_annotation

log = alog.use_channel("DSRD")

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"
RBAC_API_GROUP = "rbac.authorization.k8s.io"


@dataclass(frozen=True)
class ResourceId:
    """Identifier of a single managed object"""

    api_version: str
    kind: str
    name: str
    namespace: Optional[str]

    @classmethod
    def from_manifest(cls, manifest: dict) -> "ResourceId":
        metadata = manifest.get("metadata", {})
        return cls(
            api_version=manifest["apiVersion"],
            kind=manifest["kind"],
            name=metadata["name"],
            namespace=metadata.get("namespace"),
        )

    def __str__(self):
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


## Public ######################################################################


def build_desired_resources(spec: RolloutManagerSpec, namespace: str) -> List[dict]:
    """Build every manifest for the given spec, in reconciliation order

    Args:
        spec:  RolloutManagerSpec
            The parsed RolloutManager spec
        namespace:  str
            The namespace of the RolloutManager

    Returns:
        resources:  List[dict]
            ServiceAccount, Role or ClusterRole, RoleBinding or
            ClusterRoleBinding, ConfigMap, Secret (unless skipped),
            Deployment, metrics Service and ServiceMonitor
    """
    resources = [
        build_service_account(spec, namespace),
        build_role(spec, namespace),
        build_role_binding(spec, namespace),
        build_config_map(spec, namespace),
    ]
    if not spec.skip_notification_secret_deployment:
        resources.append(build_notification_secret(spec, namespace))
    resources.extend(
        [
            build_deployment(spec, namespace),
            build_metrics_service(spec, namespace),
            build_service_monitor(spec, namespace),
        ]
    )
    log.debug2("Built %d desired resources for [%s]", len(resources), namespace)
    return resources


def stale_resource_ids(spec: RolloutManagerSpec, namespace: str) -> List[ResourceId]:
    """Get the identifiers of managed objects that must not exist for the given
    spec: the RBAC objects of the other scope and the skipped Secret
    """
    if spec.namespace_scoped:
        stale = [
            ResourceId(RBAC_API_VERSION, "ClusterRole", constants.DEFAULT_RESOURCE_NAME, None),
            ResourceId(
                RBAC_API_VERSION, "ClusterRoleBinding", constants.DEFAULT_RESOURCE_NAME, None
            ),
        ]
    else:
        stale = [
            ResourceId(RBAC_API_VERSION, "Role", constants.DEFAULT_RESOURCE_NAME, namespace),
            ResourceId(
                RBAC_API_VERSION, "RoleBinding", constants.DEFAULT_RESOURCE_NAME, namespace
            ),
        ]
    if spec.skip_notification_secret_deployment:
        stale.append(
            ResourceId("v1", "Secret", constants.NOTIFICATION_SECRET_NAME, namespace)
        )
    return stale


def all_resource_ids(namespace: str) -> List[ResourceId]:
    """Get the identifiers of every object any spec could ever produce. The
    aggregate ClusterRoles are never included.
    """
    names = {
        "ConfigMap": constants.CONFIG_MAP_NAME,
        "Secret": constants.NOTIFICATION_SECRET_NAME,
        "Service": constants.METRICS_SERVICE_NAME,
    }
    return [
        ResourceId(
            api_version,
            kind,
            names.get(kind, constants.DEFAULT_RESOURCE_NAME),
            namespace if namespaced else None,
        )
        for api_version, kind, namespaced in constants.MANAGED_KINDS
    ]


def desired_image(spec: RolloutManagerSpec) -> str:
    """The container image: image:version when both are set, else the default"""
    if spec.image and spec.version:
        return f"{spec.image}:{spec.version}"
    return f"{constants.DEFAULT_IMAGE}:{constants.DEFAULT_VERSION}"


def desired_args(spec: RolloutManagerSpec) -> List[str]:
    """The container args. Extra args are kept in order, without deduplication."""
    args = [constants.NAMESPACED_ARG] if spec.namespace_scoped else []
    return args + list(spec.extra_command_args)


def desired_labels(
    spec: RolloutManagerSpec, overrides: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """Baseline labels with optional per-kind overrides, then the additional
    labels, which win
    """
    labels = dict(constants.BASELINE_LABELS)
    labels.update(overrides or {})
    labels.update(spec.additional_metadata.labels)
    return labels


def desired_annotations(spec: RolloutManagerSpec) -> Dict[str, str]:
    annotations = dict(spec.additional_metadata.annotations)
    annotations.update(provenance_annotation(spec.additional_metadata))
    return annotations


## Builders ####################################################################


def build_service_account(spec: RolloutManagerSpec, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(spec, constants.DEFAULT_RESOURCE_NAME, namespace),
    }


def build_role(spec: RolloutManagerSpec, namespace: str) -> dict:
    """Role when namespace-scoped, ClusterRole otherwise"""
    if spec.namespace_scoped:
        kind, role_namespace = "Role", namespace
    else:
        kind, role_namespace = "ClusterRole", None
    return {
        "apiVersion": RBAC_API_VERSION,
        "kind": kind,
        "metadata": _metadata(spec, constants.DEFAULT_RESOURCE_NAME, role_namespace),
        "rules": copy.deepcopy(CONTROLLER_POLICY_RULES),
    }


def build_role_binding(spec: RolloutManagerSpec, namespace: str) -> dict:
    """RoleBinding when namespace-scoped, ClusterRoleBinding otherwise"""
    if spec.namespace_scoped:
        kind, role_kind, binding_namespace = "RoleBinding", "Role", namespace
    else:
        kind, role_kind, binding_namespace = "ClusterRoleBinding", "ClusterRole", None
    return {
        "apiVersion": RBAC_API_VERSION,
        "kind": kind,
        "metadata": _metadata(spec, constants.DEFAULT_RESOURCE_NAME, binding_namespace),
        "roleRef": {
            "apiGroup": RBAC_API_GROUP,
            "kind": role_kind,
            "name": constants.DEFAULT_RESOURCE_NAME,
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": constants.DEFAULT_RESOURCE_NAME,
                "namespace": namespace,
            }
        ],
    }


def build_config_map(spec: RolloutManagerSpec, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _metadata(spec, constants.CONFIG_MAP_NAME, namespace),
    }


def build_notification_secret(spec: RolloutManagerSpec, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": _metadata(spec, constants.NOTIFICATION_SECRET_NAME, namespace),
    }


def build_deployment(spec: RolloutManagerSpec, namespace: str) -> dict:
    """Build the rollouts controller Deployment"""
    container = {
        "name": constants.CONTAINER_NAME,
        "image": desired_image(spec),
        "imagePullPolicy": "Always",
        "args": desired_args(spec),
        "ports": [
            {
                "name": constants.METRICS_PORT_NAME,
                "containerPort": constants.METRICS_PORT,
                "protocol": "TCP",
            },
            {
                "name": constants.HEALTHZ_PORT_NAME,
                "containerPort": constants.HEALTHZ_PORT,
                "protocol": "TCP",
            },
        ],
        "livenessProbe": {
            "httpGet": {"path": "/healthz", "port": constants.HEALTHZ_PORT_NAME},
            "initialDelaySeconds": 30,
            "periodSeconds": 20,
            "failureThreshold": 3,
            "successThreshold": 1,
            "timeoutSeconds": 10,
        },
        "readinessProbe": {
            "httpGet": {"path": "/metrics", "port": constants.METRICS_PORT_NAME},
            "initialDelaySeconds": 10,
            "periodSeconds": 5,
            "failureThreshold": 5,
            "successThreshold": 1,
            "timeoutSeconds": 4,
        },
        "securityContext": {
            "allowPrivilegeEscalation": False,
            "readOnlyRootFilesystem": True,
            "runAsNonRoot": True,
            "capabilities": {"drop": ["ALL"]},
        },
    }
    if spec.env:
        container["env"] = copy.deepcopy(spec.env)
    if spec.controller_resources:
        container["resources"] = copy.deepcopy(spec.controller_resources)

    # The selector label always wins on the pod template
    selector_labels = {constants.NAME_LABEL: constants.DEFAULT_RESOURCE_NAME}
    template_metadata = {"labels": {**desired_labels(spec), **selector_labels}}
    if spec.additional_metadata.annotations:
        template_metadata["annotations"] = dict(spec.additional_metadata.annotations)

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(spec, constants.DEFAULT_RESOURCE_NAME, namespace),
        "spec": {
            "selector": {"matchLabels": selector_labels},
            "template": {
                "metadata": template_metadata,
                "spec": {
                    "serviceAccountName": constants.DEFAULT_RESOURCE_NAME,
                    "securityContext": {"runAsNonRoot": True},
                    "containers": [container],
                },
            },
        },
    }


def build_metrics_service(spec: RolloutManagerSpec, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(
            spec,
            constants.METRICS_SERVICE_NAME,
            namespace,
            label_overrides={constants.NAME_LABEL: constants.METRICS_SERVICE_NAME},
        ),
        "spec": {
            "ports": [
                {
                    "name": constants.METRICS_PORT_NAME,
                    "port": constants.METRICS_PORT,
                    "protocol": "TCP",
                    "targetPort": constants.METRICS_PORT,
                }
            ],
            "selector": {constants.NAME_LABEL: constants.DEFAULT_RESOURCE_NAME},
        },
    }


def build_service_monitor(spec: RolloutManagerSpec, namespace: str) -> dict:
    return {
        "apiVersion": constants.SERVICE_MONITOR_API_VERSION,
        "kind": constants.SERVICE_MONITOR_KIND,
        "metadata": _metadata(spec, constants.DEFAULT_RESOURCE_NAME, namespace),
        "spec": {
            "selector": {
                "matchLabels": {constants.NAME_LABEL: constants.METRICS_SERVICE_NAME}
            },
            "endpoints": [{"port": constants.METRICS_PORT_NAME}],
        },
    }


## Implementation Details ######################################################


def _metadata(
    spec: RolloutManagerSpec,
    name: str,
    namespace: Optional[str],
    label_overrides: Optional[Dict[str, str]] = None,
) -> dict:
    metadata = {"name": name, "labels": desired_labels(spec, label_overrides)}
    if namespace is not None:
        metadata["namespace"] = namespace
    annotations = desired_annotations(spec)
    if annotations:
        metadata["annotations"] = annotations
    return metadata


# Permissions of the rollouts controller. The same rules are used for the
# namespaced Role and the ClusterRole.
CONTROLLER_POLICY_RULES = [
    {
        "apiGroups": ["argoproj.io"],
        "resources": ["rollouts", "rollouts/status", "rollouts/finalizers"],
        "verbs": ["get", "list", "watch", "update", "patch"],
    },
    {
        "apiGroups": ["argoproj.io"],
        "resources": [
            "analysisruns",
            "analysisruns/finalizers",
            "experiments",
            "experiments/finalizers",
        ],
        "verbs": ["create", "get", "list", "watch", "update", "patch", "delete"],
    },
    {
        "apiGroups": ["argoproj.io"],
        "resources": ["analysistemplates", "clusteranalysistemplates"],
        "verbs": ["get", "list", "watch"],
    },
    {
        "apiGroups": ["apps"],
        "resources": ["replicasets"],
        "verbs": ["create", "get", "list", "watch", "update", "patch", "delete"],
    },
    {
        "apiGroups": ["", "apps"],
        "resources": ["deployments", "podtemplates"],
        "verbs": ["get", "list", "watch", "update", "patch"],
    },
    {
        "apiGroups": [""],
        "resources": ["services"],
        "verbs": ["get", "list", "watch", "patch", "create", "delete"],
    },
    {
        "apiGroups": ["coordination.k8s.io"],
        "resources": ["leases"],
        "verbs": ["create", "get", "update"],
    },
    {
        "apiGroups": [""],
        "resources": ["secrets", "configmaps"],
        "verbs": ["get", "list", "watch"],
    },
    {
        "apiGroups": [""],
        "resources": ["pods"],
        "verbs": ["list", "update", "watch"],
    },
    {
        "apiGroups": [""],
        "resources": ["pods/eviction"],
        "verbs": ["create"],
    },
    {
        "apiGroups": [""],
        "resources": ["events"],
        "verbs": ["create", "update", "patch"],
    },
    {
        "apiGroups": ["networking.k8s.io", "extensions"],
        "resources": ["ingresses"],
        "verbs": ["create", "get", "list", "watch", "update", "patch"],
    },
    {
        "apiGroups": ["batch"],
        "resources": ["jobs"],
        "verbs": ["create", "get", "list", "watch", "update", "patch", "delete"],
    },
    {
        "apiGroups": ["networking.istio.io"],
        "resources": ["virtualservices", "destinationrules"],
        "verbs": ["watch", "get", "update", "patch", "list"],
    },
    {
        "apiGroups": ["split.smi-spec.io"],
        "resources": ["trafficsplits"],
        "verbs": ["create", "watch", "get", "update", "patch"],
    },
    {
        "apiGroups": ["getambassador.io", "x.getambassador.io"],
        "resources": ["mappings", "ambassadormappings"],
        "verbs": ["create", "watch", "get", "update", "list", "delete"],
    },
    {
        "apiGroups": ["elbv2.k8s.aws"],
        "resources": ["targetgroupbindings"],
        "verbs": ["list", "get"],
    },
    {
        "apiGroups": ["appmesh.k8s.aws"],
        "resources": ["virtualservices", "virtualnodes", "virtualrouters"],
        "verbs": ["watch", "get", "list", "update", "patch"],
    },
    {
        "apiGroups": ["traefik.containo.us", "traefik.io"],
        "resources": ["traefikservices"],
        "verbs": ["watch", "get", "update"],
    },
    {
        "apiGroups": ["apisix.apache.org"],
        "resources": ["apisixroutes"],
        "verbs": ["watch", "get", "update"],
    },
    {
        "apiGroups": ["route.openshift.io"],
        "resources": ["routes"],
        "verbs": ["create", "watch", "get", "update", "patch", "list"],
    },
]
