"""
Shared module to hold constant values for the operator
"""

## RolloutManager API ##########################################################

ROLLOUT_MANAGER_GROUP = "argoproj.io"
ROLLOUT_MANAGER_VERSION = "v1alpha1"
ROLLOUT_MANAGER_API_VERSION = f"{ROLLOUT_MANAGER_GROUP}/{ROLLOUT_MANAGER_VERSION}"
ROLLOUT_MANAGER_KIND = "RolloutManager"

# Finalizer held on every live RolloutManager until teardown completes
FINALIZER_NAME = "finalizers.rolloutmanager.argoproj.io"

## Managed resource names ######################################################

DEFAULT_RESOURCE_NAME = "argo-rollouts"
METRICS_SERVICE_NAME = "argo-rollouts-metrics"
CONFIG_MAP_NAME = "argo-rollouts-config"
NOTIFICATION_SECRET_NAME = "argo-rollouts-notification-secret"

# Aggregate ClusterRoles are shipped with the install manifests and are never
# written or deleted by the operator
AGGREGATE_CLUSTER_ROLE_NAMES = [
    "argo-rollouts-aggregate-to-admin",
    "argo-rollouts-aggregate-to-edit",
    "argo-rollouts-aggregate-to-view",
]

DEFAULT_IMAGE = "quay.io/argoproj/argo-rollouts"
DEFAULT_VERSION = "v1.7.2"

CONTAINER_NAME = "argo-rollouts"
NAMESPACED_ARG = "--namespaced"
METRICS_PORT = 8090
METRICS_PORT_NAME = "metrics"
HEALTHZ_PORT = 8080
HEALTHZ_PORT_NAME = "healthz"

## Labels ######################################################################

NAME_LABEL = "app.kubernetes.io/name"
PART_OF_LABEL = "app.kubernetes.io/part-of"
COMPONENT_LABEL = "app.kubernetes.io/component"

BASELINE_LABELS = {
    NAME_LABEL: DEFAULT_RESOURCE_NAME,
    PART_OF_LABEL: DEFAULT_RESOURCE_NAME,
    COMPONENT_LABEL: "rollouts-controller",
}

## Kinds #######################################################################

SERVICE_MONITOR_API_VERSION = "monitoring.coreos.com/v1"
SERVICE_MONITOR_KIND = "ServiceMonitor"

# (apiVersion, kind, namespaced) for every kind the operator may ever manage
MANAGED_KINDS = [
    ("v1", "ServiceAccount", True),
    ("rbac.authorization.k8s.io/v1", "Role", True),
    ("rbac.authorization.k8s.io/v1", "RoleBinding", True),
    ("rbac.authorization.k8s.io/v1", "ClusterRole", False),
    ("rbac.authorization.k8s.io/v1", "ClusterRoleBinding", False),
    ("v1", "ConfigMap", True),
    ("v1", "Secret", True),
    ("apps/v1", "Deployment", True),
    ("v1", "Service", True),
    (SERVICE_MONITOR_API_VERSION, SERVICE_MONITOR_KIND, True),
]

## Annotations #################################################################

# Identity of the owning RolloutManager on cluster-scoped objects, which can not
# hold an owner reference to a namespaced owner
OWNER_ANNOTATION_NAME = "argoproj.io/rollouts-manager-owner"

# Key names of the additional labels/annotations last applied to an object
METADATA_PROVENANCE_ANNOTATION_NAME = "argoproj.io/rollouts-manager-metadata"

# Reconciliation configuration annotations
PAUSE_ANNOTATION_NAME = "argoproj.io/pause-reconcile"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = "argoproj.io/log-default-level"
LOG_FILTERS_NAME = "argoproj.io/log-filters"
LOG_THREAD_ID_NAME = "argoproj.io/log-thread-id"
LOG_JSON_NAME = "argoproj.io/log-json"

## Status ######################################################################

RECONCILED_CONDITION = "Reconciled"
REASON_SUCCESS = "Success"
REASON_RECONCILE_ERROR = "ReconcileError"
REASON_INVALID_SPEC = "InvalidSpec"

## Misc ########################################################################

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
