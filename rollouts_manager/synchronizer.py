"""
The resource synchronizer converges one live object onto its desired
manifest. Only the fields the operator owns are written, foreign metadata is
preserved, and objects owned by someone else are never touched.
"""

# Standard
from enum import Enum
from typing import Any, Optional
import copy

# Third Party
from kubernetes.utils import parse_quantity

# First Party
import alog

# Local
from . import config, constants
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import (
    ControllerIdentity,
    Ownership,
    get_ownership,
    set_ownership,
)
from .desired_state import ResourceId
from .exceptions import ConflictError, assert_cluster
from .metadata import merge_object_metadata
from .utils import nested_get, nested_set

log = alog.use_channel("SYNC")

_CONTAINER = "spec.template.spec.containers.0"

# Fields recomputed from the desired manifest on every pass. Anything else is
# only written when the object is created.
MANAGED_FIELDS = {
    "ServiceAccount": [],
    "Role": ["rules"],
    "ClusterRole": ["rules"],
    "RoleBinding": ["roleRef", "subjects"],
    "ClusterRoleBinding": ["roleRef", "subjects"],
    "ConfigMap": [],
    "Secret": [],
    "Deployment": [
        "spec.template.spec.serviceAccountName",
        f"{_CONTAINER}.image",
        f"{_CONTAINER}.imagePullPolicy",
        f"{_CONTAINER}.args",
        f"{_CONTAINER}.env",
        f"{_CONTAINER}.resources",
    ],
    "Service": ["spec.ports", "spec.selector"],
    constants.SERVICE_MONITOR_KIND: ["spec"],
}


class SyncResult(Enum):
    """The outcome of synchronizing a single object"""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_FOREIGN = "skipped_foreign"


class ResourceSynchronizer:
    """Create-or-update engine for the objects of a single RolloutManager"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        identity: ControllerIdentity,
        conflict_retries: Optional[int] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The client used for all reads and writes
            identity:  ControllerIdentity
                The RolloutManager that owns the synchronized objects
            conflict_retries:  Optional[int]
                Number of re-read/retry cycles on a write conflict. Defaults to
                config.conflict_retries.
        """
        self.deploy_manager = deploy_manager
        self.identity = identity
        self.conflict_retries = (
            config.conflict_retries if conflict_retries is None else conflict_retries
        )

    def sync(self, desired: dict) -> SyncResult:
        """Converge the live object onto the desired manifest

        Args:
            desired:  dict
                The manifest produced by the desired-state builder

        Returns:
            result:  SyncResult
                What the synchronizer did

        Raises:
            ConflictError:  If the object kept changing underneath every retry
            ClusterError:  If any read or write failed
        """
        resource_id = ResourceId.from_manifest(desired)
        conflicts = 0
        while True:
            try:
                result = self._sync_once(resource_id, desired)
                log.debug("%s: %s", resource_id, result.value)
                return result
            except ConflictError as err:
                conflicts += 1
                if conflicts > self.conflict_retries:
                    log.warning("Giving up on %s after conflict: %s", resource_id, err)
                    raise
                log.debug("Conflict on %s (%d). Re-reading.", resource_id, conflicts)

    ## Implementation Details ##################################################

    def _sync_once(self, resource_id: ResourceId, desired: dict) -> SyncResult:
        success, live = self.deploy_manager.get_object_current_state(
            kind=resource_id.kind,
            name=resource_id.name,
            namespace=resource_id.namespace,
            api_version=resource_id.api_version,
        )
        assert_cluster(success, f"Failed to fetch current state of {resource_id}")

        if live is None:
            log.debug2("Creating %s", resource_id)
            self.deploy_manager.create_object(
                set_ownership(self.identity, merge_object_metadata(desired, None))
            )
            return SyncResult.CREATED

        ownership = get_ownership(self.identity, live)
        if ownership == Ownership.FOREIGN:
            log.info("Leaving %s untouched. It is owned by another controller.", resource_id)
            return SyncResult.SKIPPED_FOREIGN
        if ownership == Ownership.UNOWNED:
            log.debug("Adopting unowned %s", resource_id)

        candidate = self._updated_object(desired, live)
        if _comparable(candidate) == _comparable(live):
            return SyncResult.UNCHANGED

        log.debug2("Updating %s at resourceVersion %s", resource_id, _resource_version(live))
        self.deploy_manager.update_object(candidate)
        return SyncResult.UPDATED

    def _updated_object(self, desired: dict, live: dict) -> dict:
        """Build the full object to write from the live state with the merged
        metadata and managed fields applied
        """
        merged = merge_object_metadata(desired, live)
        candidate = copy.deepcopy(live)
        candidate.pop("status", None)
        _copy_metadata_maps(merged["metadata"], candidate.setdefault("metadata", {}))

        merged_template_md = nested_get(merged, "spec.template.metadata")
        if merged_template_md is not None:
            if not isinstance(nested_get(candidate, "spec.template"), dict):
                nested_set(candidate, "spec.template", {})
            _copy_metadata_maps(
                merged_template_md,
                candidate["spec"]["template"].setdefault("metadata", {}),
            )

        managed_fields = MANAGED_FIELDS.get(desired["kind"], [])
        if any(path.startswith(_CONTAINER) for path in managed_fields):
            _ensure_container(candidate, desired)
        for path in managed_fields:
            value = nested_get(desired, path)
            if value is None:
                _nested_pop(candidate, path)
            else:
                nested_set(candidate, path, copy.deepcopy(value))

        return set_ownership(self.identity, candidate)


def _copy_metadata_maps(source: dict, target: dict):
    for field_name in ["labels", "annotations"]:
        if source.get(field_name):
            target[field_name] = copy.deepcopy(source[field_name])
        else:
            target.pop(field_name, None)


def _ensure_container(candidate: dict, desired: dict):
    """Make sure the first live container is the controller container. If it
    is not, the desired container list replaces the live one.
    """
    live_containers = nested_get(candidate, "spec.template.spec.containers")
    if (
        isinstance(live_containers, list)
        and live_containers
        and live_containers[0].get("name") == constants.CONTAINER_NAME
    ):
        return
    desired_containers = nested_get(desired, "spec.template.spec.containers")
    if not isinstance(nested_get(candidate, "spec.template.spec"), dict):
        nested_set(candidate, "spec.template.spec", {})
    candidate["spec"]["template"]["spec"]["containers"] = copy.deepcopy(
        desired_containers
    )


def _nested_pop(obj: dict, path: str):
    parent_path, _, key = path.rpartition(constants.NESTED_DICT_DELIM)
    parent = nested_get(obj, parent_path) if parent_path else obj
    if isinstance(parent, dict):
        parent.pop(key, None)


def _resource_version(obj: dict) -> Optional[str]:
    return obj.get("metadata", {}).get("resourceVersion")


## Comparison ##################################################################


def _comparable(obj: dict) -> Any:
    """Normalize an object for change detection. Empty values compare equal
    to missing ones, env lists compare without regard to order and resource
    quantities compare by value.
    """
    obj = copy.deepcopy(obj)
    obj.pop("status", None)
    container = nested_get(obj, _CONTAINER)
    if isinstance(container, dict):
        if isinstance(container.get("env"), list):
            container["env"] = sorted(
                container["env"], key=lambda entry: str(entry.get("name"))
            )
        if isinstance(container.get("resources"), dict):
            container["resources"] = {
                section: _normalize_quantities(quantities)
                for section, quantities in container["resources"].items()
            }
    return _normalize(obj)


def _normalize_quantities(quantities: Any) -> Any:
    if not isinstance(quantities, dict):
        return quantities
    normalized = {}
    for name, quantity in quantities.items():
        try:
            normalized[name] = parse_quantity(quantity)
        except (ValueError, TypeError):
            normalized[name] = quantity
    return normalized


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        normalized = {key: _normalize(val) for key, val in value.items()}
        return {key: val for key, val in normalized.items() if not _is_empty(val)}
    if isinstance(value, list):
        return [_normalize(val) for val in value]
    return value


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []

