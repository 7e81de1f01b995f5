"""
Ownership-aware deletion of managed objects. An object is only deleted when
this RolloutManager's reference is present and no other controller claims it.
"""

# Standard
from enum import Enum
from typing import Dict, Iterable

# First Party
import alog

# Local
from .api import RolloutManagerSpec
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import (
    ControllerIdentity,
    Ownership,
    foreign_owner_references,
    get_ownership,
)
from .desired_state import ResourceId, all_resource_ids, stale_resource_ids
from .exceptions import ReconcilePassError, assert_cluster

log = alog.use_channel("TRDWN")


class DeleteResult(Enum):
    """The outcome of an ownership-aware delete"""

    DELETED = "deleted"
    RETAINED = "retained"
    ABSENT = "absent"


class TeardownManager:
    """Deletes the objects of a single RolloutManager"""

    def __init__(self, deploy_manager: DeployManagerBase, identity: ControllerIdentity):
        self.deploy_manager = deploy_manager
        self.identity = identity

    def delete_if_owned(self, resource_id: ResourceId) -> DeleteResult:
        """Delete the object if this RolloutManager owns it

        Args:
            resource_id:  ResourceId
                The object to delete

        Returns:
            result:  DeleteResult
                ABSENT if there is no such object, RETAINED if it is not ours
                to delete and DELETED otherwise
        """
        success, live = self.deploy_manager.get_object_current_state(
            kind=resource_id.kind,
            name=resource_id.name,
            namespace=resource_id.namespace,
            api_version=resource_id.api_version,
        )
        assert_cluster(success, f"Failed to fetch current state of {resource_id}")
        if live is None:
            return DeleteResult.ABSENT

        if get_ownership(self.identity, live) != Ownership.OWNED:
            log.debug("Retaining %s. It is not owned by this RolloutManager.", resource_id)
            return DeleteResult.RETAINED
        foreign = foreign_owner_references(self.identity, live)
        if foreign:
            log.debug("Retaining %s. Other owners: %s", resource_id, foreign)
            return DeleteResult.RETAINED

        log.debug("Deleting %s", resource_id)
        self.deploy_manager.delete_object(
            kind=resource_id.kind,
            name=resource_id.name,
            namespace=resource_id.namespace,
            api_version=resource_id.api_version,
        )
        return DeleteResult.DELETED

    def teardown(self, namespace: str) -> Dict[ResourceId, DeleteResult]:
        """Delete every object this RolloutManager could ever have created, in
        either RBAC scope
        """
        return self._delete_all(all_resource_ids(namespace))

    def prune(
        self, spec: RolloutManagerSpec, namespace: str
    ) -> Dict[ResourceId, DeleteResult]:
        """Delete the objects the current spec no longer wants"""
        return self._delete_all(stale_resource_ids(spec, namespace))

    ## Implementation Details ##################################################

    def _delete_all(
        self, resource_ids: Iterable[ResourceId]
    ) -> Dict[ResourceId, DeleteResult]:
        results = {}
        errors = []
        for resource_id in resource_ids:
            try:
                results[resource_id] = self.delete_if_owned(resource_id)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Failed to delete %s: %s", resource_id, err)
                errors.append((str(resource_id), err))
        if errors:
            raise ReconcilePassError(errors)
        return results
