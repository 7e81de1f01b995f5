"""
The RolloutManagerController runs a single reconciliation pass for one
RolloutManager: ensure the finalizer, synchronize every managed object, prune
objects the spec no longer wants, and report the observed phase. When the CR
is being deleted it tears the managed objects down instead.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

# First Party
import alog

# Local
from . import constants
from .api import RolloutManagerSpec
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import ControllerIdentity
from .desired_state import ResourceId, build_desired_resources
from .exceptions import ClusterError, ConfigError, ReconcilePassError
from .phase import Phase, evaluate_phase
from .status import ReconciledReason, get_phase, update_resource_status
from .synchronizer import ResourceSynchronizer, SyncResult
from .teardown import TeardownManager
from .utils import add_finalizer, remove_finalizer

log = alog.use_channel("CTRLR")


class ReconcileState(Enum):
    """Lifecycle state of a RolloutManager as seen by a single pass"""

    ACTIVE = "Active"
    DELETING = "Deleting"
    GONE = "Gone"


@dataclass
class ControllerResult:
    """The outcome of one controller pass"""

    state: ReconcileState
    phase: Optional[Phase] = None
    error: Optional[Exception] = None
    sync_results: Dict[ResourceId, SyncResult] = field(default_factory=dict)


class RolloutManagerController:
    """Reconciles RolloutManager custom resources"""

    finalizer = constants.FINALIZER_NAME

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager

    def run(self, cr_manifest: dict) -> ControllerResult:
        """Run one pass for the given CR state

        Args:
            cr_manifest:  dict
                The RolloutManager as just read from the cluster

        Returns:
            result:  ControllerResult
                The state the pass ended in, the observed phase, and the
                aggregated error if any part of the pass failed
        """
        if cr_manifest.get("metadata", {}).get("deletionTimestamp"):
            return self.finalize(cr_manifest)
        return self.reconcile_active(cr_manifest)

    ## Active ##################################################################

    def reconcile_active(self, cr_manifest: dict) -> ControllerResult:
        """Converge the managed objects onto the CR spec and report status"""
        identity = ControllerIdentity.from_manifest(cr_manifest)
        namespace = identity.namespace

        cr_manifest = add_finalizer(self.deploy_manager, cr_manifest, self.finalizer)
        if get_phase(cr_manifest.get("status")) is None:
            log.debug("First sight of %s/%s", namespace, identity.name)
            self._write_status(identity, Phase.UNKNOWN)

        try:
            spec = RolloutManagerSpec.from_manifest(cr_manifest)
        except ConfigError as err:
            log.warning("Invalid spec for %s/%s: %s", namespace, identity.name, err)
            success, phase = self._observe_phase(namespace)
            self._write_status(
                identity,
                phase if success else Phase.UNKNOWN,
                ReconciledReason.INVALID_SPEC,
                str(err),
            )
            return ControllerResult(ReconcileState.ACTIVE, phase=phase, error=err)

        synchronizer = ResourceSynchronizer(self.deploy_manager, identity)
        sync_results = {}
        errors = []
        for desired in build_desired_resources(spec, namespace):
            resource_id = ResourceId.from_manifest(desired)
            if not self.deploy_manager.has_kind(
                resource_id.kind, resource_id.api_version
            ):
                log.info("Cluster does not serve %s. Skipping.", resource_id.kind)
                continue
            try:
                sync_results[resource_id] = synchronizer.sync(desired)
            # One kind's failure must not stop the remaining kinds
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Failed to reconcile %s: %s", resource_id, err)
                errors.append((str(resource_id), err))

        try:
            TeardownManager(self.deploy_manager, identity).prune(spec, namespace)
        except ReconcilePassError as err:
            errors.extend(err.errors)

        success, phase = self._observe_phase(namespace)
        if not success:
            errors.append(("Deployment", ClusterError("Failed to read Deployment")))
        error = ReconcilePassError(errors) if errors else None
        if success:
            self._write_status(
                identity,
                phase,
                ReconciledReason.RECONCILE_ERROR if error else ReconciledReason.SUCCESS,
                str(error) if error else "",
            )

        log.info(
            "Reconciled %s/%s: phase=%s errors=%d",
            namespace,
            identity.name,
            phase.value if phase else None,
            len(errors),
        )
        return ControllerResult(
            ReconcileState.ACTIVE, phase=phase, error=error, sync_results=sync_results
        )

    ## Deleting ################################################################

    def finalize(self, cr_manifest: dict) -> ControllerResult:
        """Tear down the managed objects, then release the finalizer"""
        identity = ControllerIdentity.from_manifest(cr_manifest)
        log.info("Finalizing %s/%s", identity.namespace, identity.name)
        try:
            TeardownManager(self.deploy_manager, identity).teardown(identity.namespace)
        except ReconcilePassError as err:
            log.warning("Teardown incomplete. Keeping finalizer: %s", err)
            return ControllerResult(ReconcileState.DELETING, error=err)

        remove_finalizer(self.deploy_manager, cr_manifest, self.finalizer)
        return ControllerResult(ReconcileState.GONE)

    ## Implementation Details ##################################################

    def _observe_phase(self, namespace: str) -> Tuple[bool, Optional[Phase]]:
        success, deployment = self.deploy_manager.get_object_current_state(
            kind="Deployment",
            name=constants.DEFAULT_RESOURCE_NAME,
            namespace=namespace,
            api_version="apps/v1",
        )
        if not success:
            log.warning("Failed to read the rollouts controller Deployment")
            return False, None
        return True, evaluate_phase(deployment)

    def _write_status(
        self,
        identity: ControllerIdentity,
        phase: Phase,
        reason: Optional[ReconciledReason] = None,
        message: str = "",
    ):
        update_resource_status(
            self.deploy_manager,
            kind=identity.kind,
            api_version=identity.api_version,
            name=identity.name,
            namespace=identity.namespace,
            phase=phase,
            reconciled_reason=reason,
            reconciled_message=message,
        )
