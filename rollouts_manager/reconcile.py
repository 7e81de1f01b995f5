"""
The ReconcileManager runs an individual reconcile of a RolloutManager. It
reads the CR, sets up per-reconcile logging, runs the controller and turns the
outcome into a requeue decision.
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional, Union
import base64
import datetime
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants
from .controller import ReconcileState, RolloutManagerController
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .exceptions import assert_cluster
from .log_format import RolloutsManagerJsonFormatter
from .phase import Phase
from .status import ReconciledReason, get_phase, update_resource_status

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass(frozen=True)
class ResourceKey:
    """The work queue key of a RolloutManager"""

    namespace: str
    name: str

    def __str__(self):
        return f"{self.namespace}/{self.name}"


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request. A requeue_after of
    None asks for the per-key error backoff.
    """

    requeue_after: Optional[datetime.timedelta] = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Flag to identify if the reconciliation raised an exception
    exception: Exception = None
    # Lifecycle state the pass ended in
    state: Optional[ReconcileState] = None
    # Phase observed by the pass
    phase: Optional[Phase] = None


## ReconcileManager ############################################################


class ReconcileManager:
    """This class manages reconciliations of RolloutManagers. Its primary
    function is to run a reconcile given a work queue key and the cluster
    state via a DeployManager.
    """

    def __init__(self, deploy_manager: Optional[DeployManagerBase] = None):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. If not given, one is created based on
                config.dry_run.
        """
        self.deploy_manager = deploy_manager or self.setup_deploy_manager()
        self.controller = RolloutManagerController(self.deploy_manager)

    @alog.logged_function(log.debug2)
    @alog.timed_function(log.debug2)
    def reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general path
        is as follows:

            1. Fetch the current CR. If it is gone, there is nothing to do.
            2. Setup logging based on config with overrides from the CR
            3. Check if the CR is paused
            4. Run the controller pass
            5. Decide whether and when to requeue

        Args:
            key:  ResourceKey
                The namespace and name of the RolloutManager

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        success, resource = self.deploy_manager.get_object_current_state(
            kind=constants.ROLLOUT_MANAGER_KIND,
            api_version=constants.ROLLOUT_MANAGER_API_VERSION,
            name=key.name,
            namespace=key.namespace,
        )
        assert_cluster(success, f"Failed to fetch RolloutManager {key}")
        if resource is None:
            log.debug("RolloutManager %s is gone", key)
            return ReconciliationResult(requeue=False, state=ReconcileState.GONE)

        cr_manifest = self.parse_manifest(resource)
        reconcile_id = self.generate_id()
        self.configure_logging(cr_manifest, reconcile_id)

        if self._is_paused(cr_manifest):
            log.info("CR is paused. Exiting reconciliation")
            return ReconciliationResult(requeue=False, state=ReconcileState.ACTIVE)

        log.info("Reconciling %s/%s [%s]", key.namespace, key.name, reconcile_id)
        result = self.controller.run(resource)
        return self._to_reconciliation_result(result)

    def safe_reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """Call reconcile but catch any errors thrown. This function
        guarantees a safe result which is needed by the workers.

        Args:
            key:  ResourceKey
                The namespace and name of the RolloutManager

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(key)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        try:
            self._update_error_status(key, error)
        except Exception as exc:  # pylint: disable=broad-except
            log.error("Failed to update status: %s", exc, exc_info=True)

        log.info("Requeuing %s due to error during reconcile", key)
        return ReconciliationResult(
            requeue=True,
            requeue_params=RequeueParams(requeue_after=None),
            exception=error,
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource: Union[dict, aconfig.Config])
                The resource to be parsed into a manifest

        Returns
            cr_manifest: aconfig.Config
                The parsed config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse RolloutManager") from exc

        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given reconcile

        Args:
            cr_manifest: aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id: str
                The unique id for the reconciliation
        """
        annotations = cr_manifest.get("metadata", {}).get("annotations") or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )

        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep the existing handler so that output keeps going to the same
        # place
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=RolloutsManagerJsonFormatter(cr_manifest, reconciliation_id)
            if log_json
            else "pretty",
            thread_id=log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    @staticmethod
    def setup_deploy_manager() -> DeployManagerBase:
        """Create the DeployManager selected by config"""
        if config.dry_run:
            log.info("Running DRY RUN")
            return DryRunDeployManager()
        log.debug("Running with openshift deploy manager")
        return OpenshiftDeployManager()

    ## Implementation Details ##################################################

    @classmethod
    def _is_paused(cls, cr_manifest: aconfig.Config) -> bool:
        """Check if a manifest has the pause annotation"""
        annotations = cr_manifest.get("metadata", {}).get("annotations") or {}
        paused = annotations.get(constants.PAUSE_ANNOTATION_NAME)
        return bool(paused) and paused.lower() == "true"

    @staticmethod
    def _to_reconciliation_result(result) -> ReconciliationResult:
        """Decide whether and when to requeue after a controller pass"""
        if result.state == ReconcileState.GONE:
            return ReconciliationResult(requeue=False, state=result.state)

        if result.error is not None:
            # A fatal error can only be resolved by a change to the CR, which
            # triggers a new reconcile
            requeue = not getattr(result.error, "is_fatal_error", False)
            return ReconciliationResult(
                requeue=requeue,
                requeue_params=RequeueParams(requeue_after=None),
                exception=result.error,
                state=result.state,
                phase=result.phase,
            )

        # Keep checking until the controller converges
        if result.phase in [Phase.PENDING, Phase.UNKNOWN]:
            return ReconciliationResult(
                requeue=True,
                requeue_params=RequeueParams(),
                state=result.state,
                phase=result.phase,
            )
        return ReconciliationResult(
            requeue=False, state=result.state, phase=result.phase
        )

    def _update_error_status(self, key: ResourceKey, error: Exception) -> dict:
        """Record an error that stopped the reconciliation on the CR status.
        The previously recorded phase is kept.
        """
        success, resource = self.deploy_manager.get_object_current_state(
            kind=constants.ROLLOUT_MANAGER_KIND,
            api_version=constants.ROLLOUT_MANAGER_API_VERSION,
            name=key.name,
            namespace=key.namespace,
        )
        if not success or resource is None:
            return {}
        return update_resource_status(
            self.deploy_manager,
            kind=constants.ROLLOUT_MANAGER_KIND,
            api_version=constants.ROLLOUT_MANAGER_API_VERSION,
            name=key.name,
            namespace=key.namespace,
            phase=get_phase(resource.get("status")) or Phase.UNKNOWN,
            reconciled_reason=ReconciledReason.RECONCILE_ERROR,
            reconciled_message=str(error),
        )
