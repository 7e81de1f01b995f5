"""
This module holds the functionality used to represent the status of a
RolloutManager.

The status schema is:
{
    "phase": "Unknown" | "Pending" | "Available" | "Failed",
    "rolloutController": <phase of the rollouts controller Deployment>,
    "conditions": [
        {
            "type": "Reconciled",
            "status": "True" | "False",
            "reason": "Success" | "ReconcileError" | "InvalidSpec",
            "message": <details>,
            "lastTransitionTime": <timestamp of the last status change>,
        }
    ],
    "operatorVersion": <version of the operator, when configured>,
}
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import config, constants
from .phase import Phase

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"

PHASE_FIELD = "phase"
ROLLOUT_CONTROLLER_FIELD = "rolloutController"
OPERATOR_VERSION = "operatorVersion"


class ReconciledReason(Enum):
    """Reason constants for the Reconciled condition"""

    # Every managed object matches the spec
    SUCCESS = constants.REASON_SUCCESS

    # At least one managed object failed to reconcile and will be retried
    RECONCILE_ERROR = constants.REASON_RECONCILE_ERROR

    # The spec is invalid and will not be retried until it changes
    INVALID_SPEC = constants.REASON_INVALID_SPEC


def make_rollout_manager_status(
    phase: Union[Phase, str],
    reconciled_reason: Optional[Union[ReconciledReason, str]] = None,
    reconciled_message: str = "",
    external_conditions: Optional[List[dict]] = None,
    external_status: Optional[dict] = None,
    previous_condition: Optional[dict] = None,
    operator_version: Optional[str] = None,
) -> dict:
    """Create a full status object for a RolloutManager

    Args:
        phase:  Union[Phase, str]
            The phase computed from the rollouts controller Deployment
        reconciled_reason:  Optional[Union[ReconciledReason, str]]
            The reason for the Reconciled condition. If None, no condition is
            added.
        reconciled_message:  str
            Plain-text message explaining the Reconciled condition
        external_conditions:  Optional[List[dict]]
            Conditions set by other actors which are preserved
        external_status:  Optional[dict]
            Other status keys which are preserved
        previous_condition:  Optional[dict]
            The current Reconciled condition. Its timestamp is kept when the
            condition status does not change.
        operator_version:  Optional[str]
            The version of the operator

    Returns:
        status:  dict
            Dict representation of the status
    """
    phase = Phase(phase)
    status = copy.deepcopy(external_status or {})
    status[PHASE_FIELD] = phase.value
    status[ROLLOUT_CONTROLLER_FIELD] = phase.value

    conditions = []
    if reconciled_reason is not None:
        conditions.append(
            _make_reconciled_condition(
                ReconciledReason(reconciled_reason),
                reconciled_message,
                previous_condition or {},
            )
        )
    conditions.extend(external_conditions or [])
    status["conditions"] = conditions

    if operator_version is not None:
        status[OPERATOR_VERSION] = operator_version
    return status


def update_rollout_manager_status(current_status: Optional[dict], **kwargs) -> dict:
    """Create an updated status based on the values in the current status

    Args:
        current_status:  Optional[dict]
            The current status of the RolloutManager
        **kwargs:
            Keyword args to pass to make_rollout_manager_status

    Returns:
        updated_status:  dict
            Updated dict representation of the status
    """
    current_status = copy.deepcopy(current_status or {})
    current_conditions = current_status.get("conditions") or []
    kwargs["previous_condition"] = get_condition(
        constants.RECONCILED_CONDITION, current_status
    )
    kwargs["external_conditions"] = [
        cond
        for cond in current_conditions
        if cond.get("type") != constants.RECONCILED_CONDITION
    ]
    kwargs["external_status"] = {
        key: val
        for key, val in current_status.items()
        if key not in ["conditions", PHASE_FIELD, ROLLOUT_CONTROLLER_FIELD]
    }
    kwargs.setdefault("operator_version", config.operator_version)
    return make_rollout_manager_status(**kwargs)


def update_resource_status(
    deploy_manager: "DeployManagerBase",  # noqa: F821
    kind: str,
    api_version: str,
    name: str,
    namespace: str,
    **kwargs,
) -> dict:
    """Read the RolloutManager, build its new status from kwargs (see
    update_rollout_manager_status) and write it if anything besides timestamps
    changed.

    Returns:
        status_object: dict
            The status now on the CR, or an empty dict if the read or the
            write failed
    """
    log.debug3("Updating status for %s/%s.%s/%s", namespace, api_version, kind, name)

    success, current_state = deploy_manager.get_object_current_state(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
    )
    if not success or current_state is None:
        log.warning("Failed to fetch current state for %s/%s/%s", namespace, kind, name)
        return {}
    current_status = current_state.get("status") or {}
    log.debug3("Pre-update status: %s", current_status)

    status_object = update_rollout_manager_status(current_status, **kwargs)
    log.debug3("Updated status: %s", status_object)

    if status_changed(current_status, status_object):
        log.debug("Found meaningful change. Updating status")
        log.debug2("(current) %s != (updated) %s", current_status, status_object)
        success, _ = deploy_manager.set_status(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
            status=status_object,
        )

        # A failed status write does not fail the reconciliation
        if not success:
            log.warning("Failed to update status for [%s/%s/%s]", namespace, kind, name)
            return {}

    return status_object


def status_changed(current_status: dict, new_status: dict) -> bool:
    """True unless the two statuses only differ in condition timestamps"""
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def get_condition(type_name: str, current_status: dict) -> dict:
    """The condition of the given type, or an empty dict. A status with two
    conditions of one type is malformed.
    """
    cond = [
        cond
        for cond in (current_status or {}).get("conditions") or []
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


def get_phase(current_status: Optional[dict]) -> Optional[Phase]:
    """Extract the recorded phase from a status object, if any"""
    raw_phase = (current_status or {}).get(PHASE_FIELD)
    try:
        return Phase(raw_phase) if raw_phase is not None else None
    except ValueError:
        log.debug("Ignoring unknown recorded phase %s", raw_phase)
        return None


## Implementation ##############################################################


def _make_reconciled_condition(
    reason: ReconciledReason, message: str, previous_condition: dict
) -> dict:
    condition_status = str(reason == ReconciledReason.SUCCESS)
    timestamp = previous_condition.get(TIMESTAMP_KEY)
    if previous_condition.get("status") != condition_status or not timestamp:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return {
        "type": constants.RECONCILED_CONDITION,
        "status": condition_status,
        "reason": reason.value,
        "message": message,
        TIMESTAMP_KEY: timestamp,
    }
