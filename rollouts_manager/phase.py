"""
The phase evaluator maps the observed state of the rollouts controller
Deployment to the RolloutManager phase. It is a pure function of the
Deployment object and holds no history.
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

# Third Party
import dateutil.parser

# First Party
import alog

log = alog.use_channel("PHASE")

DEFAULT_TIMESTAMP_KEY = "lastTransitionTime"
REPLICA_FAILURE_CONDITION_KEY = "ReplicaFailure"
PROGRESSING_CONDITION_KEY = "Progressing"
PROGRESS_DEADLINE_EXCEEDED_REASON = "ProgressDeadlineExceeded"


class Phase(str, Enum):
    """The observed health of the managed rollouts controller"""

    UNKNOWN = "Unknown"
    PENDING = "Pending"
    AVAILABLE = "Available"
    FAILED = "Failed"


## Main Functions ##############################################################


def evaluate_phase(deployment: Optional[dict]) -> Phase:
    """Compute the phase for the given Deployment state

    Args:
        deployment:  Optional[dict]
            The live rollouts controller Deployment, or None if it could not be
            found

    Returns:
        phase:  Phase
            Unknown when there is no Deployment, Failed when the platform
            reports a replica failure, Available when every desired replica is
            ready for the current generation, and Pending otherwise
    """
    if deployment is None:
        log.debug2("No Deployment found. Phase is Unknown")
        return Phase.UNKNOWN

    if _verify_condition(deployment, REPLICA_FAILURE_CONDITION_KEY, True):
        log.debug("Deployment reports a replica failure")
        return Phase.FAILED

    # A missed progress deadline (bad image, pull back-off) is not terminal
    if _verify_condition(
        deployment,
        PROGRESSING_CONDITION_KEY,
        False,
        expected_reason=PROGRESS_DEADLINE_EXCEEDED_REASON,
    ):
        log.debug("Deployment exceeded its progress deadline")
        return Phase.PENDING

    spec = deployment.get("spec") or {}
    status = deployment.get("status") or {}
    desired_replicas = spec.get("replicas")
    if desired_replicas is None:
        desired_replicas = 1
    ready_replicas = status.get("readyReplicas") or 0

    generation = deployment.get("metadata", {}).get("generation")
    observed_generation = status.get("observedGeneration")
    if (
        generation is not None
        and observed_generation is not None
        and observed_generation < generation
    ):
        log.debug2(
            "Deployment generation %s not yet observed (%s)",
            generation,
            observed_generation,
        )
        return Phase.PENDING

    log.debug2("Deployment ready replicas: %d/%d", ready_replicas, desired_replicas)
    if ready_replicas >= desired_replicas:
        return Phase.AVAILABLE
    return Phase.PENDING


## Helpers #####################################################################


def _verify_condition(
    object_state: dict,
    type_val: str,
    expected_status: bool,
    timestamp_key: str = DEFAULT_TIMESTAMP_KEY,
    expected_reason: Optional[str] = None,
) -> bool:
    """Check whether the latest condition of the given type has the expected
    status and reason
    """
    conditions = _get_conditions(object_state, type_val)
    log.debug3("Found %d [%s] conditions", len(conditions), type_val)
    if not conditions:
        return False
    latest_cond = _sort_conditions_by_date(conditions, timestamp_key)[0]
    log.debug3("Latest '%s' condition: %s", type_val, latest_cond)
    return _check_condition(latest_cond, expected_status, expected_reason)


def _get_conditions(object_state: dict, type_val: str) -> List[dict]:
    """Get the list of conditions of a given type from an object state"""
    return [
        cond
        for cond in (object_state.get("status") or {}).get("conditions") or []
        if cond.get("type") == type_val
    ]


def _parse_condition_timestamp(condition: dict, timestamp_key: str) -> datetime:
    timestamp = condition.get(timestamp_key)
    if isinstance(timestamp, str):
        parsed = dateutil.parser.parse(timestamp)
    elif isinstance(timestamp, datetime):
        parsed = timestamp
    else:
        log.debug3("Found condition with no valid timestamp. Using epoch")
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sort_conditions_by_date(conditions: List[dict], timestamp_key: str) -> List[dict]:
    """Sort conditions with the newest first"""
    return sorted(
        conditions,
        key=lambda cond: _parse_condition_timestamp(cond, timestamp_key),
        reverse=True,
    )


def _check_condition(
    condition: dict, expected_status: bool, expected_reason: Optional[str] = None
) -> bool:
    obj_status = condition.get("status")
    if isinstance(obj_status, str):
        status_matches = obj_status.lower() == str(expected_status).lower()
    else:
        status_matches = obj_status is not None and bool(obj_status) == expected_status
    return status_matches and (
        expected_reason is None or condition.get("reason") == expected_reason
    )
