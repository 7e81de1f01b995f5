"""
The metadata merge engine combines the labels and annotations the operator
wants on an object with the ones already present on the live object.

Keys written by other actors survive every reconciliation. Keys the operator
applied from additionalMetadata are recorded in a provenance annotation, so a
key removed from additionalMetadata is also removed from the live object.
"""

# Standard
from typing import Dict, Iterable, Optional
import copy
import json

# First Party
import alog

# Local
from . import constants
from .api import AdditionalMetadata

log = alog.use_channel("MTDTA")


## Public ######################################################################


def merge_metadata(
    baseline: Optional[Dict[str, str]],
    additional: Optional[Dict[str, str]],
    current: Optional[Dict[str, str]],
    previously_applied: Optional[Iterable[str]] = None,
) -> Dict[str, str]:
    """Merge one metadata map (labels or annotations)

    Args:
        baseline:  Optional[Dict[str, str]]
            The operator's fixed keys
        additional:  Optional[Dict[str, str]]
            The user's additionalMetadata keys. These win over baseline.
        current:  Optional[Dict[str, str]]
            The map on the live object
        previously_applied:  Optional[Iterable[str]]
            Keys the operator applied on a previous pass. Live keys in this set
            that are no longer baseline or additional are dropped.

    Returns:
        merged:  Dict[str, str]
            The full replacement map for the object
    """
    merged = dict(baseline or {})
    merged.update(additional or {})
    stale = set(previously_applied or [])
    for key, value in (current or {}).items():
        if key in merged:
            continue
        if key in stale:
            log.debug3("Dropping previously applied key [%s]", key)
            continue
        merged[key] = value
    return merged


def provenance_annotation(additional: AdditionalMetadata) -> Dict[str, str]:
    """Build the provenance annotation recording the additional metadata keys
    applied to an object. Empty when there are no additional keys.
    """
    if not additional.labels and not additional.annotations:
        return {}
    record = {
        "annotations": sorted(additional.annotations),
        "labels": sorted(additional.labels),
    }
    return {
        constants.METADATA_PROVENANCE_ANNOTATION_NAME: json.dumps(
            record, sort_keys=True, separators=(",", ":")
        )
    }


def read_provenance(obj: Optional[dict]) -> Dict[str, set]:
    """Read the provenance record of a live object

    Returns:
        applied:  Dict[str, set]
            The sets of label and annotation keys last applied from
            additionalMetadata. Unreadable records are treated as empty.
    """
    applied = {"labels": set(), "annotations": set()}
    raw = (
        ((obj or {}).get("metadata") or {}).get("annotations") or {}
    ).get(constants.METADATA_PROVENANCE_ANNOTATION_NAME)
    if not raw:
        return applied
    try:
        record = json.loads(raw)
    except ValueError:
        log.warning("Ignoring unreadable metadata provenance: %s", raw)
        return applied
    if not isinstance(record, dict):
        return applied
    for key in applied:
        values = record.get(key)
        if isinstance(values, list):
            applied[key] = {value for value in values if isinstance(value, str)}
    return applied


def merge_object_metadata(desired: dict, live: Optional[dict]) -> dict:
    """Apply the merge engine to the labels and annotations of a desired
    object, including the pod template of workload kinds

    Args:
        desired:  dict
            The desired object whose metadata holds exactly the operator's keys
        live:  Optional[dict]
            The live object, if any

    Returns:
        merged:  dict
            A copy of desired with the merged metadata maps
    """
    merged = copy.deepcopy(desired)
    applied = read_provenance(live)

    # The provenance record itself is only present while it is desired
    applied_annotations = applied["annotations"] | {
        constants.METADATA_PROVENANCE_ANNOTATION_NAME
    }

    _merge_maps(
        merged.setdefault("metadata", {}),
        (live or {}).get("metadata") or {},
        applied["labels"],
        applied_annotations,
    )

    desired_template = (merged.get("spec") or {}).get("template")
    if isinstance(desired_template, dict):
        live_template = ((live or {}).get("spec") or {}).get("template") or {}
        _merge_maps(
            desired_template.setdefault("metadata", {}),
            live_template.get("metadata") or {},
            applied["labels"],
            applied["annotations"],
        )
    return merged


## Implementation Details ######################################################


def _merge_maps(
    desired_md: dict, live_md: dict, applied_labels: set, applied_annotations: set
):
    for field_name, applied in [
        ("labels", applied_labels),
        ("annotations", applied_annotations),
    ]:
        merged = merge_metadata(
            desired_md.get(field_name),
            None,
            live_md.get(field_name),
            applied,
        )
        if merged:
            desired_md[field_name] = merged
        else:
            desired_md.pop(field_name, None)
