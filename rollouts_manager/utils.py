"""
Common utilities shared across components in the operator
"""

# Standard
from typing import Any, Optional
import copy

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_cluster

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def _step(container: Any, part: str, dflt: Any = __MISSING__) -> Any:
    """Take a single step into a dict or list. Integer parts index lists."""
    if isinstance(container, list):
        try:
            return container[int(part)]
        except (ValueError, IndexError):
            return dflt
    if isinstance(container, dict):
        return container.get(part, dflt)
    raise TypeError(f"Cannot index into {type(container)} with [{part}]")


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation. Integer
    parts (e.g. 'containers.0.image') index into existing lists.

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        if isinstance(dct, list):
            dct = _step(dct, part)
            if dct is __MISSING__:
                raise IndexError(
                    f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} "
                    "is out of range"
                )
        else:
            dct = dct.setdefault(part, {})
        if not isinstance(dct, (dict, list)):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} "
                "is not a dict or list"
            )
    if isinstance(dct, list):
        dct[int(parts[-1])] = val
    else:
        dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict from which the key will be read
        key:  str
            Key that may contain '.' notation indicating nesting
        dflt:  Any
            Value returned when any part of the key is missing

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts and list indices.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts:
        if dct is None:
            return dflt
        dct = _step(dct, part)
        if dct is __MISSING__:
            return dflt
    return dct


## Finalizers ##################################################################


def add_finalizer(deploy_manager: "DeployManagerBase", cr_manifest: dict, finalizer: str) -> dict:
    """Add a finalizer to the given CR in the cluster

    Args:
        deploy_manager:  DeployManagerBase
            The client used to update the CR
        cr_manifest:  dict
            The current state of the CR
        finalizer:  str
            The finalizer to be added

    Returns:
        cr_manifest:  dict
            The CR as written to the cluster. If the finalizer was already
            present, the input is returned unchanged.
    """
    if finalizer in cr_manifest.get("metadata", {}).get("finalizers", []):
        return cr_manifest

    log.debug("Adding finalizer: %s", finalizer)
    manifest = copy.deepcopy(cr_manifest)
    manifest["metadata"].setdefault("finalizers", []).append(finalizer)
    return deploy_manager.update_object(manifest)


def remove_finalizer(
    deploy_manager: "DeployManagerBase", cr_manifest: dict, finalizer: str
) -> Optional[dict]:
    """Remove a finalizer from the given CR in the cluster

    Args:
        deploy_manager:  DeployManagerBase
            The client used to update the CR
        cr_manifest:  dict
            The current state of the CR
        finalizer:  str
            The finalizer to remove

    Returns:
        cr_manifest:  Optional[dict]
            The CR as left in the cluster, or None if removing the last
            finalizer let the deletion complete
    """
    if finalizer not in cr_manifest.get("metadata", {}).get("finalizers", []):
        return cr_manifest

    log.debug("Removing finalizer: %s", finalizer)
    metadata = cr_manifest["metadata"]
    success, current = deploy_manager.get_object_current_state(
        kind=cr_manifest["kind"],
        api_version=cr_manifest["apiVersion"],
        name=metadata["name"],
        namespace=metadata.get("namespace"),
    )
    assert_cluster(success, "Failed to look up CR for finalizer removal")
    if not current:
        return None

    manifest = copy.deepcopy(current)
    manifest["metadata"]["finalizers"] = [
        entry for entry in manifest["metadata"].get("finalizers", []) if entry != finalizer
    ]
    return deploy_manager.update_object(manifest)
