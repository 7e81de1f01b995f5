"""
This module holds the typed ownership model used to decide whether the
operator may mutate or delete a live object.

Namespaced objects carry an ownerReference to the owning RolloutManager.
ownerReferences can not point across scopes, so cluster-scoped objects carry
the same identity in an annotation instead.
"""

# Standard
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import copy

# First Party
import alog

# Local
from .. import constants

log = alog.use_channel("OWNRF")


class Ownership(Enum):
    """The relationship between a live object and a RolloutManager"""

    # A reference set by this RolloutManager is present
    OWNED = "owned"

    # No ownership information at all
    UNOWNED = "unowned"

    # Only references set by someone else
    FOREIGN = "foreign"


@dataclass(frozen=True)
class ControllerIdentity:
    """The identity of a RolloutManager instance as recorded on the objects it
    manages
    """

    api_version: str
    kind: str
    name: str
    namespace: str
    uid: str

    @classmethod
    def from_manifest(cls, owner_cr: dict) -> "ControllerIdentity":
        """Build the identity from the full CR manifest"""
        _validate_object_struct(owner_cr)
        metadata = owner_cr["metadata"]
        assert metadata.get("uid"), "Got owner object without 'metadata.uid'"
        return cls(
            api_version=owner_cr["apiVersion"],
            kind=owner_cr["kind"],
            name=metadata["name"],
            namespace=metadata["namespace"],
            uid=metadata["uid"],
        )

    @property
    def annotation_value(self) -> str:
        return f"{self.namespace}/{self.name}/{self.uid}"

    def owner_reference(self) -> dict:
        """Make the controller owner reference for this identity"""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            # The owner will not be deleted until this object completes its
            # deletion
            "blockOwnerDeletion": True,
        }

    def is_reference(self, owner_ref: dict) -> bool:
        return owner_ref.get("uid") == self.uid


## Public ######################################################################


def get_ownership(identity: ControllerIdentity, obj: Optional[dict]) -> Ownership:
    """Classify a live object relative to the given RolloutManager

    Args:
        identity:  ControllerIdentity
            The RolloutManager doing the reconciliation
        obj:  Optional[dict]
            The live object

    Returns:
        ownership:  Ownership
            OWNED if a reference set by this identity is present, UNOWNED if no
            ownership information is present and FOREIGN otherwise
    """
    if obj is None:
        return Ownership.UNOWNED
    metadata = obj.get("metadata", {})
    owner_refs = metadata.get("ownerReferences") or []
    annotation = (metadata.get("annotations") or {}).get(
        constants.OWNER_ANNOTATION_NAME
    )

    if any(identity.is_reference(ref) for ref in owner_refs):
        return Ownership.OWNED
    if annotation == identity.annotation_value:
        return Ownership.OWNED
    if owner_refs:
        log.debug3("Found foreign owner references: %s", owner_refs)
        return Ownership.FOREIGN
    if annotation:
        # An annotation left by a previous instance of the same RolloutManager
        # is stale rather than foreign
        if annotation.split("/")[:2] == [identity.namespace, identity.name]:
            return Ownership.UNOWNED
        return Ownership.FOREIGN
    return Ownership.UNOWNED


def foreign_owner_references(identity: ControllerIdentity, obj: dict) -> List[dict]:
    """Get the owner references on the object that were not set by the given
    identity, controller or not
    """
    return [
        ref
        for ref in obj.get("metadata", {}).get("ownerReferences") or []
        if not identity.is_reference(ref)
    ]


def set_ownership(identity: ControllerIdentity, child_obj: dict) -> dict:
    """Return a copy of the child object carrying this identity's ownership.

    Objects in the owner's namespace get a controller ownerReference. Any
    other object (cluster-scoped kinds) gets the ownership annotation.
    """
    _validate_object_struct(child_obj, require_namespace=False)
    child_obj = copy.deepcopy(child_obj)
    metadata = child_obj["metadata"]
    if metadata.get("namespace") == identity.namespace:
        owner_refs = [
            ref
            for ref in metadata.get("ownerReferences") or []
            if not identity.is_reference(ref)
        ]
        owner_refs.append(identity.owner_reference())
        log.debug4("Final owner refs: %s", owner_refs)
        metadata["ownerReferences"] = owner_refs
    else:
        annotations = metadata.get("annotations") or {}
        annotations[constants.OWNER_ANNOTATION_NAME] = identity.annotation_value
        metadata["annotations"] = annotations
    return child_obj


## Implementation Details ######################################################


def _validate_object_struct(obj: dict, require_namespace: bool = True):
    """Ensure that the required portions of an object are present (kind,
    apiVersion, metadata.name and optionally metadata.namespace)
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"
    if require_namespace:
        assert "namespace" in metadata, "Got object without 'metadata.namespace'"
