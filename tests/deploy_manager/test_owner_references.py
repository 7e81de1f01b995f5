"""
Tests for the ownership model
"""

# Third Party
import pytest

# Local
from rollouts_manager import constants
from rollouts_manager.deploy_manager.owner_references import (
    ControllerIdentity,
    Ownership,
    foreign_owner_references,
    get_ownership,
    set_ownership,
)
from rollouts_manager.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_INSTANCE_NAME,
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    setup_cr,
)

## Helpers #####################################################################

IDENTITY = ControllerIdentity.from_manifest(setup_cr())


def make_child(namespace=TEST_NAMESPACE, owner_refs=None, annotations=None):
    metadata = {"name": "child"}
    if namespace:
        metadata["namespace"] = namespace
    if owner_refs is not None:
        metadata["ownerReferences"] = owner_refs
    if annotations is not None:
        metadata["annotations"] = annotations
    return {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": metadata}


def foreign_ref(controller=True):
    return {
        "apiVersion": "apps/v1",
        "kind": "ReplicaSet",
        "name": "someone-else",
        "uid": "abcd",
        "controller": controller,
    }


## ControllerIdentity ##########################################################


def test_identity_from_manifest():
    assert IDENTITY.name == TEST_INSTANCE_NAME
    assert IDENTITY.namespace == TEST_NAMESPACE
    assert IDENTITY.uid == TEST_INSTANCE_UID
    assert IDENTITY.annotation_value == (
        f"{TEST_NAMESPACE}/{TEST_INSTANCE_NAME}/{TEST_INSTANCE_UID}"
    )


def test_identity_requires_uid():
    cr = setup_cr()
    del cr["metadata"]["uid"]
    with pytest.raises(AssertionError):
        ControllerIdentity.from_manifest(cr)


def test_owner_reference():
    ref = IDENTITY.owner_reference()
    assert ref["kind"] == constants.ROLLOUT_MANAGER_KIND
    assert ref["apiVersion"] == constants.ROLLOUT_MANAGER_API_VERSION
    assert ref["uid"] == TEST_INSTANCE_UID
    assert ref["controller"] is True
    assert ref["blockOwnerDeletion"] is True


## get_ownership ###############################################################


def test_ownership_missing_object():
    assert get_ownership(IDENTITY, None) == Ownership.UNOWNED


def test_ownership_no_metadata():
    assert get_ownership(IDENTITY, make_child()) == Ownership.UNOWNED


def test_ownership_owner_reference():
    child = make_child(owner_refs=[foreign_ref(False), IDENTITY.owner_reference()])
    assert get_ownership(IDENTITY, child) == Ownership.OWNED


def test_ownership_annotation():
    child = make_child(
        namespace=None,
        annotations={constants.OWNER_ANNOTATION_NAME: IDENTITY.annotation_value},
    )
    assert get_ownership(IDENTITY, child) == Ownership.OWNED


def test_ownership_foreign_reference():
    assert get_ownership(IDENTITY, make_child(owner_refs=[foreign_ref()])) == (
        Ownership.FOREIGN
    )


def test_ownership_foreign_annotation():
    child = make_child(
        namespace=None,
        annotations={
            constants.OWNER_ANNOTATION_NAME: f"{SOME_OTHER_NAMESPACE}/other/1234"
        },
    )
    assert get_ownership(IDENTITY, child) == Ownership.FOREIGN


def test_ownership_stale_annotation_is_adoptable():
    child = make_child(
        namespace=None,
        annotations={
            constants.OWNER_ANNOTATION_NAME: f"{TEST_NAMESPACE}/{TEST_INSTANCE_NAME}/old-uid"
        },
    )
    assert get_ownership(IDENTITY, child) == Ownership.UNOWNED


## set_ownership ###############################################################


def test_set_ownership_namespaced():
    child = make_child(owner_refs=[foreign_ref(False)])
    owned = set_ownership(IDENTITY, child)
    refs = owned["metadata"]["ownerReferences"]
    assert refs == [foreign_ref(False), IDENTITY.owner_reference()]
    assert "annotations" not in owned["metadata"]
    # The input is not modified
    assert child["metadata"]["ownerReferences"] == [foreign_ref(False)]


def test_set_ownership_does_not_duplicate():
    child = make_child(owner_refs=[IDENTITY.owner_reference()])
    owned = set_ownership(IDENTITY, child)
    assert owned["metadata"]["ownerReferences"] == [IDENTITY.owner_reference()]


def test_set_ownership_cluster_scoped():
    child = make_child(namespace=None, annotations={"keep": "me"})
    owned = set_ownership(IDENTITY, child)
    assert owned["metadata"]["annotations"] == {
        "keep": "me",
        constants.OWNER_ANNOTATION_NAME: IDENTITY.annotation_value,
    }
    assert "ownerReferences" not in owned["metadata"]
    assert get_ownership(IDENTITY, owned) == Ownership.OWNED


def test_set_ownership_requires_kind():
    child = make_child()
    del child["kind"]
    with pytest.raises(AssertionError):
        set_ownership(IDENTITY, child)


## foreign_owner_references ##################################################


def test_foreign_owner_references():
    child = make_child(
        owner_refs=[foreign_ref(), foreign_ref(False), IDENTITY.owner_reference()]
    )
    assert foreign_owner_references(IDENTITY, child) == [
        foreign_ref(),
        foreign_ref(False),
    ]


def test_foreign_owner_references_none():
    assert foreign_owner_references(IDENTITY, make_child()) == []
