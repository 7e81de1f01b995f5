"""
Tests for the ResourceSynchronizer
"""

# Third Party
import pytest

# Local
from rollouts_manager import constants
from rollouts_manager.api import RolloutManagerSpec
from rollouts_manager.deploy_manager import ControllerIdentity
from rollouts_manager.desired_state import (
    build_config_map,
    build_deployment,
    build_role,
)
from rollouts_manager.exceptions import ConflictError
from rollouts_manager.synchronizer import ResourceSynchronizer, SyncResult
from rollouts_manager.test_helpers.helpers import (
    TEST_NAMESPACE,
    FailOnce,
    MockDeployManager,
    setup_cr,
)
from rollouts_manager.utils import nested_get, nested_set

## Helpers #####################################################################

IDENTITY = ControllerIdentity.from_manifest(setup_cr())
OTHER_IDENTITY = ControllerIdentity.from_manifest(
    setup_cr(name="other", uid="other-uid")
)


def get_live(dm, desired):
    return dm.get_obj(
        desired["kind"],
        desired["metadata"]["name"],
        desired["metadata"].get("namespace"),
        desired["apiVersion"],
    )


## Tests #######################################################################


def test_create_sets_owner_reference():
    dm = MockDeployManager()
    desired = build_config_map(RolloutManagerSpec(), TEST_NAMESPACE)
    assert ResourceSynchronizer(dm, IDENTITY).sync(desired) == SyncResult.CREATED
    live = get_live(dm, desired)
    assert live["metadata"]["ownerReferences"] == [IDENTITY.owner_reference()]


def test_create_cluster_scoped_sets_owner_annotation():
    dm = MockDeployManager()
    desired = build_role(RolloutManagerSpec(), TEST_NAMESPACE)
    ResourceSynchronizer(dm, IDENTITY).sync(desired)
    live = get_live(dm, desired)
    assert "ownerReferences" not in live["metadata"]
    assert (
        live["metadata"]["annotations"][constants.OWNER_ANNOTATION_NAME]
        == IDENTITY.annotation_value
    )


def test_second_sync_unchanged():
    dm = MockDeployManager()
    desired = build_deployment(RolloutManagerSpec(), TEST_NAMESPACE)
    sync = ResourceSynchronizer(dm, IDENTITY)
    assert sync.sync(desired) == SyncResult.CREATED
    assert sync.sync(desired) == SyncResult.UNCHANGED
    assert not dm.update_object.called


def test_drift_is_corrected():
    """A changed managed field is written back"""
    dm = MockDeployManager()
    desired = build_deployment(RolloutManagerSpec(), TEST_NAMESPACE)
    sync = ResourceSynchronizer(dm, IDENTITY)
    sync.sync(desired)

    live = get_live(dm, desired)
    nested_set(live, "spec.template.spec.containers.0.image", "evil:latest")
    dm.update_object(live)
    dm.reset_write_counts()

    assert sync.sync(desired) == SyncResult.UPDATED
    live = get_live(dm, desired)
    assert nested_get(live, "spec.template.spec.containers.0.image") == (
        f"{constants.DEFAULT_IMAGE}:{constants.DEFAULT_VERSION}"
    )


def test_unmanaged_fields_are_preserved():
    """Fields the operator does not manage, like replicas, are left alone"""
    dm = MockDeployManager()
    desired = build_deployment(RolloutManagerSpec(), TEST_NAMESPACE)
    sync = ResourceSynchronizer(dm, IDENTITY)
    sync.sync(desired)

    live = get_live(dm, desired)
    live["spec"]["replicas"] = 3
    live["metadata"]["labels"]["user"] = "label"
    dm.update_object(live)

    updated = build_deployment(RolloutManagerSpec(extra_command_args=["--x"]), TEST_NAMESPACE)
    assert sync.sync(updated) == SyncResult.UPDATED
    live = get_live(dm, desired)
    assert live["spec"]["replicas"] == 3
    assert live["metadata"]["labels"]["user"] == "label"
    assert nested_get(live, "spec.template.spec.containers.0.args") == ["--x"]


def test_removed_env_is_removed():
    dm = MockDeployManager()
    sync = ResourceSynchronizer(dm, IDENTITY)
    sync.sync(
        build_deployment(
            RolloutManagerSpec(env=[{"name": "FOO", "value": "1"}]), TEST_NAMESPACE
        )
    )
    desired = build_deployment(RolloutManagerSpec(), TEST_NAMESPACE)
    assert sync.sync(desired) == SyncResult.UPDATED
    assert "env" not in nested_get(
        get_live(dm, desired), "spec.template.spec.containers.0"
    )


def test_env_order_and_quantity_format_do_not_cause_updates():
    dm = MockDeployManager()
    sync = ResourceSynchronizer(dm, IDENTITY)
    sync.sync(
        build_deployment(
            RolloutManagerSpec(
                env=[{"name": "A", "value": "1"}, {"name": "B", "value": "2"}],
                controller_resources={"limits": {"memory": "1Gi", "cpu": "1"}},
            ),
            TEST_NAMESPACE,
        )
    )
    equivalent = build_deployment(
        RolloutManagerSpec(
            env=[{"name": "B", "value": "2"}, {"name": "A", "value": "1"}],
            controller_resources={"limits": {"memory": "1024Mi", "cpu": "1000m"}},
        ),
        TEST_NAMESPACE,
    )
    assert sync.sync(equivalent) == SyncResult.UNCHANGED


def test_foreign_object_is_skipped():
    desired = build_config_map(RolloutManagerSpec(), TEST_NAMESPACE)
    foreign = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": desired["metadata"]["name"],
            "namespace": TEST_NAMESPACE,
            "ownerReferences": [OTHER_IDENTITY.owner_reference()],
        },
        "data": {"keep": "me"},
    }
    dm = MockDeployManager(resources=[foreign])
    assert (
        ResourceSynchronizer(dm, IDENTITY).sync(desired) == SyncResult.SKIPPED_FOREIGN
    )
    assert not dm.update_object.called
    assert get_live(dm, desired)["data"] == {"keep": "me"}


def test_unowned_object_is_adopted():
    desired = build_config_map(RolloutManagerSpec(), TEST_NAMESPACE)
    unowned = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": desired["metadata"]["name"], "namespace": TEST_NAMESPACE},
        "data": {"keep": "me"},
    }
    dm = MockDeployManager(resources=[unowned])
    assert ResourceSynchronizer(dm, IDENTITY).sync(desired) == SyncResult.UPDATED
    live = get_live(dm, desired)
    assert live["metadata"]["ownerReferences"] == [IDENTITY.owner_reference()]
    assert live["data"] == {"keep": "me"}


def test_conflict_is_retried():
    dm = MockDeployManager()
    desired = build_deployment(RolloutManagerSpec(), TEST_NAMESPACE)
    sync = ResourceSynchronizer(dm, IDENTITY, conflict_retries=1)
    sync.sync(desired)

    dm.update_fail = FailOnce(ConflictError)
    dm.enable_mocks()
    changed = build_deployment(RolloutManagerSpec(extra_command_args=["--y"]), TEST_NAMESPACE)
    assert sync.sync(changed) == SyncResult.UPDATED
    assert dm.update_object.call_count == 2


def test_conflict_retries_exhausted():
    dm = MockDeployManager(create_fail=ConflictError("raced"))
    desired = build_config_map(RolloutManagerSpec(), TEST_NAMESPACE)
    with pytest.raises(ConflictError):
        ResourceSynchronizer(dm, IDENTITY, conflict_retries=2).sync(desired)
    assert dm.create_object.call_count == 3
