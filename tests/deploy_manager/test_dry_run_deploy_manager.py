"""
Tests for the in-memory DryRunDeployManager
"""

# Standard
import threading

# Third Party
import pytest

# Local
from rollouts_manager.deploy_manager import (
    DryRunDeployManager,
    KubeEventType,
    KubeWatchEvent,
)
from rollouts_manager.deploy_manager.dry_run_deploy_manager import match_selector
from rollouts_manager.exceptions import ClusterError, ConflictError
from rollouts_manager.test_helpers.helpers import TEST_NAMESPACE

## Helpers #####################################################################


def make_obj(name="obj", kind="ConfigMap", namespace=TEST_NAMESPACE, **kwargs):
    obj = {
        "apiVersion": "v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace},
    }
    obj.update(kwargs)
    return obj


## Reads #######################################################################


def test_initial_resources():
    dm = DryRunDeployManager(resources=[make_obj()])
    success, obj = dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE)
    assert success
    assert obj["metadata"]["uid"]
    assert obj["metadata"]["resourceVersion"]


def test_missing_object():
    dm = DryRunDeployManager()
    assert dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_reads_are_copies():
    dm = DryRunDeployManager(resources=[make_obj()])
    _, obj = dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE)
    obj["metadata"]["name"] = "changed"
    _, obj = dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE)
    assert obj["metadata"]["name"] == "obj"


def test_filter_by_label_selector():
    dm = DryRunDeployManager(
        resources=[
            make_obj("a", metadata={"name": "a", "namespace": "x", "labels": {"k": "1"}}),
            make_obj("b", metadata={"name": "b", "namespace": "x", "labels": {"k": "2"}}),
            make_obj("c", metadata={"name": "c", "namespace": "y", "labels": {"k": "1"}}),
        ]
    )
    _, objs = dm.filter_objects_current_state("ConfigMap", label_selector="k=1")
    assert sorted(obj["metadata"]["name"] for obj in objs) == ["a", "c"]
    _, objs = dm.filter_objects_current_state(
        "ConfigMap", namespace="x", label_selector="k in (1, 2)"
    )
    assert len(objs) == 2


def test_filter_by_field_selector():
    dm = DryRunDeployManager(resources=[make_obj("a"), make_obj("b")])
    _, objs = dm.filter_objects_current_state(
        "ConfigMap", field_selector="metadata.name=b"
    )
    assert [obj["metadata"]["name"] for obj in objs] == ["b"]


@pytest.mark.parametrize(
    ["selector", "expected"],
    [
        ("a=1", True),
        ("a==1", True),
        ("a!=1", False),
        ("a=1,b=2", True),
        ("a=1,b=3", False),
        ("b in (2, 3)", True),
        ("b notin (2, 3)", False),
        ("a", True),
        ("!c", True),
        ("!a", False),
    ],
)
def test_match_selector(selector, expected):
    assert match_selector({"a": "1", "b": "2"}, selector) == expected


def test_has_kind():
    dm = DryRunDeployManager(unavailable_kinds=[("monitoring.coreos.com/v1", "ServiceMonitor")])
    assert dm.has_kind("ConfigMap", "v1")
    assert not dm.has_kind("ServiceMonitor", "monitoring.coreos.com/v1")


## Writes ######################################################################


def test_create_conflict():
    dm = DryRunDeployManager(resources=[make_obj()])
    with pytest.raises(ConflictError):
        dm.create_object(make_obj())


def test_update_stale_resource_version():
    dm = DryRunDeployManager(resources=[make_obj()])
    _, obj = dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE)
    obj["data"] = {"a": "1"}
    dm.update_object(obj)
    obj["data"] = {"a": "2"}
    with pytest.raises(ConflictError):
        dm.update_object(obj)


def test_update_missing():
    dm = DryRunDeployManager()
    with pytest.raises(ClusterError):
        dm.update_object(make_obj())


def test_update_bumps_generation_on_spec_change():
    dm = DryRunDeployManager()
    created = dm.create_object(make_obj(kind="Thing", spec={"a": 1}))
    assert created["metadata"]["generation"] == 1
    updated = dm.update_object(
        {**created, "metadata": {**created["metadata"], "labels": {"x": "y"}}}
    )
    assert updated["metadata"]["generation"] == 1
    updated["spec"] = {"a": 2}
    updated = dm.update_object(updated)
    assert updated["metadata"]["generation"] == 2


def test_update_keeps_status():
    dm = DryRunDeployManager(resources=[make_obj()])
    dm.set_status("ConfigMap", "obj", TEST_NAMESPACE, {"phase": "x"})
    _, obj = dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE)
    obj["status"] = {"phase": "overwritten"}
    updated = dm.update_object(obj)
    assert updated["status"] == {"phase": "x"}


def test_delete_with_finalizer():
    obj = make_obj()
    obj["metadata"]["finalizers"] = ["f"]
    dm = DryRunDeployManager(resources=[obj])
    assert dm.delete_object("ConfigMap", "obj", TEST_NAMESPACE)
    _, current = dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE)
    assert current["metadata"]["deletionTimestamp"]

    current["metadata"]["finalizers"] = []
    assert dm.update_object(current) is None
    assert dm.get_object_current_state("ConfigMap", "obj", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_delete_missing():
    assert not DryRunDeployManager().delete_object("ConfigMap", "obj", TEST_NAMESPACE)


def test_set_status_missing():
    assert DryRunDeployManager().set_status(
        "ConfigMap", "obj", TEST_NAMESPACE, {}
    ) == (False, False)


def test_cluster_scoped_objects():
    dm = DryRunDeployManager()
    dm.create_object(make_obj("role", kind="ClusterRole", namespace=None))
    _, obj = dm.get_object_current_state("ClusterRole", "role")
    assert obj is not None
    assert dm.delete_object("ClusterRole", "role")
    assert dm.get_object_current_state("ClusterRole", "role") == (True, None)


## Watches #####################################################################


@pytest.mark.timeout(5)
def test_watch_objects():
    dm = DryRunDeployManager(resources=[make_obj("existing")])
    events = []
    stream = dm.watch_objects("ConfigMap", "v1", namespace=TEST_NAMESPACE, timeout=2)

    # The initial listing is produced before the generator blocks
    events.append(next(stream))

    def write():
        dm.create_object(make_obj("new"))
        dm.delete_object("ConfigMap", "new", TEST_NAMESPACE)

    threading.Thread(target=write).start()
    for event in stream:
        events.append(event)
        if len(events) == 3:
            break

    assert [(event.type, event.name) for event in events] == [
        (KubeEventType.ADDED, "existing"),
        (KubeEventType.ADDED, "new"),
        (KubeEventType.DELETED, "new"),
    ]


def test_register_watch_callbacks():
    dm = DryRunDeployManager()
    seen = []
    dm.register_watch("v1", "ConfigMap", seen.append)
    dm.register_delete_watch("v1", "ConfigMap", lambda obj: seen.append("deleted"))
    dm.create_object(make_obj())
    dm.delete_object("ConfigMap", "obj", TEST_NAMESPACE)
    assert len(seen) == 2
    assert seen[0]["metadata"]["name"] == "obj"
    assert seen[1] == "deleted"


## KubeWatchEvent ##############################################################


def test_watch_event_from_stream_event():
    class Model:
        def to_dict(self):
            return make_obj(metadata={"name": "m", "resourceVersion": "3"})

    event = KubeWatchEvent.from_stream_event({"type": "DELETED", "object": Model()})
    assert event.type == KubeEventType.DELETED
    assert event.name == "m"
    assert event.namespace is None
    assert event.resource_version == "3"
