"""
Tests for the desired-state builder
"""

# Local
from rollouts_manager import constants
from rollouts_manager.api import AdditionalMetadata, RolloutManagerSpec
from rollouts_manager.desired_state import (
    ResourceId,
    all_resource_ids,
    build_deployment,
    build_desired_resources,
    build_metrics_service,
    desired_args,
    desired_image,
    stale_resource_ids,
)
from rollouts_manager.test_helpers.helpers import TEST_NAMESPACE
from rollouts_manager.utils import nested_get

## Helpers #####################################################################


def kinds(resources):
    return [resource["kind"] for resource in resources]


def container(deployment):
    return nested_get(deployment, "spec.template.spec.containers.0")


## build_desired_resources #####################################################


def test_cluster_scoped_order():
    """The default spec builds cluster RBAC in the reconciliation order"""
    resources = build_desired_resources(RolloutManagerSpec(), TEST_NAMESPACE)
    assert kinds(resources) == [
        "ServiceAccount",
        "ClusterRole",
        "ClusterRoleBinding",
        "ConfigMap",
        "Secret",
        "Deployment",
        "Service",
        constants.SERVICE_MONITOR_KIND,
    ]
    cluster_role = resources[1]
    assert "namespace" not in cluster_role["metadata"]
    binding = resources[2]
    assert binding["roleRef"]["kind"] == "ClusterRole"
    assert binding["subjects"] == [
        {
            "kind": "ServiceAccount",
            "name": constants.DEFAULT_RESOURCE_NAME,
            "namespace": TEST_NAMESPACE,
        }
    ]


def test_namespace_scoped_rbac():
    resources = build_desired_resources(
        RolloutManagerSpec(namespace_scoped=True), TEST_NAMESPACE
    )
    assert kinds(resources)[1:3] == ["Role", "RoleBinding"]
    assert resources[1]["metadata"]["namespace"] == TEST_NAMESPACE
    assert resources[2]["roleRef"]["kind"] == "Role"


def test_skip_notification_secret():
    resources = build_desired_resources(
        RolloutManagerSpec(skip_notification_secret_deployment=True), TEST_NAMESPACE
    )
    assert "Secret" not in kinds(resources)


def test_deterministic():
    spec = RolloutManagerSpec(
        extra_command_args=["--a"],
        additional_metadata=AdditionalMetadata(labels={"x": "y"}),
    )
    assert build_desired_resources(spec, TEST_NAMESPACE) == build_desired_resources(
        spec, TEST_NAMESPACE
    )


def test_baseline_labels_on_every_object():
    for resource in build_desired_resources(RolloutManagerSpec(), TEST_NAMESPACE):
        labels = resource["metadata"]["labels"]
        assert labels[constants.PART_OF_LABEL] == constants.DEFAULT_RESOURCE_NAME


def test_additional_metadata_applied():
    """Additional labels win over the baseline and a provenance record is
    added"""
    spec = RolloutManagerSpec(
        additional_metadata=AdditionalMetadata(
            labels={"team": "a", constants.COMPONENT_LABEL: "custom"},
            annotations={"note": "b"},
        )
    )
    for resource in build_desired_resources(spec, TEST_NAMESPACE):
        metadata = resource["metadata"]
        assert metadata["labels"]["team"] == "a"
        assert metadata["labels"][constants.COMPONENT_LABEL] == "custom"
        assert metadata["annotations"]["note"] == "b"
        assert constants.METADATA_PROVENANCE_ANNOTATION_NAME in metadata["annotations"]


def test_no_annotations_without_additional_metadata():
    for resource in build_desired_resources(RolloutManagerSpec(), TEST_NAMESPACE):
        assert "annotations" not in resource["metadata"]


## Deployment ##################################################################


def test_desired_image_default():
    assert desired_image(RolloutManagerSpec()) == (
        f"{constants.DEFAULT_IMAGE}:{constants.DEFAULT_VERSION}"
    )


def test_desired_image_requires_both_parts():
    """A custom image is only used when both image and version are set"""
    assert desired_image(RolloutManagerSpec(image="quay.io/me/ro")) == (
        f"{constants.DEFAULT_IMAGE}:{constants.DEFAULT_VERSION}"
    )
    assert (
        desired_image(RolloutManagerSpec(image="quay.io/me/ro", version="v2"))
        == "quay.io/me/ro:v2"
    )


def test_desired_args():
    assert desired_args(RolloutManagerSpec()) == []
    assert desired_args(
        RolloutManagerSpec(namespace_scoped=True, extra_command_args=["--x", "--x"])
    ) == [constants.NAMESPACED_ARG, "--x", "--x"]


def test_deployment_container():
    deployment = build_deployment(
        RolloutManagerSpec(
            env=[{"name": "FOO", "value": "bar"}],
            controller_resources={"requests": {"cpu": "100m"}},
        ),
        TEST_NAMESPACE,
    )
    ctr = container(deployment)
    assert ctr["name"] == constants.CONTAINER_NAME
    assert ctr["env"] == [{"name": "FOO", "value": "bar"}]
    assert ctr["resources"] == {"requests": {"cpu": "100m"}}
    assert {port["containerPort"] for port in ctr["ports"]} == {
        constants.METRICS_PORT,
        constants.HEALTHZ_PORT,
    }
    assert (
        nested_get(deployment, "spec.template.spec.serviceAccountName")
        == constants.DEFAULT_RESOURCE_NAME
    )


def test_deployment_without_env_or_resources():
    ctr = container(build_deployment(RolloutManagerSpec(), TEST_NAMESPACE))
    assert "env" not in ctr
    assert "resources" not in ctr


def test_deployment_selector_label_wins():
    """A user label can not break the pod selector"""
    spec = RolloutManagerSpec(
        additional_metadata=AdditionalMetadata(
            labels={constants.NAME_LABEL: "something-else"}
        )
    )
    deployment = build_deployment(spec, TEST_NAMESPACE)
    selector = nested_get(deployment, "spec.selector.matchLabels")
    template_labels = nested_get(deployment, "spec.template.metadata.labels")
    for key, val in selector.items():
        assert template_labels[key] == val


def test_metrics_service():
    service = build_metrics_service(RolloutManagerSpec(), TEST_NAMESPACE)
    assert service["metadata"]["name"] == constants.METRICS_SERVICE_NAME
    assert service["metadata"]["labels"][constants.NAME_LABEL] == (
        constants.METRICS_SERVICE_NAME
    )
    assert service["spec"]["ports"][0]["port"] == constants.METRICS_PORT


## Resource ids ################################################################


def test_stale_resource_ids_cluster_scoped():
    stale = stale_resource_ids(RolloutManagerSpec(), TEST_NAMESPACE)
    assert {(rid.kind, rid.namespace) for rid in stale} == {
        ("Role", TEST_NAMESPACE),
        ("RoleBinding", TEST_NAMESPACE),
    }


def test_stale_resource_ids_namespace_scoped_skip_secret():
    stale = stale_resource_ids(
        RolloutManagerSpec(
            namespace_scoped=True, skip_notification_secret_deployment=True
        ),
        TEST_NAMESPACE,
    )
    assert {rid.kind for rid in stale} == {
        "ClusterRole",
        "ClusterRoleBinding",
        "Secret",
    }


def test_all_resource_ids_never_include_aggregate_roles():
    ids = all_resource_ids(TEST_NAMESPACE)
    assert len(ids) == len(constants.MANAGED_KINDS)
    names = {rid.name for rid in ids}
    for name in constants.AGGREGATE_CLUSTER_ROLE_NAMES:
        assert name not in names


def test_resource_id_str():
    assert str(ResourceId("v1", "Secret", "s", "ns")) == "Secret/ns/s"
    assert str(ResourceId("v1", "ClusterRole", "r", None)) == "ClusterRole/r"
