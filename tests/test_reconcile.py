"""
Tests for the ReconcileManager
"""

# Standard
from datetime import timedelta
from unittest import mock

# Local
from rollouts_manager import constants
from rollouts_manager.controller import ReconcileState
from rollouts_manager.deploy_manager import DryRunDeployManager
from rollouts_manager.exceptions import ConfigError
from rollouts_manager.log_format import RolloutsManagerJsonFormatter
from rollouts_manager.phase import Phase
from rollouts_manager.reconcile import (
    ReconcileManager,
    RequeueParams,
    ResourceKey,
)
from rollouts_manager.status import get_condition
from rollouts_manager.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    MockDeployManager,
    library_config,
    setup_cr,
)

## Helpers #####################################################################

KEY = ResourceKey(TEST_NAMESPACE, TEST_INSTANCE_NAME)


def get_cr(dm):
    return dm.get_obj(
        constants.ROLLOUT_MANAGER_KIND,
        TEST_INSTANCE_NAME,
        TEST_NAMESPACE,
        constants.ROLLOUT_MANAGER_API_VERSION,
    )


## reconcile ###################################################################


def test_reconcile_missing_cr():
    rm = ReconcileManager(MockDeployManager())
    result = rm.reconcile(KEY)
    assert result.state == ReconcileState.GONE
    assert not result.requeue


def test_reconcile_pending_requeues_after_interval():
    dm = MockDeployManager(resources=[setup_cr()])
    with library_config(requeue_after_seconds=42):
        result = ReconcileManager(dm).reconcile(KEY)
    assert result.state == ReconcileState.ACTIVE
    assert result.phase == Phase.PENDING
    assert result.requeue
    assert result.requeue_params.requeue_after == timedelta(seconds=42)
    assert result.exception is None


def test_reconcile_available_does_not_requeue():
    dm = MockDeployManager(resources=[setup_cr()])
    rm = ReconcileManager(dm)
    rm.reconcile(KEY)
    dm.set_status(
        "Deployment",
        constants.DEFAULT_RESOURCE_NAME,
        TEST_NAMESPACE,
        {"readyReplicas": 1, "observedGeneration": 1},
        api_version="apps/v1",
    )
    result = rm.reconcile(KEY)
    assert result.phase == Phase.AVAILABLE
    assert not result.requeue


def test_reconcile_invalid_spec_does_not_requeue():
    dm = MockDeployManager(resources=[setup_cr(spec={"namespaceScoped": "nope"})])
    result = ReconcileManager(dm).reconcile(KEY)
    assert isinstance(result.exception, ConfigError)
    assert not result.requeue


def test_reconcile_partial_failure_requeues_with_backoff():
    dm = MockDeployManager(resources=[setup_cr()])
    real_create = dm.create_object.side_effect

    def fail_service(manifest):
        if manifest["kind"] == "Service":
            raise RuntimeError("boom")
        return real_create(manifest)

    dm.create_object.side_effect = fail_service
    result = ReconcileManager(dm).reconcile(KEY)
    assert result.requeue
    assert result.requeue_params.requeue_after is None
    assert result.exception is not None


def test_reconcile_paused():
    cr = setup_cr(metadata={"annotations": {constants.PAUSE_ANNOTATION_NAME: "true"}})
    dm = MockDeployManager(resources=[cr])
    result = ReconcileManager(dm).reconcile(KEY)
    assert not result.requeue
    assert not dm.has_obj("Deployment", constants.DEFAULT_RESOURCE_NAME, TEST_NAMESPACE)


def test_reconcile_deleted_cr_is_finalized():
    dm = MockDeployManager(resources=[setup_cr()])
    rm = ReconcileManager(dm)
    rm.reconcile(KEY)
    dm.delete_object(
        constants.ROLLOUT_MANAGER_KIND,
        TEST_INSTANCE_NAME,
        TEST_NAMESPACE,
        constants.ROLLOUT_MANAGER_API_VERSION,
    )
    result = rm.reconcile(KEY)
    assert result.state == ReconcileState.GONE
    assert not result.requeue
    assert get_cr(dm) is None


## safe_reconcile ##############################################################


def test_safe_reconcile_catches_and_records_error():
    dm = MockDeployManager(resources=[setup_cr()])
    rm = ReconcileManager(dm)
    rm.reconcile(KEY)
    assert get_cr(dm)["status"]["phase"] == Phase.PENDING.value

    with mock.patch.object(
        rm.controller, "run", side_effect=RuntimeError("kaboom")
    ):
        result = rm.safe_reconcile(KEY)

    assert result.requeue
    assert result.requeue_params.requeue_after is None
    assert isinstance(result.exception, RuntimeError)
    status = get_cr(dm)["status"]
    assert status["phase"] == Phase.PENDING.value
    cond = get_condition(constants.RECONCILED_CONDITION, status)
    assert cond["reason"] == constants.REASON_RECONCILE_ERROR
    assert "kaboom" in cond["message"]


def test_safe_reconcile_read_failure():
    dm = MockDeployManager(resources=[setup_cr()], get_state_fail=True)
    result = ReconcileManager(dm).safe_reconcile(KEY)
    assert result.requeue
    assert result.exception is not None


## Helpers #####################################################################


def test_requeue_params_default():
    with library_config(requeue_after_seconds=7):
        assert RequeueParams().requeue_after == timedelta(seconds=7)


def test_generate_id_unique():
    assert ReconcileManager.generate_id() != ReconcileManager.generate_id()


def test_setup_deploy_manager_dry_run():
    with library_config(dry_run=True):
        assert isinstance(ReconcileManager.setup_deploy_manager(), DryRunDeployManager)


def test_resource_key_str():
    assert str(KEY) == f"{TEST_NAMESPACE}/{TEST_INSTANCE_NAME}"


## configure_logging ###########################################################


def test_configure_logging_from_config():
    with mock.patch("alog.configure") as configure_mock:
        with library_config(log_level="debug", log_json=False):
            ReconcileManager.configure_logging(
                ReconcileManager.parse_manifest(setup_cr()), "abc"
            )
    kwargs = configure_mock.call_args.kwargs
    assert kwargs["default_level"] == "debug"
    assert kwargs["formatter"] == "pretty"


def test_configure_logging_with_annotations():
    cr = setup_cr(
        metadata={
            "name": TEST_INSTANCE_NAME,
            "namespace": TEST_NAMESPACE,
            "annotations": {
                constants.LOG_DEFAULT_LEVEL_NAME: "debug3",
                constants.LOG_FILTERS_NAME: "SYNC:debug",
                constants.LOG_JSON_NAME: "true",
                constants.LOG_THREAD_ID_NAME: "true",
            },
        }
    )
    with mock.patch("alog.configure") as configure_mock:
        ReconcileManager.configure_logging(ReconcileManager.parse_manifest(cr), "abc")
    kwargs = configure_mock.call_args.kwargs
    assert kwargs["default_level"] == "debug3"
    assert kwargs["filters"] == "SYNC:debug"
    assert isinstance(kwargs["formatter"], RolloutsManagerJsonFormatter)
    assert kwargs["formatter"].reconciliation_id == "abc"
    assert kwargs["thread_id"] is True
