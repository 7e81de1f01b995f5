"""
Tests for the json log formatter
"""

# Standard
import json
import logging

# Local
from rollouts_manager.log_format import RolloutsManagerJsonFormatter
from rollouts_manager.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    setup_cr,
)


def make_record(**extra):
    record = logging.LogRecord(
        name="SYNC",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )
    for key, val in extra.items():
        setattr(record, key, val)
    return record


def test_formatter_adds_cr_identity():
    cr = setup_cr()
    cr["metadata"]["resourceVersion"] = "7"
    formatter = RolloutsManagerJsonFormatter(cr, "RECONCILE-ID")
    output = json.loads(formatter.format(make_record()))
    assert output["reconciliationId"] == "RECONCILE-ID"
    assert output["kind"] == "RolloutManager"
    assert output["namespace"] == TEST_NAMESPACE
    assert output["resourceName"] == TEST_INSTANCE_NAME
    assert output["resourceVersion"] == "7"


def test_formatter_prefers_record_resource():
    formatter = RolloutsManagerJsonFormatter(setup_cr())
    resource = {"kind": "Deployment", "metadata": {"name": "argo-rollouts"}}
    output = json.loads(formatter.format(make_record(resource=resource)))
    assert output["kind"] == "Deployment"
    assert output["resourceName"] == "argo-rollouts"
    assert "reconciliationId" not in output


def test_formatter_without_resource():
    output = json.loads(RolloutsManagerJsonFormatter().format(make_record()))
    assert "kind" not in output
