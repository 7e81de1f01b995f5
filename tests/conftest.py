"""
Fixtures shared by every test module
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from rollouts_manager.test_helpers.helpers import configure_logging

configure_logging()


@pytest.fixture(autouse=True)
def isolated_kube_client():
    """Keep a developer's KUBECONFIG out of the tests. Anything that tries to
    build a client from it fails.
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config",
        side_effect=RuntimeError("no kubeconfig in tests"),
    ):
        yield
