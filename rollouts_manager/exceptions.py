"""
This module implements custom exceptions
"""

# Standard
from typing import List, Tuple

## Base Error ##################################################################


class RolloutsManagerError(Exception):
    """Base class for all operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not retrying the same input can ever
        succeed
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class RolloutsManagerFatalError(RolloutsManagerError):
    """A RolloutsManagerFatalError is one that will not resolve by retrying the
    same RolloutManager spec. The CR must change before a retry is useful.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(RolloutsManagerFatalError):
    """Exception caused by invalid user-provided configuration in the
    RolloutManager spec
    """


## Expected Errors #############################################################


class RolloutsManagerExpectedError(RolloutsManagerError):
    """A RolloutsManagerExpectedError is one that indicates a failure which is
    expected to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ClusterError(RolloutsManagerExpectedError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class ConflictError(ClusterError):
    """Exception raised when a write is rejected because the resourceVersion it
    was based on is stale, or a create raced with another writer
    """


class ReconcilePassError(RolloutsManagerExpectedError):
    """Exception aggregating the per-resource failures of a single
    reconciliation pass
    """

    def __init__(self, errors: List[Tuple[str, Exception]]):
        self.errors = errors
        message = "; ".join(f"{name}: {err}" for name, err in errors)
        super().__init__(f"{len(errors)} resource(s) failed to reconcile: {message}")


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating the RolloutManager spec.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    object) is required to succeed.
    """
    if not condition:
        raise ClusterError(message)
