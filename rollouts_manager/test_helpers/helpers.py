"""
Shared fixtures for the rollouts_manager tests
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import copy
import os

# First Party
import alog

# Local
from rollouts_manager import constants
from rollouts_manager.config import library_config as _config
from rollouts_manager.deploy_manager.dry_run_deploy_manager import DryRunDeployManager

log = alog.use_channel("TEST")

TEST_INSTANCE_NAME = "test-instance"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"

_UNSET = object()


def configure_logging():
    """Quiet by default. LOG_LEVEL, LOG_FILTERS, LOG_JSON and LOG_THREAD_ID
    turn on output while debugging a test.
    """
    alog.configure(
        default_level=os.environ.get("LOG_LEVEL", "off"),
        filters=os.environ.get("LOG_FILTERS", ""),
        formatter="json" if _env_flag("LOG_JSON") else "pretty",
        thread_id=_env_flag("LOG_THREAD_ID"),
    )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() == "true"


configure_logging()


def setup_cr(
    spec=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    uid=TEST_INSTANCE_UID,
    **kwargs,
) -> dict:
    """Build a RolloutManager manifest. Extra top level fields are passed
    through kwargs and win over the defaults.
    """
    manifest = copy.deepcopy(kwargs)
    manifest.setdefault("kind", constants.ROLLOUT_MANAGER_KIND)
    manifest.setdefault("apiVersion", constants.ROLLOUT_MANAGER_API_VERSION)
    metadata = manifest.setdefault("metadata", {})
    for key, val in (("name", name), ("namespace", namespace), ("uid", uid)):
        metadata.setdefault(key, val)
    manifest.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    return manifest


@contextmanager
def library_config(**overrides):
    """Override top level config values for the duration of the block"""
    saved = {key: _config.get(key, _UNSET) for key in overrides}
    for key, val in overrides.items():
        _config[key] = val
    try:
        yield
    finally:
        for key, val in saved.items():
            if val is _UNSET:
                del _config[key]
            else:
                _config[key] = val


def _is_exception(val) -> bool:
    return isinstance(val, BaseException) or (
        isinstance(val, type) and issubclass(val, BaseException)
    )


def get_failable_method(fail_flag, method, failure_return=False):
    """Wrap method so that it misbehaves according to fail_flag

    Args:
        fail_flag:  Any
            An exception (class or instance) is raised on every call. A
            callable is invoked on every call and its result, when not None,
            is used as the flag for that call. Any other truthy value makes
            the call return failure_return.
        method:  Callable
            The real implementation
        failure_return:  Any
            What a failed call returns

    Returns:
        failable_method:  Callable
            The wrapped method
    """

    def failable_method(*args, **kwargs):
        flag = fail_flag
        if callable(flag) and not _is_exception(flag):
            flag = flag()
            if flag is None:
                return method(*args, **kwargs)
        if _is_exception(flag):
            log.debug4("Raising %s from %s", flag, method)
            raise flag
        if flag:
            log.debug4("Returning %s from %s", failure_return, method)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Fail flag that only trips on one call, the first by default"""

    def __init__(self, fail_val, fail_number=1):
        self.fail_val = fail_val
        self.fail_number = fail_number
        self.call_count = 0

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count != self.fail_number:
            return None
        log.debug("Tripping on call %d with %s", self.call_count, self.fail_val)
        if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
            return self.fail_val(f"Failing call {self.call_count}")
        return self.fail_val


# Method name -> (fail flag attribute, return value of a failed call)
_FAILABLE_METHODS = {
    "get_object_current_state": ("get_state_fail", (False, None)),
    "create_object": ("create_fail", False),
    "update_object": ("update_fail", False),
    "delete_object": ("delete_fail", False),
    "set_status": ("set_status_fail", (False, False)),
    "watch_objects": ("watch_fail", []),
}

_WRITE_METHODS = ("create_object", "update_object", "delete_object")


class MockDeployManager(DryRunDeployManager):
    """DryRunDeployManager whose operations are mock.Mock objects that can be
    told to fail through the *_fail flags
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        get_state_fail=False,
        create_fail=False,
        update_fail=False,
        delete_fail=False,
        set_status_fail=False,
        watch_fail=False,
        resources=None,
        unavailable_kinds=None,
    ):
        super().__init__(resources=resources, unavailable_kinds=unavailable_kinds)
        self.get_state_fail = get_state_fail
        self.create_fail = create_fail
        self.update_fail = update_fail
        self.delete_fail = delete_fail
        self.set_status_fail = set_status_fail
        self.watch_fail = watch_fail
        self.enable_mocks()

    def enable_mocks(self):
        """(Re)build the mocks from the current fail flags. Call counts start
        over.
        """
        for method_name, (flag_attr, failure_return) in _FAILABLE_METHODS.items():
            real_method = getattr(DryRunDeployManager, method_name).__get__(self)
            failable = get_failable_method(
                getattr(self, flag_attr), real_method, failure_return
            )
            setattr(self, method_name, mock.Mock(side_effect=failable))

    def reset_write_counts(self):
        for method_name in (*_WRITE_METHODS, "set_status"):
            getattr(self, method_name).reset_mock()

    def write_count(self) -> int:
        """Number of create, update and delete calls. Status writes are not
        counted.
        """
        return sum(getattr(self, name).call_count for name in _WRITE_METHODS)

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None
