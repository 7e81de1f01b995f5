"""
Load the operator config at import time and apply the baseline log
configuration. Every key in config.yaml can be overridden with an upper-cased
environment variable (e.g. DRY_RUN=true).
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from ..exceptions import assert_config
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)


def _load(file_name: str, override_env_vars: bool) -> aconfig.Config:
    return aconfig.Config.from_yaml(
        os.path.join(_CONFIG_DIR, file_name), override_env_vars=override_env_vars
    )


library_config = _load("config.yaml", override_env_vars=True)

# The rules themselves must not be changed from the environment
validation_config = _load("config_validation.yaml", override_env_vars=False)

invalid_params = get_invalid_params(library_config, validation_config)
assert_config(
    not invalid_params,
    f"Operator configuration found invalid values: {invalid_params}",
)

alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter="json" if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)
