"""
Operator config. Values are read from config.yaml and may be overridden with
environment variables or command line arguments. Keys are read as module
attributes, e.g. config.dry_run.
"""

# Local
from .config import library_config, validation_config

__all__ = list(library_config.keys())


def __getattr__(name):
    try:
        return library_config[name]
    except KeyError:
        raise AttributeError(f"No such config attribute {name}") from None
