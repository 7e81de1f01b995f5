#!/usr/bin/env python
"""
The executable entrypoint for the RolloutManager operator. Every key of the
library config can be set on the command line as --<key> (nested keys as
--<outer>.<inner>).
"""

# Standard
from typing import Any, Dict, Iterator, Tuple
import argparse

# First Party
import alog

# Local
from . import config, constants
from .cmd import CmdBase, RunOperatorCmd
from .config import library_config
from .log_format import RolloutsManagerJsonFormatter
from .utils import nested_set

log = alog.use_channel("MAIN")

## Library Config Args #########################################################


def _config_leaves(config_obj: dict, prefix: str = "") -> Iterator[Tuple[str, Any]]:
    """Yield (dotted key, value) for every non-dict value in the config"""
    for key, val in config_obj.items():
        full_key = f"{prefix}{constants.NESTED_DICT_DELIM}{key}" if prefix else key
        if isinstance(val, dict):
            yield from _config_leaves(val, full_key)
        else:
            yield full_key, val


def add_library_config_args(parser, config_obj=None) -> Dict[str, str]:
    """Add an override argument for each value of the library config

    Args:
        parser:  argparse.ArgumentParser or argument group
            The parser to add the arguments to
        config_obj:  Optional[dict]
            The config to generate arguments for. Defaults to the library
            config.

    Returns:
        dest_to_key:  Dict[str, str]
            The parsed argument dest names mapped to dotted config keys
    """
    dest_to_key = {}
    for key, val in _config_leaves(
        library_config if config_obj is None else config_obj
    ):
        option = f"--{key}"
        if option in parser._option_string_actions:  # pylint: disable=protected-access
            continue
        kwargs = {"default": val, "help": f"Library config override for {key}"}
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif isinstance(val, list):
            kwargs["nargs"] = "*"
        elif val is not None:
            kwargs["type"] = type(val)
        dest = key.replace(constants.NESTED_DICT_DELIM, "_")
        parser.add_argument(option, dest=dest, **kwargs)
        dest_to_key[dest] = key
    return dest_to_key


def update_library_config(args: argparse.Namespace, dest_to_key: Dict[str, str]):
    """Write the parsed override arguments back into the library config"""
    for dest, key in dest_to_key.items():
        nested_set(library_config, key, getattr(args, dest))


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, str]]:
    """Register the command along with the library config overrides"""
    parser = cmd.register(subparsers)
    library_args = parser.add_argument_group("Library Configuration")
    return parser, add_library_config_args(library_args)


## Main ########################################################################


def main():
    """Parse the command line, apply the config overrides and run the command"""
    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_parser, dest_to_key = add_command(subparsers, RunOperatorCmd())

    # Without an explicit command, everything is parsed as arguments to run
    check_parser = argparse.ArgumentParser(add_help=False)
    check_parser.add_argument("command", nargs="?")
    check_args, _ = check_parser.parse_known_args()
    if check_args.command in subparsers.choices:
        args = parser.parse_args()
    else:
        args = run_parser.parse_args()

    update_library_config(args, dest_to_key)

    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=RolloutsManagerJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )
    log.debug("Running command %s", args.func)
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
