"""
Typed validation of the values in a loaded config.

The validation file mirrors the layout of config.yaml. Every leaf is a rule
with a "type" (number, int, str, bool or enum) and optional constraints:

    retry_backoff_base_seconds:
      type: number
      min: 0
    watch_retry_delay:
      type: str
      min_len: 1
"""

# Standard
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

# First Party
import aconfig
import alog

# Local
from .. import constants

log = alog.use_channel("CONFG")

Number = Union[int, float]

# The python types accepted by each rule type. bool is excluded from the
# numeric types explicitly since it is a subclass of int.
_RULE_TYPES = {
    "number": (int, float),
    "int": (int,),
    "str": (str,),
    "bool": (bool,),
    "enum": (str, int, type(None)),
}


@dataclass(frozen=True)
class ParameterRule:  # pylint: disable=too-many-instance-attributes
    """The constraints on a single config value"""

    type: str
    optional: bool = False
    min: Optional[Number] = None  # pylint: disable=redefined-builtin
    max: Optional[Number] = None  # pylint: disable=redefined-builtin
    min_len: Optional[int] = None
    max_len: Optional[int] = None
    values: Optional[Tuple[Any, ...]] = None

    @classmethod
    def from_dict(cls, rule: dict) -> "ParameterRule":
        """Build a rule from its entry in the validation file"""
        assert rule["type"] in _RULE_TYPES, f"Unknown config rule type {rule['type']}"
        rule = dict(rule)
        if rule["type"] == "enum":
            values = rule.get("values")
            assert (
                isinstance(values, list) and values
            ), "Must specify at least one enum value!"
            rule["values"] = tuple(values)
        return cls(**rule)

    def problem(self, value: Any) -> Optional[str]:
        """Check a value against this rule

        Args:
            value:  Any
                The loaded config value

        Returns:
            problem:  Optional[str]
                A description of why the value is invalid, None if it is valid
        """
        if value is None and self.optional:
            return None

        allowed_types = _RULE_TYPES[self.type]
        if isinstance(value, bool) and bool not in allowed_types:
            return f"bool is not a valid {self.type}"
        if not isinstance(value, allowed_types):
            return f"{type(value).__name__} is not a valid {self.type}"

        if self.values is not None and value not in self.values:
            return f"{value} is not one of {list(self.values)}"
        if self.min is not None and value < self.min:
            return f"{value} is below the minimum {self.min}"
        if self.max is not None and value > self.max:
            return f"{value} is above the maximum {self.max}"
        if self.min_len is not None and len(value) < self.min_len:
            return f"length {len(value)} is below the minimum {self.min_len}"
        if self.max_len is not None and len(value) > self.max_len:
            return f"length {len(value)} is above the maximum {self.max_len}"
        return None


## Public ######################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get the nested keys of every config value that breaks its rule

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding the rules

    Returns:
        invalid_params:  List[str]
            Dotted keys of all values that fail validation
    """
    invalid_params = []
    for key, rule in parse_rules(validation_config).items():
        problem = rule.problem(_lookup(config, key))
        if problem:
            log.warning("Found invalid config key [%s]: %s", key, problem)
            invalid_params.append(key)
    return invalid_params


def parse_rules(
    validation_config: dict, prefix: Optional[str] = None
) -> Dict[str, ParameterRule]:
    """Flatten the validation file into rules keyed by dotted config key"""
    rules = {}
    for key, entry in validation_config.items():
        if not isinstance(entry, dict):
            continue
        full_key = constants.NESTED_DICT_DELIM.join(filter(None, [prefix, key]))
        if isinstance(entry.get("type"), str) and entry["type"] in _RULE_TYPES:
            log.debug3("Found rule for %s: %s", full_key, entry)
            rules[full_key] = ParameterRule.from_dict(entry)
        else:
            rules.update(parse_rules(entry, full_key))
    return rules


## Implementation Details ######################################################


def _lookup(config: dict, key: str) -> Any:
    value = config
    for part in key.split(constants.NESTED_DICT_DELIM):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value
