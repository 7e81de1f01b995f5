"""
Typed view of the RolloutManager custom resource spec
"""

# Standard
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Third Party
from kubernetes.utils import parse_quantity

# First Party
import alog

# Local
from .exceptions import ConfigError, assert_config

log = alog.use_channel("API")

QUANTITY_SECTIONS = ["requests", "limits"]
CLAIMS_SECTION = "claims"


@dataclass(frozen=True)
class AdditionalMetadata:
    """Labels and annotations added to every managed object"""

    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RolloutManagerSpec:
    """The parsed spec of a RolloutManager. Instances are immutable for the
    duration of a reconciliation pass.
    """

    namespace_scoped: bool = False
    image: Optional[str] = None
    version: Optional[str] = None
    extra_command_args: List[str] = field(default_factory=list)
    env: List[dict] = field(default_factory=list)
    controller_resources: Optional[dict] = None
    additional_metadata: AdditionalMetadata = field(default_factory=AdditionalMetadata)
    skip_notification_secret_deployment: bool = False

    @classmethod
    def from_manifest(cls, cr_manifest: dict) -> "RolloutManagerSpec":
        """Parse and validate the spec section of a RolloutManager

        Args:
            cr_manifest:  dict
                The full RolloutManager manifest

        Returns:
            spec:  RolloutManagerSpec
                The parsed spec

        Raises:
            ConfigError:  If any field is malformed
        """
        spec = _get_object(cr_manifest, "spec", "spec")
        metadata = _get_object(spec, "additionalMetadata", "spec.additionalMetadata")
        return cls(
            namespace_scoped=_get_bool(spec, "namespaceScoped"),
            image=_get_optional_str(spec, "image"),
            version=_get_optional_str(spec, "version"),
            extra_command_args=_parse_args(spec.get("extraCommandArgs")),
            env=_parse_env(spec.get("env")),
            controller_resources=_parse_resources(spec.get("controllerResources")),
            additional_metadata=AdditionalMetadata(
                labels=_parse_string_map(
                    metadata.get("labels"), "spec.additionalMetadata.labels"
                ),
                annotations=_parse_string_map(
                    metadata.get("annotations"), "spec.additionalMetadata.annotations"
                ),
            ),
            skip_notification_secret_deployment=_get_bool(
                spec, "skipNotificationSecretDeployment"
            ),
        )


## Implementation Details ######################################################


def _get_object(parent: dict, key: str, path: str) -> dict:
    value = parent.get(key)
    if value is None:
        return {}
    assert_config(isinstance(value, dict), f"{path} must be an object")
    return value


def _get_bool(spec: dict, key: str) -> bool:
    value = spec.get(key)
    if value is None:
        return False
    assert_config(isinstance(value, bool), f"spec.{key} must be a boolean")
    return value


def _get_optional_str(spec: dict, key: str) -> Optional[str]:
    value = spec.get(key)
    if value in [None, ""]:
        return None
    assert_config(isinstance(value, str), f"spec.{key} must be a string")
    return value


def _parse_args(args: Any) -> List[str]:
    if args is None:
        return []
    assert_config(
        isinstance(args, list) and all(isinstance(arg, str) for arg in args),
        "spec.extraCommandArgs must be a list of strings",
    )
    return list(args)


def _parse_env(env: Any) -> List[dict]:
    if env is None:
        return []
    assert_config(isinstance(env, list), "spec.env must be a list")
    names = set()
    for entry in env:
        assert_config(
            isinstance(entry, dict) and isinstance(entry.get("name"), str),
            f"spec.env entries must have a string name: {entry}",
        )
        assert_config(
            entry["name"] not in names, f"spec.env has duplicate name {entry['name']}"
        )
        names.add(entry["name"])
    return [dict(entry) for entry in env]


def _parse_resources(resources: Any) -> Optional[dict]:
    if resources is None:
        return None
    assert_config(
        isinstance(resources, dict), "spec.controllerResources must be an object"
    )
    for section, value in resources.items():
        if section == CLAIMS_SECTION:
            _check_claims(value)
            continue
        assert_config(
            section in QUANTITY_SECTIONS,
            f"spec.controllerResources has unknown section {section}",
        )
        _check_quantities(section, value)
    return resources or None


def _check_quantities(section: str, quantities: Any):
    assert_config(
        isinstance(quantities, dict),
        f"spec.controllerResources.{section} must be an object",
    )
    for resource_name, quantity in quantities.items():
        try:
            parse_quantity(quantity)
        except (ValueError, TypeError) as err:
            log.debug("Invalid quantity for %s: %s", resource_name, err)
            raise ConfigError(
                f"spec.controllerResources.{section}.{resource_name} "
                f"has malformed quantity {quantity!r}"
            ) from err


def _check_claims(claims: Any):
    # Each claim names an entry of the pod's resourceClaims
    assert_config(
        isinstance(claims, list)
        and all(
            isinstance(claim, dict) and isinstance(claim.get("name"), str)
            for claim in claims
        ),
        "spec.controllerResources.claims must be a list of objects with a name",
    )


def _parse_string_map(values: Any, path: str) -> Dict[str, str]:
    if values is None:
        return {}
    assert_config(
        isinstance(values, dict)
        and all(
            isinstance(key, str) and isinstance(val, str) for key, val in values.items()
        ),
        f"{path} must map strings to strings",
    )
    return dict(values)
