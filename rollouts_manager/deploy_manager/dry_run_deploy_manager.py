"""
The DryRunDeployManager implements the DeployManager interface but does not
interact with a cluster. It holds the state of the cluster in a local map and
mimics the parts of the API server the operator relies on: resourceVersion
conflicts, finalizers, the status subresource and watches.
"""

# Standard
from datetime import datetime, timedelta
from functools import partial
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import copy
import re
import uuid

# First Party
import alog

# Local
from ..exceptions import ClusterError, ConflictError
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# Lock to ensure writes are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        unavailable_kinds: Optional[List[Tuple[str, str]]] = None,
    ):
        """Construct with optional initial cluster content

        Args:
            resources:  Optional[List[dict]]
                Objects that exist in the cluster before the manager is used
            unavailable_kinds:  Optional[List[Tuple[str, str]]]
                (api_version, kind) pairs the simulated cluster does not serve
        """
        self._cluster_content = {}
        self._resource_version = 0
        self._unavailable_kinds = set(unavailable_kinds or [])

        # Dicts of registered watches
        self._watches = {}
        self._delete_watches = {}

        for resource in resources or []:
            self._store(copy.deepcopy(resource), new=True)

    ## Reads ###################################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        current = self._lookup(kind, name, namespace, api_version)
        return True, copy.deepcopy(current)

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug2(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            namespaces = (
                [namespace] if namespace is not None else list(self._cluster_content)
            )
            for ns in namespaces:
                kind_entries = self._cluster_content.get(ns, {}).get(kind, {})
                for api_ver, entries in kind_entries.items():
                    if api_version is not None and api_ver != api_version:
                        continue
                    for resource in entries.values():
                        labels = resource.get("metadata", {}).get("labels", {})
                        if label_selector and not match_selector(
                            labels, label_selector
                        ):
                            continue
                        if field_selector and not match_selector(
                            _flatten(resource), field_selector
                        ):
                            continue
                        matches.append(copy.deepcopy(resource))
        return True, matches

    def has_kind(self, kind, api_version):
        return (api_version, kind) not in self._unavailable_kinds

    def watch_objects(  # pylint: disable=too-many-arguments,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks. The stream starts with an ADDED event per existing object.
        """
        event_queue = Queue()
        seen = set()

        def write_event(seen: set, manifest: dict):
            key = _object_key(manifest)
            event_type = KubeEventType.MODIFIED if key in seen else KubeEventType.ADDED
            seen.add(key)
            event_queue.put(KubeWatchEvent(type=event_type, resource=manifest))

        def delete_event(seen: set, manifest: dict):
            seen.discard(_object_key(manifest))
            event_queue.put(KubeWatchEvent(type=KubeEventType.DELETED, resource=manifest))

        # Register before listing so nothing written in between is lost
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=partial(write_event, seen),
        )
        self.register_delete_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=partial(delete_event, seen),
        )

        _, manifests = self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        for manifest in manifests:
            if name and manifest["metadata"].get("name") != name:
                continue
            seen.add(_object_key(manifest))
            event = KubeWatchEvent(type=KubeEventType.ADDED, resource=manifest)
            log.debug2("Yielding initial event %s", event)
            yield event

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)

        log.debug2("Waiting till %s", end_time)
        while datetime.now() < end_time:
            remaining = (end_time - datetime.now()).total_seconds()
            try:
                event = event_queue.get(timeout=max(min(remaining, 1.0), 0.01))
            except Empty:
                continue
            log.debug2("Yielding event %s", event)
            yield event

    ## Writes ##################################################################

    def create_object(self, manifest):
        manifest = copy.deepcopy(manifest)
        metadata = manifest.setdefault("metadata", {})
        log.debug(
            "DRY RUN create [%s/%s] in [%s]",
            manifest.get("kind"),
            metadata.get("name"),
            metadata.get("namespace"),
        )
        with DRY_RUN_CLUSTER_LOCK:
            if self._lookup(
                manifest.get("kind"),
                metadata.get("name"),
                metadata.get("namespace"),
                manifest.get("apiVersion"),
            ):
                raise ConflictError(
                    f"{manifest.get('kind')}/{metadata.get('name')} already exists"
                )
            for key in ["resourceVersion", "uid", "deletionTimestamp"]:
                metadata.pop(key, None)
            metadata["generation"] = 1
            stored = self._store(manifest, new=True)
        self._notify(stored)
        return copy.deepcopy(stored)

    def update_object(self, manifest):
        manifest = copy.deepcopy(manifest)
        metadata = manifest.setdefault("metadata", {})
        kind, api_version = manifest.get("kind"), manifest.get("apiVersion")
        name, namespace = metadata.get("name"), metadata.get("namespace")
        log.debug("DRY RUN update [%s/%s] in [%s]", kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._lookup(kind, name, namespace, api_version)
            if current is None:
                raise ClusterError(f"{kind}/{name} not found in [{namespace}]")
            current_md = current["metadata"]
            requested_version = metadata.get("resourceVersion")
            if requested_version and requested_version != current_md["resourceVersion"]:
                raise ConflictError(
                    f"{kind}/{name} resourceVersion {requested_version} is stale"
                )

            # Fields owned by the server are carried over
            for key in ["uid", "creationTimestamp", "deletionTimestamp", "generation"]:
                if key in current_md:
                    metadata[key] = current_md[key]
                else:
                    metadata.pop(key, None)
            if "status" in current:
                manifest["status"] = current["status"]
            else:
                manifest.pop("status", None)
            if _spec_of(manifest) != _spec_of(current):
                metadata["generation"] = current_md.get("generation", 1) + 1

            if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
                self._remove(kind, name, namespace, api_version)
                removed = manifest
            else:
                removed = None
                stored = self._store(manifest)

        if removed is not None:
            self._notify(removed, deleted=True)
            return None
        self._notify(stored)
        return copy.deepcopy(stored)

    def delete_object(self, kind, name, namespace=None, api_version=None):
        log.debug("DRY RUN delete [%s/%s] in [%s]", kind, name, namespace)
        with DRY_RUN_CLUSTER_LOCK:
            current = self._lookup(kind, name, namespace, api_version)
            if current is None:
                return False
            current = copy.deepcopy(current)
            if current["metadata"].get("finalizers"):
                current["metadata"].setdefault(
                    "deletionTimestamp", datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ")
                )
                stored = self._store(current)
                deleted = False
            else:
                self._remove(kind, name, namespace, current.get("apiVersion"))
                stored = current
                deleted = True
        self._notify(stored, deleted=deleted)
        return True

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        with DRY_RUN_CLUSTER_LOCK:
            current = self._lookup(kind, name, namespace, api_version)
            if current is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            current = copy.deepcopy(current)
            prev_status = current.get("status")
            current["status"] = copy.deepcopy(status)
            stored = self._store(current)
        self._notify(stored)
        return True, prev_status != status

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace: Optional[str] = "",
        name: Optional[str] = "",
    ):
        """Register a callback for create/update events on a given
        api_version/kind
        """
        watch_key = self._watch_key(api_version, kind, namespace, name)
        log.debug("Registering watch for %s", watch_key)
        self._watches.setdefault(watch_key, []).append(callback)

    def register_delete_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace: Optional[str] = "",
        name: Optional[str] = "",
    ):
        """Register a callback for removal events on a given api_version/kind"""
        watch_key = self._watch_key(api_version, kind, namespace, name)
        log.debug("Registering delete watch for %s", watch_key)
        self._delete_watches.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    def _lookup(self, kind, name, namespace, api_version) -> Optional[dict]:
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        matches = [
            entries[name]
            for api_ver, entries in kind_entries.items()
            if name in entries and (api_version is None or api_ver == api_version)
        ]
        if len(matches) == 1:
            return matches[0]
        return None

    def _store(self, manifest: dict, new: bool = False) -> dict:
        metadata = manifest.setdefault("metadata", {})
        with DRY_RUN_CLUSTER_LOCK:
            self._resource_version += 1
            metadata["resourceVersion"] = str(self._resource_version)
            if new:
                metadata.setdefault("uid", str(uuid.uuid4()))
                metadata.setdefault("creationTimestamp", datetime.now().isoformat())
            (
                self._cluster_content.setdefault(metadata.get("namespace"), {})
                .setdefault(manifest.get("kind"), {})
                .setdefault(manifest.get("apiVersion"), {})
            )[metadata.get("name")] = manifest
        return manifest

    def _remove(self, kind, name, namespace, api_version):
        by_kind = self._cluster_content[namespace][kind]
        api_ver = api_version or next(ver for ver, ent in by_kind.items() if name in ent)
        del by_kind[api_ver][name]
        if not by_kind[api_ver]:
            del by_kind[api_ver]
        if not by_kind:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _notify(self, manifest: dict, deleted: bool = False):
        metadata = manifest.get("metadata", {})
        api_version, kind = manifest.get("apiVersion"), manifest.get("kind")
        namespace, name = metadata.get("namespace"), metadata.get("name")
        keys = [
            self._watch_key(api_version, kind, namespace, name),
            self._watch_key(api_version, kind, namespace),
            self._watch_key(api_version, kind),
        ]
        callback_map = self._delete_watches if deleted else self._watches
        for key in dict.fromkeys(keys):
            for callback in list(callback_map.get(key, [])):
                log.debug3("Calling registered watch [%s] for [%s]", callback, key)
                callback(copy.deepcopy(manifest))


## Selectors ###################################################################

_SET_SELECTOR = re.compile(r"^\s*(\S+)\s+(in|notin)\s+\((.*)\)\s*$")
_EQUALITY_SELECTOR = re.compile(r"^\s*([^=!\s]+)\s*(==|=|!=)\s*(.*?)\s*$")
_EXISTENCE_SELECTOR = re.compile(r"^\s*(!?)\s*(\S+)\s*$")


def match_selector(values: Dict[str, str], selector: str) -> bool:
    """Determine if a flat dict of values matches a kubernetes label or field
    selector. Equality (=, ==, !=), set (in, notin) and existence (key, !key)
    requirements are supported.
    """
    for requirement in _split_selector(selector):
        match = _SET_SELECTOR.match(requirement)
        if match:
            key, op, options = match.groups()
            allowed = [opt.strip() for opt in options.split(",")]
            value = values.get(key)
            value = str(value) if value is not None else None
            if (value in allowed) != (op == "in"):
                return False
            continue

        match = _EQUALITY_SELECTOR.match(requirement)
        if match:
            key, op, expected = match.groups()
            value = values.get(key)
            value = str(value) if value is not None else None
            if (value == expected) != (op != "!="):
                return False
            continue

        match = _EXISTENCE_SELECTOR.match(requirement)
        if not match:
            raise ValueError(f"Invalid selector requirement: {requirement}")
        negate, key = match.groups()
        if (key in values) == bool(negate):
            return False
    return True


def _split_selector(selector: str) -> List[str]:
    """Split a selector on commas that are not inside parentheses"""
    parts, depth, current = [], 0, ""
    for char in selector:
        if char == "," and not depth:
            parts.append(current)
            current = ""
            continue
        depth += {"(": 1, ")": -1}.get(char, 0)
        current += char
    if current.strip():
        parts.append(current)
    return parts


def _flatten(dictionary: dict, prefix: str = "") -> Dict[str, object]:
    """Flatten a nested dict to dotted keys, e.g. {a: {b: 1}} -> {a.b: 1}"""
    output = {}
    for key, value in dictionary.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            output.update(_flatten(value, full_key))
        else:
            output[full_key] = value
    return output


def _object_key(manifest: dict) -> str:
    metadata = manifest.get("metadata", {})
    return "/".join(
        [
            manifest.get("apiVersion") or "",
            manifest.get("kind") or "",
            metadata.get("namespace") or "",
            metadata.get("name") or "",
        ]
    )


def _spec_of(manifest: dict) -> dict:
    return {
        key: value
        for key, value in manifest.items()
        if key not in ["metadata", "status", "apiVersion", "kind"]
    }
