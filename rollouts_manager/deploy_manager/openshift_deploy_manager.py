"""
The OpenshiftDeployManager carries out cluster operations through the openshift
DynamicClient. It is used whenever the operator is not in dry run, whether it
runs inside the cluster or against a kubeconfig.
"""
# Standard
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Tuple
import threading
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ConflictError as ApiConflictError
from openshift.dynamic.exceptions import (
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import ClusterError, ConflictError, assert_cluster
from .base import DeployManagerBase
from .kube_event import KubeWatchEvent

log = alog.use_channel("OSFTD")

# Server side timeout of a single watch request and the client side socket
# read timeout. A quiet watch is restarted after the socket timeout.
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

# HTTP status of a watch whose resourceVersion is too old
HTTP_GONE = 410


class OpenshiftDeployManager(DeployManagerBase):
    """DeployManager backed by a live cluster"""

    def __init__(self, dynamic_client: Optional[DynamicClient] = None):
        """
        Args:
            dynamic_client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created on first
                use from the in-cluster config or the local kubeconfig.
        """
        self._client = dynamic_client
        self._status_lock = threading.Lock()

    @property
    def client(self) -> DynamicClient:
        if self._client is None:
            self._client = self._make_client()
        return self._client

    ## Reads ###################################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        return self._read(
            kind,
            api_version,
            lambda handle: handle.get(name=name, namespace=namespace).to_dict(),
            missing=None,
            description=f"{kind}/{name} in [{namespace}]",
        )

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        return self._read(
            kind,
            api_version,
            lambda handle: handle.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
            .to_dict()
            .get("items", []),
            missing=[],
            description=f"{kind} list in [{namespace}]",
        )

    def has_kind(self, kind: str, api_version: str) -> bool:
        return self._resource_handle(kind, api_version) is not None

    def watch_objects(  # pylint: disable=too-many-arguments,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Stream events until the given kubernetes Watch is stopped. Dropped
        connections and expired resourceVersions restart the stream. Any other
        API error is raised to the caller.
        """
        watch_manager = watch_manager or Watch()
        handle = self._required_handle(kind, api_version)
        description = f"{api_version}/{kind} in [{namespace}]"
        resource_version = resource_version or 0

        while True:
            try:
                stream = watch_manager.stream(
                    handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                )
                for raw_event in stream:
                    event = KubeWatchEvent.from_stream_event(raw_event)
                    resource_version = (
                        event.resource_version or resource_version
                    )
                    yield event
            except client.exceptions.ApiException as err:
                if err.status != HTTP_GONE:
                    log.info("Watch of %s failed: %s", description, err.reason)
                    raise
                log.debug2("Watch of %s expired. Relisting", description)
                resource_version = None
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch of %s timed out. Restarting", description)
            except urllib3.exceptions.ProtocolError:
                log.debug2("Watch of %s got a broken chunk. Restarting", description)

            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug("Watch of %s stopped", description)
                return

    ## Writes ##################################################################

    def create_object(self, manifest: dict) -> dict:
        api_version, kind, name, namespace = _identifiers(manifest)
        handle = self._required_handle(kind, api_version)
        log.debug2("Creating %s/%s in [%s]", kind, name, namespace)
        with _cluster_errors("create", kind, name):
            return handle.create(body=manifest, namespace=namespace).to_dict()

    def update_object(self, manifest: dict) -> Optional[dict]:
        api_version, kind, name, namespace = _identifiers(manifest)
        handle = self._required_handle(kind, api_version)
        log.debug2(
            "Replacing %s/%s in [%s] at resourceVersion %s",
            kind,
            name,
            namespace,
            manifest.get("metadata", {}).get("resourceVersion"),
        )
        with _cluster_errors("update", kind, name):
            updated = handle.replace(body=manifest, namespace=namespace).to_dict()

        # Dropping the last finalizer of a deleting object removes it
        metadata = updated.get("metadata", {})
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            return None
        return updated

    def delete_object(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> bool:
        handle = self._resource_handle(kind, api_version)
        if handle is None:
            return False
        log.debug2("Deleting %s/%s in [%s]", kind, name, namespace)
        try:
            with _cluster_errors("delete", kind, name, not_found=NotFoundError):
                handle.delete(name=name, namespace=namespace)
        except NotFoundError:
            log.debug2("%s/%s was already gone", kind, name)
            return False
        return True

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        handle = self._resource_handle(kind, api_version)
        if handle is None:
            return False, False

        attempts = config.conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self._status_lock:
                    return self._replace_status(handle, name, namespace, status)
            except ApiConflictError:
                log.debug(
                    "Status of %s/%s changed underneath us (attempt %d/%d)",
                    kind,
                    name,
                    attempt,
                    attempts,
                )
            except NotFoundError:
                log.debug("%s/%s not found in [%s]", kind, name, namespace)
                return False, False
            except DynamicApiError as err:
                log.warning("Failed to set status of %s/%s: %s", kind, name, err)
                return False, False
            if attempt < attempts:
                time.sleep(config.retry_backoff_base_seconds * (2 ** (attempt - 1)))
        return False, False

    ## Implementation Details ##################################################

    @staticmethod
    def _make_client() -> DynamicClient:
        try:
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            log.debug2("Using the in-cluster config")
            return DynamicClient(kubernetes.client.ApiClient(kube_config))
        except kubernetes.config.ConfigException:
            log.debug2("Using the local kubeconfig")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError) as err:
            log.debug("No unique resource for %s/%s: %s", api_version, kind, err)
            return None

    def _required_handle(self, kind: str, api_version: Optional[str]) -> Resource:
        handle = self._resource_handle(kind, api_version)
        assert_cluster(
            handle is not None,
            f"Failed to fetch resource handle for {api_version}/{kind}",
        )
        return handle

    def _read(
        self,
        kind: str,
        api_version: Optional[str],
        read: Callable[[Resource], object],
        missing: object,
        description: str,
    ) -> Tuple[bool, object]:
        """Run a read against the resource handle of the kind. A kind the
        cluster does not serve and a missing object both read as missing.
        """
        handle = self._resource_handle(kind, api_version)
        if handle is None:
            return True, missing
        try:
            return True, read(handle)
        except NotFoundError:
            log.debug2("Found no %s", description)
            return True, missing
        except ForbiddenError:
            log.debug("Reading %s is forbidden", description)
            return False, missing
        except DynamicApiError as err:
            log.warning("Failed to read %s: %s", description, err)
            return False, missing

    @staticmethod
    def _replace_status(
        handle: Resource, name: str, namespace: Optional[str], status: dict
    ) -> Tuple[bool, bool]:
        resource = handle.get(name=name, namespace=namespace).to_dict()
        if resource.get("status") == status:
            log.debug3("Status of %s is unchanged", name)
            return True, False
        resource = {**resource, "status": status}
        handle.status.replace(body=resource)
        log.debug2(
            "Set status of %s at resourceVersion %s",
            name,
            resource.get("metadata", {}).get("resourceVersion"),
        )
        return True, True


@contextmanager
def _cluster_errors(action: str, kind: str, name: str, not_found=None):
    """Translate API errors from a write into the operator's exceptions. The
    not_found type, if given, is passed through untouched.
    """
    try:
        yield
    except ApiConflictError as err:
        raise ConflictError(f"Conflict on {action} of {kind}/{name}: {err}") from err
    except DynamicApiError as err:
        if not_found is not None and isinstance(err, not_found):
            raise
        raise ClusterError(f"Failed to {action} {kind}/{name}: {err}") from err


def _identifiers(manifest: dict) -> Tuple[str, str, str, Optional[str]]:
    metadata = manifest.get("metadata", {})
    return (
        manifest.get("apiVersion"),
        manifest.get("kind"),
        metadata.get("name"),
        metadata.get("namespace"),
    )
