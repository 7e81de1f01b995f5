"""
The interface every DeployManager implements. A DeployManager is the
operator's only path to the cluster.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """Reads, writes and watches kubernetes objects as plain dicts.

    Reads return (success, result) tuples so that a failed read can be told
    apart from a missing object. Writes return the object as stored by the
    cluster. They raise ConflictError when the write lost a race (stale
    resourceVersion or an object that already exists) and ClusterError for
    any other failure.
    """

    ## Reads ###################################################################

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Read a single object

        Args:
            kind:  str
                Kind of the object
            name:  str
                Name of the object
            namespace:  Optional[str]
                Namespace of the object, None for cluster-scoped kinds
            api_version:  Optional[str]
                apiVersion of the kind. Needed when the kind name is served
                by more than one API group.

        Returns:
            success:  bool
                False if the read itself failed
            current_state:  Optional[dict]
                The object, None if it does not exist
        """

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """List the objects of a kind, optionally narrowed by selectors

        Args:
            kind:  str
                Kind of the objects
            namespace:  Optional[str]
                Namespace to list in, None lists across all namespaces
            api_version:  Optional[str]
                apiVersion of the kind
            label_selector:  Optional[str]
                Kubernetes label selector, e.g. "app=foo,tier in (a, b)"
            field_selector:  Optional[str]
                Kubernetes field selector, e.g. "metadata.name=foo"

        Returns:
            success:  bool
                False if the list itself failed
            current_state:  List[dict]
                The matching objects
        """

    @abc.abstractmethod
    def has_kind(self, kind: str, api_version: str) -> bool:
        """Whether the cluster serves the kind, e.g. if an optional CRD is
        installed
        """

    @abc.abstractmethod
    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Stream changes to the objects of a kind. The stream starts with an
        ADDED event for every existing object unless resource_version is
        given.

        Args:
            kind:  str
                Kind to watch
            api_version:  Optional[str]
                apiVersion of the kind
            namespace:  Optional[str]
                Namespace to watch, None watches all namespaces
            name:  Optional[str]
                Only watch the object with this name
            label_selector:  Optional[str]
                Only watch objects matching this label selector
            field_selector:  Optional[str]
                Only watch objects matching this field selector
            resource_version:  Optional[str]
                Only stream changes newer than this version

        Returns:
            watch_stream:  Iterator[KubeWatchEvent]
                The events as they arrive
        """

    ## Writes ##################################################################

    @abc.abstractmethod
    def create_object(self, manifest: dict) -> dict:
        """Create an object that must not exist yet

        Args:
            manifest:  dict
                The complete object

        Returns:
            created:  dict
                The object as stored, with uid and resourceVersion filled in
        """

    @abc.abstractmethod
    def update_object(self, manifest: dict) -> Optional[dict]:
        """Replace an existing object. The status is left untouched. When the
        manifest carries a resourceVersion the write only succeeds if it is
        still current.

        Args:
            manifest:  dict
                The complete object

        Returns:
            updated:  Optional[dict]
                The object as stored. None when the write removed the last
                finalizer of an object being deleted, which removes it.
        """

    @abc.abstractmethod
    def delete_object(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> bool:
        """Delete an object. Objects with finalizers are only marked for
        deletion.

        Returns:
            changed:  bool
                False if there was nothing to delete
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Replace the status of an object through its status subresource

        Args:
            kind:  str
                Kind of the object
            name:  str
                Name of the object
            namespace:  Optional[str]
                Namespace of the object
            status:  dict
                The complete new status
            api_version:  Optional[str]
                apiVersion of the kind

        Returns:
            success:  bool
                False if the object is missing or the write failed
            changed:  bool
                False if the object already had this status
        """
