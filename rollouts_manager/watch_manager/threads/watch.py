"""The WatchThread monitors the cluster for events on one kind and turns
them into work queue keys
"""

# Standard
from typing import List, Optional
import os

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from ... import config, constants
from ...deploy_manager import DeployManagerBase, KubeWatchEvent
from ...reconcile import ResourceKey
from ..utils import parse_time_delta
from ..work_queue import ReconcileQueue
from .base import ThreadBase

log = alog.use_channel("WTCHTHRD")


class WatchThread(ThreadBase):
    """The WatchThread watches a single apiVersion/kind either cluster-wide
    or in one namespace. Events on RolloutManagers enqueue the RolloutManager
    itself. Events on any other kind enqueue the RolloutManager that owns the
    object, found through its owner references or, for cluster-scoped
    objects, the owner annotation.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        work_queue: ReconcileQueue,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        deploy_manager: DeployManagerBase = None,
    ):
        """
        Args:
            work_queue:  ReconcileQueue
                The queue to submit keys to
            kind:  str
                The kind to watch
            api_version:  str
                The api_version to watch
            namespace:  Optional[str]
                The namespace to watch. If None then cluster-wide
            deploy_manager:  DeployManagerBase
                The deploy_manager to watch events with
        """
        self.work_queue = work_queue
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True, deploy_manager=deploy_manager)

        self.kubernetes_watch = watch.Watch()

        # Variables for tracking retries
        self.attempts_left = config.watch_retry_count
        self.retry_delay = parse_time_delta(config.watch_retry_delay or "")

    def run(self):
        """Stream events from the deploy manager until shutdown, restarting
        the watch on failure
        """
        while not self.should_stop():
            try:
                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    watch_manager=self.kubernetes_watch,
                ):
                    if self.should_stop():
                        return
                    self.attempts_left = config.watch_retry_count
                    for key in self.event_keys(event):
                        log.debug2("Requesting reconcile of %s for %s", key, event)
                        self.work_queue.add(key)
            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s",
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch within %d attempts",
                        config.watch_retry_count,
                    )
                    os._exit(1)

                retry_delay = (
                    self.retry_delay.total_seconds() if self.retry_delay else 0
                )
                if not self.sleep(retry_delay):
                    log.debug("Shutdown requested during retry")
                    return
                self.attempts_left = self.attempts_left - 1
                log.info("Restarting watch with %d attempts left", self.attempts_left)

    def stop_thread(self):
        """Override stop_thread to stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()

    ## Event Mapping ###########################################################

    @staticmethod
    def event_keys(event: KubeWatchEvent) -> List[ResourceKey]:
        """Get the RolloutManager keys an event should trigger

        Args:
            event:  KubeWatchEvent
                The watch event

        Returns:
            keys:  List[ResourceKey]
                The keys to enqueue, empty if no RolloutManager is involved
        """
        resource = event.resource
        metadata = resource.get("metadata") or {}
        if (
            resource.get("kind") == constants.ROLLOUT_MANAGER_KIND
            and resource.get("apiVersion") == constants.ROLLOUT_MANAGER_API_VERSION
        ):
            return [ResourceKey(metadata.get("namespace"), metadata.get("name"))]

        keys = []
        for owner_ref in metadata.get("ownerReferences") or []:
            if owner_ref.get("kind") == constants.ROLLOUT_MANAGER_KIND and (
                owner_ref.get("apiVersion", "").split("/")[0]
                == constants.ROLLOUT_MANAGER_GROUP
            ):
                key = ResourceKey(metadata.get("namespace"), owner_ref.get("name"))
                if key not in keys:
                    keys.append(key)

        owner_annotation = (metadata.get("annotations") or {}).get(
            constants.OWNER_ANNOTATION_NAME
        )
        if owner_annotation:
            parts = owner_annotation.split("/")
            if len(parts) == 3 and all(parts[:2]):
                key = ResourceKey(parts[0], parts[1])
                if key not in keys:
                    keys.append(key)
            else:
                log.debug("Ignoring malformed owner annotation %s", owner_annotation)
        return keys
