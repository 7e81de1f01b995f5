"""
The WatchManager wires the watch threads, the work queue and the reconcile
workers together and controls their lifecycle
"""

# Standard
from typing import List, Optional
import os

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase
from ..reconcile import ReconcileManager
from .threads import ReconcileThread, TimerThread, WatchThread
from .work_queue import ReconcileQueue

log = alog.use_channel("WATCHMGR")


class WatchManager:
    """Runs the RolloutManager controller against the cluster"""

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        namespaces: Optional[List[str]] = None,
        max_concurrent_reconciles: Optional[int] = None,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                The deploy manager shared by every thread. Selected from
                config.dry_run if not given.
            namespaces:  Optional[List[str]]
                Namespaces to watch. Defaults to config.watch_namespace, and
                an empty list watches the whole cluster.
            max_concurrent_reconciles:  Optional[int]
                Number of reconcile workers. Defaults to
                config.max_concurrent_reconciles, then the CPU count.
        """
        self.reconcile_manager = ReconcileManager(deploy_manager)
        self.deploy_manager = self.reconcile_manager.deploy_manager
        self.namespaces = (
            namespaces if namespaces is not None else self._configured_namespaces()
        )
        worker_count = (
            max_concurrent_reconciles
            or config.max_concurrent_reconciles
            or os.cpu_count()
            or 1
        )

        self.timer_thread = TimerThread()
        self.work_queue = ReconcileQueue(timer_thread=self.timer_thread)
        self.reconcile_threads = [
            ReconcileThread(
                self.work_queue,
                self.reconcile_manager,
                name=f"reconcile_thread_{idx}",
            )
            for idx in range(int(worker_count))
        ]
        self.watch_threads = self._make_watch_threads()

    ## Lifecycle ###############################################################

    def watch(self) -> bool:
        """Start every thread

        Returns:
            success:  bool
                True once all threads are started
        """
        log.info(
            "Starting watches in %s with %d reconcile workers",
            self.namespaces or "all namespaces",
            len(self.reconcile_threads),
        )
        self.timer_thread.start_thread()
        for thread in self.reconcile_threads:
            thread.start_thread()
        for thread in self.watch_threads:
            thread.start_thread()
        return True

    def wait(self):
        """Block until every watch thread exits"""
        for thread in self.watch_threads:
            thread.join()

    def stop(self, timeout: Optional[float] = None):
        """Stop all threads. In-flight reconciles are allowed to finish.

        Args:
            timeout:  Optional[float]
                Seconds to wait for each thread to exit
        """
        log.info("Stopping watch manager")
        for thread in self.watch_threads:
            thread.stop_thread()
        self.work_queue.shutdown()
        for thread in self.reconcile_threads:
            thread.stop_thread()
        for thread in [*self.watch_threads, *self.reconcile_threads]:
            if thread.is_alive():
                thread.join(timeout)

    ## Implementation Details ##################################################

    @staticmethod
    def _configured_namespaces() -> List[str]:
        return [
            namespace.strip()
            for namespace in (config.watch_namespace or "").split(",")
            if namespace.strip()
        ]

    def _make_watch_threads(self) -> List[WatchThread]:
        """One thread per watched kind and namespace. Cluster-scoped kinds are
        always watched cluster-wide and kinds the cluster does not serve are
        skipped.
        """
        watched_kinds = [
            (
                constants.ROLLOUT_MANAGER_API_VERSION,
                constants.ROLLOUT_MANAGER_KIND,
                True,
            ),
            *constants.MANAGED_KINDS,
        ]
        threads = []
        for api_version, kind, namespaced in watched_kinds:
            if not self.deploy_manager.has_kind(kind, api_version):
                log.info("Cluster does not serve %s/%s. Not watching.", api_version, kind)
                continue
            namespaces = self.namespaces if namespaced and self.namespaces else [None]
            for namespace in namespaces:
                threads.append(
                    WatchThread(
                        self.work_queue,
                        kind=kind,
                        api_version=api_version,
                        namespace=namespace,
                        deploy_manager=self.deploy_manager,
                    )
                )
        return threads
