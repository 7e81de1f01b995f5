"""
The ReconcileThread pulls keys from the work queue and runs reconciles
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from ...reconcile import ReconcileManager, ReconciliationResult, ResourceKey
from ..work_queue import ReconcileQueue
from .base import ThreadBase

log = alog.use_channel("RCLTHRD")

# How long a worker blocks on the queue before re-checking for shutdown
QUEUE_POLL_SECONDS = 1.0


class ReconcileThread(ThreadBase):
    """A single reconcile worker. Several workers share one queue, and the
    queue guarantees that no key is handed to two workers at once.
    """

    def __init__(
        self,
        work_queue: ReconcileQueue,
        reconcile_manager: ReconcileManager,
        name: Optional[str] = None,
    ):
        """
        Args:
            work_queue:  ReconcileQueue
                The queue to pull keys from
            reconcile_manager:  ReconcileManager
                The manager that runs each reconcile
            name:  Optional[str]
                The thread name
        """
        super().__init__(
            name=name or "reconcile_thread",
            daemon=True,
            deploy_manager=reconcile_manager.deploy_manager,
        )
        self.work_queue = work_queue
        self.reconcile_manager = reconcile_manager

    def run(self):
        """Process keys until shutdown"""
        while not self.should_stop():
            key = self.work_queue.get(timeout=QUEUE_POLL_SECONDS)
            if key is None:
                continue
            self.process(key)

    def process(self, key: ResourceKey) -> ReconciliationResult:
        """Reconcile one key and schedule its follow up

        Args:
            key:  ResourceKey
                The RolloutManager to reconcile

        Returns:
            result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            result = self.reconcile_manager.safe_reconcile(key)
        finally:
            self.work_queue.done(key)
        self._handle_result(key, result)
        return result

    ## Implementation Details ##################################################

    def _handle_result(self, key: ResourceKey, result: ReconciliationResult):
        if result.exception is None:
            self.work_queue.forget(key)
        if not result.requeue:
            log.debug2("Not requeueing %s", key)
            return

        requeue_after = result.requeue_params.requeue_after
        if requeue_after is None:
            requeue_after = self.work_queue.backoff(key)
            log.info(
                "Retrying %s in %s after %d failure(s)",
                key,
                requeue_after,
                self.work_queue.failures(key),
            )
        else:
            log.debug("Requeueing %s in %s", key, requeue_after)
        self.work_queue.add_after(key, requeue_after)
