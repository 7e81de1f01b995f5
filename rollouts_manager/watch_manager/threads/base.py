"""
Start/stop handling shared by the watch manager threads
"""

# Standard
from typing import Optional
import threading

# First Party
import alog

# Local
from ...deploy_manager import DeployManagerBase

log = alog.use_channel("TRDUTLS")


class ThreadBase(threading.Thread):
    """A thread whose run loop polls a shutdown event. Subclasses implement
    run() and return from it once should_stop() is True.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        daemon: Optional[bool] = None,
        deploy_manager: Optional[DeployManagerBase] = None,
    ):
        """
        Args:
            name:  Optional[str]
                The name of the thread
            daemon:  Optional[bool]
                Whether the interpreter may exit while this thread runs
            deploy_manager:  Optional[DeployManagerBase]
                The deploy manager the thread talks to the cluster with
        """
        super().__init__(name=name, daemon=daemon)
        self.deploy_manager = deploy_manager
        self.shutdown = threading.Event()

    def run(self):
        raise NotImplementedError()

    def start_thread(self):
        """Start the thread unless it was started before. Threads can not be
        restarted once they exit.
        """
        if self.ident is not None:
            log.debug2("%s was already started", self.name)
            return
        log.info("Starting %s: %s", self.__class__.__name__, self.name)
        self.start()

    def stop_thread(self):
        """Ask the run loop to exit"""
        log.info("Stopping %s: %s", self.__class__.__name__, self.name)
        self.shutdown.set()

    def should_stop(self) -> bool:
        return self.shutdown.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep for the given time, waking early on shutdown

        Returns:
            keep_running:  bool
                False if the thread was asked to stop
        """
        return not self.shutdown.wait(seconds)
