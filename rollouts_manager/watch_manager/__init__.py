"""
The watch manager feeds RolloutManager keys from cluster watches into a work
queue drained by a pool of reconcile workers
"""

# Local
from .watch_manager import WatchManager
from .work_queue import ReconcileQueue
