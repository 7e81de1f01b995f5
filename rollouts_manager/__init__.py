"""
Package exports
"""

# Local
from . import config, reconcile, status, watch_manager
from .api import AdditionalMetadata, RolloutManagerSpec
from .controller import RolloutManagerController
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config
from .phase import Phase
from .reconcile import ReconcileManager, ReconciliationResult, ResourceKey
