"""
Death concentration analysis engine: spatial clustering, camping detection
and a decaying heat grid over elimination events.
"""

from .camping_detector import CampingDetector, classify_camping
from .cluster_index import ClusterIndex
from .coordinator import AnalysisCoordinator
from .heat_grid import HeatGrid
from .models import AnalysisConfig, Cluster, ConfigurationError, EliminationEvent

__all__ = [
    "AnalysisConfig",
    "AnalysisCoordinator",
    "CampingDetector",
    "Cluster",
    "ClusterIndex",
    "ConfigurationError",
    "EliminationEvent",
    "HeatGrid",
    "classify_camping",
]
