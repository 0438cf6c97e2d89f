"""
Cluster Index

Owns the bounded set of spatial clusters. Events are routed with first-match
assignment: the earliest-created cluster whose current center is within the
cluster radius wins, even when a later cluster is closer.
"""

import logging
from typing import List, Optional

from .models import Cluster, ConfigurationError, EliminationEvent, decay_factor, distance


logger = logging.getLogger(__name__)


class ClusterIndex:
    """
    Capacity-bounded, insertion-ordered collection of clusters.

    When a new cluster pushes the count past max_clusters, the cluster with
    the oldest last_update is evicted (least recently updated, not least
    recently read).

    Example:
        >>> index = ClusterIndex(cluster_radius=10.0, max_clusters=50)
        >>> cluster = index.assign(event)
        >>> cluster.death_count
        1
    """

    def __init__(self, cluster_radius: float, max_clusters: int, decay_rate_per_minute: float = 0.0):
        """
        Initialize the cluster index.

        Args:
            cluster_radius: Max distance from a cluster center to join it
            max_clusters: Capacity before eviction
            decay_rate_per_minute: Heat decay rate applied by decay_heat

        Raises:
            ConfigurationError: If radius or capacity are not positive
        """
        if cluster_radius <= 0:
            raise ConfigurationError(f"Cluster radius must be positive, got {cluster_radius}")
        if max_clusters <= 0:
            raise ConfigurationError(f"Max clusters must be positive, got {max_clusters}")

        self.cluster_radius = cluster_radius
        self.max_clusters = max_clusters
        self.decay_rate_per_minute = decay_rate_per_minute

        self.clusters: List[Cluster] = []
        self.evicted_count = 0

    def __len__(self) -> int:
        return len(self.clusters)

    def __iter__(self):
        return iter(self.clusters)

    def find_match(self, event: EliminationEvent) -> Optional[Cluster]:
        """First cluster in creation order whose center is within the radius."""
        for cluster in self.clusters:
            if distance(cluster.center, event.position) <= self.cluster_radius:
                return cluster
        return None

    def assign(self, event: EliminationEvent) -> Cluster:
        """
        Route an event into a cluster, creating one if nothing matches.

        Returns:
            The cluster the event landed in (it may already have been evicted
            if its timestamp predates every other cluster's last update)
        """
        cluster = self.find_match(event)

        if cluster is None:
            cluster = Cluster(center=event.position)
            cluster.add(event)
            self.clusters.append(cluster)

            if len(self.clusters) > self.max_clusters:
                self._evict_oldest()
        else:
            cluster.add(event)

        return cluster

    def _evict_oldest(self) -> Cluster:
        # Strict comparison keeps the earliest-created cluster on ties
        oldest_index = 0
        for i in range(1, len(self.clusters)):
            if self.clusters[i].last_update < self.clusters[oldest_index].last_update:
                oldest_index = i

        evicted = self.clusters.pop(oldest_index)
        self.evicted_count += 1

        logger.debug(
            f"Evicted cluster at {evicted.center} ({evicted.death_count} deaths, "
            f"last update {evicted.last_update})"
        )
        return evicted

    def decay_heat(self, elapsed_minutes: float) -> float:
        """
        Decay every cluster's heat for the elapsed time.

        Returns:
            The factor that was applied
        """
        factor = decay_factor(self.decay_rate_per_minute, elapsed_minutes)
        if factor < 1.0:
            for cluster in self.clusters:
                cluster.heat *= factor
        return factor
