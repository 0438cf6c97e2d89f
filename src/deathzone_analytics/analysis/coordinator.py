"""
Analysis Coordinator

Ingestion and query API of the death concentration engine. Owns the heat
grid, cluster index and camping detector, runs periodic re-analysis and hands
the ranked results to reporting collaborators.
"""

import logging
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..metrics import (
    ANALYSIS_DURATION,
    ANALYSIS_RUNS,
    CAMPING_SPOTS_DETECTED,
    CLUSTERS_EVICTED,
    CLUSTERS_TRACKED,
    COLLABORATOR_ERRORS,
    EVENTS_REGISTERED,
    HOTSPOTS_DETECTED,
    RAW_EVENTS_RETAINED,
)
from .camping_detector import CampingDetector
from .cluster_index import ClusterIndex
from .heat_grid import HeatGrid
from .models import ORIGIN, AnalysisConfig, EliminationEvent, Vector3, distance, parse_position


class AnalysisCoordinator:
    """
    Death concentration engine.

    One instance is built by the service's composition root and passed to the
    ingestion layer. All mutation happens under a single re-entrant lock held
    for the whole of register_event and run_analysis, since cluster assignment
    and eviction cannot be interleaved.

    Collaborators:
        event_store: object with load_recent_events(n) and a non-blocking
            save_event(event)
        reporters: objects with a non-blocking
            report(hotspots, camping_spots, analysis_time)

    Example:
        >>> coordinator = AnalysisCoordinator(AnalysisConfig())
        >>> coordinator.register_event("victim", "killer", (100, 0, 200), (120, 0, 200), "M4", 1)
        >>> coordinator.run_analysis()
        >>> coordinator.get_hotspots(5)
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        event_store: Optional[Any] = None,
        reporters: Optional[Sequence[Any]] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            config: Analysis configuration (defaults to AnalysisConfig())
            event_store: Optional persistence collaborator
            reporters: Optional reporting collaborators
            clock: Source of unix timestamps
            logger: Optional logger instance

        Raises:
            ConfigurationError: If the configuration cannot build a grid or index
        """
        self.config = config or AnalysisConfig()
        self.event_store = event_store
        self.reporters = list(reporters or [])
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

        self.heat_grid = HeatGrid(
            resolution=self.config.heatmap_resolution,
            map_min=self.config.map_min,
            map_max=self.config.map_max,
            decay_rate_per_minute=self.config.heat_decay_rate_per_minute,
        )
        self.cluster_index = ClusterIndex(
            cluster_radius=self.config.cluster_radius,
            max_clusters=self.config.max_clusters,
            decay_rate_per_minute=self.config.heat_decay_rate_per_minute,
        )
        self.camping_detector = CampingDetector(
            time_window_seconds=self.config.camping_time_window_seconds,
            min_kills=self.config.camping_min_kills_in_window,
            max_movement_radius=self.config.camping_max_movement_radius,
        )

        self.raw_events: Deque[EliminationEvent] = deque(
            maxlen=self.config.max_raw_events_retained
        )

        self._lock = threading.RLock()

        # Latest analysis results
        self.last_analysis_time = 0.0
        self.analysis_count = 0
        self._hotspots: List[Dict[str, Any]] = []
        self._camping_spots: List[Dict[str, Any]] = []

        self.logger.info(
            f"Death concentration analysis initialized: radius={self.config.cluster_radius}m, "
            f"max_clusters={self.config.max_clusters}, grid={self.config.heatmap_resolution}"
        )

    # ========================================================================
    # Ingestion
    # ========================================================================

    def register_event(
        self,
        victim_id: str,
        killer_id: str,
        position: Vector3,
        killer_position: Optional[Vector3] = None,
        weapon: str = "",
        team_id: int = 0,
    ) -> EliminationEvent:
        """
        Register a player elimination at the current time.

        Kill distance is measured when a non-zero killer position is given.
        Runs an analysis if the last one is older than the analysis interval.

        Returns:
            The recorded event
        """
        position = parse_position(position)
        killer_position = parse_position(killer_position) if killer_position is not None else ORIGIN
        kill_distance = distance(position, killer_position) if killer_position != ORIGIN else 0.0

        event = EliminationEvent(
            position=position,
            timestamp=self._clock(),
            killer_id=str(killer_id or ""),
            victim_id=str(victim_id or ""),
            weapon=weapon or "",
            kill_distance=kill_distance,
            team_id=int(team_id or 0),
        )

        with self._lock:
            self._add_event(event)
            EVENTS_REGISTERED.labels(source="live").inc()

            self._save_event(event)

            if event.timestamp - self.last_analysis_time > self.config.analysis_interval_seconds:
                self.run_analysis(trigger="ingestion")

        return event

    def seed(self, events: Iterable[EliminationEvent]) -> int:
        """
        Bulk-load historical events without persisting them again.

        Runs one analysis when anything was loaded.

        Returns:
            Number of events loaded
        """
        loaded = 0
        with self._lock:
            for event in events:
                self._add_event(event)
                loaded += 1

            if loaded:
                EVENTS_REGISTERED.labels(source="seed").inc(loaded)
                self.logger.info(f"Loaded {loaded} historical elimination events")
                self.run_analysis(trigger="seed")

        return loaded

    def load_from_store(self, limit: int = 1000) -> int:
        """
        Seed the engine from the persistence collaborator.

        Store failures are logged and leave the engine empty.

        Returns:
            Number of events loaded
        """
        if self.event_store is None:
            return 0

        try:
            events = self.event_store.load_recent_events(limit)
        except Exception as e:
            self.logger.error(f"Failed to load historical elimination events: {e}")
            COLLABORATOR_ERRORS.labels(
                collaborator="event_store", error_type=type(e).__name__
            ).inc()
            return 0

        if not events:
            self.logger.warning("No historical elimination events found")
            return 0

        return self.seed(events)

    def _add_event(self, event: EliminationEvent) -> None:
        self.raw_events.append(event)
        self.heat_grid.rasterize(event.position)

        evicted_before = self.cluster_index.evicted_count
        self.cluster_index.assign(event)

        evicted = self.cluster_index.evicted_count - evicted_before
        if evicted:
            CLUSTERS_EVICTED.inc(evicted)
        CLUSTERS_TRACKED.set(len(self.cluster_index))
        RAW_EVENTS_RETAINED.set(len(self.raw_events))

    def _save_event(self, event: EliminationEvent) -> None:
        if self.event_store is None:
            return

        try:
            self.event_store.save_event(event)
        except Exception as e:
            self.logger.error(f"Failed to persist elimination event: {e}")
            COLLABORATOR_ERRORS.labels(
                collaborator="event_store", error_type=type(e).__name__
            ).inc()

    def prune_raw_events(self, max_age_seconds: float = 43200.0) -> int:
        """
        Drop raw events older than max_age_seconds (default 12 hours).

        Clusters and the heat grid are not touched.

        Returns:
            Number of events removed
        """
        with self._lock:
            now = self._clock()
            kept = [e for e in self.raw_events if now - e.timestamp <= max_age_seconds]
            removed = len(self.raw_events) - len(kept)

            if removed:
                self.raw_events.clear()
                self.raw_events.extend(kept)
                RAW_EVENTS_RETAINED.set(len(self.raw_events))
                self.logger.debug(f"Pruned {removed} raw elimination events")

            return removed

    # ========================================================================
    # Analysis
    # ========================================================================

    def run_analysis(self, trigger: str = "scheduled") -> Dict[str, Any]:
        """
        Decay heat, rank hotspots, reclassify camping and notify reporters.

        Args:
            trigger: Label recorded in metrics (scheduled, ingestion, seed, manual)

        Returns:
            {"hotspots": int, "camping_spots": int, "analysis_time": float}
        """
        start_time = time.time()

        with self._lock:
            now = self._clock()
            elapsed_minutes = (
                (now - self.last_analysis_time) / 60.0 if self.last_analysis_time > 0 else 0.0
            )

            self.heat_grid.decay_all(elapsed_minutes)
            self.cluster_index.decay_heat(elapsed_minutes)

            hotspots = [
                c
                for c in self.cluster_index
                if c.death_count >= self.config.min_deaths_for_hotspot
            ]
            # Stable sort keeps creation order between equal counts
            hotspots.sort(key=lambda c: c.death_count, reverse=True)

            camping_spots = [c for c in self.cluster_index if self.camping_detector.classify(c)]

            self._hotspots = [c.to_summary() for c in hotspots]
            self._camping_spots = [c.to_summary() for c in camping_spots]
            self.last_analysis_time = now
            self.analysis_count += 1

            self.logger.info(
                f"Death cluster analysis complete. Found {len(self._hotspots)} hotspots "
                f"and {len(self._camping_spots)} camping spots."
            )

            HOTSPOTS_DETECTED.set(len(self._hotspots))
            CAMPING_SPOTS_DETECTED.set(len(self._camping_spots))
            CLUSTERS_TRACKED.set(len(self.cluster_index))

            self._dispatch_reports(list(self._hotspots), list(self._camping_spots), now)

        ANALYSIS_RUNS.labels(trigger=trigger).inc()
        ANALYSIS_DURATION.observe(time.time() - start_time)

        return {
            "hotspots": len(self._hotspots),
            "camping_spots": len(self._camping_spots),
            "analysis_time": now,
        }

    def _dispatch_reports(
        self, hotspots: List[Dict[str, Any]], camping_spots: List[Dict[str, Any]], analysis_time: float
    ) -> None:
        for reporter in self.reporters:
            try:
                reporter.report(hotspots, camping_spots, analysis_time)
            except Exception as e:
                self.logger.error(
                    f"Reporter {type(reporter).__name__} failed: {e}", exc_info=True
                )
                COLLABORATOR_ERRORS.labels(
                    collaborator=type(reporter).__name__, error_type=type(e).__name__
                ).inc()

    # ========================================================================
    # Queries
    # ========================================================================

    def get_hotspots(self, max_count: int = 10) -> List[Dict[str, Any]]:
        """Top hotspots from the latest analysis, most deaths first."""
        return list(self._hotspots[: max(0, max_count)])

    def get_active_hotspots(self, max_age_seconds: float = 1800.0) -> List[Dict[str, Any]]:
        """Hotspots from the latest analysis with a death in the last max_age_seconds."""
        now = self._clock()
        return [h for h in self._hotspots if now - h["last_update"] < max_age_seconds]

    def get_camping_spots(self) -> List[Dict[str, Any]]:
        """Clusters classified as camping spots by the latest analysis."""
        return list(self._camping_spots)

    def get_heatmap_snapshot(self) -> np.ndarray:
        """Copy of the heat grid, indexed [x][z]."""
        with self._lock:
            return self.heat_grid.snapshot()

    def get_heatmap_json(self) -> Dict[str, Any]:
        """Heat grid as {"heatmap": [[...], ...]}, row-major on x."""
        with self._lock:
            return self.heat_grid.to_json()

    def get_raw_events(self) -> List[EliminationEvent]:
        with self._lock:
            return list(self.raw_events)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get engine statistics.

        Returns:
            Dict with counts and the latest analysis timestamp
        """
        with self._lock:
            return {
                "raw_events": len(self.raw_events),
                "clusters": len(self.cluster_index),
                "clusters_evicted": self.cluster_index.evicted_count,
                "hotspots": len(self._hotspots),
                "camping_spots": len(self._camping_spots),
                "total_heat": self.heat_grid.total_heat,
                "analysis_count": self.analysis_count,
                "last_analysis_time": self.last_analysis_time,
            }
