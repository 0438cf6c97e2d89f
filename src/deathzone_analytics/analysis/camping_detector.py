"""
Camping Detector

Flags a cluster as a camping spot when a single killer lands a run of kills
inside a bounded time window while the victims stay within a bounded spread.
"""

from collections import defaultdict
from typing import Dict, List

from .models import Cluster, EliminationEvent, distance


class CampingDetector:
    """
    Batch classifier run once per cluster per analysis cycle.

    The run window is count-based: every contiguous run of exactly min_kills
    kills (sorted by time) for one killer is tested. The spread test tracks a
    single extreme point against the run's first position instead of checking
    all pairs, so it approximates "all positions within R of each other".
    """

    def __init__(
        self,
        time_window_seconds: float,
        min_kills: int,
        max_movement_radius: float,
    ):
        self.time_window_seconds = time_window_seconds
        self.min_kills = min_kills
        self.max_movement_radius = max_movement_radius

    def classify(self, cluster: Cluster) -> bool:
        """Classify a cluster with the detector's configured thresholds."""
        return classify_camping(
            cluster, self.time_window_seconds, self.min_kills, self.max_movement_radius
        )


def classify_camping(
    cluster: Cluster, window: float, min_kills: int, max_move_radius: float
) -> bool:
    """
    Decide whether a cluster is an active camping spot.

    Sets cluster.is_camping to the result.

    Args:
        cluster: Cluster to classify
        window: Max seconds between the first and last kill of a run
        min_kills: Kills per run
        max_move_radius: Max spread of a run's positions

    Returns:
        True if any killer has a qualifying run
    """
    cluster.is_camping = _has_camping_run(cluster, window, min_kills, max_move_radius)
    return cluster.is_camping


def _has_camping_run(
    cluster: Cluster, window: float, min_kills: int, max_move_radius: float
) -> bool:
    if cluster.death_count < min_kills:
        return False

    kills_by_killer: Dict[str, List[EliminationEvent]] = defaultdict(list)
    for event in cluster.members:
        if not event.killer_id:
            continue
        kills_by_killer[event.killer_id].append(event)

    for killer_id, kills in kills_by_killer.items():
        if len(kills) < min_kills:
            continue

        kills = sorted(kills, key=lambda e: e.timestamp)

        for start in range(len(kills) - min_kills + 1):
            run = kills[start : start + min_kills]

            if run[-1].timestamp - run[0].timestamp > window:
                continue

            if _within_spread(run, max_move_radius):
                return True

    return False


def _within_spread(run: List[EliminationEvent], max_move_radius: float) -> bool:
    """Bounded-spread check against the run's first position."""
    reference = run[0].position
    extreme = reference

    for event in run:
        if distance(event.position, reference) > max_move_radius:
            extreme = event.position
            if distance(reference, extreme) > max_move_radius:
                break

    return distance(reference, extreme) <= max_move_radius
