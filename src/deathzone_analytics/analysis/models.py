"""
Data model for death concentration analysis.

Elimination events, spatial clusters, and the analysis configuration shared by
the heat grid, cluster index, camping detector, and coordinator.
"""

import math
import os
from collections import Counter
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple

Vector3 = Tuple[float, float, float]

ORIGIN: Vector3 = (0.0, 0.0, 0.0)

# Decay never removes more than 95% of the heat in a single step
MIN_DECAY_FACTOR = 0.05


class ConfigurationError(ValueError):
    """Raised when the engine is constructed with an unusable configuration."""

    pass


def distance(a: Vector3, b: Vector3) -> float:
    """Euclidean distance between two world positions."""
    return math.sqrt((a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2)


def decay_factor(rate_per_minute: float, elapsed_minutes: float) -> float:
    """Multiplicative decay for the elapsed time, floor-clamped at MIN_DECAY_FACTOR."""
    if elapsed_minutes <= 0:
        return 1.0
    return max(MIN_DECAY_FACTOR, 1.0 - rate_per_minute * elapsed_minutes)


def parse_position(value: Any) -> Vector3:
    """
    Parse a position from its wire form.

    Accepts {"x": .., "y": .., "z": ..} dicts or 3-element sequences.

    Raises:
        ValueError: If the value cannot be read as a 3-D point
    """
    if isinstance(value, dict):
        try:
            return (float(value["x"]), float(value["y"]), float(value["z"]))
        except KeyError as e:
            raise ValueError(f"Position missing coordinate {e}")
    if isinstance(value, (list, tuple)) and len(value) >= 3:
        return (float(value[0]), float(value[1]), float(value[2]))
    raise ValueError(f"Invalid position: {value!r}")


def position_to_dict(position: Vector3) -> Dict[str, float]:
    return {"x": position[0], "y": position[1], "z": position[2]}


@dataclass(frozen=True)
class EliminationEvent:
    """A single player elimination.

    Attributes:
        position: World position of the victim
        timestamp: Unix seconds when the elimination happened
        killer_id: Killer player ID, empty for environmental or AI deaths
        victim_id: Victim player ID
        weapon: Weapon name
        kill_distance: Distance between killer and victim (0 if unknown)
        team_id: Team ID of the killer
    """

    position: Vector3
    timestamp: float
    killer_id: str = ""
    victim_id: str = ""
    weapon: str = ""
    kill_distance: float = 0.0
    team_id: int = 0

    def __post_init__(self):
        if self.kill_distance < 0:
            raise ValueError(f"Kill distance cannot be negative, got {self.kill_distance}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": position_to_dict(self.position),
            "timestamp": self.timestamp,
            "killer_id": self.killer_id,
            "victim_id": self.victim_id,
            "weapon": self.weapon,
            "kill_distance": self.kill_distance,
            "team_id": self.team_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EliminationEvent":
        """Build an event from its serialized form (see to_dict)."""
        return cls(
            position=parse_position(data["position"]),
            timestamp=float(data["timestamp"]),
            killer_id=str(data.get("killer_id") or ""),
            victim_id=str(data.get("victim_id") or ""),
            weapon=str(data.get("weapon") or ""),
            kill_distance=float(data.get("kill_distance") or 0.0),
            team_id=int(data.get("team_id") or 0),
        )


@dataclass
class Cluster:
    """A growing spatial group of elimination events.

    The center is the arithmetic mean of all member positions and is recomputed
    on every insertion, so members assigned early can drift outside the
    assignment radius of the current center.
    """

    center: Vector3
    members: List[EliminationEvent] = field(default_factory=list)
    radius: float = 0.0
    last_update: float = 0.0
    killer_counts: Dict[str, int] = field(default_factory=dict)
    weapon_counts: Dict[str, int] = field(default_factory=dict)
    heat: float = 0.0
    is_camping: bool = False

    def add(self, event: EliminationEvent) -> None:
        self.members.append(event)

        count = len(self.members)
        self.center = (
            sum(m.position[0] for m in self.members) / count,
            sum(m.position[1] for m in self.members) / count,
            sum(m.position[2] for m in self.members) / count,
        )
        self.radius = max(distance(self.center, m.position) for m in self.members)

        self.killer_counts[event.killer_id] = self.killer_counts.get(event.killer_id, 0) + 1
        self.weapon_counts[event.weapon] = self.weapon_counts.get(event.weapon, 0) + 1

        self.last_update = event.timestamp
        self.heat = float(count)

    @property
    def death_count(self) -> int:
        return len(self.members)

    @property
    def unique_killers(self) -> int:
        return sum(1 for killer_id in self.killer_counts if killer_id)

    def most_common_weapon(self) -> str:
        return _most_common(self.weapon_counts)

    def most_active_killer(self) -> str:
        return _most_common({k: v for k, v in self.killer_counts.items() if k})

    def camping_score(self) -> float:
        """
        Unique-killer concentration score in [0, 100].

        Many deaths attributed to few distinct killers score high; one killer
        per death scores 0. Deaths without a killer are not counted.
        """
        attributed = sum(v for k, v in self.killer_counts.items() if k)
        if attributed <= 1:
            return 0.0
        return 100.0 * (1.0 - self.unique_killers / attributed)

    def to_summary(self) -> Dict[str, Any]:
        """Serializable summary handed to query and reporting collaborators."""
        return {
            "center": position_to_dict(self.center),
            "death_count": self.death_count,
            "radius": self.radius,
            "heat": self.heat,
            "last_update": self.last_update,
            "is_camping": self.is_camping,
            "most_common_weapon": self.most_common_weapon(),
            "most_active_killer": self.most_active_killer(),
            "unique_killers": self.unique_killers,
            "camping_score": self.camping_score(),
        }


def _most_common(counts: Dict[str, int]) -> str:
    # Counter.most_common keeps first-seen order on ties
    ranked = Counter(counts).most_common(1)
    return ranked[0][0] if ranked else "Unknown"


@dataclass(frozen=True)
class AnalysisConfig:
    """Engine configuration, fixed for the lifetime of a coordinator.

    Attributes:
        cluster_radius: Max distance from a cluster center to join it (meters)
        min_deaths_for_hotspot: Member count for a cluster to rank as a hotspot
        camping_time_window_seconds: Time span a camping run must fit in
        camping_min_kills_in_window: Kills by one killer that make a camping run
        camping_max_movement_radius: Max spread of a camping run (meters)
        heat_decay_rate_per_minute: Fraction of heat removed per minute
        max_clusters: Cluster capacity before eviction
        max_raw_events_retained: Raw event ring buffer capacity
        heatmap_resolution: Heat grid cells per axis
        map_min: Lower world bounds used for heat grid normalization
        map_max: Upper world bounds used for heat grid normalization
        analysis_interval_seconds: Age of the last analysis that triggers a new
            one on ingestion
    """

    cluster_radius: float = 10.0
    min_deaths_for_hotspot: int = 5
    camping_time_window_seconds: float = 300.0
    camping_min_kills_in_window: int = 3
    camping_max_movement_radius: float = 15.0
    heat_decay_rate_per_minute: float = 0.05
    max_clusters: int = 50
    max_raw_events_retained: int = 10000
    heatmap_resolution: int = 64
    map_min: Vector3 = ORIGIN
    map_max: Vector3 = (12800.0, 1000.0, 12800.0)
    analysis_interval_seconds: float = 300.0

    def __post_init__(self):
        """Validate configuration, failing fast on unusable values."""
        for name in (
            "min_deaths_for_hotspot",
            "camping_min_kills_in_window",
            "max_clusters",
            "max_raw_events_retained",
            "heatmap_resolution",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")

        positive = {
            "cluster_radius": self.cluster_radius,
            "min_deaths_for_hotspot": self.min_deaths_for_hotspot,
            "camping_time_window_seconds": self.camping_time_window_seconds,
            "camping_min_kills_in_window": self.camping_min_kills_in_window,
            "camping_max_movement_radius": self.camping_max_movement_radius,
            "max_clusters": self.max_clusters,
            "max_raw_events_retained": self.max_raw_events_retained,
            "heatmap_resolution": self.heatmap_resolution,
            "analysis_interval_seconds": self.analysis_interval_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        if self.heat_decay_rate_per_minute < 0:
            raise ConfigurationError(
                f"heat_decay_rate_per_minute cannot be negative, got {self.heat_decay_rate_per_minute}"
            )

        if len(self.map_min) != 3 or len(self.map_max) != 3:
            raise ConfigurationError("map_min and map_max must be 3-D points")

    @classmethod
    def from_env(cls, prefix: str = "ANALYSIS_") -> "AnalysisConfig":
        """
        Build a configuration from environment variables.

        Unset variables keep their defaults. Bounds are comma-separated
        "x,y,z" triples (ANALYSIS_MAP_MIN, ANALYSIS_MAP_MAX).

        Raises:
            ConfigurationError: If a value is malformed or invalid
        """
        defaults = cls()
        kwargs: Dict[str, Any] = {}

        for f in fields(cls):
            name = f.name
            default = getattr(defaults, name)
            raw: Optional[str] = os.getenv(f"{prefix}{name.upper()}")
            if raw is None or raw.strip() == "":
                continue

            try:
                if isinstance(default, tuple):
                    parts = [float(p) for p in raw.split(",")]
                    if len(parts) != 3:
                        raise ValueError(f"expected x,y,z, got {raw!r}")
                    kwargs[name] = tuple(parts)
                elif isinstance(default, int):
                    kwargs[name] = int(raw)
                else:
                    kwargs[name] = float(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {prefix}{name.upper()}: {e}")

        return cls(**kwargs)
