"""Unit tests for the analysis data model and configuration."""

import pytest

from deathzone_analytics.analysis.models import (
    AnalysisConfig,
    Cluster,
    ConfigurationError,
    EliminationEvent,
    decay_factor,
    distance,
    parse_position,
)


def make_event(position=(0.0, 0.0, 0.0), timestamp=0.0, killer_id="killer", weapon="M4"):
    return EliminationEvent(
        position=position, timestamp=timestamp, killer_id=killer_id, weapon=weapon
    )


# ============================================================================
# Geometry Tests
# ============================================================================


class TestGeometry:
    """Test distance and decay helpers."""

    def test_distance(self):
        """Test Euclidean distance in three dimensions."""
        assert distance((0, 0, 0), (3, 4, 0)) == pytest.approx(5.0)
        assert distance((1, 2, 3), (1, 2, 3)) == 0.0

    def test_decay_factor_linear(self):
        """Test decay is linear in elapsed minutes."""
        assert decay_factor(0.05, 10) == pytest.approx(0.5)

    def test_decay_factor_floor(self):
        """Test decay never drops below the 0.05 floor."""
        assert decay_factor(0.05, 1000) == pytest.approx(0.05)

    def test_decay_factor_no_elapsed_time(self):
        """Test zero or negative elapsed time is a no-op."""
        assert decay_factor(0.05, 0) == 1.0
        assert decay_factor(0.05, -5) == 1.0


class TestParsePosition:
    """Test wire position parsing."""

    def test_dict_position(self):
        """Test {"x", "y", "z"} dicts."""
        assert parse_position({"x": 1, "y": "2", "z": 3.5}) == (1.0, 2.0, 3.5)

    def test_sequence_position(self):
        """Test lists and tuples."""
        assert parse_position([4, 5, 6]) == (4.0, 5.0, 6.0)

    @pytest.mark.parametrize("value", [None, "1,2,3", [1, 2], {"x": 1, "y": 2}])
    def test_invalid_position(self, value):
        """Test unreadable positions raise ValueError."""
        with pytest.raises(ValueError):
            parse_position(value)


# ============================================================================
# Event Tests
# ============================================================================


class TestEliminationEvent:
    """Test elimination events."""

    def test_event_is_immutable(self):
        """Test events cannot be modified after creation."""
        event = make_event()

        with pytest.raises(AttributeError):
            event.killer_id = "someone else"

    def test_negative_kill_distance_rejected(self):
        """Test kill distance must be non-negative."""
        with pytest.raises(ValueError):
            EliminationEvent(position=(0, 0, 0), timestamp=0.0, kill_distance=-1.0)

    def test_dict_round_trip(self):
        """Test serialized events rebuild equal."""
        event = EliminationEvent(
            position=(1.0, 2.0, 3.0),
            timestamp=99.0,
            killer_id="k",
            victim_id="v",
            weapon="AK47",
            kill_distance=14.0,
            team_id=3,
        )

        data = event.to_dict()

        assert data["position"] == {"x": 1.0, "y": 2.0, "z": 3.0}
        assert EliminationEvent.from_dict(data) == event


# ============================================================================
# Cluster Tests
# ============================================================================


class TestCluster:
    """Test cluster bookkeeping."""

    def test_add_updates_statistics(self):
        """Test centroid, counts, heat and last update after insertion."""
        cluster = Cluster(center=(0.0, 0.0, 0.0))
        cluster.add(make_event((0, 0, 0), 10.0, "a", "M4"))
        cluster.add(make_event((4, 0, 0), 20.0, "b", "M4"))

        assert cluster.center == (2.0, 0.0, 0.0)
        assert cluster.radius == pytest.approx(2.0)
        assert cluster.death_count == 2
        assert cluster.heat == 2.0
        assert cluster.last_update == 20.0
        assert cluster.weapon_counts == {"M4": 2}

    def test_most_common_weapon_and_killer(self):
        """Test most common weapon and most active killer."""
        cluster = Cluster(center=(0.0, 0.0, 0.0))
        for killer, weapon in [("a", "M4"), ("b", "AK47"), ("b", "AK47"), ("", "Grenade")]:
            cluster.add(make_event(killer_id=killer, weapon=weapon))

        assert cluster.most_common_weapon() == "AK47"
        assert cluster.most_active_killer() == "b"
        assert cluster.unique_killers == 2

    def test_most_active_killer_ignores_environment(self):
        """Test deaths without a killer report Unknown."""
        cluster = Cluster(center=(0.0, 0.0, 0.0))
        cluster.add(make_event(killer_id=""))

        assert cluster.most_active_killer() == "Unknown"

    def test_camping_score(self):
        """Test concentration score for one killer versus many."""
        single = Cluster(center=(0.0, 0.0, 0.0))
        for _ in range(4):
            single.add(make_event(killer_id="camper"))

        spread = Cluster(center=(0.0, 0.0, 0.0))
        for killer in ["a", "b", "c", "d"]:
            spread.add(make_event(killer_id=killer))

        assert single.camping_score() == pytest.approx(75.0)
        assert spread.camping_score() == 0.0

    def test_summary_fields(self):
        """Test summaries are plain serializable dicts."""
        cluster = Cluster(center=(0.0, 0.0, 0.0))
        cluster.add(make_event((1, 2, 3), 5.0))

        summary = cluster.to_summary()

        assert summary["center"] == {"x": 1.0, "y": 2.0, "z": 3.0}
        assert summary["death_count"] == 1
        assert summary["is_camping"] is False
        assert summary["most_common_weapon"] == "M4"


# ============================================================================
# Configuration Tests
# ============================================================================


class TestAnalysisConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        """Test default thresholds."""
        config = AnalysisConfig()

        assert config.cluster_radius == 10.0
        assert config.min_deaths_for_hotspot == 5
        assert config.camping_time_window_seconds == 300.0
        assert config.camping_min_kills_in_window == 3
        assert config.camping_max_movement_radius == 15.0
        assert config.heat_decay_rate_per_minute == 0.05
        assert config.max_clusters == 50
        assert config.max_raw_events_retained == 10000
        assert config.heatmap_resolution == 64

    @pytest.mark.parametrize(
        "field_name",
        ["cluster_radius", "max_clusters", "min_deaths_for_hotspot", "camping_min_kills_in_window"],
    )
    def test_non_positive_values_rejected(self, field_name):
        """Test non-positive radii, capacities and thresholds raise."""
        with pytest.raises(ConfigurationError):
            AnalysisConfig(**{field_name: 0})

    @pytest.mark.parametrize(
        "field_name,value",
        [
            ("max_raw_events_retained", 2.5),
            ("max_clusters", 10.0),
            ("heatmap_resolution", True),
            ("camping_min_kills_in_window", "3"),
        ],
    )
    def test_non_integer_counts_rejected(self, field_name, value):
        """Test count fields must be integers."""
        with pytest.raises(ConfigurationError, match=field_name):
            AnalysisConfig(**{field_name: value})

    def test_negative_decay_rejected(self):
        """Test negative decay rate raises."""
        with pytest.raises(ConfigurationError):
            AnalysisConfig(heat_decay_rate_per_minute=-0.1)

    def test_zero_decay_allowed(self):
        """Test a zero decay rate disables decay."""
        assert AnalysisConfig(heat_decay_rate_per_minute=0.0).heat_decay_rate_per_minute == 0.0

    def test_from_env(self, monkeypatch):
        """Test ANALYSIS_* variables override defaults."""
        monkeypatch.setenv("ANALYSIS_CLUSTER_RADIUS", "25")
        monkeypatch.setenv("ANALYSIS_MAX_CLUSTERS", "10")
        monkeypatch.setenv("ANALYSIS_MAP_MAX", "8000,500,8000")

        config = AnalysisConfig.from_env()

        assert config.cluster_radius == 25.0
        assert config.max_clusters == 10
        assert config.map_max == (8000.0, 500.0, 8000.0)
        assert config.min_deaths_for_hotspot == 5

    def test_from_env_invalid_value(self, monkeypatch):
        """Test malformed variables raise ConfigurationError."""
        monkeypatch.setenv("ANALYSIS_MAX_CLUSTERS", "many")

        with pytest.raises(ConfigurationError, match="ANALYSIS_MAX_CLUSTERS"):
            AnalysisConfig.from_env()

    def test_from_env_invalid_bounds(self, monkeypatch):
        """Test bounds need three components."""
        monkeypatch.setenv("ANALYSIS_MAP_MIN", "0,0")

        with pytest.raises(ConfigurationError):
            AnalysisConfig.from_env()
