"""Unit tests for ClusterIndex."""

import math

import pytest

from deathzone_analytics.analysis.cluster_index import ClusterIndex
from deathzone_analytics.analysis.models import ConfigurationError, EliminationEvent


def make_event(x, z=0.0, timestamp=0.0, killer_id="killer", y=0.0):
    return EliminationEvent(position=(x, y, z), timestamp=timestamp, killer_id=killer_id)


@pytest.fixture
def index():
    return ClusterIndex(cluster_radius=10.0, max_clusters=50, decay_rate_per_minute=0.05)


class TestConstruction:
    """Test construction and validation."""

    @pytest.mark.parametrize("radius,capacity", [(0.0, 10), (-5.0, 10), (10.0, 0)])
    def test_invalid_configuration(self, radius, capacity):
        """Test non-positive radius or capacity raise."""
        with pytest.raises(ConfigurationError):
            ClusterIndex(cluster_radius=radius, max_clusters=capacity)


class TestAssignment:
    """Test routing events into clusters."""

    def test_first_event_creates_cluster(self, index):
        """Test an empty index seeds a cluster at the event position."""
        cluster = index.assign(make_event(100.0, 100.0, 5.0))

        assert len(index) == 1
        assert cluster.center == (100.0, 0.0, 100.0)
        assert cluster.death_count == 1
        assert cluster.last_update == 5.0

    def test_nearby_event_joins_cluster(self, index):
        """Test events within the radius join the existing cluster."""
        first = index.assign(make_event(0.0))
        second = index.assign(make_event(9.0))

        assert first is second
        assert len(index) == 1

    def test_radius_boundary_is_inclusive(self, index):
        """Test an event exactly on the radius joins."""
        index.assign(make_event(0.0))
        index.assign(make_event(10.0))

        assert len(index) == 1

    def test_distant_event_creates_cluster(self, index):
        """Test events beyond the radius start a new cluster."""
        index.assign(make_event(0.0))
        index.assign(make_event(10.5))

        assert len(index) == 2

    def test_first_match_wins_over_nearest(self, index):
        """Test the earliest cluster in range wins even when a later one is closer."""
        a = index.assign(make_event(0.0))
        b = index.assign(make_event(15.0))

        landed = index.assign(make_event(8.0))

        assert landed is a
        assert a.death_count == 2
        assert b.death_count == 1

    def test_centroid_and_radius(self, index):
        """Test center is the member mean and radius the farthest member."""
        index.assign(make_event(0.0, 0.0))
        index.assign(make_event(6.0, 0.0))
        cluster = index.assign(make_event(9.0, 6.0))

        assert cluster.center == pytest.approx((5.0, 0.0, 2.0))
        assert cluster.radius == pytest.approx(math.sqrt(32.0))

    def test_centroid_drift_is_kept(self, index):
        """Test a drifting center can leave early members outside the radius."""
        index.assign(make_event(0.0))
        for x in [9.0, 14.0, 17.0, 19.0, 20.0, 20.0, 20.0]:
            index.assign(make_event(x))

        cluster = index.clusters[0]

        assert len(index) == 1
        assert cluster.radius > index.cluster_radius


class TestEviction:
    """Test capacity-bounded eviction."""

    def test_bounded_growth(self):
        """Test the index never exceeds capacity."""
        index = ClusterIndex(cluster_radius=10.0, max_clusters=3)

        for i in range(10):
            index.assign(make_event(i * 100.0, timestamp=float(i)))
            assert len(index) <= 3

        assert index.evicted_count == 7
        assert [c.last_update for c in index] == [7.0, 8.0, 9.0]

    def test_evicts_least_recently_updated(self):
        """Test the cluster with the oldest last update goes first."""
        index = ClusterIndex(cluster_radius=10.0, max_clusters=2)
        a = index.assign(make_event(0.0, timestamp=1.0))
        b = index.assign(make_event(100.0, timestamp=2.0))
        index.assign(make_event(1.0, timestamp=3.0))

        c = index.assign(make_event(200.0, timestamp=4.0))

        assert list(index) == [a, c]
        assert b not in index.clusters

    def test_tie_evicts_earliest_created(self):
        """Test equal last updates evict in creation order."""
        index = ClusterIndex(cluster_radius=10.0, max_clusters=2)
        a = index.assign(make_event(0.0, timestamp=5.0))
        b = index.assign(make_event(100.0, timestamp=5.0))
        c = index.assign(make_event(200.0, timestamp=5.0))

        assert list(index) == [b, c]
        assert a not in index.clusters

    def test_join_does_not_evict(self):
        """Test joining an existing cluster never triggers eviction."""
        index = ClusterIndex(cluster_radius=10.0, max_clusters=1)
        index.assign(make_event(0.0, timestamp=1.0))
        index.assign(make_event(5.0, timestamp=2.0))

        assert len(index) == 1
        assert index.evicted_count == 0


class TestHeatDecay:
    """Test cluster heat decay."""

    def test_heat_tracks_member_count(self, index):
        """Test heat equals the member count after insertion."""
        for _ in range(4):
            cluster = index.assign(make_event(0.0))

        assert cluster.heat == 4.0

    def test_decay_heat(self, index):
        """Test heat decays with the grid formula."""
        cluster = index.assign(make_event(0.0))
        index.assign(make_event(1.0))

        index.decay_heat(10)

        assert cluster.heat == pytest.approx(1.0)

    def test_decay_heat_zero_minutes(self, index):
        """Test zero elapsed time leaves heat unchanged."""
        cluster = index.assign(make_event(0.0))

        assert index.decay_heat(0) == 1.0
        assert cluster.heat == 1.0
