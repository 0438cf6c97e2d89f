"""Unit tests for AnalysisReporter."""

import threading
import time

import pytest
from unittest.mock import Mock

from deathzone_analytics.services.analysis_reporter import AnalysisReporter, build_report_text


def make_summary(x=100.0, deaths=5, weapon="M4", killer="killer", camping=False):
    return {
        "center": {"x": x, "y": 0.0, "z": 200.0},
        "death_count": deaths,
        "radius": 4.0,
        "heat": float(deaths),
        "last_update": 1700000000.0,
        "is_camping": camping,
        "most_common_weapon": weapon,
        "most_active_killer": killer,
        "unique_killers": 1,
        "camping_score": 80.0,
    }


@pytest.fixture
def publisher():
    pub = Mock()
    pub.publish_message.return_value = True
    return pub


class TestReportText:
    """Test report formatting."""

    def test_hotspot_lines(self):
        """Test hotspots are numbered with position, deaths and weapon."""
        text = build_report_text([make_summary(deaths=9, weapon="AK47")], [], 1700000000.5)

        assert text.startswith("=== Death Concentration Analysis Report ===")
        assert "Top 1 Death Hotspots:" in text
        assert "1. Position: <100.0, 0.0, 200.0> - Deaths: 9 - Most common weapon: AK47" in text
        assert "Generated at: 1700000000" in text
        assert "Camping" not in text

    def test_top_n_limit(self):
        """Test only the top hotspots are listed."""
        hotspots = [make_summary(x=float(i)) for i in range(8)]

        text = build_report_text(hotspots, [], 0.0, top_n=5)

        assert "Top 5 Death Hotspots:" in text
        assert "6. Position" not in text

    def test_camping_section(self):
        """Test camping spots list the most active killer."""
        text = build_report_text([], [make_summary(killer="camper", camping=True)], 0.0)

        assert "Detected Camping Spots:" in text
        assert "Most active camper: camper" in text


class TestReport:
    """Test report dispatch."""

    def test_empty_results_skipped(self, publisher):
        """Test runs without results produce nothing."""
        reporter = AnalysisReporter(publisher=publisher)

        assert reporter.report([], [], 0.0) is None
        reporter.close(timeout=5)
        publisher.publish_message.assert_not_called()
        assert reporter.reports_generated == 0

    def test_hotspots_published(self, publisher):
        """Test the report is published without a camping alert."""
        reporter = AnalysisReporter(publisher=publisher)

        text = reporter.report([make_summary()], [], 1700000000.0)
        assert reporter.close(timeout=5) is True

        assert text == reporter.last_report
        publisher.publish_message.assert_called_once()
        type_, step, message = publisher.publish_message.call_args[0]
        assert (type_, step) == ("analysis", "report")
        assert message["hotspot_count"] == 1

    def test_camping_alert_published(self, publisher):
        """Test camping spots trigger an admin alert."""
        reporter = AnalysisReporter(publisher=publisher)

        reporter.report([], [make_summary(camping=True)], 1700000000.0)
        reporter.close(timeout=5)

        targets = [c[0][:2] for c in publisher.publish_message.call_args_list]
        assert targets == [("analysis", "report"), ("camping", "detected")]
        alert = publisher.publish_message.call_args_list[1][0][2]
        assert alert["title"] == "Camping Detected"
        assert alert["message"].startswith("1 potential camping spot(s) detected.")

    def test_publish_failure_tolerated(self, publisher):
        """Test failed publishes are logged only."""
        publisher.publish_message.return_value = False
        reporter = AnalysisReporter(publisher=publisher)

        assert reporter.report([make_summary()], [], 0.0) is not None
        assert reporter.close(timeout=5) is True
        publisher.publish_message.assert_called_once()

    def test_log_only_without_publisher(self):
        """Test reports are generated without a publisher."""
        reporter = AnalysisReporter()

        reporter.report([make_summary()], [], 0.0)

        assert reporter.reports_generated == 1

    def test_report_archived(self, tmp_path):
        """Test reports are written to the archive directory."""
        reporter = AnalysisReporter(report_dir=str(tmp_path / "reports"))

        reporter.report([make_summary()], [], 1700000000.0)

        path = tmp_path / "reports" / "DeathAnalysis_1700000000.txt"
        assert path.read_text(encoding="utf-8") == reporter.last_report

    def test_slow_broker_does_not_block_report(self, publisher):
        """Test report returns while publishing is still in progress."""
        release = threading.Event()
        publisher.publish_message.side_effect = lambda *args: release.wait(5)
        reporter = AnalysisReporter(publisher=publisher)

        start = time.monotonic()
        reporter.report([make_summary()], [], 1700000000.0)
        reporter.report([make_summary()], [], 1700000300.0)
        elapsed = time.monotonic() - start

        release.set()
        reporter.close(timeout=5)

        assert elapsed < 0.5
        assert publisher.publish_message.call_count == 2

    def test_close_without_publisher(self):
        """Test closing a log-only reporter is a no-op."""
        assert AnalysisReporter().close() is True
