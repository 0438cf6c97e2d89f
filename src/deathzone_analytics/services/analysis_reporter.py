"""
Analysis Reporter

Reporting collaborator for the AnalysisCoordinator. Formats each analysis run
into a human-readable report, logs it, optionally archives it to disk and
publishes the results over RabbitMQ. Publishing runs on a background thread
so an unreachable broker never holds up the analysis.

Published messages:
    analysis.report.{env}   - every non-empty analysis run
    camping.detected.{env}  - admin alert when camping spots were found
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..analysis.models import parse_position
from ..core.background_queue import BackgroundQueue
from ..core.rabbitmq_publisher import RabbitMQPublisher
from ..metrics import REPORTS_PUBLISHED


def format_position(position) -> str:
    return "<{:.1f}, {:.1f}, {:.1f}>".format(*parse_position(position))


def build_report_text(
    hotspots: List[Dict[str, Any]],
    camping_spots: List[Dict[str, Any]],
    analysis_time: float,
    top_n: int = 5,
) -> str:
    """
    Render an analysis run as plain text.

    Args:
        hotspots: Hotspot summaries, most deaths first
        camping_spots: Camping spot summaries
        analysis_time: Unix timestamp of the analysis
        top_n: Number of hotspots to list

    Returns:
        Report text
    """
    lines = ["=== Death Concentration Analysis Report ===", ""]

    shown = hotspots[:top_n]
    lines.append(f"Top {len(shown)} Death Hotspots:")
    for i, hotspot in enumerate(shown, start=1):
        lines.append(
            f"{i}. Position: {format_position(hotspot['center'])} - "
            f"Deaths: {hotspot['death_count']} - "
            f"Most common weapon: {hotspot['most_common_weapon']}"
        )

    if camping_spots:
        lines.append("")
        lines.append("Detected Camping Spots:")
        for i, spot in enumerate(camping_spots, start=1):
            lines.append(
                f"{i}. Position: {format_position(spot['center'])} - "
                f"Most active camper: {spot['most_active_killer']} - "
                f"Weapon: {spot['most_common_weapon']}"
            )

    lines.append("")
    lines.append(f"Generated at: {int(analysis_time)}")

    return "\n".join(lines) + "\n"


class AnalysisReporter:
    """
    Logs, archives and publishes analysis results.

    Example:
        >>> reporter = AnalysisReporter(publisher=RabbitMQPublisher())
        >>> coordinator = AnalysisCoordinator(config, reporters=[reporter])
        >>> reporter.close()
    """

    def __init__(
        self,
        publisher: Optional[RabbitMQPublisher] = None,
        report_dir: Optional[str] = None,
        top_n: int = 5,
        logger: Optional[logging.Logger] = None,
        max_pending: int = 100,
    ):
        """
        Initialize reporter.

        Args:
            publisher: Optional RabbitMQ publisher (log-only when None)
            report_dir: Optional directory for DeathAnalysis_{timestamp}.txt files
            top_n: Number of hotspots included in the report
            logger: Optional logger instance
            max_pending: Unpublished runs kept before the oldest is dropped
        """
        self.publisher = publisher
        self.report_dir = Path(report_dir) if report_dir else None
        self.top_n = top_n
        self.logger = logger or logging.getLogger(__name__)

        self.reports_generated = 0
        self.last_report: Optional[str] = None

        self._outbox: Optional[BackgroundQueue] = None
        if publisher is not None:
            self._outbox = BackgroundQueue(
                self._publish_run, name="analysis_reporter", max_size=max_pending, logger=self.logger
            )

    def report(
        self,
        hotspots: List[Dict[str, Any]],
        camping_spots: List[Dict[str, Any]],
        analysis_time: float,
    ) -> Optional[str]:
        """
        Handle one analysis run.

        Runs with neither hotspots nor camping spots produce no report.

        Returns:
            Report text, or None when skipped
        """
        if not hotspots and not camping_spots:
            self.logger.debug("No hotspots or camping spots, skipping report")
            return None

        text = build_report_text(hotspots, camping_spots, analysis_time, self.top_n)
        self.logger.info(text)

        self.reports_generated += 1
        self.last_report = text

        if self.report_dir is not None:
            self._write_report(text, analysis_time)

        if self._outbox is not None:
            self._outbox.submit((hotspots, camping_spots, analysis_time))

        return text

    def close(self, timeout: Optional[float] = 10.0) -> bool:
        """
        Publish the queued runs and stop the publishing thread.

        Returns:
            True if the queue drained within timeout
        """
        if self._outbox is None:
            return True
        return self._outbox.close(timeout)

    def _write_report(self, text: str, analysis_time: float) -> None:
        path = self.report_dir / f"DeathAnalysis_{int(analysis_time)}.txt"
        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            self.logger.debug(f"Report written to {path}")
        except OSError as e:
            self.logger.error(f"Failed to write report to {path}: {e}")

    def _publish_run(self, run) -> None:
        hotspots, camping_spots, analysis_time = run
        self._publish(hotspots, camping_spots, analysis_time)

    def _publish(
        self,
        hotspots: List[Dict[str, Any]],
        camping_spots: List[Dict[str, Any]],
        analysis_time: float,
    ) -> None:
        report_message = {
            "analysis_time": analysis_time,
            "hotspots": hotspots[: self.top_n],
            "hotspot_count": len(hotspots),
            "camping_spots": camping_spots,
        }
        self._publish_one("analysis", "report", report_message)

        if camping_spots:
            alert = {
                "title": "Camping Detected",
                "message": (
                    f"{len(camping_spots)} potential camping spot(s) detected. "
                    "Check admin panel for details."
                ),
                "analysis_time": analysis_time,
                "camping_spots": camping_spots,
            }
            self._publish_one("camping", "detected", alert)

    def _publish_one(self, type: str, step: str, message: Dict[str, Any]) -> None:
        success = self.publisher.publish_message(type, step, message)
        REPORTS_PUBLISHED.labels(
            report_type=f"{type}.{step}", status="success" if success else "failed"
        ).inc()

        if not success:
            self.logger.warning(f"Failed to publish {type}.{step} message")
