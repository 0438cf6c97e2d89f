"""
Elimination Ingest Worker

Validates elimination messages from the game-event layer and registers them
with the death concentration engine.
"""

import logging
import time
from typing import Any, Dict, Optional

from ..analysis.coordinator import AnalysisCoordinator
from ..analysis.models import parse_position
from ..metrics import (
    QUEUE_MESSAGES_PROCESSED,
    QUEUE_PROCESSING_DURATION,
    WORKER_ERRORS,
    start_metrics_server,
)

QUEUE_NAME = "elimination_ingest"


class EliminationIngestWorker:
    """
    Worker that feeds elimination messages into an AnalysisCoordinator.

    Message payload:
        {
            "victim_id": str,
            "killer_id": str,             # empty or missing for environmental deaths
            "position": {"x", "y", "z"},
            "killer_position": {"x", "y", "z"},   # optional
            "weapon": str,
            "team_id": int
        }
    """

    def __init__(
        self,
        coordinator: AnalysisCoordinator,
        worker_id: str,
        logger: Optional[logging.Logger] = None,
        metrics_port: Optional[int] = 9095,
    ):
        """
        Initialize elimination ingest worker.

        Args:
            coordinator: Analysis coordinator owned by the composition root
            worker_id: Unique worker identifier
            logger: Optional logger instance
            metrics_port: Port for Prometheus metrics server (default: 9095, None to skip)
        """
        self.coordinator = coordinator
        self.worker_id = worker_id
        self.logger = logger or logging.getLogger(__name__)

        self.processed_count = 0
        self.error_count = 0

        if metrics_port is not None:
            start_metrics_server(port=metrics_port, worker_name=f"elimination-ingest-{worker_id}")

        self.logger.info(f"[{self.worker_id}] Elimination ingest worker initialized")

    def process_message(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Register one elimination (callback for RabbitMQConsumer).

        Args:
            data: Message payload

        Returns:
            Dict with success status: {"success": bool, "error": str}
        """
        start_time = time.time()

        try:
            victim_id = data.get("victim_id")
            if victim_id is None or victim_id == "":
                return self._reject("Message missing victim_id field", start_time)

            if "position" not in data:
                return self._reject(f"Message missing position field for victim {victim_id}", start_time)

            try:
                position = parse_position(data["position"])
                killer_position = (
                    parse_position(data["killer_position"])
                    if data.get("killer_position") is not None
                    else None
                )
                team_id = int(data.get("team_id") or 0)
            except (TypeError, ValueError) as e:
                return self._reject(f"Invalid elimination payload for victim {victim_id}: {e}", start_time)

            event = self.coordinator.register_event(
                victim_id=str(victim_id),
                killer_id=str(data.get("killer_id") or ""),
                position=position,
                killer_position=killer_position,
                weapon=str(data.get("weapon") or ""),
                team_id=team_id,
            )

            self.processed_count += 1
            QUEUE_MESSAGES_PROCESSED.labels(queue_name=QUEUE_NAME, status="success").inc()
            QUEUE_PROCESSING_DURATION.labels(queue_name=QUEUE_NAME).observe(time.time() - start_time)

            self.logger.debug(
                f"[{self.worker_id}] Registered elimination of {event.victim_id} "
                f"by {event.killer_id or 'environment'} at {event.position}"
            )

            return {"success": True}

        except Exception as e:
            self.error_count += 1
            self.logger.error(f"[{self.worker_id}] Failed to register elimination: {e}", exc_info=True)
            QUEUE_MESSAGES_PROCESSED.labels(queue_name=QUEUE_NAME, status="failed").inc()
            QUEUE_PROCESSING_DURATION.labels(queue_name=QUEUE_NAME).observe(time.time() - start_time)
            WORKER_ERRORS.labels(worker_type=QUEUE_NAME, error_type=type(e).__name__).inc()
            return {"success": False, "error": str(e)}

    def _reject(self, error_msg: str, start_time: float) -> Dict[str, Any]:
        self.error_count += 1
        self.logger.error(f"[{self.worker_id}] {error_msg}")
        QUEUE_MESSAGES_PROCESSED.labels(queue_name=QUEUE_NAME, status="rejected").inc()
        QUEUE_PROCESSING_DURATION.labels(queue_name=QUEUE_NAME).observe(time.time() - start_time)
        WORKER_ERRORS.labels(worker_type=QUEUE_NAME, error_type="ValidationError").inc()
        return {"success": False, "error": error_msg}

    def get_stats(self) -> Dict[str, Any]:
        """
        Get worker statistics.

        Returns:
            Dict with worker and engine stats
        """
        return {
            "worker_id": self.worker_id,
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "engine": self.coordinator.get_stats(),
        }
