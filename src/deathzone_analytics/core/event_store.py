"""Elimination Event Store - persistence collaborator for the analysis engine.

Maps EliminationEvent objects to elimination_events rows and back. Inserts
run on a background writer thread so ingestion never waits on PostgreSQL.
Storage failures are logged and counted here and never reach the caller.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..analysis.models import EliminationEvent
from ..metrics import DATABASE_OPERATIONS, DATABASE_OPERATION_DURATION
from .background_queue import BackgroundQueue
from .database_manager import DatabaseError, DatabaseManager


logger = logging.getLogger(__name__)


def event_to_row(event: EliminationEvent) -> Dict[str, Any]:
    """Flatten an event into an elimination_events row."""
    return {
        "victim_id": event.victim_id,
        "killer_id": event.killer_id,
        "weapon": event.weapon,
        "team_id": event.team_id,
        "x_location": event.position[0],
        "y_location": event.position[1],
        "z_location": event.position[2],
        "kill_distance": event.kill_distance,
        "event_timestamp": event.timestamp,
    }


def row_to_event(row: Dict[str, Any]) -> EliminationEvent:
    """Build an event from an elimination_events row."""
    return EliminationEvent(
        position=(float(row["x_location"]), float(row["y_location"]), float(row["z_location"])),
        timestamp=float(row["event_timestamp"]),
        killer_id=row.get("killer_id") or "",
        victim_id=row.get("victim_id") or "",
        weapon=row.get("weapon") or "",
        kill_distance=float(row.get("kill_distance") or 0.0),
        team_id=int(row.get("team_id") or 0),
    )


class EliminationEventStore:
    """Fire-and-forget event persistence backed by DatabaseManager.

    Example:
        >>> store = EliminationEventStore(db)
        >>> coordinator = AnalysisCoordinator(config, event_store=store)
        >>> coordinator.load_from_store(1000)
        >>> store.close()
    """

    def __init__(
        self,
        database: DatabaseManager,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
        max_pending: int = 10000,
    ):
        """
        Initialize the store.

        Args:
            database: DatabaseManager instance
            logger: Optional logger instance
            clock: Source of unix timestamps for retention cutoffs
            max_pending: Unwritten events kept before the oldest is dropped
        """
        self.database = database
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

        self.saved_count = 0
        self.error_count = 0

        self._writer = BackgroundQueue(
            self.write_event, name="event_store", max_size=max_pending, logger=self.logger
        )

    @property
    def pending_count(self) -> int:
        return self._writer.pending

    def save_event(self, event: EliminationEvent) -> bool:
        """
        Queue one event for insertion. Never blocks on the database.

        Returns:
            True if queued, False once the store is closed
        """
        return self._writer.submit(event)

    def close(self, timeout: Optional[float] = 10.0) -> bool:
        """
        Write the queued events and stop the writer thread.

        Returns:
            True if every queued event was handled within timeout
        """
        return self._writer.close(timeout)

    def write_event(self, event: EliminationEvent) -> bool:
        """
        Insert one event synchronously (runs on the writer thread).

        Returns:
            True if stored, False on any database failure
        """
        start_time = time.time()
        table = self.database.table_name

        try:
            self.database.insert_elimination_event(event_to_row(event))
            self.saved_count += 1
            DATABASE_OPERATIONS.labels(operation="insert", table=table, status="success").inc()
            return True

        except DatabaseError as e:
            self.error_count += 1
            self.logger.error(f"Failed to save elimination event for victim {event.victim_id}: {e}")
            DATABASE_OPERATIONS.labels(operation="insert", table=table, status="failed").inc()
            return False

        finally:
            DATABASE_OPERATION_DURATION.labels(operation="insert", table=table).observe(
                time.time() - start_time
            )

    def load_recent_events(self, n: int = 1000) -> List[EliminationEvent]:
        """
        Load the n most recent events, oldest first.

        Rows that cannot be mapped are skipped.

        Returns:
            List of events (empty on database failure)
        """
        start_time = time.time()
        table = self.database.table_name

        try:
            rows = self.database.get_recent_elimination_events(limit=n)
            DATABASE_OPERATIONS.labels(operation="select", table=table, status="success").inc()

        except DatabaseError as e:
            self.error_count += 1
            self.logger.error(f"Failed to load recent elimination events: {e}")
            DATABASE_OPERATIONS.labels(operation="select", table=table, status="failed").inc()
            return []

        finally:
            DATABASE_OPERATION_DURATION.labels(operation="select", table=table).observe(
                time.time() - start_time
            )

        events = []
        for row in rows:
            try:
                events.append(row_to_event(row))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed elimination event row: {e}")

        self.logger.info(f"Loaded {len(events)} elimination events from {table}")
        return events

    def purge_older_than(self, max_age_seconds: float) -> int:
        """
        Delete stored events older than max_age_seconds.

        Returns:
            Number of rows deleted (0 on failure)
        """
        cutoff = self._clock() - max_age_seconds
        table = self.database.table_name

        try:
            deleted = self.database.delete_elimination_events_before(cutoff)
            DATABASE_OPERATIONS.labels(operation="delete", table=table, status="success").inc()
            if deleted:
                self.logger.info(f"Purged {deleted} elimination events older than {max_age_seconds}s")
            return deleted

        except DatabaseError as e:
            self.error_count += 1
            self.logger.error(f"Failed to purge elimination events: {e}")
            DATABASE_OPERATIONS.labels(operation="delete", table=table, status="failed").inc()
            return 0
