"""
Death Concentration Analysis Service

Composition root for the analysis engine:
- run:    long-running service consuming elimination.recorded.{env}, seeded
          from PostgreSQL, with periodic analysis and Prometheus metrics
- replay: offline analysis of a JSON file of eliminations

Example:
    python -m deathzone_analytics.services.analysis_service run --env-file .env
    python -m deathzone_analytics.services.analysis_service replay events.json --plot heat.png
"""

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

import click
from dotenv import load_dotenv

from ..analysis.coordinator import AnalysisCoordinator
from ..analysis.models import AnalysisConfig, ConfigurationError
from ..core.database_manager import DatabaseManager
from ..core.event_store import EliminationEventStore
from ..core.rabbitmq_consumer import RabbitMQConsumer
from ..core.rabbitmq_publisher import RabbitMQPublisher
from ..workers.elimination_ingest_worker import EliminationIngestWorker
from .analysis_reporter import AnalysisReporter


logger = logging.getLogger(__name__)

HISTORY_LOAD_LIMIT = 1000
RAW_EVENT_MAX_AGE_SECONDS = 12 * 3600


def setup_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_config() -> AnalysisConfig:
    """Read AnalysisConfig from ANALYSIS_* variables, aborting on bad values."""
    try:
        return AnalysisConfig.from_env()
    except ConfigurationError as e:
        click.echo(f"Error: invalid analysis configuration: {e}", err=True)
        raise click.Abort()


class ReplayClock:
    """Clock that follows the timestamps of replayed events."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def load_replay_events(path: str) -> List[Dict[str, Any]]:
    """
    Read eliminations for replay.

    The file holds either a list of elimination messages or {"events": [...]}.
    Every message needs a "timestamp" in addition to the ingestion fields.

    Returns:
        Messages sorted by timestamp
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("events", [])
    if not isinstance(data, list):
        raise ValueError("Replay file must contain a list of events")

    for i, item in enumerate(data):
        if not isinstance(item, dict) or "timestamp" not in item or "position" not in item:
            raise ValueError(f"Event {i} is missing timestamp or position")

    return sorted(data, key=lambda item: float(item["timestamp"]))


def save_heatmap_plot(coordinator: AnalysisCoordinator, output_path: str) -> None:
    """Render the heat grid to a PNG with x across and z up."""
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    config = coordinator.config
    grid = coordinator.get_heatmap_snapshot()

    fig, ax = plt.subplots(figsize=(10, 10))
    image = ax.imshow(
        grid.T,
        origin="lower",
        cmap="hot",
        extent=(config.map_min[0], config.map_max[0], config.map_min[2], config.map_max[2]),
    )
    fig.colorbar(image, ax=ax, label="Heat")
    ax.set_title("Death Concentration Heatmap")
    ax.set_xlabel("X")
    ax.set_ylabel("Z")

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


# ============================================================================
# CLI Entry Point
# ============================================================================


@click.group()
def cli():
    """Death concentration analysis for multiplayer match eliminations."""


@cli.command()
@click.option("--env-file", default=".env", help="Path to .env file (default: .env)")
@click.option("--log-level", default="INFO", help="Log level (default: INFO)")
@click.option("--worker-id", default=None, help="Worker identifier (default: WORKER_ID)")
@click.option("--no-database", is_flag=True, default=False, help="Run without PostgreSQL persistence")
@click.option("--report-dir", default=None, help="Directory for text report archives")
@click.option(
    "--purge-stored",
    is_flag=True,
    default=False,
    help="Delete stored eliminations older than 12 hours on each analysis",
)
def run(
    env_file: str,
    log_level: str,
    worker_id: Optional[str],
    no_database: bool,
    report_dir: Optional[str],
    purge_stored: bool,
):
    """Run the analysis service against the elimination queue.

    - Loads the most recent eliminations from PostgreSQL
    - Consumes elimination.recorded.{env} messages
    - Re-analyzes every ANALYSIS_ANALYSIS_INTERVAL_SECONDS seconds
    - Publishes reports and camping alerts
    """
    load_dotenv(env_file)
    setup_logging(log_level)

    config = load_config()

    required_vars = ["RABBITMQ_HOST", "RABBITMQ_USER", "RABBITMQ_PASSWORD"]
    if not no_database:
        required_vars += ["POSTGRES_HOST", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD"]

    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars:
        click.echo(
            f"Error: Missing required environment variables: {', '.join(missing_vars)}", err=True
        )
        raise click.Abort()

    worker_id = worker_id or os.getenv("WORKER_ID", "death-analysis-1")
    environment = os.getenv("ENVIRONMENT", "prod").lower()

    clock = time.time

    db = None
    event_store = None
    if not no_database:
        db = DatabaseManager(
            host=os.getenv("POSTGRES_HOST"),
            port=int(os.getenv("POSTGRES_PORT", "5432")),
            dbname=os.getenv("POSTGRES_DB"),
            user=os.getenv("POSTGRES_USER"),
            password=os.getenv("POSTGRES_PASSWORD"),
            pool_timeout=float(os.getenv("POSTGRES_POOL_TIMEOUT", "5")),
        )
        if not db.ping():
            db.disconnect()
            click.echo("Error: PostgreSQL is not reachable", err=True)
            raise click.Abort()
        db.create_elimination_events_table()
        event_store = EliminationEventStore(db, clock=clock)

    publisher = RabbitMQPublisher(environment=environment)
    reporter = AnalysisReporter(publisher=publisher, report_dir=report_dir)

    coordinator = AnalysisCoordinator(
        config, event_store=event_store, reporters=[reporter], clock=clock
    )
    coordinator.load_from_store(HISTORY_LOAD_LIMIT)

    worker = EliminationIngestWorker(
        coordinator=coordinator,
        worker_id=worker_id,
        metrics_port=int(os.getenv("METRICS_PORT", "9095")),
    )

    consumer = RabbitMQConsumer(
        host=os.getenv("RABBITMQ_HOST"),
        port=int(os.getenv("RABBITMQ_PORT", "5672")),
        username=os.getenv("RABBITMQ_USER", "guest"),
        password=os.getenv("RABBITMQ_PASSWORD", "guest"),
        vhost=os.getenv("RABBITMQ_VHOST", "/"),
        environment=environment,
    )

    def periodic_maintenance():
        coordinator.run_analysis(trigger="scheduled")
        coordinator.prune_raw_events(RAW_EVENT_MAX_AGE_SECONDS)
        if purge_stored and event_store is not None:
            event_store.purge_older_than(RAW_EVENT_MAX_AGE_SECONDS)

    try:
        consumer.schedule_periodic(config.analysis_interval_seconds, periodic_maintenance)

        logger.info(f"Starting death concentration analysis service: {worker_id}")
        consumer.consume_messages("elimination", "recorded", worker.process_message)
    finally:
        consumer.close()
        reporter.close()
        publisher.close()
        if event_store is not None:
            event_store.close()
        if db is not None:
            db.disconnect()

        stats = worker.get_stats()
        logger.info(
            f"Service stopped: {stats['processed_count']} eliminations registered, "
            f"{stats['error_count']} rejected"
        )


@cli.command()
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--env-file", default=".env", help="Path to .env file (default: .env)")
@click.option("--log-level", default="WARNING", help="Log level (default: WARNING)")
@click.option("--heatmap-json", default=None, help="Write the heat grid as JSON to this path")
@click.option("--plot", default=None, help="Write a heatmap PNG to this path")
@click.option("--top", default=5, type=int, help="Hotspots listed in the report (default: 5)")
def replay(
    events_file: str,
    env_file: str,
    log_level: str,
    heatmap_json: Optional[str],
    plot: Optional[str],
    top: int,
):
    """Replay recorded eliminations through the engine and print the report.

    The engine clock follows the event timestamps, so periodic analyses and
    heat decay happen as they would have live.

    Example:
        python -m deathzone_analytics.services.analysis_service replay match.json
    """
    load_dotenv(env_file)
    setup_logging(log_level)

    config = load_config()

    try:
        events = load_replay_events(events_file)
    except (OSError, ValueError) as e:
        click.echo(f"Error: failed to read {events_file}: {e}", err=True)
        raise click.Abort()

    clock = ReplayClock(float(events[0]["timestamp"]) if events else 0.0)
    reporter = AnalysisReporter(top_n=top)
    coordinator = AnalysisCoordinator(config, reporters=[reporter], clock=clock)

    rejected = 0
    for item in events:
        clock.now = float(item["timestamp"])
        try:
            coordinator.register_event(
                victim_id=item.get("victim_id", ""),
                killer_id=item.get("killer_id", ""),
                position=item["position"],
                killer_position=item.get("killer_position"),
                weapon=item.get("weapon", ""),
                team_id=item.get("team_id", 0),
            )
        except (TypeError, ValueError) as e:
            rejected += 1
            logger.warning(f"Skipping invalid event at {item['timestamp']}: {e}")

    result = coordinator.run_analysis(trigger="manual")

    click.echo("\n" + "=" * 60)
    click.echo("Death Concentration Replay Complete")
    click.echo("=" * 60)
    click.echo(f"  Events replayed: {len(events) - rejected}")
    click.echo(f"  Events rejected: {rejected}")
    click.echo(f"  Clusters tracked: {len(coordinator.cluster_index)}")
    click.echo(f"  Hotspots: {result['hotspots']}")
    click.echo(f"  Camping spots: {result['camping_spots']}")
    click.echo("=" * 60 + "\n")

    if result["hotspots"] or result["camping_spots"]:
        click.echo(reporter.last_report)
    else:
        click.echo("No hotspots or camping spots found.")

    if heatmap_json:
        with open(heatmap_json, "w", encoding="utf-8") as f:
            json.dump(coordinator.get_heatmap_json(), f)
        click.echo(f"Heatmap written to: {heatmap_json}")

    if plot:
        save_heatmap_plot(coordinator, plot)
        click.echo(f"Heatmap plot saved to: {plot}")


if __name__ == "__main__":
    cli()
