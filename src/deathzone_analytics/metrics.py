"""
Prometheus metrics for the death concentration analysis service
"""

from prometheus_client import Counter, Histogram, Gauge, Info, start_http_server
import logging

logger = logging.getLogger(__name__)

# Ingestion metrics
EVENTS_REGISTERED = Counter(
    "elimination_events_registered_total",
    "Total elimination events registered with the analysis engine",
    ["source"],  # live, seed
)

RAW_EVENTS_RETAINED = Gauge(
    "elimination_raw_events_retained", "Raw elimination events held in the ring buffer"
)

# Analysis metrics
ANALYSIS_RUNS = Counter(
    "death_analysis_runs_total",
    "Total death concentration analysis runs",
    ["trigger"],  # scheduled, ingestion, seed, manual
)

ANALYSIS_DURATION = Histogram(
    "death_analysis_duration_seconds",
    "Time to complete a death concentration analysis run",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5],
)

CLUSTERS_TRACKED = Gauge("death_clusters_tracked", "Number of spatial death clusters tracked")

CLUSTERS_EVICTED = Counter(
    "death_clusters_evicted_total", "Total clusters evicted to stay within capacity"
)

HOTSPOTS_DETECTED = Gauge("death_hotspots_detected", "Hotspots found by the latest analysis")

CAMPING_SPOTS_DETECTED = Gauge(
    "camping_spots_detected", "Camping spots found by the latest analysis"
)

COLLABORATOR_ERRORS = Counter(
    "analysis_collaborator_errors_total",
    "Failures raised by persistence or reporting collaborators",
    ["collaborator", "error_type"],
)

# Background hand-off metrics
BACKGROUND_ITEMS_DROPPED = Counter(
    "background_queue_items_dropped_total",
    "Items dropped from a full background queue before being handled",
    ["queue_name"],  # event_store, analysis_reporter
)

BACKGROUND_QUEUE_PENDING = Gauge(
    "background_queue_pending", "Items waiting on a background queue", ["queue_name"]
)

# Reporting metrics
REPORTS_PUBLISHED = Counter(
    "analysis_reports_published_total",
    "Total analysis reports and alerts published",
    ["report_type", "status"],  # report, camping_alert / success, failed
)

# Queue metrics
QUEUE_MESSAGES_PROCESSED = Counter(
    "queue_messages_processed_total",
    "Total messages processed from queue",
    ["queue_name", "status"],  # success, failed, rejected
)

QUEUE_PROCESSING_DURATION = Histogram(
    "queue_processing_duration_seconds",
    "Time to process a message from queue",
    ["queue_name"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1, 5],
)

# Worker health and errors
WORKER_INFO = Info("worker", "Worker information")

WORKER_ERRORS = Counter("worker_errors_total", "Total worker errors", ["worker_type", "error_type"])

# Database operations
DATABASE_OPERATIONS = Counter(
    "database_operations_total",
    "Total database operations",
    ["operation", "table", "status"],  # operation: insert, select, delete; status: success, failed
)

DATABASE_OPERATION_DURATION = Histogram(
    "database_operation_duration_seconds",
    "Duration of database operations",
    ["operation", "table"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30],
)


def start_metrics_server(port: int = 9090, worker_name: str = "unknown"):
    """
    Start the Prometheus metrics HTTP server

    Args:
        port: Port to expose metrics on
        worker_name: Name/type of the worker for logging and info metric
    """
    try:
        WORKER_INFO.info({"worker_name": worker_name, "metrics_port": str(port)})
        start_http_server(port)
        logger.info(f"Metrics server started on port {port} for worker: {worker_name}")
    except OSError as e:
        if e.errno == 98:  # Address already in use
            logger.warning(f"Metrics server port {port} already in use, skipping startup")
        else:
            logger.error(f"Failed to start metrics server on port {port}: {e}")
            raise
