"""
Workers package for processing RabbitMQ messages.
"""

from .elimination_ingest_worker import EliminationIngestWorker

__all__ = ["EliminationIngestWorker"]
