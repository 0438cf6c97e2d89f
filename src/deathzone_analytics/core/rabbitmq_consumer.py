"""RabbitMQ Consumer - AMQP ingestion of elimination events.

Feeds elimination messages from the game-event layer to a worker callback and
runs periodic jobs on the same connection thread, so the analysis engine is
only ever touched from one thread.

Key features:
- Event-driven message consumption
- Callback contract {"success": bool, "error": Optional[str]}
- Periodic timers via BlockingConnection.call_later, re-armed on reconnect
- Prefetch control
- Graceful shutdown
"""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import pika
from pika.exceptions import AMQPConnectionError


logger = logging.getLogger(__name__)


class RabbitMQConsumerError(Exception):
    """Custom exception for RabbitMQ consumer operations."""

    pass


class RabbitMQConsumer:
    """RabbitMQ consumer for elimination event ingestion.

    Queue naming: {type}.{step}.{environment}

    Callback contract:
        Input: Dict[str, Any] - Parsed message data
        Output: Dict[str, Any] - {"success": bool, "error": Optional[str]}

    Example:
        >>> consumer = RabbitMQConsumer(host="localhost", environment="prod")
        >>> consumer.schedule_periodic(300, coordinator.run_analysis)
        >>> consumer.consume_messages("elimination", "recorded", worker.process_message)
    """

    def __init__(
        self,
        host: str,
        port: int = 5672,
        username: str = "guest",
        password: str = "guest",
        vhost: str = "/",
        environment: str = "prod",
        prefetch_count: int = 50,
        connection_timeout: int = 10,
        heartbeat: int = 600,
    ):
        """Initialize RabbitMQ consumer.

        Args:
            host: RabbitMQ host
            port: RabbitMQ AMQP port (default: 5672)
            username: RabbitMQ username
            password: RabbitMQ password
            vhost: RabbitMQ virtual host (default: "/")
            environment: Environment (prod, dev, etc.)
            prefetch_count: Number of messages to prefetch (default: 50)
            connection_timeout: Connection timeout in seconds
            heartbeat: Heartbeat interval in seconds
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.vhost = vhost
        self.environment = environment
        self.prefetch_count = prefetch_count
        self.connection_timeout = connection_timeout
        self.heartbeat = heartbeat

        # Connection and channel (lazy initialization)
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel: Optional[pika.channel.Channel] = None

        self._consuming = False
        self._processed_count = 0
        self._failed_count = 0

        # (interval_seconds, job) pairs armed on every new connection
        self._periodic_jobs: List[Tuple[float, Callable[[], Any]]] = []

        logger.info(
            f"RabbitMQ consumer initialized: {self.host}:{self.port} (vhost={self.vhost}, env={self.environment})"
        )

    def _build_queue_name(self, type: str, step: str) -> str:
        """Build environment-aware queue name.

        Args:
            type: Message type (elimination, analysis, camping)
            step: Processing step (recorded, report, detected)

        Returns:
            Queue name (e.g., "elimination.recorded.prod")
        """
        return f"{type}.{step}.{self.environment}"

    def _ensure_connection(self) -> None:
        """Ensure connection and channel are established.

        Raises:
            RabbitMQConsumerError: If connection fails
        """
        if self._connection is None or self._connection.is_closed:
            try:
                credentials = pika.PlainCredentials(self.username, self.password)
                parameters = pika.ConnectionParameters(
                    host=self.host,
                    port=self.port,
                    virtual_host=self.vhost,
                    credentials=credentials,
                    connection_attempts=3,
                    retry_delay=2,
                    socket_timeout=self.connection_timeout,
                    heartbeat=self.heartbeat,
                )

                self._connection = pika.BlockingConnection(parameters)
                self._channel = self._connection.channel()
                self._channel.basic_qos(prefetch_count=self.prefetch_count)

                logger.debug(f"Connected to RabbitMQ: {self.host}:{self.port}")

            except AMQPConnectionError as e:
                raise RabbitMQConsumerError(f"Failed to connect to RabbitMQ: {e}")

            for interval_seconds, job in self._periodic_jobs:
                self._arm_periodic(interval_seconds, job)
            if self._periodic_jobs:
                logger.info(f"Re-armed {len(self._periodic_jobs)} periodic jobs on new connection")

    def schedule_periodic(self, interval_seconds: float, job: Callable[[], Any]) -> None:
        """Run a job every interval_seconds on the consuming thread.

        Job exceptions are logged and the timer keeps running.

        Args:
            interval_seconds: Delay between runs
            job: Zero-argument callable

        Raises:
            RabbitMQConsumerError: If the connection cannot be established
        """
        self._ensure_connection()

        self._periodic_jobs.append((interval_seconds, job))
        self._arm_periodic(interval_seconds, job)
        logger.info(f"Scheduled periodic job every {interval_seconds}s")

    def _arm_periodic(self, interval_seconds: float, job: Callable[[], Any]) -> None:
        """Start a timer chain bound to the current connection.

        The chain ends when its connection closes or is replaced.
        """
        connection = self._connection

        def run_and_reschedule():
            try:
                job()
            except Exception as e:
                logger.error(f"Periodic job {getattr(job, '__name__', job)} failed: {e}", exc_info=True)
            finally:
                if connection is self._connection and not connection.is_closed:
                    connection.call_later(interval_seconds, run_and_reschedule)

        connection.call_later(interval_seconds, run_and_reschedule)

    def consume_messages(
        self,
        type: str,
        step: str,
        callback: Callable[[Dict[str, Any]], Dict[str, Any]],
        auto_ack: bool = True,
    ) -> None:
        """Start consuming messages from queue (daemon mode).

        Blocks indefinitely, processing messages as they arrive.

        Args:
            type: Message type (elimination)
            step: Processing step (recorded)
            callback: Function to process each message
            auto_ack: Auto-acknowledge messages (default: True)

        Raises:
            RabbitMQConsumerError: If consumption fails
        """
        try:
            self._ensure_connection()

            queue_name = self._build_queue_name(type, step)
            self._channel.queue_declare(queue=queue_name, durable=True)

            logger.info(f"Starting consumption from queue: {queue_name}")

            def on_message(channel, method, properties, body):
                self._on_message_callback(channel, method, properties, body, callback, auto_ack)

            self._channel.basic_consume(
                queue=queue_name, on_message_callback=on_message, auto_ack=auto_ack
            )

            self._consuming = True

            logger.info(f"Waiting for messages from {queue_name}. Press Ctrl+C to exit.")
            self._channel.start_consuming()

        except KeyboardInterrupt:
            logger.info("Consumption interrupted by user")
            self.stop_consuming()
        except Exception as e:
            logger.error(f"Error during consumption: {e}")
            raise RabbitMQConsumerError(f"Consumption failed: {e}")

    def _on_message_callback(
        self,
        channel: pika.channel.Channel,
        method: pika.spec.Basic.Deliver,
        properties: pika.spec.BasicProperties,
        body: bytes,
        callback: Callable[[Dict[str, Any]], Dict[str, Any]],
        auto_ack: bool,
    ) -> None:
        """Process one delivery and acknowledge it when auto_ack is off."""
        start_time = time.time()

        try:
            result = self._process_message(body, callback)
            processing_time = time.time() - start_time

            if result["success"]:
                self._processed_count += 1
                logger.debug(f"Processed message in {processing_time:.3f}s")

                if not auto_ack:
                    channel.basic_ack(method.delivery_tag)
            else:
                self._failed_count += 1
                logger.warning(f"Message rejected: {result.get('error', 'Unknown error')}")

                if not auto_ack:
                    channel.basic_nack(method.delivery_tag, requeue=False)

        except Exception as e:
            self._failed_count += 1
            logger.error(f"Exception in message callback: {e}")

            if not auto_ack:
                channel.basic_nack(method.delivery_tag, requeue=False)

    def _process_message(
        self, body: bytes, callback: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Parse a message body and hand it to the callback.

        Returns:
            Result dict: {"success": bool, "error": Optional[str]}
        """
        try:
            message_data = json.loads(body.decode("utf-8"))

            if not isinstance(message_data, dict):
                return {"success": False, "error": "Message body is not a JSON object"}

            result = callback(message_data)

            if not isinstance(result, dict) or "success" not in result:
                logger.warning(f"Callback returned invalid format, treating as failure: {result}")
                return {"success": False, "error": "Invalid callback return format"}

            return result

        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            error_msg = f"Failed to parse message JSON: {e}"
            logger.error(error_msg)
            return {"success": False, "error": error_msg}

        except Exception as e:
            error_msg = f"Exception during message processing: {e}"
            logger.error(error_msg)
            return {"success": False, "error": error_msg}

    def stop_consuming(self) -> None:
        """Stop consuming messages gracefully.

        Safe to call even if not consuming.
        """
        if self._consuming and self._channel and not self._channel.is_closed:
            try:
                self._channel.stop_consuming()
                self._consuming = False
                logger.info("Stopped consuming messages")
            except Exception as e:
                logger.warning(f"Error stopping consumption: {e}")

    def close(self) -> None:
        """Close RabbitMQ connection.

        Safe to call multiple times.
        """
        self.stop_consuming()

        if getattr(self, "_channel", None) and not self._channel.is_closed:
            try:
                self._channel.close()
            except Exception as e:
                logger.warning(f"Error closing channel: {e}")

        if getattr(self, "_connection", None) and not self._connection.is_closed:
            try:
                self._connection.close()
                logger.debug("RabbitMQ connection closed")
            except Exception as e:
                logger.warning(f"Error closing connection: {e}")

    def get_stats(self) -> Dict[str, int]:
        """Get consumer statistics.

        Returns:
            Counts of processed and failed messages
        """
        return {"processed": self._processed_count, "failed": self._failed_count}

    def __enter__(self):
        """Context manager entry."""
        self._ensure_connection()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
