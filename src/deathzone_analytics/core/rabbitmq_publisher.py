"""RabbitMQ Publisher - AMQP delivery of analysis reports and alerts.

Publishes JSON messages to environment-specific durable queues. Publishing
never raises: failures are logged and reported through the return value, so
a broker outage cannot interrupt an analysis run.

Key features:
- Environment-aware queue naming ({type}.{step}.{env})
- Configuration from arguments or RABBITMQ_* environment variables
- Lazy connection with reconnect on next publish
- Persistent messages
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import pika
from pika.exceptions import AMQPConnectionError


logger = logging.getLogger(__name__)


class RabbitMQError(Exception):
    """Custom exception for RabbitMQ operations."""

    pass


class RabbitMQPublisher:
    """RabbitMQ publisher for analysis output.

    Example:
        >>> publisher = RabbitMQPublisher(host="localhost", environment="prod")
        >>> publisher.publish_message(
        ...     type="camping",
        ...     step="detected",
        ...     message={"camping_spots": 2, "analysis_time": 1700000000},
        ... )
        True
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = 5672,
        username: Optional[str] = None,
        password: Optional[str] = None,
        vhost: str = "/",
        environment: Optional[str] = None,
        connection_timeout: int = 10,
        heartbeat: int = 600,
    ):
        """Initialize RabbitMQ publisher.

        Args:
            host: RabbitMQ host (RABBITMQ_HOST if None)
            port: RabbitMQ AMQP port (RABBITMQ_PORT overrides the default 5672)
            username: RabbitMQ username (RABBITMQ_USER if None)
            password: RabbitMQ password (RABBITMQ_PASSWORD if None)
            vhost: RabbitMQ virtual host (RABBITMQ_VHOST overrides)
            environment: Environment (ENVIRONMENT if None, default "prod")
            connection_timeout: Connection timeout in seconds
            heartbeat: Heartbeat interval in seconds

        Raises:
            RabbitMQError: If required configuration is missing
        """
        config = self._parse_config(host, port, username, password, vhost, environment)

        self.host = config["host"]
        self.port = config["port"]
        self.username = config["username"]
        self.password = config["password"]
        self.vhost = config["vhost"]
        self.environment = config["environment"]
        self.connection_timeout = connection_timeout
        self.heartbeat = heartbeat

        self._connection: Optional[pika.BlockingConnection] = None
        self._channel: Optional[pika.channel.Channel] = None
        self._declared_queues = set()

        logger.info(
            f"RabbitMQ publisher initialized: {self.host}:{self.port} (vhost={self.vhost}, env={self.environment})"
        )

    @staticmethod
    def _parse_config(
        host: Optional[str],
        port: int,
        username: Optional[str],
        password: Optional[str],
        vhost: str,
        environment: Optional[str],
    ) -> Dict[str, Any]:
        """Resolve configuration from arguments and environment variables.

        Inside a container (/.dockerenv or /run/.containerenv) the host comes
        from RABBITMQ_CONTAINER_HOST when it is set.

        Raises:
            RabbitMQError: If host or credentials are missing
        """
        is_container = Path("/.dockerenv").exists() or Path("/run/.containerenv").exists()

        if host is None:
            if is_container and os.getenv("RABBITMQ_CONTAINER_HOST"):
                host = os.getenv("RABBITMQ_CONTAINER_HOST")
            else:
                host = os.getenv("RABBITMQ_HOST")

            if not host:
                raise RabbitMQError("RabbitMQ host is not set in environment")

        if username is None:
            username = os.getenv("RABBITMQ_USER")
            if not username:
                raise RabbitMQError("RabbitMQ username is not set in environment")

        if password is None:
            password = os.getenv("RABBITMQ_PASSWORD")
            if not password:
                raise RabbitMQError("RabbitMQ password is not set in environment")

        if port == 5672 and os.getenv("RABBITMQ_PORT"):
            port = int(os.getenv("RABBITMQ_PORT"))

        vhost = os.getenv("RABBITMQ_VHOST") or vhost

        if environment is None:
            environment = os.getenv("ENVIRONMENT", "prod").lower()

        return {
            "host": host,
            "port": port,
            "username": username,
            "password": password,
            "vhost": vhost,
            "environment": environment,
        }

    def _build_queue_name(self, type: str, step: str) -> str:
        """Build environment-aware queue name (e.g. "camping.detected.prod")."""
        return f"{type}.{step}.{self.environment}"

    def _ensure_connection(self) -> None:
        """Ensure connection and channel are established.

        Raises:
            RabbitMQError: If connection fails
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
                self._declared_queues.clear()

                logger.debug(f"Connected to RabbitMQ: {self.host}:{self.port}")

            except AMQPConnectionError as e:
                raise RabbitMQError(f"Failed to connect to RabbitMQ: {e}")

    def publish_message(self, type: str, step: str, message: Dict[str, Any]) -> bool:
        """Publish a JSON message to a durable queue.

        The environment and target queue are added to the payload.

        Args:
            type: Message type (analysis, camping)
            step: Processing step (report, detected)
            message: Message payload (must be JSON serializable)

        Returns:
            True if message was published successfully, False otherwise
        """
        try:
            self._ensure_connection()

            routing_key = self._build_queue_name(type, step)

            if routing_key not in self._declared_queues:
                self._channel.queue_declare(queue=routing_key, durable=True)
                self._declared_queues.add(routing_key)

            payload = dict(message)
            payload["environment"] = self.environment
            payload["queue_target"] = routing_key

            self._channel.basic_publish(
                exchange="",
                routing_key=routing_key,
                body=json.dumps(payload),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Persistent message
                    content_type="application/json",
                ),
            )

            logger.debug(f"Published message to queue: {routing_key}")
            return True

        except Exception as e:
            logger.warning(f"Failed to publish message to {type}.{step}: {e}")
            return False

    def close(self) -> None:
        """Close RabbitMQ connection.

        Safe to call multiple times.
        """
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

    def __enter__(self):
        """Context manager entry."""
        self._ensure_connection()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
