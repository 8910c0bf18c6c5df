"""
Redelivery Queue

RabbitMQ-backed bounded retry for failed federation deliveries.

Failed deliveries wait in ``fedibox_redelivery_wait`` for an exponential
backoff (per-message TTL), are dead-lettered into ``fedibox_redelivery``
for a worker to retry, and are parked in ``fedibox_failed`` once the
attempt limit is reached.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import pika
from pika.exceptions import AMQPChannelError, AMQPConnectionError, AMQPError

from ..config import Settings
from ..errors import DeliveryFailure

logger = logging.getLogger(__name__)

WORK_QUEUE = 'fedibox_redelivery'
WAIT_QUEUE = 'fedibox_redelivery_wait'
FAILED_QUEUE = 'fedibox_failed'


class RedeliveryQueue:
    """Handles queuing and retrying of failed deliveries."""

    def __init__(self, rabbitmq_url: str = "amqp://localhost", max_attempts: int = 3,
                 backoff_seconds: float = 30.0, channel=None):
        """
        Initialize the redelivery queue.

        Args:
            rabbitmq_url: RabbitMQ connection URL
            max_attempts: Total delivery attempts, including the first dispatch
            backoff_seconds: Delay before the first retry, doubled per attempt
            channel: Pre-opened channel (skips connecting)
        """
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.parameters = pika.URLParameters(rabbitmq_url)
        self.connection = None
        self.channel = channel
        self._lock = threading.Lock()
        if channel is None:
            self.connect()
        else:
            self.declare()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'RedeliveryQueue':
        return cls(
            settings.RABBITMQ_URL,
            max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
            backoff_seconds=settings.DELIVERY_BACKOFF_SECONDS,
        )

    def connect(self):
        """Open a connection and channel, and declare the queues."""
        self.connection = pika.BlockingConnection(self.parameters)
        self.channel = self.connection.channel()
        self.declare()
        logger.info("Connected to RabbitMQ")

    def reconnect(self):
        """Drop the current connection and open a new one."""
        if self.connection is not None and self.connection.is_open:
            try:
                self.connection.close()
            except AMQPError as e:
                logger.warning(f"Error closing stale RabbitMQ connection: {e!r}")
        self.connect()

    def declare(self):
        """Declare the work, wait and failed queues."""
        self.channel.queue_declare(queue=WORK_QUEUE, durable=True)
        self.channel.queue_declare(
            queue=WAIT_QUEUE,
            durable=True,
            arguments={
                'x-dead-letter-exchange': '',
                'x-dead-letter-routing-key': WORK_QUEUE,
            },
        )
        self.channel.queue_declare(queue=FAILED_QUEUE, durable=True)
        # one message at a time per worker
        self.channel.basic_qos(prefetch_count=1)

    def backoff_ms(self, attempt: int) -> int:
        """Delay before the retry that follows ``attempt`` attempts."""
        return int(self.backoff_seconds * 2 ** (attempt - 1) * 1000)

    def _publish(self, routing_key: str, message: Dict, expiration: Optional[int] = None):
        properties = pika.BasicProperties(
            delivery_mode=2,  # make message persistent
            content_type='application/json',
            expiration=str(expiration) if expiration is not None else None,
        )
        body = json.dumps(message)
        with self._lock:
            try:
                self.channel.basic_publish(exchange='', routing_key=routing_key,
                                           body=body, properties=properties)
            except (AMQPConnectionError, AMQPChannelError) as e:
                # the broker drops idle connections
                logger.warning(f"RabbitMQ publish failed ({e!r}), reconnecting")
                self.reconnect()
                self.channel.basic_publish(exchange='', routing_key=routing_key,
                                           body=body, properties=properties)

    def schedule(self, message: Dict) -> bool:
        """
        Queue a retry, or park the message when attempts are exhausted.

        Args:
            message: Redelivery message; ``attempt`` counts attempts made

        Returns:
            bool: True if a retry was scheduled
        """
        attempt = message.get('attempt', 1)
        if attempt >= self.max_attempts:
            message['failed_at'] = datetime.now(timezone.utc).isoformat()
            self._publish(FAILED_QUEUE, message)
            logger.error(f"Giving up on {message.get('inbox')} after {attempt} attempts")
            return False

        delay = self.backoff_ms(attempt)
        self._publish(WAIT_QUEUE, message, expiration=delay)
        logger.info(f"Retrying delivery to {message.get('inbox')} in {delay / 1000:.0f}s")
        return True

    def enqueue_failure(self, failure: DeliveryFailure, attempt: int = 1) -> bool:
        """Queue a failed delivery from the dispatcher."""
        return self.schedule(failure.to_message(attempt))

    def handle_message(self, ch, method, properties, body, callback: Callable[[Dict], bool]):
        """
        Process one message from the work queue.

        Args:
            callback: Retries the delivery, returns True on success
        """
        try:
            message = json.loads(body)
        except ValueError as e:
            logger.error(f"Discarding malformed redelivery message: {e}")
            ch.basic_ack(delivery_tag=method.delivery_tag)
            return

        try:
            delivered = callback(message)
        except Exception as e:
            logger.error(f"Error retrying delivery to {message.get('inbox')}: {e}")
            delivered = False

        if not delivered:
            message['attempt'] = message.get('attempt', 1) + 1
            self.schedule(message)
        ch.basic_ack(delivery_tag=method.delivery_tag)

    def start_processing(self, callback: Callable[[Dict], bool]):
        """
        Start consuming retries from the work queue.

        Args:
            callback: Function retrying each delivery
        """
        def process_message(ch, method, properties, body):
            self.handle_message(ch, method, properties, body, callback)

        self.channel.basic_consume(queue=WORK_QUEUE, on_message_callback=process_message)
        logger.info("Started processing deliveries from redelivery queue")
        self.channel.start_consuming()

    def close(self):
        """Close the RabbitMQ connection."""
        if self.connection is not None and self.connection.is_open:
            self.connection.close()
