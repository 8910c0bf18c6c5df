"""
Redelivery Worker

Runs as a separate process: consumes failed deliveries from the
redelivery queue and retries them with fresh signatures.

    python -m fedibox.queue.worker
"""

import asyncio
import logging
from typing import Dict

import httpx

from ..activitypub.delivery import Dispatcher
from ..config import get_settings
from ..database import PostgresRecordStore
from ..errors import DeliveryFailure
from .redelivery import RedeliveryQueue

logger = logging.getLogger(__name__)


class RedeliveryWorker:
    """Worker for retrying failed deliveries."""

    def __init__(self, queue: RedeliveryQueue, dispatcher: Dispatcher,
                 loop: asyncio.AbstractEventLoop):
        self.queue = queue
        self.dispatcher = dispatcher
        self.loop = loop

    def redeliver(self, message: Dict) -> bool:
        """
        Retry one delivery.

        Returns:
            bool: True if delivered
        """
        try:
            self.loop.run_until_complete(self.dispatcher.deliver_to_inbox(
                message['activity'], message['actor_id'], message['inbox']
            ))
            return True
        except DeliveryFailure as e:
            logger.warning(f"Attempt {message.get('attempt', 1) + 1}: {e}")
            return False

    def run(self):
        """Start the worker."""
        try:
            logger.info("Starting redelivery worker")
            self.queue.start_processing(self.redeliver)
        except KeyboardInterrupt:
            logger.info("Shutting down worker")
        finally:
            self.queue.close()


def main():
    """Main entry point."""
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    if not settings.RABBITMQ_URL:
        raise SystemExit("FEDIBOX_RABBITMQ_URL is not set")

    loop = asyncio.new_event_loop()
    store = PostgresRecordStore.from_settings(settings)
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.DELIVERY_TIMEOUT),
        headers={'User-Agent': settings.USER_AGENT},
    )
    try:
        dispatcher = Dispatcher(store, client, settings)
        worker = RedeliveryWorker(RedeliveryQueue.from_settings(settings), dispatcher, loop)
        worker.run()
    finally:
        loop.run_until_complete(client.aclose())
        loop.close()
        store.close()


if __name__ == '__main__':
    main()
