"""
AMQP consumer feeding step events to the tracking service.

The queue is bound to a durable topic exchange and consumed with a
prefetch of one: the broker delivers the next message only after the
current one has been acknowledged, and a message is acknowledged only
after `TrackingService.process_event()` returned. Events for one tracker
are therefore never processed concurrently.

Redelivery:
- a database read error while resolving requeues the message after a
  short pause;
- a flush cancelled by shutdown requeues it as well, and an idle flush
  cancelled by shutdown is left to the final flush in `main.py`;
- bodies that are not JSON objects are acknowledged and dropped.
"""

import json
import logging
import threading
from typing import Any, Dict, Optional

import psycopg
from kombu import Connection, Exchange, Queue
from kombu.mixins import ConsumerMixin

from persister import PersistCancelled
from service_tracking import TrackingService
from settings import Settings, settings

logger = logging.getLogger(__name__)

ACCEPTED_CONTENT = ["json", "text/plain", "application/data"]


def decode_body(body: Any) -> Optional[Dict[str, Any]]:
    """Return the event dict carried by a message body, or None."""

    if isinstance(body, (bytes, bytearray, str)):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    return body if isinstance(body, dict) else None


class TrackConsumer(ConsumerMixin):
    def __init__(
        self,
        connection: Connection,
        service: TrackingService,
        config: Settings = settings,
    ):
        self.connection = connection
        self.service = service
        self.retry_delay = config.retry_delay_seconds
        self.exchange = Exchange(config.amqp_exchange, type="topic", durable=True)
        self.queue = Queue(
            config.amqp_queue,
            exchange=self.exchange,
            routing_key=config.amqp_topic,
            durable=True,
        )
        self._stopped = threading.Event()

    def get_consumers(self, Consumer, channel):
        return [
            Consumer(
                queues=[self.queue],
                callbacks=[self.on_message],
                accept=ACCEPTED_CONTENT,
                prefetch_count=1,
            )
        ]

    def on_consume_ready(self, connection, channel, consumers, **kwargs):
        logger.info(f"listening queue {self.queue.name}")

    def on_connection_error(self, exc, interval):
        logger.warning(f"broker connection error: {exc}, retrying in {interval}s")

    def on_iteration(self):
        try:
            self.service.tick()
        except PersistCancelled:
            logger.warning("Idle flush cancelled by shutdown, documents stay pending")

    def on_message(self, body, message):
        payload = decode_body(body)
        if payload is None:
            logger.warning("Dropping message that is not a JSON object")
            message.ack()
            return

        try:
            self.service.process_event(payload)
        except psycopg.Error:
            logger.error("Database unavailable while resolving event, requeueing", exc_info=True)
            self._stopped.wait(self.retry_delay)
            message.requeue()
            return
        except PersistCancelled:
            logger.warning("Flush cancelled by shutdown, requeueing event")
            message.requeue()
            return

        message.ack()

    def stop(self) -> None:
        self.should_stop = True
        self._stopped.set()
