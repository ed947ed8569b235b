"""Domain event publication to RabbitMQ."""
import json
import logging
from typing import Any, Dict

import pika
from circuitbreaker import CircuitBreakerError, circuit
from pika.exceptions import AMQPError

from .config import get_settings
from .models import utcnow

logger = logging.getLogger(__name__)


@circuit(failure_threshold=5, recovery_timeout=60, expected_exception=AMQPError)
def _send(message: Dict[str, Any]) -> None:
    settings = get_settings()
    connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.rabbitmq_host))
    try:
        channel = connection.channel()
        channel.queue_declare(queue=settings.events_queue, durable=True)
        channel.basic_publish(
            exchange="",
            routing_key=settings.events_queue,
            body=json.dumps(message, default=str),
            properties=pika.BasicProperties(delivery_mode=2),  # persistent
        )
    finally:
        connection.close()


def publish_event(event: str, payload: Dict[str, Any]) -> bool:
    """Publish ``event`` to the durable events queue.

    Delivery is best effort: a broker failure is logged and reported through the
    return value, never raised, so the committed write that produced the event
    is not undone. Repeated failures open the circuit and skip the broker for a
    minute.
    """
    if not get_settings().events_enabled:
        return False

    message = {"event": event, "emitted_at": utcnow().isoformat(), **payload}
    try:
        _send(message)
    except CircuitBreakerError:
        logger.warning("Event broker circuit open; dropped %s event", event)
        return False
    except AMQPError:
        logger.exception("Failed to publish %s event", event)
        return False

    logger.info("Published %s event", event)
    return True
