import json
import logging

import pika
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from pika.exceptions import AMQPError

logger = logging.getLogger(__name__)


def _connect():
    return pika.BlockingConnection(pika.ConnectionParameters(host=settings.RABBITMQ_HOST))


def publish_events(events, exchange=None):
    """
    Publish dicts to the fanout exchange over one connection. Broker failures
    are logged and reported as ``False``; callers never fail because of them.
    """
    exchange = exchange or settings.EXAM_EVENTS_EXCHANGE
    if not events:
        return True
    try:
        connection = _connect()
        try:
            channel = connection.channel()
            # fanout: every bound queue receives every event
            channel.exchange_declare(exchange=exchange, exchange_type="fanout")
            for event in events:
                channel.basic_publish(
                    exchange=exchange,
                    routing_key="",
                    body=json.dumps(event, cls=DjangoJSONEncoder),
                )
        finally:
            connection.close()
    except (AMQPError, OSError):
        logger.exception("Failed to publish %d event(s) to %s", len(events), exchange)
        return False
    logger.info("Published %d event(s) to %s", len(events), exchange)
    return True


def publish_event(event_data, exchange=None):
    return publish_events([event_data], exchange=exchange)
