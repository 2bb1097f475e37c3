import json
import logging

from kafka import KafkaProducer
from kafka.errors import KafkaError

from scheduling_service.config import ATTENDANCE_EVENTS_TOPIC, CLASS_EVENTS_TOPIC

logger = logging.getLogger(__name__)


def build_producer(bootstrap_servers: str) -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=bootstrap_servers,
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
    )


class EventPublisher:
    """
    Sends class and attendance events to Kafka for the notification service.

    Events are sent after the change is committed. Without a producer the
    events are only logged.
    """

    def __init__(self, producer: KafkaProducer | None = None,
                 class_topic: str = CLASS_EVENTS_TOPIC,
                 attendance_topic: str = ATTENDANCE_EVENTS_TOPIC):
        self.producer = producer
        self.class_topic = class_topic
        self.attendance_topic = attendance_topic

    def class_event(self, event: str, **data) -> None:
        self._send(self.class_topic, event, data)

    def attendance_event(self, event: str, **data) -> None:
        self._send(self.attendance_topic, event, data)

    def _send(self, topic: str, event: str, data: dict) -> None:
        payload = {"event": event, **data}
        logger.info(f"Publishing {event} to {topic}")

        if self.producer is None:
            return

        try:
            self.producer.send(topic, value=payload)
        except KafkaError:
            # the change is already committed, the notification is best effort
            logger.exception(f"Failed to publish {event} to {topic}")

    def close(self) -> None:
        if self.producer is not None:
            self.producer.flush()
            self.producer.close()
