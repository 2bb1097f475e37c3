import json
import logging

from kafka import KafkaConsumer

from scheduling_service.config import KAFKA_GROUP_ID, MEMBERSHIP_STATUS_TOPIC
from scheduling_service.membership import apply_membership_event

logger = logging.getLogger(__name__)


def build_consumer(bootstrap_servers: str) -> KafkaConsumer:
    return KafkaConsumer(
        MEMBERSHIP_STATUS_TOPIC,
        bootstrap_servers=bootstrap_servers,
        auto_offset_reset="earliest",
        enable_auto_commit=True,
        value_deserializer=lambda m: json.loads(m.decode("utf-8")),
        key_deserializer=lambda k: k.decode("utf-8") if k else None,
        group_id=KAFKA_GROUP_ID,
    )


def consume_membership_events(consumer, session_factory) -> int:
    """Feed membership-status messages into the local projection. Returns the number applied."""
    applied = 0
    for msg in consumer:
        event = msg.value
        logger.info(f"Received membership event: {event}")

        if not isinstance(event, dict):
            logger.warning(f"Skipping malformed membership event: {event!r}")
            continue

        with session_factory() as db:
            if apply_membership_event(db, event) is not None:
                applied += 1
    return applied
