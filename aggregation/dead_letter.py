"""Dead letter topic for raw samples that could not be folded into a bucket."""

import json

from kafka import KafkaProducer

from aggregation.intervals import utc_now
from config import Settings, configure_logging


def dead_letter_envelope(record, error: Exception) -> dict:
    """JSON-safe wrapper that keeps the raw bytes so a fixed consumer can replay them."""
    return {
        "topic": record.topic,
        "partition": record.partition,
        "offset": record.offset,
        "key": record.key.decode("utf-8", errors="replace") if record.key else None,
        "reason": str(error),
        "rejected_at": utc_now().isoformat(),
        "payload_hex": record.value.hex() if record.value else None,
    }


class DeadLetterQueue:
    def __init__(self, settings: Settings):
        self._topic = settings.topic_dlq
        self.log = configure_logging("wind-dlq", settings.log_level, settings.log_format)
        self._producer = KafkaProducer(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        )

    def send(self, record, error: Exception):
        self._producer.send(self._topic, key=record.key, value=dead_letter_envelope(record, error))
        self.log.debug("sample_dead_lettered", topic=self._topic, offset=record.offset)

    def close(self):
        self._producer.flush(timeout=5)
        self._producer.close(timeout=5)
