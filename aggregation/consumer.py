"""Kafka ingestion of raw wind samples from the ``wind.samples.raw`` topic."""

import signal
from typing import Callable

import msgpack
from kafka import KafkaConsumer
from msgpack.exceptions import UnpackException

from aggregation.dead_letter import DeadLetterQueue
from aggregation.models import InvalidSampleError
from config import Settings, configure_logging

REQUIRED_FIELDS = ("station_id", "speed", "direction")


def decode_sample(raw: bytes) -> dict:
    """
    Unpack one MessagePack record into the fields ``submit_sample`` takes.

    Anything that is not a map with a station id, speed and direction is an
    InvalidSampleError; range checks happen later in the pipeline.
    """
    try:
        value = msgpack.unpackb(raw, raw=False)
    except (UnpackException, ValueError) as e:
        raise InvalidSampleError(f"undecodable record: {e}") from e
    if not isinstance(value, dict):
        raise InvalidSampleError(f"expected a map, got {type(value).__name__}")
    missing = [name for name in REQUIRED_FIELDS if value.get(name) is None]
    if missing:
        raise InvalidSampleError(f"missing fields: {', '.join(missing)}")
    return {
        "station_id": str(value["station_id"]),
        "speed": value["speed"],
        "direction": value["direction"],
        "timestamp": value.get("observed_at"),
    }


class StreamConsumer:
    """
    Feeds decoded samples to ``handler(**fields)``. Offsets are committed per
    polled batch after every sample in it was either accepted, dropped as late
    or parked on the dead letter topic.
    """

    def __init__(self, settings: Settings, handler: Callable[..., bool]):
        self.settings = settings
        self.log = configure_logging("wind-consumer", settings.log_level, settings.log_format)
        self._handler = handler
        self._running = True
        self._dlq = DeadLetterQueue(settings)
        self.stats = {"accepted": 0, "late": 0, "rejected": 0}

        self._consumer = KafkaConsumer(
            settings.topic_wind_raw,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=settings.kafka_consumer_group,
            auto_offset_reset=settings.kafka_auto_offset_reset,
            enable_auto_commit=False,
            max_poll_records=settings.kafka_max_poll_records,
            session_timeout_ms=settings.kafka_session_timeout_ms,
        )

        signal.signal(signal.SIGTERM, self._shutdown)
        signal.signal(signal.SIGINT, self._shutdown)
        self.log.info(
            "wind_consumer_subscribed",
            topic=settings.topic_wind_raw,
            group=settings.kafka_consumer_group,
        )

    def run(self):
        try:
            while self._running:
                batch = self._consumer.poll(timeout_ms=1000)
                for records in batch.values():
                    for record in records:
                        self._dispatch(record)
                if batch:
                    self._consumer.commit()
        finally:
            self.log.info("wind_consumer_closing", **self.stats)
            self._consumer.close()
            self._dlq.close()

    def _dispatch(self, record):
        try:
            accepted = self._handler(**decode_sample(record.value))
        except InvalidSampleError as e:
            self.stats["rejected"] += 1
            self.log.warning(
                "sample_rejected",
                partition=record.partition,
                offset=record.offset,
                error=str(e),
            )
            self._dlq.send(record, e)
            return

        self.stats["accepted" if accepted else "late"] += 1
        total = self.stats["accepted"] + self.stats["late"]
        if total % 5000 == 0:
            self.log.info("wind_consumer_progress", **self.stats)

    def _shutdown(self, signum, frame):
        self.log.info("shutdown_signal", signal=signum)
        self._running = False
