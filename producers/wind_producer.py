"""Wind station simulator: publishes speed/direction samples for every station to Kafka."""

import math
import random
import signal
import time
from dataclasses import dataclass, field

import msgpack
from kafka import KafkaProducer
from kafka.errors import KafkaError

from aggregation.models import WindSample
from config import Settings, configure_logging


def gust(probability: float = 0.02, magnitude: float = 6.0) -> float:
    """Occasional positive burst on top of the mean wind."""
    if random.random() < probability:
        return magnitude * random.uniform(0.5, 1.0)
    return 0.0


@dataclass
class StationState:
    station_id: str
    base_speed: float  # m/s
    base_direction: float  # degrees
    started_at: float = field(default_factory=time.time)

    def simulate(self, now: float | None = None) -> tuple[float, float]:
        """Speed oscillates over a minute, direction swings over two; both carry noise."""
        elapsed = (now if now is not None else time.time()) - self.started_at
        speed = (
            self.base_speed
            + 3.0 * math.sin(2 * math.pi * elapsed / 60)
            + random.gauss(0, 1.0)
            + gust()
        )
        direction = (
            self.base_direction
            + 60.0 * math.sin(2 * math.pi * elapsed / 120)
            + random.gauss(0, 7.5)
        )
        return round(max(0.0, speed), 2), round(direction % 360, 1)

    def sample(self, now: float | None = None) -> WindSample:
        speed, direction = self.simulate(now)
        return WindSample(station_id=self.station_id, speed=speed, direction=direction)


class WindStationProducer:
    """One MessagePack record per station per round, keyed by station id."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.log = configure_logging("wind-producer", settings.log_level, settings.log_format)
        self.stations = [
            StationState(
                station_id=f"station-{i:03d}",
                base_speed=random.uniform(4.0, 10.0),
                base_direction=random.uniform(0, 360),
            )
            for i in range(settings.sim_num_stations)
        ]
        self._interval = settings.sim_publish_interval_ms / 1000.0
        self._running = True
        self._sent = 0
        self._failed = 0
        self._producer: KafkaProducer | None = None

        signal.signal(signal.SIGTERM, self._shutdown)
        signal.signal(signal.SIGINT, self._shutdown)
        self.log.info("stations_initialized", count=len(self.stations))

    def _connect(self) -> KafkaProducer:
        return KafkaProducer(
            bootstrap_servers=self.settings.kafka_bootstrap_servers,
            value_serializer=lambda v: msgpack.packb(v, use_bin_type=True),
            key_serializer=lambda k: k.encode("utf-8"),
            batch_size=self.settings.kafka_producer_batch_size,
            linger_ms=self.settings.kafka_producer_linger_ms,
            compression_type=self.settings.kafka_producer_compression,
            acks="all",
            retries=3,
        )

    def next_interval(self) -> float:
        # Jitter keeps stations from reporting in lockstep
        return self._interval * (0.8 + random.random() * 0.4)

    def run(self):
        self._producer = self._connect()
        self.log.info("wind_producer_started", topic=self.settings.topic_wind_raw)
        try:
            while self._running:
                for station in self.stations:
                    sample = station.sample()
                    self._producer.send(
                        self.settings.topic_wind_raw,
                        key=sample.partition_key(),
                        value=sample.model_dump(mode="json"),
                    ).add_callback(self._on_sent).add_errback(self._on_failed)
                time.sleep(self.next_interval())
        finally:
            self._producer.flush(timeout=10)
            self._producer.close(timeout=10)
            self.log.info("wind_producer_stopped", sent=self._sent, failed=self._failed)

    def _on_sent(self, metadata):
        self._sent += 1
        if self._sent % 1000 == 0:
            self.log.info("wind_producer_progress", sent=self._sent, failed=self._failed)

    def _on_failed(self, exc: KafkaError):
        self._failed += 1
        self.log.error("wind_produce_failed", error=str(exc))

    def _shutdown(self, signum, frame):
        self.log.info("shutdown_signal", signal=signum)
        self._running = False


if __name__ == "__main__":
    WindStationProducer(Settings()).run()
