"""Aggregation service: Kafka raw-sample consumer feeding the wind aggregation pipeline."""

from aggregation.consumer import StreamConsumer
from aggregation.pipeline import create_pipeline
from config import Settings, configure_logging


class AggregationService:
    """
    Kafka consumer → WindAggregationPipeline → summary store.
    The pipeline's own tickers flush and roll up on wall-clock boundaries.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.log = configure_logging("aggregation-service", settings.log_level, settings.log_format)
        self.pipeline, self._redis = create_pipeline(settings)
        self._consumer = StreamConsumer(settings, handler=self.pipeline.submit_sample)

    def run(self):
        """Start the pipeline tickers, then block in the consumer loop."""
        self.log.info("aggregation_service_starting", store=self.settings.store_backend)
        self.pipeline.start()
        try:
            self._consumer.run()
        finally:
            self.pipeline.stop()
            if self._redis is not None:
                self._redis.close()
            self.log.info("aggregation_service_stopped", **self.pipeline.counters)


if __name__ == "__main__":
    AggregationService(Settings()).run()
