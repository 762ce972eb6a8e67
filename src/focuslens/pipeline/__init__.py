"""Event pipeline: ingestion gateway, aggregation engine, insight worker."""

from focuslens.pipeline.aggregator import AggregationEngine
from focuslens.pipeline.consumer import StreamConsumer
from focuslens.pipeline.cursors import DatabaseCursorStore, MemoryCursorStore
from focuslens.pipeline.gateway import IngestionGateway, SubmitResult
from focuslens.pipeline.insights import InsightWorker

__all__ = [
    "AggregationEngine",
    "DatabaseCursorStore",
    "IngestionGateway",
    "InsightWorker",
    "MemoryCursorStore",
    "StreamConsumer",
    "SubmitResult",
]
