from edumetrics.metrics import MetricsAggregator, create_aggregator, dispose, percentile
from edumetrics.tags import SeriesKey

__all__ = ["MetricsAggregator", "SeriesKey", "create_aggregator", "dispose", "percentile"]
