"""
Funnel: merge activity from several feeds into one time-ordered view.
"""

from .aggregator import Aggregator, CompletionTracker
from .errors import ConfigurationError, FunnelError, SourceFetchFailure
from .models import (
    AggregationConfig,
    RenderedFragment,
    SourceRequest,
    SourceResult,
    load_sources_file,
)
from .normalize import NormalizedItem, parse_timestamp

__version__ = "0.1.0"

__all__ = [
    "Aggregator",
    "CompletionTracker",
    "AggregationConfig",
    "SourceRequest",
    "SourceResult",
    "RenderedFragment",
    "NormalizedItem",
    "parse_timestamp",
    "load_sources_file",
    "FunnelError",
    "ConfigurationError",
    "SourceFetchFailure",
]
