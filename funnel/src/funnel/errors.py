"""
Exception types raised by the funnel.
"""

from typing import Optional


class FunnelError(Exception):
    """Base class for funnel errors."""


class ConfigurationError(FunnelError, ValueError):
    """
    Invalid aggregation setup.

    Raised synchronously (empty source list, non-positive max_items,
    unknown provider, duplicate source id, missing template) before
    anything is dispatched.
    """


class SourceFetchFailure(FunnelError):
    """
    A single source failed to deliver items.

    Never propagates out of the aggregator: it is logged and recorded on the
    source's result, and the source still counts as settled.
    """

    def __init__(
        self,
        source_id: str,
        provider_type: str,
        cause: Optional[BaseException] = None,
    ):
        self.source_id = source_id
        self.provider_type = provider_type
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        super().__init__(f"{provider_type} source {source_id!r} failed ({detail})")
