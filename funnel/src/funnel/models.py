"""
Run configuration and the values passed between the aggregator and its
collaborators.
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .normalize import NormalizedItem

TemplateRef = Union[str, dict[str, str]]


@dataclass(frozen=True)
class SourceRequest:
    """
    One configured source: which provider, its parameters, and which
    template(s) render its items.

    ``template_ref`` is either a template name or a mapping from item kind to
    template name (with an optional ``"default"`` entry).
    """
    provider_type: str
    provider_params: dict = field(default_factory=dict)
    template_ref: TemplateRef = "entry"
    source_id: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.source_id or '?'} ({self.provider_type})"


@dataclass
class AggregationConfig:
    """
    Everything one aggregation run needs.

    Sources without an explicit ``source_id`` get ``"<provider>-<index>"``.
    The source list is frozen into a tuple on construction.
    """
    sources: tuple[SourceRequest, ...]
    max_items: int = 10
    on_settled: Optional[Callable[[], None]] = None

    def __post_init__(self):
        self.sources = tuple(
            src if src.source_id else replace(src, source_id=f"{src.provider_type}-{i}")
            for i, src in enumerate(self.sources or ())
        )

    def validate(self) -> None:
        """
        Check the config before a run starts.

        Raises:
            ConfigurationError: empty sources, bad max_items or duplicate ids
        """
        if not self.sources:
            raise ConfigurationError("At least one source must be configured")

        if (
            isinstance(self.max_items, bool)
            or not isinstance(self.max_items, int)
            or self.max_items <= 0
        ):
            raise ConfigurationError(
                f"max_items must be a positive integer, got {self.max_items!r}"
            )

        seen: set[str] = set()
        for src in self.sources:
            if src.source_id in seen:
                raise ConfigurationError(f"Duplicate source id: {src.source_id!r}")
            seen.add(src.source_id)

    @property
    def per_source_limit(self) -> int:
        """How many items to ask each provider for."""
        return -(-self.max_items // len(self.sources))


@dataclass
class SourceResult:
    """Outcome of one source's fetch, delivered exactly once to the aggregator."""
    request: SourceRequest
    items: list[NormalizedItem] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RenderedFragment:
    """An item together with its rendered template output."""
    item: NormalizedItem
    markup: str


# =============================================================================
# Sources file
# =============================================================================

class SourceEntry(BaseModel):
    """One entry of the ``sources`` array in a sources file."""
    provider: str = Field(..., min_length=1)
    params: dict = Field(default_factory=dict)
    template: TemplateRef = "entry"
    id: Optional[str] = None

    def to_request(self) -> SourceRequest:
        return SourceRequest(
            provider_type=self.provider,
            provider_params=self.params,
            template_ref=self.template,
            source_id=self.id,
        )


class SourcesFile(BaseModel):
    """Top-level sources file document."""
    max_items: Optional[int] = Field(None, gt=0)
    sources: list[SourceEntry] = Field(..., min_length=1)


def load_sources_file(path: Union[str, Path]) -> tuple[list[SourceRequest], Optional[int]]:
    """
    Load source requests from a JSON file.

    Example document::

        {"max_items": 10,
         "sources": [{"provider": "twitter", "params": {"user": "jack"},
                      "template": "tweet"}]}

    Returns:
        (source requests, max_items from the file or None)

    Raises:
        ConfigurationError: if the file is missing or invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read sources file {path}: {e}") from e

    try:
        doc = SourcesFile.model_validate(json.loads(text))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Sources file {path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Invalid sources file {path}: {e}") from e

    return [entry.to_request() for entry in doc.sources], doc.max_items
