"""
Aggregation core.

Dispatches one fetch per configured source, merges every arrival into a single
newest-first view capped at ``max_items``, hands that full view to the render
sink after each settlement, and fires the completion callback exactly once
when every source has settled.

All state mutation happens in ``ingest``, which never awaits. On a single
asyncio loop that makes append, sort, render and settlement atomic with
respect to other sources' arrivals. Integrations that call ``ingest`` from
several threads must serialize those calls themselves.
"""

import asyncio
import copy
from typing import Callable, Optional

from .config import get_settings
from .errors import SourceFetchFailure
from .logging_conf import get_logger
from .models import AggregationConfig, RenderedFragment, SourceRequest, SourceResult
from .normalize import NormalizedItem
from .sinks import RenderSink
from .sources.base import SourceAdapter
from .sources.registry import AdapterRegistry, get_adapter_registry
from .templates import ItemRenderer, TemplateRenderer

logger = get_logger(__name__)


class CompletionTracker:
    """
    Counts settled sources and fires a callback once all have settled.

    ``record_settlement`` is the only mutator. After completion the tracker is
    inert: a further call raises ``RuntimeError`` and never re-fires.
    """

    def __init__(self, expected: int, callback: Optional[Callable[[], None]] = None):
        if expected < 1:
            raise ValueError(f"expected must be >= 1, got {expected}")
        self._expected = expected
        self._callback = callback
        self._settled = 0
        self._done = False

    @property
    def expected(self) -> int:
        return self._expected

    @property
    def settled_count(self) -> int:
        return self._settled

    @property
    def done(self) -> bool:
        return self._done

    def record_settlement(self) -> None:
        """Count one settled source; fire the callback on the last one."""
        if self._done:
            raise RuntimeError(
                f"All {self._expected} sources already settled; extra settlement recorded"
            )

        self._settled += 1
        if self._settled < self._expected:
            return

        self._done = True
        if self._callback is None:
            return

        try:
            self._callback()
        except Exception:
            logger.exception("on_settled_callback_failed")


def _newest_first(fragment: RenderedFragment):
    return fragment.item.timestamp


class Aggregator:
    """
    Owns one run's accumulated items, settlement count and rendered view.

    Create one instance per display target. Calling ``start`` again resets the
    instance; results still in flight from the previous run are discarded.
    """

    def __init__(
        self,
        sink: RenderSink,
        registry: Optional[AdapterRegistry] = None,
        renderer: Optional[ItemRenderer] = None,
        max_concurrent: Optional[int] = None,
    ):
        """
        Args:
            sink: Receives the full capped view after every settlement
            registry: Provider adapters (defaults to the built-in registry)
            renderer: Turns an item into markup (defaults to Jinja2 templates)
            max_concurrent: Max adapter calls in flight (defaults to settings)
        """
        self.sink = sink
        self.registry = registry or get_adapter_registry()
        self.renderer = renderer or TemplateRenderer()
        self._max_concurrent = max_concurrent

        self._config: Optional[AggregationConfig] = None
        self._tracker: Optional[CompletionTracker] = None
        self._entries: list[RenderedFragment] = []
        self._view: list[RenderedFragment] = []
        self._failures: list[SourceFetchFailure] = []
        self._tasks: list[asyncio.Task] = []
        self._generation = 0

    # -------------------------------------------------------------------------
    # Read-only state
    # -------------------------------------------------------------------------

    @property
    def config(self) -> Optional[AggregationConfig]:
        return self._config

    @property
    def items(self) -> tuple[NormalizedItem, ...]:
        """Accumulated items in arrival order."""
        return tuple(entry.item for entry in self._entries)

    @property
    def view(self) -> list[RenderedFragment]:
        """The most recently rendered capped view."""
        return list(self._view)

    @property
    def failures(self) -> list[SourceFetchFailure]:
        return list(self._failures)

    @property
    def settled(self) -> bool:
        return self._tracker is not None and self._tracker.done

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def start(self, config: AggregationConfig) -> list[asyncio.Task]:
        """
        Validate ``config`` and dispatch one fetch task per source.

        Must be called with a running event loop. Nothing is dispatched if
        validation fails.

        Returns:
            The fetch tasks, in source order

        Raises:
            ConfigurationError: invalid config, unknown provider, bad params
                or a template reference that names no template
        """
        config.validate()
        adapters: list[SourceAdapter] = []
        for request in config.sources:
            adapter = self.registry.resolve(request.provider_type)
            adapter.check_request(request)
            self.renderer.check(request.template_ref)
            adapters.append(adapter)

        loop = asyncio.get_running_loop()

        superseded = [task for task in self._tasks if not task.done()]
        for task in superseded:
            task.cancel()
        if superseded:
            logger.info("previous_run_cancelled", pending=len(superseded))

        self._generation += 1
        generation = self._generation
        self._config = config
        self._tracker = CompletionTracker(len(config.sources), config.on_settled)
        self._entries = []
        self._view = []
        self._failures = []

        limit = config.per_source_limit
        max_concurrent = self._max_concurrent
        if max_concurrent is None:
            max_concurrent = get_settings().max_concurrent_fetches
        semaphore = asyncio.Semaphore(max_concurrent)

        logger.info(
            "aggregation_started",
            sources=len(config.sources),
            max_items=config.max_items,
            per_source_limit=limit,
        )

        self._tasks = [
            loop.create_task(
                self._fetch(adapter, request, limit, semaphore, generation),
                name=f"funnel-fetch:{request.source_id}",
            )
            for adapter, request in zip(adapters, config.sources)
        ]
        return list(self._tasks)

    async def run(self, config: AggregationConfig) -> list[RenderedFragment]:
        """Start a run, wait until every source has settled, return the view."""
        tasks = self.start(config)
        await asyncio.gather(*tasks)
        return self.view

    async def _fetch(
        self,
        adapter: SourceAdapter,
        request: SourceRequest,
        limit: int,
        semaphore: asyncio.Semaphore,
        generation: int,
    ) -> None:
        """Run one adapter and deliver its outcome to ``ingest`` exactly once."""
        try:
            async with semaphore:
                items = await adapter.fetch(request, limit)
            result = SourceResult(request=request, items=list(items))
        except Exception as e:
            failure = SourceFetchFailure(request.source_id, request.provider_type, e)
            failure.__cause__ = e
            logger.warning(
                "source_fetch_failed",
                source=request.source_id,
                provider=request.provider_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = SourceResult(request=request, error=failure)

        if generation != self._generation:
            logger.debug("stale_result_dropped", source=request.source_id)
            return

        self.ingest(result)

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def ingest(self, result: SourceResult) -> None:
        """
        Merge one source's outcome and re-render.

        Successful results have each item rendered once and appended; failed
        results add nothing. Either way the full view is re-rendered and the
        source is counted as settled.
        """
        if self._tracker is None:
            raise RuntimeError("ingest() called before start()")
        if self._tracker.done:
            raise RuntimeError(
                f"Run already settled; unexpected result from {result.request}"
            )

        request = result.request
        added = 0
        if result.ok:
            for item in result.items:
                try:
                    markup = self.renderer.render(item, request.template_ref)
                except Exception as e:
                    logger.warning(
                        "item_render_failed",
                        source=request.source_id,
                        kind=item.kind,
                        error=str(e),
                    )
                    continue
                self._entries.append(RenderedFragment(item=item, markup=markup))
                added += 1
        elif isinstance(result.error, SourceFetchFailure):
            self._failures.append(result.error)
        else:
            self._failures.append(
                SourceFetchFailure(request.source_id, request.provider_type, result.error)
            )

        logger.info(
            "source_settled",
            source=request.source_id,
            ok=result.ok,
            items=added,
            accumulated=len(self._entries),
        )

        self.merge_and_render()
        self._tracker.record_settlement()

        if self._tracker.done:
            logger.info(
                "aggregation_settled",
                sources=self._tracker.expected,
                failed=len(self._failures),
                accumulated=len(self._entries),
                shown=len(self._view),
            )

    def merge_and_render(self) -> list[RenderedFragment]:
        """
        Recompute the capped newest-first view and hand it to the sink.

        The sort is stable, so items with equal timestamps keep their arrival
        order. Running this twice without an ingest in between produces the
        same view. The sink receives copies it may keep or mutate.
        """
        if self._config is None:
            raise RuntimeError("merge_and_render() called before start()")

        merged = sorted(self._entries, key=_newest_first, reverse=True)
        self._view = merged[: self._config.max_items]

        self.sink.replace(copy.deepcopy(tuple(self._view)))
        logger.debug(
            "view_rendered",
            accumulated=len(self._entries),
            shown=len(self._view),
        )
        return list(self._view)
