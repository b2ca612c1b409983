"""
Tests for the aggregation core.

Tests:
- Completion tracking (exactly once, never early)
- Configuration validation
- Merge ordering, tie stability and capping
- Failure isolation and idempotent re-render
"""

import asyncio
import itertools
from unittest.mock import MagicMock

import pytest

from conftest import StaticAdapter, StubRenderer, make_item
from funnel.aggregator import Aggregator, CompletionTracker
from funnel.config import Settings
from funnel.errors import ConfigurationError, SourceFetchFailure
from funnel.models import AggregationConfig, SourceRequest, SourceResult
from funnel.sinks import MemorySink
from funnel.sources.registry import build_default_registry
from funnel.templates import TemplateRenderer


def timestamps(view):
    return [fragment.item.payload["t"] for fragment in view]


def make_aggregator(registry, sink=None, renderer=None):
    return Aggregator(
        sink=sink or MemorySink(),
        registry=registry,
        renderer=renderer or StubRenderer(),
        max_concurrent=4,
    )


class TestCompletionTracker:
    """Tests for CompletionTracker."""

    def test_fires_once_after_all_settlements(self):
        """Callback should fire exactly once, on the last settlement."""
        callback = MagicMock()
        tracker = CompletionTracker(3, callback)

        tracker.record_settlement()
        tracker.record_settlement()
        assert callback.call_count == 0
        assert tracker.done is False

        tracker.record_settlement()
        assert callback.call_count == 1
        assert tracker.done is True
        assert tracker.settled_count == 3

    def test_extra_settlement_raises_without_refiring(self):
        """A settlement after completion should raise and not re-fire."""
        callback = MagicMock()
        tracker = CompletionTracker(1, callback)
        tracker.record_settlement()

        with pytest.raises(RuntimeError):
            tracker.record_settlement()

        assert callback.call_count == 1
        assert tracker.settled_count == 1

    def test_works_without_callback(self):
        """No callback configured should still complete."""
        tracker = CompletionTracker(2)
        tracker.record_settlement()
        tracker.record_settlement()
        assert tracker.done is True

    def test_failing_callback_is_contained(self):
        """A raising callback should not escape record_settlement."""
        tracker = CompletionTracker(1, MagicMock(side_effect=RuntimeError("boom")))

        tracker.record_settlement()

        assert tracker.done is True

    def test_rejects_non_positive_expected(self):
        """Expected count must be at least one."""
        with pytest.raises(ValueError):
            CompletionTracker(0)


class TestConfiguration:
    """Tests for start() validation."""

    def test_rejects_empty_sources(self, registry):
        """An empty source list is a configuration error."""
        aggregator = make_aggregator(registry)

        with pytest.raises(ConfigurationError):
            aggregator.start(AggregationConfig(sources=[], max_items=5))

    @pytest.mark.parametrize("max_items", [0, -3, 2.5, True, None])
    def test_rejects_bad_max_items(self, registry, max_items):
        """max_items must be a positive integer."""
        aggregator = make_aggregator(registry)
        config = AggregationConfig(sources=[SourceRequest("static")], max_items=max_items)

        with pytest.raises(ConfigurationError):
            aggregator.start(config)

    def test_rejects_unknown_provider_before_dispatch(self, registry, static_adapter):
        """An unregistered provider should fail before any fetch starts."""
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(
            sources=[SourceRequest("static"), SourceRequest("myspace")],
            max_items=5,
        )

        with pytest.raises(ConfigurationError, match="myspace"):
            aggregator.start(config)

        assert static_adapter.limits == []
        assert sink.calls == 0

    def test_rejects_duplicate_source_ids(self, registry):
        """Two sources with the same id are a configuration error."""
        aggregator = make_aggregator(registry)
        config = AggregationConfig(
            sources=[
                SourceRequest("static", source_id="a"),
                SourceRequest("static", source_id="a"),
            ],
        )

        with pytest.raises(ConfigurationError, match="Duplicate"):
            aggregator.start(config)

    def test_rejects_missing_provider_params(self):
        """Adapters' required params are checked at start."""
        registry = build_default_registry(settings=Settings(fetch_attempts=1))
        aggregator = make_aggregator(registry)
        config = AggregationConfig(sources=[SourceRequest("twitter", {})])

        with pytest.raises(ConfigurationError, match="user"):
            aggregator.start(config)

    def test_rejects_unknown_template_before_dispatch(self, registry, static_adapter):
        """A template reference naming no template fails at start."""
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink, renderer=TemplateRenderer())
        config = AggregationConfig(
            sources=[SourceRequest("static", {"items": [1, 2]}, template_ref="tweeet")],
        )

        with pytest.raises(ConfigurationError, match="tweeet"):
            aggregator.start(config)

        assert static_adapter.limits == []
        assert sink.calls == 0
        assert aggregator.settled is False

    def test_rejects_unknown_template_in_kind_mapping(self, registry):
        """Every template named in a kind mapping must exist."""
        aggregator = make_aggregator(registry, renderer=TemplateRenderer())
        config = AggregationConfig(
            sources=[SourceRequest("static", template_ref={"photo": "photo", "video": "vidoe"})],
        )

        with pytest.raises(ConfigurationError, match="vidoe"):
            aggregator.start(config)

    def test_requires_running_loop(self, registry):
        """Valid config outside an event loop should fail loudly."""
        aggregator = make_aggregator(registry)

        with pytest.raises(RuntimeError):
            aggregator.start(AggregationConfig(sources=[SourceRequest("static")]))


class TestMergeAndRender:
    """Tests for ordering, capping and re-rendering."""

    def test_concrete_two_source_scenario(self, registry, controlled_adapter):
        """A settles with t=10,30, then B with t=20; view is capped at 2."""
        sink = MemorySink()
        settled = MagicMock()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(
            sources=[
                SourceRequest("controlled", source_id="A"),
                SourceRequest("controlled", source_id="B"),
            ],
            max_items=2,
            on_settled=settled,
        )

        async def scenario():
            tasks = aggregator.start(config)

            await controlled_adapter.settle("A", times=(10, 30))
            assert timestamps(sink.current) == [30, 10]
            assert settled.call_count == 0

            await controlled_adapter.settle("B", times=(20,))
            await asyncio.gather(*tasks)

        asyncio.run(scenario())

        assert sorted(item.payload["t"] for item in aggregator.items) == [10, 20, 30]
        assert timestamps(sink.current) == [30, 20]
        assert sink.calls == 2
        assert settled.call_count == 1

    def test_ordering_holds_for_every_settlement_order(self, registry, controlled_adapter):
        """Final view should be newest-first whatever order sources settle in."""
        times = {"A": (5, 40, 12), "B": (33, 1), "C": (27, 18, 50)}
        expected = sorted((t for ts in times.values() for t in ts), reverse=True)

        for order in itertools.permutations(times):
            controlled_adapter.futures.clear()
            sink = MemorySink()
            aggregator = make_aggregator(registry, sink=sink)
            config = AggregationConfig(
                sources=[SourceRequest("controlled", source_id=s) for s in times],
                max_items=100,
            )

            async def scenario():
                tasks = aggregator.start(config)
                for source_id in order:
                    await controlled_adapter.settle(source_id, times=times[source_id])
                await asyncio.gather(*tasks)

            asyncio.run(scenario())

            for view in sink.history:
                ts = timestamps(view)
                assert ts == sorted(ts, reverse=True)
            assert timestamps(sink.current) == expected

    def test_ties_keep_arrival_order(self, registry, controlled_adapter):
        """Equal timestamps should appear in the order their sources settled."""

        def run(order):
            controlled_adapter.futures.clear()
            sink = MemorySink()
            aggregator = make_aggregator(registry, sink=sink)
            config = AggregationConfig(
                sources=[
                    SourceRequest("controlled", source_id="A"),
                    SourceRequest("controlled", source_id="B"),
                ],
                max_items=10,
            )

            async def scenario():
                tasks = aggregator.start(config)
                for source_id in order:
                    await controlled_adapter.settle(source_id, times=(7,))
                await asyncio.gather(*tasks)

            asyncio.run(scenario())
            return [f.item.source_id for f in sink.current]

        assert run(["A", "B"]) == ["A", "B"]
        assert run(["A", "B"]) == ["A", "B"]
        assert run(["B", "A"]) == ["B", "A"]

    def test_cap_limits_view_not_accumulation(self, registry):
        """View holds exactly max_items when enough items exist."""
        aggregator = make_aggregator(registry)
        config = AggregationConfig(
            sources=[SourceRequest("static", {"items": [1, 2, 3, 4, 5]})],
            max_items=3,
        )

        view = asyncio.run(aggregator.run(config))

        assert timestamps(view) == [5, 4, 3]
        assert len(aggregator.items) == 5

    def test_cap_with_fewer_items(self, registry):
        """View holds every item when there are fewer than max_items."""
        aggregator = make_aggregator(registry)
        config = AggregationConfig(
            sources=[SourceRequest("static", {"items": [1, 2]})],
            max_items=10,
        )

        view = asyncio.run(aggregator.run(config))

        assert timestamps(view) == [2, 1]

    def test_rerender_is_idempotent(self, registry):
        """Re-running merge_and_render without ingest yields the same view."""
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(
            sources=[
                SourceRequest("static", {"items": [3, 9, 3]}),
                SourceRequest("static", {"items": [9, 1]}),
            ],
            max_items=4,
        )
        asyncio.run(aggregator.run(config))

        first = aggregator.merge_and_render()
        second = aggregator.merge_and_render()

        assert first == second
        assert sink.history[-1] == sink.history[-2]
        assert [f.markup for f in first] == [f.markup for f in second]

    def test_sink_receives_full_view_per_settlement(self, registry):
        """Sink is called once per source with the complete current view."""
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(
            sources=[
                SourceRequest("static", {"items": [1]}),
                SourceRequest("static", {"items": [2]}),
                SourceRequest("static", {"items": []}),
            ],
        )

        asyncio.run(aggregator.run(config))

        assert sink.calls == 3
        assert [len(view) for view in sink.history] == [1, 2, 2]

    def test_sink_cannot_mutate_accumulated_items(self, registry):
        """Changes a sink makes to its view do not leak back into the run."""
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(sources=[SourceRequest("static", {"items": [1]})])
        asyncio.run(aggregator.run(config))

        sink.current[0].item.payload["t"] = 99

        assert aggregator.items[0].payload["t"] == 1
        assert timestamps(aggregator.merge_and_render()) == [1]

    def test_per_source_limit_is_passed_to_adapters(self, registry, static_adapter):
        """Each adapter is asked for ceil(max_items / sources) items."""
        aggregator = make_aggregator(registry)
        config = AggregationConfig(
            sources=[SourceRequest("static") for _ in range(3)],
            max_items=10,
        )

        asyncio.run(aggregator.run(config))

        assert static_adapter.limits == [4, 4, 4]


class TestFailures:
    """Tests for failure isolation."""

    def test_failed_source_is_isolated(self, registry):
        """Source 2 of 3 failing leaves 1 and 3 merged and still completes."""
        settled = MagicMock()
        aggregator = make_aggregator(registry)
        config = AggregationConfig(
            sources=[
                SourceRequest("static", {"items": [10, 40]}, source_id="one"),
                SourceRequest("static", {"error": OSError("down")}, source_id="two"),
                SourceRequest("static", {"items": [25]}, source_id="three"),
            ],
            on_settled=settled,
        )

        view = asyncio.run(aggregator.run(config))

        assert timestamps(view) == [40, 25, 10]
        assert {f.item.source_id for f in view} == {"one", "three"}
        assert settled.call_count == 1

        [failure] = aggregator.failures
        assert isinstance(failure, SourceFetchFailure)
        assert failure.source_id == "two"
        assert isinstance(failure.__cause__, OSError)

    def test_all_sources_failing_still_completes(self, registry):
        """Completion fires even when every source fails."""
        settled = MagicMock()
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(
            sources=[
                SourceRequest("static", {"error": ValueError("bad json")}),
                SourceRequest("static", {"error": OSError("timeout")}),
            ],
            on_settled=settled,
        )

        view = asyncio.run(aggregator.run(config))

        assert view == []
        assert sink.calls == 2
        assert settled.call_count == 1
        assert len(aggregator.failures) == 2

    def test_never_fires_before_last_settlement(self, registry, controlled_adapter):
        """Completion waits for the slowest source, even if it fails."""
        settled = MagicMock()
        aggregator = make_aggregator(registry)
        config = AggregationConfig(
            sources=[SourceRequest("controlled", source_id=s) for s in "ABC"],
            on_settled=settled,
        )

        async def scenario():
            tasks = aggregator.start(config)
            await controlled_adapter.settle("C", times=(1,))
            await controlled_adapter.settle("A", error=OSError("down"))
            assert settled.call_count == 0
            assert aggregator.settled is False
            await controlled_adapter.settle("B", times=(2,))
            await asyncio.gather(*tasks)

        asyncio.run(scenario())

        assert settled.call_count == 1
        assert aggregator.settled is True

    def test_render_failure_drops_only_that_item(self, registry):
        """An item whose template fails is dropped; the source still settles."""

        class PickyRenderer(StubRenderer):
            def render(self, item, template_ref):
                if item.payload["t"] == 2:
                    raise ConfigurationError("no template")
                return super().render(item, template_ref)

        settled = MagicMock()
        aggregator = make_aggregator(registry, renderer=PickyRenderer())
        config = AggregationConfig(
            sources=[SourceRequest("static", {"items": [1, 2, 3]})],
            on_settled=settled,
        )

        view = asyncio.run(aggregator.run(config))

        assert timestamps(view) == [3, 1]
        assert settled.call_count == 1


class TestRunLifecycle:
    """Tests for ingest guards and restarting runs."""

    def test_ingest_before_start_raises(self, registry):
        """ingest() needs an active run."""
        aggregator = make_aggregator(registry)

        with pytest.raises(RuntimeError):
            aggregator.ingest(SourceResult(request=SourceRequest("static", source_id="x")))

    def test_ingest_after_settled_raises(self, registry):
        """A second result after completion is rejected without re-rendering."""
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)
        config = AggregationConfig(sources=[SourceRequest("static", {"items": [1]})])
        asyncio.run(aggregator.run(config))

        with pytest.raises(RuntimeError):
            aggregator.ingest(SourceResult(
                request=config.sources[0],
                items=[make_item("static-0", 99)],
            ))

        assert sink.calls == 1
        assert len(aggregator.items) == 1

    def test_direct_ingest_of_failure_counts_as_settlement(self, registry, controlled_adapter):
        """A failed result handed to ingest() is recorded and counted."""
        settled = MagicMock()
        aggregator = make_aggregator(registry)
        request = SourceRequest("controlled", source_id="solo")

        async def scenario():
            tasks = aggregator.start(AggregationConfig(sources=[request], on_settled=settled))
            for task in tasks:
                task.cancel()
            aggregator.ingest(SourceResult(request=request, error=OSError("gone")))

        asyncio.run(scenario())

        assert settled.call_count == 1
        assert aggregator.failures[0].source_id == "solo"

    def test_restart_discards_previous_run(self, registry, controlled_adapter):
        """Results from a superseded run are dropped and never complete it."""
        first_settled = MagicMock()
        second_settled = MagicMock()
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)

        async def scenario():
            first = aggregator.start(AggregationConfig(
                sources=[SourceRequest("controlled", source_id="old")],
                on_settled=first_settled,
            ))
            await asyncio.sleep(0)

            second = aggregator.start(AggregationConfig(
                sources=[SourceRequest("static", {"items": [5, 6]})],
                on_settled=second_settled,
            ))
            await asyncio.gather(*second)
            await asyncio.sleep(0)
            return first

        first = asyncio.run(scenario())

        assert first[0].cancelled()
        assert controlled_adapter.futures["old"].cancelled()
        assert first_settled.call_count == 0
        assert second_settled.call_count == 1
        assert timestamps(sink.current) == [6, 5]
        assert all(item.source_id == "static-0" for item in aggregator.items)

    def test_late_result_from_superseded_run_is_dropped(self, registry):
        """An adapter that finishes despite cancellation cannot touch the new run."""

        class StubbornAdapter(StaticAdapter):
            provider_type = "stubborn"

            async def fetch(self, request, limit):
                try:
                    await asyncio.sleep(3600)
                except asyncio.CancelledError:
                    return [make_item(request.source_id, 100)]

        registry.register(StubbornAdapter())
        sink = MemorySink()
        aggregator = make_aggregator(registry, sink=sink)

        async def scenario():
            first = aggregator.start(AggregationConfig(sources=[SourceRequest("stubborn")]))
            await asyncio.sleep(0)

            second = aggregator.start(AggregationConfig(
                sources=[SourceRequest("static", {"items": [5]})],
            ))
            await asyncio.gather(*first, *second)

        asyncio.run(scenario())

        assert timestamps(sink.current) == [5]
        assert sink.calls == 1
        assert aggregator.settled is True
