"""
Shared stubs for aggregator tests.

- StaticAdapter returns ``params["items"]`` immediately, or raises ``params["error"]``
- ControlledAdapter blocks each fetch on a future the test resolves
- StubRenderer renders ``<source_id>@<t>`` without templates and accepts any ref
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from funnel.config import Settings
from funnel.models import SourceRequest
from funnel.normalize import NormalizedItem
from funnel.sources.base import SourceAdapter
from funnel.sources.registry import AdapterRegistry

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def make_item(source_id: str, t: int, **payload) -> NormalizedItem:
    return NormalizedItem(
        timestamp=at(t),
        source_id=source_id,
        payload={"t": t, **payload},
    )


class StaticAdapter(SourceAdapter):
    provider_type = "static"

    def __init__(self):
        super().__init__(settings=Settings(fetch_attempts=1))
        self.limits: list[int] = []

    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        self.limits.append(limit)
        if request.provider_params.get("error"):
            raise request.provider_params["error"]
        return [
            make_item(request.source_id, t) for t in request.provider_params.get("items", [])
        ]


class ControlledAdapter(SourceAdapter):
    provider_type = "controlled"

    def __init__(self):
        super().__init__(settings=Settings(fetch_attempts=1))
        self.futures: dict[str, asyncio.Future] = {}

    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        future = asyncio.get_running_loop().create_future()
        self.futures[request.source_id] = future
        return await future

    async def settle(self, source_id: str, times=(), error: BaseException = None) -> None:
        """Resolve one pending fetch and let its task run to completion."""
        while source_id not in self.futures:
            await asyncio.sleep(0)
        future = self.futures[source_id]
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result([make_item(source_id, t) for t in times])
        for _ in range(3):
            await asyncio.sleep(0)


class StubRenderer:
    def check(self, template_ref) -> None:
        pass

    def render(self, item: NormalizedItem, template_ref) -> str:
        return f"{item.source_id}@{item.payload['t']}"


@pytest.fixture
def static_adapter():
    return StaticAdapter()


@pytest.fixture
def controlled_adapter():
    return ControlledAdapter()


@pytest.fixture
def registry(static_adapter, controlled_adapter):
    registry = AdapterRegistry()
    registry.register(static_adapter)
    registry.register(controlled_adapter)
    return registry
