"""
Base class for provider adapters.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings, get_settings
from ..errors import ConfigurationError
from ..logging_conf import get_logger
from ..models import SourceRequest
from ..normalize import NormalizedItem, normalize_payload_keys, parse_timestamp, relative_time

logger = get_logger(__name__)


class SourceAdapter(ABC):
    """
    Abstract base class for provider adapters.

    One adapter instance serves every configured source of its provider type;
    all per-source details arrive in the ``SourceRequest``. ``fetch`` either
    returns a (possibly empty) list of items or raises.
    """

    provider_type: str = ""
    required_params: tuple[str, ...] = ()

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize adapter.

        Args:
            settings: Transport settings (defaults to the cached settings)
            transport: Optional httpx transport, e.g. a MockTransport in tests
        """
        self.settings = settings or get_settings()
        self.transport = transport

    @abstractmethod
    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        """
        Fetch the newest items for one configured source.

        Args:
            request: The configured source
            limit: How many items to ask the provider for

        Returns:
            Items with ``source_id`` set to ``request.source_id``
        """
        pass

    def check_request(self, request: SourceRequest) -> None:
        """Raise ConfigurationError if required provider params are missing."""
        missing = [
            name for name in self.required_params
            if not request.provider_params.get(name)
        ]
        if missing:
            raise ConfigurationError(
                f"Source {request.source_id!r} ({self.provider_type}) "
                f"is missing params: {', '.join(missing)}"
            )

    def item(
        self,
        request: SourceRequest,
        timestamp: Any,
        payload: dict,
        kind: Optional[str] = None,
    ) -> NormalizedItem:
        """
        Build a NormalizedItem for ``request``.

        Payload keys are rewritten into template identifiers and a
        ``relative_date`` is added.

        Raises:
            ValueError: if ``timestamp`` cannot be parsed
        """
        moment = parse_timestamp(timestamp)
        data = normalize_payload_keys(payload)
        data.setdefault("relative_date", relative_time(moment))
        return NormalizedItem(
            timestamp=moment,
            source_id=request.source_id,
            kind=kind,
            payload=data,
        )

    def client(self) -> httpx.AsyncClient:
        """Create an HTTP client with the configured timeout and User-Agent."""
        return httpx.AsyncClient(
            timeout=self.settings.fetch_timeout,
            headers={"User-Agent": self.settings.user_agent},
            follow_redirects=True,
            transport=self.transport,
        )

    async def get(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """
        GET ``url``, retrying transport errors up to ``fetch_attempts`` times.

        HTTP error statuses are not retried.

        Raises:
            httpx.HTTPError: on transport failure or non-2xx status
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.fetch_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                async with self.client() as client:
                    response = await client.get(url, params=params, headers=headers)
                response.raise_for_status()
        return response

    async def get_json(
        self,
        url: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        """GET ``url`` and decode the body as JSON."""
        response = await self.get(url, params=params, headers=headers)
        return response.json()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_type={self.provider_type!r})"
