"""
Delicious bookmarks adapter (v2 JSON feed).
"""

from .base import SourceAdapter
from ..logging_conf import get_logger
from ..models import SourceRequest
from ..normalize import NormalizedItem

logger = get_logger(__name__)


class DeliciousAdapter(SourceAdapter):
    """Public bookmarks of one user."""

    provider_type = "delicious"
    required_params = ("user",)

    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        user = request.provider_params["user"]
        url = f"{self.settings.delicious_api_url.rstrip('/')}/v2/json/{user}"

        data = await self.get_json(url, params={"plain": "", "count": limit})
        if not isinstance(data, list):
            raise ValueError(f"Unexpected bookmarks response: {type(data).__name__}")

        items = []
        for bookmark in data:
            try:
                items.append(self.item(
                    request,
                    bookmark["dt"],
                    {
                        "date": bookmark["dt"],
                        "url": bookmark.get("u", ""),
                        "title": bookmark.get("d", ""),
                        "tags": bookmark.get("t") or [],
                        "msg": bookmark.get("n", ""),
                        "user": user,
                    },
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("bookmark_skipped", source=request.source_id, error=str(e))

        logger.info("bookmarks_fetched", source=request.source_id, count=len(items))
        return items
