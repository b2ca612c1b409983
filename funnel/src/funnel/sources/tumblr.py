"""
Tumblr adapter using the v1 ``/api/read/json`` endpoint.

The endpoint answers with a JavaScript assignment
(``var tumblr_api_read = {...};``) rather than bare JSON. Photo and video posts
become items of kind ``photo`` / ``video``; every other post type is skipped.
"""

import json
import re
from typing import Any, Optional

from markupsafe import Markup

from .base import SourceAdapter
from ..logging_conf import get_logger
from ..models import SourceRequest
from ..normalize import NormalizedItem

logger = get_logger(__name__)

_JS_WRAPPER = re.compile(r"^\s*var\s+\w+\s*=\s*(.*?)\s*;?\s*$", re.DOTALL)


def unwrap_tumblr_json(text: str) -> Any:
    """Strip the ``var tumblr_api_read = ...;`` wrapper and decode."""
    match = _JS_WRAPPER.match(text)
    body = match.group(1) if match else text
    return json.loads(body)


def _post_date(post: dict) -> Any:
    for key in ("unix-timestamp", "date-gmt", "date"):
        if post.get(key):
            return post[key]
    raise KeyError("post has no date")


class TumblrAdapter(SourceAdapter):
    """Photo and video posts from one tumblelog."""

    provider_type = "tumblr"
    required_params = ("user",)

    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        user = request.provider_params["user"]
        url = f"https://{user}.tumblr.com/api/read/json"

        response = await self.get(url, params={"num": limit})
        data = unwrap_tumblr_json(response.text)
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected tumblr response: {type(data).__name__}")
        posts = data.get("posts") or []

        items = []
        skipped = 0
        for post in posts:
            try:
                item = self._parse_post(request, user, post)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("tumblr_post_skipped", source=request.source_id, error=str(e))
                continue

            if item is None:
                skipped += 1
                continue

            items.append(item)
            if len(items) >= limit:
                break

        logger.info(
            "tumblr_fetched",
            source=request.source_id,
            count=len(items),
            unsupported=skipped,
        )
        return items

    def _parse_post(self, request: SourceRequest, user: str, post: dict) -> Optional[NormalizedItem]:
        """Return an item for photo/video posts, None for other post types."""
        post_type = post.get("type")
        if post_type not in ("photo", "video"):
            return None

        date = _post_date(post)

        if post_type == "photo":
            return self.item(
                request,
                date,
                {
                    "date": post.get("date", date),
                    "src": post.get("photo-url-250", ""),
                    "caption": Markup(post.get("photo-caption", "")),
                    "url": post.get("photo-link-url") or post.get("url", ""),
                    "user": user,
                    "post": post,
                },
                kind="photo",
            )

        return self.item(
            request,
            date,
            {
                "date": post.get("date", date),
                "video_player": Markup(post.get("video-player-250", "")),
                "caption": Markup(post.get("video-caption", "")),
                "url": post.get("url", ""),
                "user": user,
                "post": post,
            },
            kind="video",
        )
