"""
Twitter user timeline adapter.

Uses the REST ``statuses/user_timeline`` endpoint. A bearer token can be given
per source as ``params.bearer_token``.
"""

import re

from markupsafe import Markup, escape

from .base import SourceAdapter
from ..logging_conf import get_logger
from ..models import SourceRequest
from ..normalize import NormalizedItem

logger = get_logger(__name__)

_URL = re.compile(r"https?://[^\s<]+")
_MENTION = re.compile(r"(^|\s)@(\w+)")
_HASHTAG = re.compile(r"(^|\s)#(\w+)")


def tweetify(text: str) -> Markup:
    """
    Escape tweet text and turn links, @mentions and #hashtags into anchors.
    """
    html = str(escape(text))
    html = _URL.sub(r'<a href="\g<0>">\g<0></a>', html)
    html = _MENTION.sub(r'\1<a href="https://twitter.com/\2">@\2</a>', html)
    html = _HASHTAG.sub(r'\1<a href="https://twitter.com/search?q=%23\2">#\2</a>', html)
    return Markup(html)


class TwitterAdapter(SourceAdapter):
    """Tweets from one user's timeline."""

    provider_type = "twitter"
    required_params = ("user",)

    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        user = request.provider_params["user"]
        url = f"{self.settings.twitter_api_url.rstrip('/')}/statuses/user_timeline.json"

        headers = {}
        token = request.provider_params.get("bearer_token")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug("fetching_tweets", source=request.source_id, user=user)
        data = await self.get_json(
            url,
            params={"screen_name": user, "count": limit},
            headers=headers,
        )
        if not isinstance(data, list):
            raise ValueError(f"Unexpected timeline response: {type(data).__name__}")

        items = []
        for tweet in data:
            try:
                items.append(self.item(
                    request,
                    tweet["created_at"],
                    {
                        "date": tweet["created_at"],
                        "msg": tweetify(tweet.get("text", "")),
                        "text": tweet.get("text", ""),
                        "user": user,
                        "id": tweet.get("id_str"),
                    },
                ))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("tweet_skipped", source=request.source_id, error=str(e))

        logger.info("tweets_fetched", source=request.source_id, count=len(items))
        return items
