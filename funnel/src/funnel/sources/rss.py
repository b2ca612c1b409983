"""
RSS/Atom feed adapter.

Handles any standard feed given as ``params.url``.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional

import feedparser
from bs4 import BeautifulSoup

from .base import SourceAdapter
from ..logging_conf import get_logger
from ..models import SourceRequest
from ..normalize import NormalizedItem, parse_timestamp

logger = get_logger(__name__)


class RSSAdapter(SourceAdapter):
    """
    Entries of an RSS 2.0 or Atom feed.

    Supports:
    - Structured and string dates
    - HTML stripped from summaries
    - Optional ``params.title_keywords`` filter
    """

    provider_type = "rss"
    required_params = ("url",)

    async def fetch(self, request: SourceRequest, limit: int) -> list[NormalizedItem]:
        url = request.provider_params["url"]
        logger.debug("fetching_rss", source=request.source_id, url=url)

        response = await self.get(url)
        feed = feedparser.parse(response.text)

        if feed.bozo and feed.bozo_exception:
            if not feed.entries:
                raise ValueError(f"Unparseable feed: {feed.bozo_exception}")
            logger.warning(
                "rss_parse_warning",
                source=request.source_id,
                error=str(feed.bozo_exception),
            )

        keywords = [k.lower() for k in request.provider_params.get("title_keywords") or []]

        items = []
        for entry in feed.entries:
            item = self._parse_entry(request, entry)
            if item is None:
                continue

            if keywords and not any(k in item.payload["title"].lower() for k in keywords):
                continue

            items.append(item)

        # Feeds are not always newest-first
        items.sort(key=lambda i: i.timestamp, reverse=True)

        logger.info(
            "rss_fetched",
            source=request.source_id,
            total_entries=len(feed.entries),
            kept=min(len(items), limit),
        )
        return items[:limit]

    def _parse_entry(self, request: SourceRequest, entry: dict) -> Optional[NormalizedItem]:
        """Parse a single feed entry; None if it has no link, title or date."""
        url = entry.get("link", "")
        title = entry.get("title", "").strip()
        if not url or not title:
            return None

        published_at = self._parse_date(entry)
        if published_at is None:
            logger.debug("rss_entry_undated", source=request.source_id, url=url)
            return None

        summary = entry.get("summary") or entry.get("description") or ""
        if summary:
            summary = self._clean_html(summary)[:2000]

        authors = []
        if "authors" in entry:
            authors = [a.get("name", "") for a in entry.authors if a.get("name")]
        elif "author" in entry:
            authors = [entry.author]

        categories = [t.term for t in entry.get("tags", []) if getattr(t, "term", None)]

        return self.item(
            request,
            published_at,
            {
                "date": published_at.isoformat(),
                "title": title,
                "url": url,
                "summary": summary,
                "authors": authors,
                "categories": categories,
            },
        )

    def _parse_date(self, entry: dict) -> Optional[datetime]:
        """Parse date from various feed formats."""
        for field in ("published_parsed", "updated_parsed", "created_parsed"):
            parsed = entry.get(field)
            if parsed:
                try:
                    # *_parsed values are UTC struct_time
                    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
                except (ValueError, OverflowError):
                    continue

        for field in ("published", "updated", "created"):
            date_str = entry.get(field)
            if date_str:
                try:
                    return parse_timestamp(date_str)
                except ValueError:
                    continue

        return None

    def _clean_html(self, text: str) -> str:
        """Remove HTML tags from text."""
        soup = BeautifulSoup(text, "lxml")
        return soup.get_text(separator=" ", strip=True)
