"""
Render sinks: where the capped, ordered view ends up.

Every sink receives the complete current view on each call, never a delta.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Sequence, Union, runtime_checkable

from bs4 import BeautifulSoup
from rich.console import Console
from rich.table import Table

from .logging_conf import get_logger
from .models import RenderedFragment
from .templates import TemplateRenderer

logger = get_logger(__name__)


@runtime_checkable
class RenderSink(Protocol):
    """Receives the full capped view after every settlement."""

    def replace(self, fragments: Sequence[RenderedFragment]) -> None:
        ...


class MemorySink:
    """Keeps every view it was given. Useful for tests and embedding."""

    def __init__(self):
        self.history: list[tuple[RenderedFragment, ...]] = []

    def replace(self, fragments: Sequence[RenderedFragment]) -> None:
        self.history.append(tuple(fragments))

    @property
    def current(self) -> tuple[RenderedFragment, ...]:
        return self.history[-1] if self.history else ()

    @property
    def calls(self) -> int:
        return len(self.history)


class FanOutSink:
    """Forwards each view to several sinks in order."""

    def __init__(self, *sinks: RenderSink):
        self.sinks = list(sinks)

    def replace(self, fragments: Sequence[RenderedFragment]) -> None:
        for sink in self.sinks:
            sink.replace(fragments)


def fragment_text(fragment: RenderedFragment, width: int = 100) -> str:
    """Plain-text rendering of a fragment's markup."""
    text = BeautifulSoup(fragment.markup, "html.parser").get_text(" ", strip=True)
    if len(text) > width:
        text = text[: width - 1] + "…"
    return text


class ConsoleSink:
    """Prints the view as a rich table each time it changes."""

    def __init__(self, console: Optional[Console] = None, title: str = "Activity"):
        self.console = console or Console()
        self.title = title

    def build_table(self, fragments: Sequence[RenderedFragment]) -> Table:
        table = Table(title=f"{self.title} ({len(fragments)} items)")
        table.add_column("When", style="cyan", no_wrap=True)
        table.add_column("Source", style="magenta")
        table.add_column("Item", style="green")

        for fragment in fragments:
            item = fragment.item
            source = f"{item.source_id}/{item.kind}" if item.kind else item.source_id
            table.add_row(
                item.payload.get("relative_date") or item.timestamp.isoformat(),
                source,
                fragment_text(fragment),
            )
        return table

    def replace(self, fragments: Sequence[RenderedFragment]) -> None:
        self.console.print(self.build_table(fragments))


class HtmlFileSink:
    """
    Rewrites a standalone HTML page with the current view.

    The page is written to a temporary file and moved into place, so readers
    never see a half-written page.
    """

    def __init__(
        self,
        path: Union[str, Path],
        title: str = "Activity",
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.path = Path(path)
        self.title = title
        self.renderer = renderer or TemplateRenderer()

    def render_page(self, fragments: Sequence[RenderedFragment]) -> str:
        template = self.renderer.env.get_template("page.html.j2")
        return template.render(
            title=self.title,
            fragments=fragments,
            updated_at=datetime.now(timezone.utc),
        )

    def replace(self, fragments: Sequence[RenderedFragment]) -> None:
        html = self.render_page(fragments)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(html, encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("html_page_written", path=str(self.path), items=len(fragments))
