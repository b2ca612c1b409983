"""
Item rendering with Jinja2 templates.

Template names are looked up in this order: templates passed in memory, an
optional user directory, then the templates bundled with the package. A name
without an extension also matches ``<name>.html.j2``.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from jinja2 import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    Template,
    TemplatesNotFound,
    TemplateSyntaxError,
    select_autoescape,
)

from ..errors import ConfigurationError
from ..logging_conf import get_logger
from ..normalize import NormalizedItem

logger = get_logger(__name__)

BUILTIN_TEMPLATES_DIR = Path(__file__).parent


class ItemRenderer(Protocol):
    """Anything that turns an item into markup."""

    def render(self, item: NormalizedItem, template_ref: Any) -> str:
        ...

    def check(self, template_ref: Any) -> None:
        ...


def _datetime_filter(value: Any, format_string: str = "%Y-%m-%d %H:%M") -> str:
    """Jinja2 filter for formatting datetimes."""
    if isinstance(value, datetime):
        return value.strftime(format_string)
    return str(value) if value is not None else ""


def resolve_template_name(item: NormalizedItem, template_ref: Union[str, dict]) -> str:
    """
    Pick the template name for ``item``.

    A string ref is used as is. A mapping is looked up by ``item.kind``, then
    by ``"default"``.

    Raises:
        ConfigurationError: if the mapping has no entry for the item
    """
    if isinstance(template_ref, str):
        return template_ref

    if isinstance(template_ref, dict):
        name = template_ref.get(item.kind) if item.kind else None
        name = name or template_ref.get("default")
        if name:
            return name
        raise ConfigurationError(
            f"No template for kind {item.kind!r} from source {item.source_id!r}"
        )

    raise ConfigurationError(f"Invalid template reference: {template_ref!r}")


class TemplateRenderer:
    """
    Renders items through Jinja2 templates.

    The template context is the item payload plus ``timestamp``, ``kind`` and
    ``source_id``.
    """

    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        templates: Optional[dict[str, str]] = None,
    ):
        """
        Args:
            templates_dir: Directory with user templates (``*.html.j2``)
            templates: In-memory templates, name -> source
        """
        loaders = []
        if templates:
            loaders.append(DictLoader(dict(templates)))
        if templates_dir:
            loaders.append(FileSystemLoader(str(templates_dir)))
        loaders.append(FileSystemLoader(str(BUILTIN_TEMPLATES_DIR)))

        self.env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(default_for_string=True, default=True),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["datetime"] = _datetime_filter

    def _select(self, name: str) -> Template:
        try:
            return self.env.select_template([name, f"{name}.html.j2"])
        except TemplatesNotFound as e:
            raise ConfigurationError(f"Template {name!r} not found") from e
        except TemplateSyntaxError as e:
            raise ConfigurationError(f"Template {name!r} is invalid: {e}") from e

    def check(self, template_ref: Union[str, dict]) -> None:
        """
        Make sure every template a source may render with exists.

        Raises:
            ConfigurationError: if the reference is malformed or names a
                missing template
        """
        if isinstance(template_ref, str):
            names = [template_ref]
        elif isinstance(template_ref, dict) and template_ref:
            names = list(template_ref.values())
        else:
            raise ConfigurationError(f"Invalid template reference: {template_ref!r}")

        for name in names:
            if not isinstance(name, str) or not name:
                raise ConfigurationError(f"Invalid template name: {name!r}")
            self._select(name)

    def render(self, item: NormalizedItem, template_ref: Union[str, dict]) -> str:
        """
        Render one item.

        Raises:
            ConfigurationError: if no template matches
        """
        template = self._select(resolve_template_name(item, template_ref))

        context = dict(item.payload)
        context.update(
            timestamp=item.timestamp,
            kind=item.kind,
            source_id=item.source_id,
        )
        return template.render(**context).strip()
