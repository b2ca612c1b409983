"""
Provider adapters.

Built-in providers:
- twitter (user timeline)
- delicious (bookmarks)
- tumblr (photo and video posts)
- rss (any RSS/Atom feed)
"""

from .registry import AdapterRegistry, build_default_registry, get_adapter_registry
from .base import SourceAdapter

__all__ = [
    "AdapterRegistry",
    "build_default_registry",
    "get_adapter_registry",
    "SourceAdapter",
]
