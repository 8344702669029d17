"""Source text of module factories, with an optional per-module cache."""

import inspect
import logging
import textwrap
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def factory_source(factory: Callable) -> Optional[str]:
    """
    Textual body of a factory.

    Factories compiled from bundle text (and every patched factory) carry
    a `__source__` attribute; anything else goes through inspect.
    Returns None when no text can be recovered.
    """
    source = getattr(factory, "__source__", None)
    if isinstance(source, str):
        return source
    try:
        return textwrap.dedent(inspect.getsource(factory))
    except (OSError, TypeError):
        return None


class SourceCache:
    """Stringified factory text per module id (enable_cache)."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._text: Dict[Any, str] = {}

    def get(self, module_id: Any, factory: Callable) -> Optional[str]:
        if self.enabled and module_id in self._text:
            return self._text[module_id]
        text = factory_source(factory)
        if text is None:
            logger.debug(f"No source available for module {module_id}")
        elif self.enabled:
            self._text[module_id] = text
        return text

    def set(self, module_id: Any, text: str):
        if self.enabled:
            self._text[module_id] = text

    def clear(self):
        self._text.clear()
