"""
Runtime settings for podcatalog.

``config.settings`` loads and validates configuration on import, so
attributes are resolved lazily: ``import config`` stays cheap for packaging
and for tools that only need ``config.version``.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any


def __getattr__(name: str) -> Any:
    if name.startswith("__") and name != "__version__":
        raise AttributeError(name)
    version = import_module("config.version")
    module = version if name in version.__all__ else import_module("config.settings")
    try:
        value = getattr(module, name)
    except AttributeError:
        raise AttributeError(f"module 'config' has no attribute {name!r}") from None
    globals()[name] = value
    return value
