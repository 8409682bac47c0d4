"""Read-only HTTP surface of the catalog."""

from .api import create_app

__all__ = ["create_app"]
