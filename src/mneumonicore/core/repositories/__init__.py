"""Repository layer for data access."""

from .page_repository import PageRepository

__all__ = [
    "PageRepository",
]
