"""Portfolio content store adapters."""

from app.adapters.content.base import AbstractContentStore
from app.adapters.content.file_store import FileContentStore

__all__ = ["AbstractContentStore", "FileContentStore"]
