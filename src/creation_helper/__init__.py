"""Creation helper client package."""

from .config import Settings, get_settings
from .engine import CreationEngine

__all__ = ["CreationEngine", "Settings", "get_settings"]
