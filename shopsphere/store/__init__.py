"""Storage backends"""

from .base import MarketplaceStore
from .memory import MemoryStore
from .postgres import PostgresStore

__all__ = ["MarketplaceStore", "MemoryStore", "PostgresStore"]
