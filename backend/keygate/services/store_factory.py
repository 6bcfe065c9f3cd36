"""
Storage Factory

Picks the storage backend from DATABASE_URL.
"""
from typing import Optional

from keygate.config import settings
from .store_base import Storage
from .store_memory import MemoryStorage
from .store_tortoise import TortoiseStorage

MEMORY_URL = "memory"


def build_storage(db_url: Optional[str] = None, generate_schemas: Optional[bool] = None) -> Storage:
    """
    Build a (not yet connected) storage bundle

    Parameters:
    - db_url: Tortoise connection URL, or "memory" for the in-process store;
      defaults to settings.database_url
    - generate_schemas: create missing tables on connect; defaults to
      settings.generate_schemas

    Returns:
    - Storage: call connect() before use and close() on shutdown
    """
    url = db_url or settings.database_url
    if url == MEMORY_URL:
        return MemoryStorage()
    if generate_schemas is None:
        generate_schemas = settings.generate_schemas
    return TortoiseStorage(url, generate_schemas=generate_schemas)
