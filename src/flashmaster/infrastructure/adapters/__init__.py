# Infrastructure Adapters Package
from .json_store import JsonStore
from .memory_repo import MemoryRepository
from .sql_repo import SqlRepository

__all__ = ["MemoryRepository", "JsonStore", "SqlRepository"]
