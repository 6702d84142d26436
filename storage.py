"""
Key-value storage for persisted store slices.

Values are opaque strings (JSON blobs). Two backends:
- MemoryStorage: a dict, for tests and for running without a database
- MongoStorage: one document per key in a MongoDB collection
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class Storage(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class MongoStorage(Storage):
    """Stores each key as ``{"key": ..., "value": ...}`` in ``collection``."""

    def __init__(self, db, collection: str = "kv"):
        self.col = db[collection]

    def get(self, key: str) -> Optional[str]:
        doc = self.col.find_one({"key": key})
        if not doc:
            return None
        return doc.get("value")

    def set(self, key: str, value: str) -> None:
        self.col.update_one({"key": key}, {"$set": {"key": key, "value": value}}, upsert=True)

    def remove(self, key: str) -> None:
        self.col.delete_one({"key": key})
