"""
Storage ports used by the engine.

The engine only talks to these two interfaces; the Supabase adapters live in
database.py and the tests supply in-memory ones.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class RecordStore(ABC):
    """Table-oriented store. Filter values that are lists/tuples/sets mean `column IN values`."""

    @abstractmethod
    def get(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored (including generated id)."""
        pass

    @abstractmethod
    def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        pass


class SnapshotStore(ABC):
    """Durable key-value store for auto-save snapshots."""

    @abstractmethod
    def put(self, key: str, value: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass
