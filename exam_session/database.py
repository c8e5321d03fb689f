"""
Supabase adapters for the record store and the snapshot store.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from .config import TABLE_SNAPSHOTS
from .errors import RecordStoreError
from .store import RecordStore, SnapshotStore

logger = logging.getLogger(__name__)


def _apply_filters(query, filters: Optional[Dict[str, Any]]):
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            query = query.in_(column, [str(v) for v in value])
        else:
            query = query.eq(column, str(value) if not isinstance(value, (int, float, bool)) else value)
    return query


class SupabaseRecordStore(RecordStore):
    """RecordStore over PostgREST tables."""

    def __init__(self, client: Client):
        self.client = client

    def get(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        # An empty IN list matches nothing; skip the round trip
        if any(isinstance(v, (list, tuple, set, frozenset)) and not v for v in (filters or {}).values()):
            return []
        try:
            response = _apply_filters(self.client.table(table).select("*"), filters).execute()
        except Exception as e:
            logger.error(f"Error reading {table} with {filters}: {e}")
            raise RecordStoreError(f"get {table} failed: {e}") from e
        return response.data or []

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.table(table).insert(record).execute()
        except Exception as e:
            logger.error(f"Error inserting into {table}: {e}")
            raise RecordStoreError(f"insert {table} failed: {e}", code=getattr(e, "code", None)) from e
        if not response.data:
            raise RecordStoreError(f"insert {table} returned no row")
        return response.data[0]

    def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.table(table).update(patch).eq("id", str(record_id)).execute()
        except Exception as e:
            logger.error(f"Error updating {table} {record_id}: {e}")
            raise RecordStoreError(f"update {table} {record_id} failed: {e}") from e
        if not response.data:
            raise RecordStoreError(f"update {table} {record_id} matched no row")
        return response.data[0]


class SupabaseSnapshotStore(SnapshotStore):
    """Snapshots in a key/value table: key text primary key, value jsonb, updated_at timestamptz."""

    def __init__(self, client: Client, table: str = TABLE_SNAPSHOTS):
        self.client = client
        self.table = table

    def put(self, key: str, value: Dict[str, Any]) -> None:
        row = {"key": key, "value": value, "updated_at": datetime.now(timezone.utc).isoformat()}
        self.client.table(self.table).upsert(row, on_conflict="key").execute()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(self.table).select("value").eq("key", key).limit(1).execute()
        if not response.data:
            return None
        return response.data[0].get("value")

    def delete(self, key: str) -> None:
        self.client.table(self.table).delete().eq("key", key).execute()
