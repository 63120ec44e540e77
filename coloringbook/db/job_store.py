"""Job store interface with Supabase and in-memory implementations.

Records are plain JSON-compatible dicts keyed by ``id``. Updates are partial:
fields that are not passed are left untouched.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from supabase import Client

from coloringbook.errors import PersistenceError


Record = Dict[str, Any]


class JobStore(ABC):
    """Abstract interface for the relational store holding job rows."""

    @abstractmethod
    async def insert(self, table: str, record: Record) -> Record:
        """Insert a row and return it as stored."""
        ...

    @abstractmethod
    async def update(self, table: str, record_id: str, fields: Record) -> Optional[Record]:
        """Apply a partial update. Returns the updated row, or None if absent."""
        ...

    @abstractmethod
    async def get_by_id(self, table: str, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def list_by_owner(self, table: str, owner_id: str) -> List[Record]:
        """Rows whose user_id matches, newest first."""
        ...

    @abstractmethod
    async def claim(
        self,
        table: str,
        record_id: str,
        from_statuses: Sequence[str],
        fields: Record,
    ) -> Optional[Record]:
        """Update the row only if its status is one of ``from_statuses``.

        Returns the updated row, or None when the row is missing or another
        caller already moved it to a different status.
        """
        ...

    @abstractmethod
    async def next_with_status(self, table: str, status: str) -> Optional[Record]:
        """Oldest row (by created_at) with the given status."""
        ...


class SupabaseJobStore(JobStore):
    """Job store backed by Supabase (PostgREST).

    The supabase client is synchronous, so every call runs in the default
    thread executor to keep the event loop free.
    """

    def __init__(self, client: Client):
        self._client = client

    async def _execute(self, action: str, table: str, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, fn)
        except Exception as exc:
            raise PersistenceError(f"Failed to {action} {table}: {exc}") from exc
        return response.data if response is not None else None

    async def insert(self, table: str, record: Record) -> Record:
        query = self._client.table(table).insert(record)
        rows = await self._execute("insert into", table, query.execute)
        if not rows:
            raise PersistenceError(f"Insert into {table} returned no rows")
        return rows[0]

    async def update(self, table: str, record_id: str, fields: Record) -> Optional[Record]:
        query = self._client.table(table).update(fields).eq("id", record_id)
        rows = await self._execute("update", table, query.execute)
        return rows[0] if rows else None

    async def get_by_id(self, table: str, record_id: str) -> Optional[Record]:
        query = self._client.table(table).select("*").eq("id", record_id).limit(1)
        rows = await self._execute("read", table, query.execute)
        return rows[0] if rows else None

    async def list_by_owner(self, table: str, owner_id: str) -> List[Record]:
        query = (
            self._client.table(table)
            .select("*")
            .eq("user_id", owner_id)
            .order("created_at", desc=True)
        )
        rows = await self._execute("list", table, query.execute)
        return rows or []

    async def claim(
        self,
        table: str,
        record_id: str,
        from_statuses: Sequence[str],
        fields: Record,
    ) -> Optional[Record]:
        query = (
            self._client.table(table)
            .update(fields)
            .eq("id", record_id)
            .in_("status", list(from_statuses))
        )
        rows = await self._execute("claim", table, query.execute)
        return rows[0] if rows else None

    async def next_with_status(self, table: str, status: str) -> Optional[Record]:
        query = (
            self._client.table(table)
            .select("*")
            .eq("status", status)
            .order("created_at")
            .limit(1)
        )
        rows = await self._execute("scan", table, query.execute)
        return rows[0] if rows else None


class InMemoryJobStore(JobStore):
    """Dict-backed store for local development and tests.

    No method awaits between reading and writing a row, so ``claim`` is
    atomic with respect to other coroutines on the same loop.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Record]] = {}

    def _table(self, table: str) -> Dict[str, Record]:
        return self._tables.setdefault(table, {})

    async def insert(self, table: str, record: Record) -> Record:
        if "id" not in record:
            raise PersistenceError(f"Insert into {table} requires an id")
        stored = copy.deepcopy(record)
        self._table(table)[stored["id"]] = stored
        return copy.deepcopy(stored)

    async def update(self, table: str, record_id: str, fields: Record) -> Optional[Record]:
        row = self._table(table).get(record_id)
        if row is None:
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    async def get_by_id(self, table: str, record_id: str) -> Optional[Record]:
        row = self._table(table).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    async def list_by_owner(self, table: str, owner_id: str) -> List[Record]:
        rows = [row for row in self._table(table).values() if row.get("user_id") == owner_id]
        rows.sort(key=lambda row: str(row.get("created_at") or ""), reverse=True)
        return copy.deepcopy(rows)

    async def claim(
        self,
        table: str,
        record_id: str,
        from_statuses: Sequence[str],
        fields: Record,
    ) -> Optional[Record]:
        row = self._table(table).get(record_id)
        if row is None or row.get("status") not in from_statuses:
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    async def next_with_status(self, table: str, status: str) -> Optional[Record]:
        rows = [row for row in self._table(table).values() if row.get("status") == status]
        if not rows:
            return None
        rows.sort(key=lambda row: str(row.get("created_at") or ""))
        return copy.deepcopy(rows[0])
