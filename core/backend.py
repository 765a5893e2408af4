# core/backend.py

"""
Async gateway over the hosted backend (Supabase).

The sync layer only talks to this narrow surface:

    rows      select / insert / update / delete
    rpc       named server-side procedures
    realtime  subscribe / unsubscribe (postgres_changes)
    auth      on_auth_state_change / get_session / sign_in / sign_up / sign_out
    functions invoke_function (edge functions)

Every call is a suspension point bounded by ``BACKEND_TIMEOUT_SECONDS``;
a call that exceeds it raises ``BackendError(code="TIMEOUT")`` instead of
leaving the caller's loading flag set forever.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

from supabase import AsyncClient

from core.config import settings
from core.errors import AuthError, BackendError, CondoSyncError, extract_supabase_error
from core.logging_config import logger


REALTIME_EVENTS = ("INSERT", "UPDATE", "DELETE")


class SupabaseBackend:
    def __init__(self, client: AsyncClient, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout or settings.BACKEND_TIMEOUT_SECONDS

    # ============================================================
    # Call wrapper
    # ============================================================
    async def _call(self, operation: str, awaitable: Awaitable[Any], auth: bool = False) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"{operation} timed out after {self.timeout}s")
            raise BackendError(f"{operation} timed out", code="TIMEOUT")
        except CondoSyncError:
            raise
        except Exception as e:
            detail = extract_supabase_error(e)
            logger.error(f"{operation} failed: {detail}")
            if auth:
                raise AuthError(f"{operation} failed: {detail}") from e
            raise BackendError(f"{operation} failed: {detail}") from e

    # ============================================================
    # Rows
    # ============================================================
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        *,
        columns: str = "*",
        order: Optional[str] = None,
        descending: bool = False,
        single: bool = False,
    ):
        query = self.client.table(table).select(columns)
        for key, val in (filters or {}).items():
            query = query.eq(key, val)
        if order:
            query = query.order(order, desc=descending)

        if single:
            result = await self._call(f"select {table}", query.maybe_single().execute())
            # postgrest answers "no row" with None on some versions
            return result.data if result is not None else None

        result = await self._call(f"select {table}", query.execute())
        return result.data or []

    async def insert(self, table: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        query = self.client.table(table).insert(values)
        result = await self._call(f"insert {table}", query.execute())
        return result.data[0] if result.data else None

    async def update(self, table: str, filters: Dict[str, Any], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = self.client.table(table).update(values)
        for key, val in filters.items():
            query = query.eq(key, val)
        result = await self._call(f"update {table}", query.execute())
        return result.data or []

    async def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = self.client.table(table).delete()
        for key, val in filters.items():
            query = query.eq(key, val)
        result = await self._call(f"delete {table}", query.execute())
        return result.data or []

    # ============================================================
    # RPC
    # ============================================================
    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        result = await self._call(f"rpc {name}", self.client.rpc(name, params or {}).execute())
        return result.data

    # ============================================================
    # Realtime (postgres_changes)
    # ============================================================
    async def subscribe(
        self,
        channel_name: str,
        table: str,
        filter: Optional[str],
        on_event: Callable[[Dict[str, Any]], None],
        on_status: Callable[[str, Optional[Exception]], None],
    ):
        """
        Open one realtime channel delivering INSERT/UPDATE/DELETE on ``table``.

        ``on_status`` receives the raw state name (SUBSCRIBED, CHANNEL_ERROR,
        TIMED_OUT, CLOSED). Returns the channel as an opaque handle.
        """
        channel = self.client.channel(channel_name)
        for event in REALTIME_EVENTS:
            channel.on_postgres_changes(
                event,
                callback=on_event,
                table=table,
                schema=settings.REALTIME_SCHEMA,
                filter=filter,
            )

        def status_callback(state, error=None):
            on_status(getattr(state, "value", str(state)), error)

        await self._call(f"subscribe {channel_name}", channel.subscribe(status_callback))
        return channel

    async def unsubscribe(self, handle) -> None:
        await self._call("remove channel", self.client.remove_channel(handle))

    # ============================================================
    # Auth
    # ============================================================
    def on_auth_state_change(self, callback: Callable[[str, Any], None]):
        """Registers ``callback(event, session)``; returns a handle with ``unsubscribe()``."""
        return self.client.auth.on_auth_state_change(callback)

    async def get_session(self):
        return await self._call("get session", self.client.auth.get_session(), auth=True)

    async def sign_in(self, email: str, password: str):
        return await self._call(
            "sign in",
            self.client.auth.sign_in_with_password({"email": email, "password": password}),
            auth=True,
        )

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None):
        return await self._call(
            "sign up",
            self.client.auth.sign_up(
                {"email": email, "password": password, "options": {"data": metadata or {}}}
            ),
            auth=True,
        )

    async def sign_out(self) -> None:
        await self._call("sign out", self.client.auth.sign_out(), auth=True)

    # ============================================================
    # Edge functions
    # ============================================================
    async def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        raw = await self._call(
            f"function {name}",
            self.client.functions.invoke(name, invoke_options={"body": body}),
        )
        if isinstance(raw, (bytes, str)):
            try:
                return json.loads(raw)
            except ValueError:
                raise BackendError(f"function {name} returned a non-JSON body")
        return raw or {}


async def create_backend() -> SupabaseBackend:
    """Build the gateway from settings; raises if the client cannot be created."""
    from core.supabase_client import get_async_client

    client = await get_async_client()
    if client is None:
        raise BackendError("Supabase client not configured", code="NOT_CONFIGURED")
    return SupabaseBackend(client)
