# models/events.py

from typing import Optional, Dict, Any, Callable, Awaitable, Union
from datetime import datetime
from pydantic import BaseModel, ConfigDict

from models.enums import EventKind


Record = Dict[str, Any]


class ChangeEvent(BaseModel):
    """
    One row-level change delivered by a channel. Consumed once, never persisted.
    """
    model_config = ConfigDict(frozen=True)

    event_kind: EventKind
    table: str
    tenant_scope: Optional[str] = None
    schema_name: str = "public"
    old_record: Optional[Record] = None
    new_record: Optional[Record] = None
    commit_timestamp: Optional[datetime] = None

    @property
    def record(self) -> Record:
        """The row the event is about: new for insert/update, old for delete."""
        if self.event_kind == EventKind.delete:
            return self.old_record or {}
        return self.new_record or {}

    @property
    def record_id(self) -> Optional[str]:
        return self.record.get("id") or (self.old_record or {}).get("id")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], tenant_scope: Optional[str] = None) -> "ChangeEvent":
        """
        Normalise a realtime payload.

        Accepts the realtime server shape::

            {"data": {"type": "UPDATE", "table": ..., "schema": ...,
                      "record": {...}, "old_record": {...}, "commit_timestamp": ...}}

        and the JS client shape::

            {"eventType": "UPDATE", "table": ..., "schema": ..., "new": {...}, "old": {...}}
        """
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload

        kind = data.get("type") or data.get("eventType") or data.get("event_kind")
        new_record = data.get("record", data.get("new"))
        old_record = data.get("old_record", data.get("old"))

        return cls(
            event_kind=EventKind(str(kind).lower()),
            table=data.get("table", ""),
            tenant_scope=tenant_scope,
            schema_name=data.get("schema") or "public",
            # Realtime sends {} for the missing side; keep None so callers can test it
            new_record=new_record or None,
            old_record=old_record or None,
            commit_timestamp=data.get("commit_timestamp"),
        )


Handler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class ChannelHandlers(BaseModel):
    """Optional per-kind callbacks registered on a channel."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    on_insert: Optional[Handler] = None
    on_update: Optional[Handler] = None
    on_delete: Optional[Handler] = None

    def for_kind(self, kind: EventKind) -> Optional[Handler]:
        return {
            EventKind.insert: self.on_insert,
            EventKind.update: self.on_update,
            EventKind.delete: self.on_delete,
        }[kind]
