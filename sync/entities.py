# sync/entities.py

"""
Per-entity local caches fed by the change feed.

Each ``EntitySyncHook`` owns exactly one ``EntityCache`` and is the only
writer of it. Hooks never touch each other's caches; a hook that needs
fresh data from another table re-fetches from the backend.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.cache import QueryCache
from core.errors import BackendError
from core.logging_config import logger
from core.notifications import Notifier
from models.enums import EntityType
from models.events import ChangeEvent, ChannelHandlers, Record


# ===============================================================
# NOTIFICATION RULES
# ===============================================================

@dataclass(frozen=True)
class NotificationRule:
    insert_title: Optional[str] = None
    # Field whose transition on update is worth telling the user about
    status_field: Optional[str] = None
    status_title: Optional[str] = None
    # Only notify when the field becomes this value (None: any change)
    status_target: Any = None


NOTIFICATION_RULES: Dict[EntityType, NotificationRule] = {
    EntityType.announcements: NotificationRule(insert_title="New announcement"),
    EntityType.action_plans: NotificationRule(
        insert_title="New action plan",
        status_field="status",
        status_title="Action plan updated",
    ),
    EntityType.expenses: NotificationRule(
        insert_title="New expense",
        status_field="status",
        status_title="Expense status changed",
    ),
    EntityType.payments: NotificationRule(
        status_field="status",
        status_title="Payment confirmed",
        status_target="paid",
    ),
    EntityType.residents: NotificationRule(insert_title="New resident"),
    EntityType.visitors: NotificationRule(
        status_field="approved",
        status_title="Visitor approved",
        status_target=True,
    ),
    EntityType.occurrences: NotificationRule(
        insert_title="New occurrence",
        status_field="status",
        status_title="Occurrence updated",
    ),
    EntityType.documents: NotificationRule(insert_title="New document"),
}


def _parse_version(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def record_version(record: Optional[Record], event: Optional[ChangeEvent] = None) -> Optional[datetime]:
    """``updated_at`` of the row, falling back to the event's commit timestamp."""
    version = _parse_version((record or {}).get("updated_at"))
    if version is None and event is not None:
        version = _parse_version(event.commit_timestamp)
    return version


# ===============================================================
# CACHE
# ===============================================================

class EntityCache:
    """
    Ordered, id-keyed projection of one table.

    Upserts keep the position of an existing id. Versions (when the rows
    carry one) are remembered per id, including for deleted ids, so a
    replayed or late event older than what was applied is ignored.
    """

    def __init__(self, entity: EntityType):
        self.entity = entity
        self._rows: Dict[str, Record] = {}
        self._versions: Dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._rows

    @property
    def rows(self) -> List[Record]:
        return list(self._rows.values())

    def get(self, record_id: str) -> Optional[Record]:
        return self._rows.get(record_id)

    def load(self, rows: List[Record]):
        self._rows = {}
        self._versions = {}
        for row in rows:
            if row.get("id") is None:
                continue
            self._rows[row["id"]] = dict(row)
            version = record_version(row)
            if version is not None:
                self._versions[row["id"]] = version

    def _is_stale(self, record_id: str, version: Optional[datetime]) -> bool:
        if version is None:
            return False
        known = self._versions.get(record_id)
        try:
            return known is not None and version < known
        except TypeError:
            # naive vs aware timestamps; cannot order them, so apply
            return False

    def upsert(self, record: Record, version: Optional[datetime] = None) -> bool:
        record_id = record.get("id")
        if record_id is None:
            return False
        if self._is_stale(record_id, version):
            logger.debug(f"Ignoring stale {self.entity} {record_id}")
            return False

        if record_id in self._rows:
            merged = dict(self._rows[record_id])
            merged.update(record)
            self._rows[record_id] = merged
        else:
            self._rows[record_id] = dict(record)

        if version is not None:
            self._versions[record_id] = version
        return True

    def remove(self, record_id: Optional[str], version: Optional[datetime] = None) -> bool:
        if record_id is None or self._is_stale(record_id, version):
            return False
        if version is not None:
            self._versions[record_id] = version
        return self._rows.pop(record_id, None) is not None


# ===============================================================
# HOOK
# ===============================================================

class EntitySyncHook:
    def __init__(
        self,
        entity: EntityType,
        tenant_scope: str,
        subscriber,
        backend,
        notifier: Notifier,
        query_cache: QueryCache,
    ):
        self.entity = EntityType(entity)
        self.tenant_scope = tenant_scope
        self.subscriber = subscriber
        self.backend = backend
        self.notifier = notifier
        self.query_cache = query_cache

        self.cache = EntityCache(self.entity)
        self.rule = NOTIFICATION_RULES[self.entity]
        self.channel = None
        self._handlers = ChannelHandlers(
            on_insert=self.on_insert,
            on_update=self.on_update,
            on_delete=self.on_delete,
        )
        self._scope = 0

    async def start(self):
        if self.channel is not None:
            return
        self.channel = await self.subscriber.subscribe(self.entity.value, self.tenant_scope, self._handlers)

    async def stop(self):
        self._scope += 1
        channel, self.channel = self.channel, None
        await self.subscriber.unsubscribe(channel, self._handlers)

    # ------------------------------------------------------------
    # Full (re)loads
    # ------------------------------------------------------------
    def load(self, rows: List[Record]):
        self.cache.load(rows)
        self._invalidate()

    async def refetch(self) -> List[Record]:
        scope = self._scope
        try:
            rows = await self.backend.select(
                self.entity.value,
                {"condominium_id": self.tenant_scope},
                order="created_at",
                descending=True,
            )
        except BackendError as e:
            logger.error(f"Error fetching {self.entity}: {e}")
            self.notifier.error(f"Failed to load {self.entity}", str(e), retryable=True)
            return self.cache.rows

        if scope != self._scope:
            logger.debug(f"Discarding {self.entity} fetch finished after scope exit")
            return self.cache.rows

        self.load(rows)
        return self.cache.rows

    # ------------------------------------------------------------
    # Derived queries
    # ------------------------------------------------------------
    def query_key(self, suffix: str) -> str:
        return f"{self.entity.value}:{self.tenant_scope}:{suffix}"

    async def summary(self) -> Dict[str, Any]:
        """
        Row count and per-status breakdown of the cached rows.

        Served from the query cache until the next change to this entity.
        """
        return await self.query_cache.get_or_fetch(self.query_key("summary"), self._summarize)

    async def _summarize(self) -> Dict[str, Any]:
        field = self.rule.status_field
        by_status: Dict[Any, int] = {}
        rows = self.cache.rows
        if field:
            for row in rows:
                value = row.get(field)
                by_status[value] = by_status.get(value, 0) + 1
        return {"total": len(rows), "by_status": by_status}

    # ------------------------------------------------------------
    # Change-feed handlers
    # ------------------------------------------------------------
    def on_insert(self, event: ChangeEvent):
        record = event.new_record or {}
        # Replays and rows already loaded by a refetch are not news
        known = record.get("id") in self.cache
        applied = self.cache.upsert(record, record_version(record, event))
        self._invalidate()
        if applied and not known and self.rule.insert_title:
            self.notifier.success(self.rule.insert_title, self._describe(record))

    def on_update(self, event: ChangeEvent):
        record = event.new_record or {}
        previous = self.cache.get(record.get("id")) or {}
        applied = self.cache.upsert(record, record_version(record, event))
        self._invalidate()
        if applied:
            self._notify_transition(event.old_record or {}, previous, record)

    def on_delete(self, event: ChangeEvent):
        record = event.old_record or {}
        self.cache.remove(record.get("id"), record_version(record, event))
        self._invalidate()

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    def _invalidate(self):
        self.query_cache.invalidate_prefix(self.entity.value)

    def _notify_transition(self, old: Record, previous: Record, new: Record):
        field = self.rule.status_field
        if not field or field not in new:
            return

        # Realtime only sends the full old row with REPLICA IDENTITY FULL;
        # otherwise fall back to what the cache held before this update
        before = old[field] if field in old else previous.get(field)
        after = new[field]
        if before == after:
            return
        if self.rule.status_target is not None and after != self.rule.status_target:
            return

        self.notifier.success(self.rule.status_title, self._describe(new, after))

    def _describe(self, record: Record, status: Any = None) -> str:
        label = (
            record.get("title")
            or record.get("name")
            or record.get("task_number")
            or record.get("occurrence_number")
            or record.get("description")
            or record.get("id")
            or ""
        )
        if status is None or isinstance(status, bool):
            return str(label)
        return f"{label}: {status}"


# ===============================================================
# ALL ENTITIES FOR ONE TENANT
# ===============================================================

class DataSync:
    """One hook per synced entity type, sharing a tenant scope."""

    def __init__(self, tenant_scope: str, subscriber, backend, notifier: Notifier, query_cache: QueryCache):
        self.tenant_scope = tenant_scope
        self.hooks: Dict[EntityType, EntitySyncHook] = {
            entity: EntitySyncHook(entity, tenant_scope, subscriber, backend, notifier, query_cache)
            for entity in EntityType
        }

    def __getitem__(self, entity) -> EntitySyncHook:
        return self.hooks[EntityType(entity)]

    async def start(self):
        for hook in self.hooks.values():
            await hook.start()

    async def stop(self):
        for hook in self.hooks.values():
            await hook.stop()

    async def refetch_all(self):
        for hook in self.hooks.values():
            await hook.refetch()
