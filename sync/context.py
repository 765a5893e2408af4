# sync/context.py

"""
Explicit sync context: one per signed-in client (or per request/connection
in a service). Owns the session, the channel subscriber, the permission
resolver and every tenant-scoped sync component.

    context = await SyncContext.init(backend)
    ...
    await context.teardown()

When the identity changes tenant or staff link, every scoped component is
stopped (channels closed, in-flight results discarded) before new ones are
started for the new scope.
"""

import asyncio
from typing import Optional

from core.cache import QueryCache
from core.logging_config import logger
from core.notifications import Notifier
from models.identity import Identity
from sync.channels import ChangeFeedSubscriber
from sync.coordination import CoordinationSync
from sync.entities import DataSync
from sync.financial import FinancialSync
from sync.permissions import PermissionResolver
from sync.promotion import PromotionWorkflow
from sync.session import MemoryStorage, SessionStore


class SyncContext:
    def __init__(
        self,
        backend,
        notifier: Optional[Notifier] = None,
        storage: Optional[MemoryStorage] = None,
        reload=None,
    ):
        self.backend = backend
        self.notifier = notifier or Notifier()
        self.query_cache = QueryCache()
        self.session = SessionStore(backend, storage=storage, notifier=self.notifier, reload=reload)
        self.subscriber = ChangeFeedSubscriber(backend, self.notifier)
        self.resolver = PermissionResolver(backend)

        self.coordination: Optional[CoordinationSync] = None
        self.data: Optional[DataSync] = None
        self.financial: Optional[FinancialSync] = None
        self.promotion: Optional[PromotionWorkflow] = None

        self._scope_key = None
        self._lock = asyncio.Lock()
        self._pending: set = set()
        self._closed = False

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    @classmethod
    async def init(cls, backend, **kwargs) -> "SyncContext":
        context = cls(backend, **kwargs)
        await context.start()
        return context

    async def start(self):
        self.session.add_listener(self._on_identity)
        self.session.on_sign_out(self.stop_scope)
        await self.session.initialize()
        await self.rescope()

    async def teardown(self):
        if self._closed:
            return
        self._closed = True

        await self.session.teardown()
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

        await self.stop_scope()
        await self.subscriber.unsubscribe_all()
        self.resolver.clear()
        self.query_cache.clear()
        await self.notifier.flush()
        logger.info("Sync context torn down")

    # ------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------
    def _on_identity(self, identity: Optional[Identity]):
        if self._closed:
            return
        task = asyncio.ensure_future(self.rescope())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    def scope_key(identity: Optional[Identity]):
        if identity is None:
            return None
        return (identity.user_id, identity.condominium_id, identity.coordination_staff_id)

    async def rescope(self):
        """Restart scoped components if the tenant or staff link changed."""
        async with self._lock:
            # Read under the lock; queued rescopes always see the latest identity
            identity = self.session.current_identity()
            key = self.scope_key(identity)
            if key == self._scope_key:
                return

            await self._stop_components()
            self._scope_key = key
            if identity is None or self._closed:
                return

            logger.info(
                f"Sync scope -> user={identity.user_id} condominium={identity.condominium_id} "
                f"staff={identity.coordination_staff_id}"
            )
            self.coordination = CoordinationSync(
                self.session, self.resolver, self.subscriber, self.backend, self.notifier
            )
            await self.coordination.start()

            tenant = identity.condominium_id
            self.promotion = PromotionWorkflow(self.backend, self.notifier, tenant)
            if tenant:
                self.data = DataSync(tenant, self.subscriber, self.backend, self.notifier, self.query_cache)
                await self.data.start()
                await self.data.refetch_all()
                self.financial = FinancialSync(self.backend, self.subscriber, self.notifier, tenant)
                await self.financial.start()

    async def stop_scope(self):
        async with self._lock:
            await self._stop_components()
            self._scope_key = None

    async def _stop_components(self):
        for component in (self.coordination, self.data, self.financial):
            if component is not None:
                await component.stop()
        self.coordination = None
        self.data = None
        self.financial = None
        self.promotion = None
        self.query_cache.clear()
