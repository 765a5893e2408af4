# sync/coordination.py

"""
Coordination staff of the current tenant, plus the signed-in user's
effective permissions, kept current from two feeds:

- ``coordination_staff`` for the tenant (membership and grants)
- ``profiles`` filtered to the current user (staff link changes)
"""

from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.errors import BackendError
from core.logging_config import logger
from core.notifications import Notifier
from core.permission_helpers import has_permission
from models.coordination import CoordinationStaff, PermissionSet
from models.enums import CoordinationRole
from models.events import ChangeEvent, ChannelHandlers
from models.identity import Identity


STAFF_TABLE = "coordination_staff"


def _parse_member(row: dict) -> Optional[CoordinationStaff]:
    try:
        return CoordinationStaff(**row)
    except PydanticValidationError as e:
        logger.warning(f"Skipping unreadable coordination_staff row {row.get('id')}: {e}")
        return None


class CoordinationSync:
    def __init__(self, session, resolver, subscriber, backend, notifier: Notifier):
        self.session = session
        self.resolver = resolver
        self.subscriber = subscriber
        self.backend = backend
        self.notifier = notifier

        self.members: List[CoordinationStaff] = []
        self.permissions: PermissionSet = PermissionSet.empty()
        self.is_loading = False

        self._staff_channel = None
        self._profile_channel = None
        self._staff_handlers = ChannelHandlers(
            on_insert=self._on_staff_insert,
            on_update=self._on_staff_update,
            on_delete=self._on_staff_delete,
        )
        self._profile_handlers = ChannelHandlers(on_update=self._on_profile_update)
        self._scope = 0

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.current_identity()

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    async def start(self):
        identity = self.identity
        if identity is None:
            return

        if identity.condominium_id and self._staff_channel is None:
            self._staff_channel = await self.subscriber.subscribe(
                STAFF_TABLE, identity.condominium_id, self._staff_handlers
            )
        if self._profile_channel is None:
            self._profile_channel = await self.subscriber.subscribe(
                "profiles", None, self._profile_handlers, filter=f"user_id=eq.{identity.user_id}"
            )

        await self.refresh()

    async def stop(self):
        self._scope += 1
        staff, self._staff_channel = self._staff_channel, None
        profile, self._profile_channel = self._profile_channel, None
        await self.subscriber.unsubscribe(staff, self._staff_handlers)
        await self.subscriber.unsubscribe(profile, self._profile_handlers)

    async def refresh(self):
        self.is_loading = True
        try:
            await self._fetch_members()
            await self._recompute_permissions()
        finally:
            self.is_loading = False

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------
    def has_permission(self, key) -> bool:
        return has_permission(self.permissions, key)

    def get_user_coordination_role(self) -> Optional[CoordinationRole]:
        identity = self.identity
        if identity is None:
            return None
        for member in self.members:
            if member.user_id == identity.user_id:
                return member.role
        return None

    def member(self, staff_id: str) -> Optional[CoordinationStaff]:
        return next((m for m in self.members if m.id == staff_id), None)

    # ------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------
    async def _fetch_members(self):
        identity = self.identity
        if identity is None or not identity.condominium_id:
            return

        scope = self._scope
        try:
            rows = await self.backend.select(
                STAFF_TABLE,
                {"condominium_id": identity.condominium_id},
                order="created_at",
                descending=True,
            )
        except BackendError as e:
            logger.error(f"Error fetching coordination members: {e}")
            self.notifier.error("Failed to load coordination members", str(e), retryable=True)
            return

        if scope != self._scope:
            return
        self.members = [m for m in (_parse_member(row) for row in rows) if m is not None]

    async def _recompute_permissions(self, invalidate: bool = False):
        identity = self.identity
        if identity is None:
            self.permissions = PermissionSet.empty()
            return

        scope = self._scope
        if invalidate:
            self.resolver.invalidate(identity.user_id)
        permissions = await self.resolver.resolve_permissions(identity)

        if scope != self._scope:
            return
        self.permissions = permissions

    def _is_current_user(self, user_id: Optional[str]) -> bool:
        identity = self.identity
        return bool(identity and user_id and user_id == identity.user_id)

    # ------------------------------------------------------------
    # coordination_staff feed
    # ------------------------------------------------------------
    def _on_staff_insert(self, event: ChangeEvent):
        member = _parse_member(event.new_record or {})
        if member is None:
            return
        # Newest first; replace instead of duplicating on replay
        self.members = [member] + [m for m in self.members if m.id != member.id]
        self.notifier.success("New coordination member", member.name)

    async def _on_staff_update(self, event: ChangeEvent):
        member = _parse_member(event.new_record or {})
        if member is None:
            return
        if any(m.id == member.id for m in self.members):
            self.members = [member if m.id == member.id else m for m in self.members]
        else:
            self.members = [member] + self.members

        if self._is_current_user(member.user_id):
            await self._recompute_permissions(invalidate=True)
            self.notifier.success("Your permissions were updated")

    async def _on_staff_delete(self, event: ChangeEvent):
        old = event.old_record or {}
        staff_id = old.get("id")
        user_id = old.get("user_id")
        if user_id is None and staff_id:
            # Without REPLICA IDENTITY FULL the old row only carries the key
            known = self.member(staff_id)
            user_id = known.user_id if known else None

        self.members = [m for m in self.members if m.id != staff_id]

        if self._is_current_user(user_id):
            await self._recompute_permissions(invalidate=True)
            self.notifier.warning("You were removed from coordination")

    # ------------------------------------------------------------
    # profiles feed (current user only)
    # ------------------------------------------------------------
    async def _on_profile_update(self, event: ChangeEvent):
        new = event.new_record or {}
        old = event.old_record or {}
        identity = self.identity
        before = old["coordination_staff_id"] if "coordination_staff_id" in old else (
            identity.coordination_staff_id if identity else None
        )
        if new.get("coordination_staff_id") == before:
            return

        logger.info(
            f"Coordination link changed for {new.get('user_id')}: "
            f"{before} -> {new.get('coordination_staff_id')}"
        )
        await self.session.refresh_profile()
        await self._recompute_permissions(invalidate=True)
        self.notifier.success("Your coordination profile was updated")
