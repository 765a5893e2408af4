# sync/permissions.py

"""
Resolves the effective coordination permissions of the signed-in user.

Resolutions can be triggered from several independent streams (identity
change, staff-table update, profile update) and may complete out of order.
Each resolution takes a sequence number when it *starts*; a completion is
only committed if no later-started resolution for the same user has already
been committed. The last-started resolution therefore always wins.
"""

import itertools
from typing import Dict, Optional, Tuple

from core.errors import BackendError
from core.logging_config import logger
from core.permission_helpers import has_permission, has_any_permission, role_grants_everything
from models.coordination import PermissionSet
from models.identity import Identity


PERMISSIONS_RPC = "get_coordination_member_permissions"

__all__ = [
    "PermissionResolver",
    "PERMISSIONS_RPC",
    "has_permission",
    "has_any_permission",
]


class PermissionResolver:
    def __init__(self, backend):
        self.backend = backend
        self._sequence = itertools.count(1)

        # (user_id, coordination_staff_id) → resolved set
        self._cache: Dict[Tuple[str, Optional[str]], PermissionSet] = {}
        # user_id → highest sequence committed
        self._applied: Dict[str, int] = {}
        # user_id → latest committed set (whatever staff link it was resolved for)
        self._current: Dict[str, PermissionSet] = {}

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------
    async def resolve_permissions(self, identity: Optional[Identity]) -> PermissionSet:
        if identity is None:
            return PermissionSet.empty()

        # Role supersedes whatever the staff record says; no backend call
        if role_grants_everything(identity):
            return PermissionSet.full()

        cached = self._cache.get(identity.cache_key)
        if cached is not None:
            return cached

        return await self.recompute(identity)

    async def recompute(self, identity: Identity) -> PermissionSet:
        """Fetch from the backend regardless of the cache."""
        if role_grants_everything(identity):
            return PermissionSet.full()

        seq = self.begin(identity.user_id)
        permissions = await self._fetch(identity.user_id)
        self.commit(identity, seq, permissions)
        return self.current(identity.user_id)

    def current(self, user_id: str) -> PermissionSet:
        """Latest committed set for ``user_id`` (empty before the first commit)."""
        return self._current.get(user_id, PermissionSet.empty())

    def invalidate(self, user_id: str):
        """Forget every cached resolution for ``user_id``."""
        stale = [key for key in self._cache if key[0] == user_id]
        for key in stale:
            del self._cache[key]
        if stale:
            logger.debug(f"Permission cache invalidated for user {user_id}")

    def clear(self):
        self._cache.clear()
        self._current.clear()
        self._applied.clear()

    # ------------------------------------------------------------
    # Sequence discipline
    # ------------------------------------------------------------
    def begin(self, user_id: str) -> int:
        """Take the next sequence number for a resolution that is starting now."""
        return next(self._sequence)

    def commit(self, identity: Identity, seq: int, permissions: PermissionSet) -> bool:
        """
        Apply a finished resolution. Returns False (and changes nothing)
        when a later-started resolution for the same user is already applied.
        """
        user_id = identity.user_id
        if seq < self._applied.get(user_id, 0):
            logger.debug(
                f"Discarding stale permission resolution #{seq} for {user_id} "
                f"(#{self._applied[user_id]} already applied)"
            )
            return False

        self._applied[user_id] = seq
        self._current[user_id] = permissions
        self.invalidate(user_id)
        self._cache[identity.cache_key] = permissions
        return True

    # ------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------
    async def _fetch(self, user_id: str) -> PermissionSet:
        try:
            raw = await self.backend.rpc(PERMISSIONS_RPC, {"_user_id": user_id})
        except BackendError as e:
            # Fail closed
            logger.error(f"Error fetching permissions for {user_id}: {e}")
            return PermissionSet.empty()

        return PermissionSet.from_raw(raw)
