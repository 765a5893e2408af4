# sync/session.py

"""
Session store: the current authenticated identity and its profile.

State machine::

    anonymous -> authenticating -> authenticated -> anonymous

A failed profile fetch keeps the store ``authenticated`` with
``identity.profile is None``. Callers treat that as "profile loading or
missing", which is different from "not signed in" (``identity is None``).
"""

import asyncio
import json
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from core.config import settings
from core.errors import (
    AuthError,
    BackendError,
    CondoSyncError,
    ValidationError,
    is_session_missing,
)
from core.logging_config import logger
from core.notifications import Notifier
from models.enums import Role, SessionState
from models.identity import Identity, License, Profile


IdentityListener = Callable[[Optional[Identity]], None]


class MemoryStorage:
    """Process-local stand-in for browser storage (same get/set/remove surface)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


async def _no_reload() -> None:
    logger.info("Sign-out complete; no reload hook configured")


class SessionStore:
    def __init__(
        self,
        backend,
        storage: Optional[MemoryStorage] = None,
        notifier: Optional[Notifier] = None,
        reload: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.backend = backend
        self.storage = storage if storage is not None else MemoryStorage()
        self.notifier = notifier or Notifier()
        self.reload = reload or _no_reload

        self.state = SessionState.anonymous
        self._identity: Optional[Identity] = None
        self._user_id: Optional[str] = None
        self._email: Optional[str] = None

        # Bumped every time a session is applied or cleared; async work started
        # under an older generation must not write its result.
        self._generation = 0

        self._auth_subscription = None
        self._pending: set = set()
        self._listeners: List[IdentityListener] = []
        self._sign_out_hooks: List[Callable[[], Awaitable[None]]] = []

    # ============================================================
    # Lifecycle
    # ============================================================
    async def initialize(self) -> Optional[Identity]:
        """
        Restore a persisted session, if any. Never raises: any failure ends
        in the anonymous state.
        """
        self._discard_corrupt_token()
        self.state = SessionState.authenticating

        try:
            # Listen first so a transition during startup is not missed
            self._auth_subscription = self.backend.on_auth_state_change(self._on_auth_state_change)
            session = await self.backend.get_session()
        except CondoSyncError as e:
            logger.error(f"Session retrieval error: {e}")
            self.storage.clear()
            self._clear_identity()
            return None

        await self._apply_session(session)
        return self._identity

    async def teardown(self):
        self._generation += 1
        if self._auth_subscription is not None:
            try:
                self._auth_subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to drop auth subscription: {e}")
            self._auth_subscription = None

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    # ============================================================
    # Reads
    # ============================================================
    def current_identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def profile(self) -> Optional[Profile]:
        return self._identity.profile if self._identity else None

    def is_coordination_member(self) -> bool:
        return bool(self._identity and self._identity.coordination_staff_id)

    # ============================================================
    # Listeners
    # ============================================================
    def add_listener(self, listener: IdentityListener):
        """``listener(identity)`` runs after every identity replacement."""
        self._listeners.append(listener)

    def on_sign_out(self, hook: Callable[[], Awaitable[None]]):
        self._sign_out_hooks.append(hook)

    # ============================================================
    # Profile
    # ============================================================
    async def refresh_profile(self) -> Optional[Identity]:
        if not self._user_id:
            return None

        generation = self._generation
        profile = await self._fetch_profile(self._user_id)

        if generation != self._generation:
            logger.debug("Dropping profile refresh started under a previous session")
            return self._identity

        if profile is not None:
            self._set_identity(Identity.from_user(self._user_id, self._email, profile))
            logger.info(
                f"Profile refreshed: role={profile.role} "
                f"coordination_staff_id={profile.coordination_staff_id}"
            )
        return self._identity

    async def ensure_profile(
        self,
        user_id: str,
        attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        backoff: Optional[float] = None,
    ) -> Profile:
        """
        Wait for the profile row the registration trigger creates.
        Polls with exponential backoff and gives up after ``attempts``.
        """
        attempts = attempts or settings.PROFILE_POLL_ATTEMPTS
        delay = settings.PROFILE_POLL_INITIAL_DELAY if initial_delay is None else initial_delay
        backoff = backoff or settings.PROFILE_POLL_BACKOFF

        for attempt in range(1, attempts + 1):
            profile = await self._fetch_profile(user_id)
            if profile is not None:
                return profile
            if attempt < attempts:
                logger.debug(f"Profile for {user_id} not there yet (attempt {attempt}/{attempts})")
                await asyncio.sleep(delay)
                delay *= backoff

        raise BackendError(
            f"Profile for user {user_id} was not created in time",
            code="PROFILE_TIMEOUT",
        )

    # ============================================================
    # License
    # ============================================================
    async def check_license(self, today: Optional[date] = None) -> bool:
        identity = self._identity
        if identity is not None and identity.role == Role.super_admin:
            return True

        if identity is None or not identity.condominium_id:
            return False

        try:
            row = await self.backend.select(
                "licenses",
                {"condominium_id": identity.condominium_id},
                columns="status, end_date",
                single=True,
            )
        except BackendError as e:
            logger.error(f"Error checking license: {e}")
            return False

        if not row:
            return False

        try:
            license = License(**row)
        except PydanticValidationError as e:
            logger.error(f"Unreadable license row for {identity.condominium_id}: {e}")
            return False

        return license.is_valid_on(today or date.today())

    # ============================================================
    # Sign in / up / out
    # ============================================================
    async def sign_in(self, email: str, password: str) -> Optional[Identity]:
        if not email or not password:
            raise ValidationError("Email and password are required", field_name="email" if not email else "password")

        self.state = SessionState.authenticating
        try:
            response = await self.backend.sign_in(email.strip().lower(), password)
        except CondoSyncError:
            self._clear_identity()
            raise

        await self._apply_session(getattr(response, "session", None))
        return self._identity

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> Profile:
        """
        Register and wait for the server-side trigger to create the profile.
        Returns the profile; raises ``BackendError(code="PROFILE_TIMEOUT")``
        if it never appears.
        """
        if not email or not password:
            raise ValidationError("Email and password are required", field_name="email" if not email else "password")

        response = await self.backend.sign_up(email.strip().lower(), password, metadata)
        user = getattr(response, "user", None)
        if user is None:
            raise AuthError("Sign-up returned no user")

        profile = await self.ensure_profile(user.id)

        session = getattr(response, "session", None)
        if session is not None:
            await self._apply_session(session)
        return profile

    async def sign_out(self) -> bool:
        """
        Invalidate the backend session and clear local state.

        Local clearing always happens, even when the backend call fails.
        Returns True when the backend confirmed (or the session had already
        expired), False when only the local state was cleared.
        """
        remote_ok = True
        try:
            await self.backend.sign_out()
        except CondoSyncError as e:
            if is_session_missing(e):
                logger.info("Session already expired, cleared local state")
            else:
                logger.error(f"Logout error: {e}")
                remote_ok = False
        finally:
            self.storage.remove_item(settings.AUTH_STORAGE_KEY)
            self.storage.clear()
            self._clear_identity()

        for hook in list(self._sign_out_hooks):
            try:
                await hook()
            except Exception as e:
                logger.error(f"Sign-out hook failed: {e}", exc_info=True)

        if remote_ok:
            self.notifier.success("Session ended", "See you soon!")
        else:
            self.notifier.info("Session ended locally", "The session was cleared on this device")

        await self.reload()
        return remote_ok

    # ============================================================
    # Internals
    # ============================================================
    def _discard_corrupt_token(self):
        stored = self.storage.get_item(settings.AUTH_STORAGE_KEY)
        if stored is None:
            return
        try:
            json.loads(stored)
        except (TypeError, ValueError):
            logger.warning("Stored auth token is corrupt; clearing persisted state")
            self.storage.clear()

    def _on_auth_state_change(self, event: str, session: Any):
        logger.info(f"Auth state change: {event} {getattr(getattr(session, 'user', None), 'id', None)}")
        task = asyncio.ensure_future(self._apply_session(session))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _apply_session(self, session: Any):
        user = getattr(session, "user", None) if session is not None else None
        if user is None:
            self._clear_identity()
            return

        self._generation += 1
        generation = self._generation
        same_user = user.id == self._user_id
        self._user_id = user.id
        self._email = getattr(user, "email", None)
        self._persist(session)

        # Keep the known profile on token refreshes; otherwise show "loading"
        if not (same_user and self.profile is not None):
            self._set_identity(Identity.from_user(user.id, self._email, None))
        self.state = SessionState.authenticated

        profile = await self._fetch_profile(user.id)
        if generation != self._generation:
            logger.debug(f"Dropping profile fetched for superseded session of {user.id}")
            return

        if profile is not None or not same_user:
            self._set_identity(Identity.from_user(user.id, self._email, profile))

    def _persist(self, session: Any):
        token = getattr(session, "access_token", None)
        if token:
            self.storage.set_item(
                settings.AUTH_STORAGE_KEY,
                json.dumps({"access_token": token, "user_id": self._user_id}),
            )

    async def _fetch_profile(self, user_id: str) -> Optional[Profile]:
        try:
            row = await self.backend.select("profiles", {"user_id": user_id}, single=True)
        except BackendError as e:
            logger.error(f"Error fetching profile: {e}")
            return None

        if not row:
            return None

        try:
            return Profile(**row)
        except PydanticValidationError as e:
            logger.error(f"Unreadable profile row for {user_id}: {e}")
            return None

    def _set_identity(self, identity: Optional[Identity]):
        self._identity = identity
        for listener in list(self._listeners):
            try:
                listener(identity)
            except Exception as e:
                logger.error(f"Identity listener failed: {e}", exc_info=True)

    def _clear_identity(self):
        self._generation += 1
        self._user_id = None
        self._email = None
        self.state = SessionState.anonymous
        if self._identity is not None:
            self._set_identity(None)
