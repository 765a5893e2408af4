# sync/residents.py

import inspect
from typing import Awaitable, Callable, List, Optional, Union

from core.errors import ValidationError
from core.logging_config import logger
from core.notifications import Notifier
from models.enums import EventKind
from models.events import ChangeEvent, ChannelHandlers


DataChangeCallback = Callable[[], Union[None, Awaitable[None]]]


class ResidentSync:
    """
    Watches resident-facing tables and calls ``on_data_change`` on any change.

    Scoped either to a whole condominium (residents, profiles and expenses)
    or to one profile row.
    """

    def __init__(
        self,
        subscriber,
        notifier: Notifier,
        on_data_change: Optional[DataChangeCallback] = None,
        condominium_id: Optional[str] = None,
        profile_id: Optional[str] = None,
    ):
        self.subscriber = subscriber
        self.notifier = notifier
        self.on_data_change = on_data_change
        self.condominium_id = condominium_id
        self.profile_id = profile_id

        self._channels: List[tuple] = []
        self._resident_handlers = self._handlers_for(self._on_resident_event)
        self._profile_handlers = self._handlers_for(self._on_profile_event)

    @staticmethod
    def _handlers_for(handler) -> ChannelHandlers:
        return ChannelHandlers(on_insert=handler, on_update=handler, on_delete=handler)

    async def start(self):
        if self._channels:
            return
        if not self.condominium_id and not self.profile_id:
            raise ValidationError("Resident sync needs a condominium or a profile", field_name="condominium_id")

        if self.condominium_id:
            for table, handlers in (
                ("residents", self._resident_handlers),
                ("profiles", self._profile_handlers),
                ("expenses", self._resident_handlers),
            ):
                channel = await self.subscriber.subscribe(table, self.condominium_id, handlers)
                self._channels.append((channel, handlers))
        else:
            channel = await self.subscriber.subscribe(
                "profiles", None, self._profile_handlers, filter=f"id=eq.{self.profile_id}"
            )
            self._channels.append((channel, self._profile_handlers))

    async def stop(self):
        channels, self._channels = self._channels, []
        for channel, handlers in channels:
            await self.subscriber.unsubscribe(channel, handlers)

    async def force_sync(self):
        logger.info("Manual resident sync triggered")
        await self._changed()

    async def _on_resident_event(self, event: ChangeEvent):
        logger.debug(f"Resident data synchronized: {event.event_kind} {event.table} {event.record_id}")
        await self._changed()
        if event.event_kind == EventKind.update:
            self.notifier.info("Resident data synchronized", "Resident information was updated in real time")

    async def _on_profile_event(self, event: ChangeEvent):
        logger.debug(f"Profile data synchronized: {event.event_kind} {event.record_id}")
        await self._changed()

    async def _changed(self):
        if self.on_data_change is None:
            return
        result = self.on_data_change()
        if inspect.isawaitable(result):
            await result
