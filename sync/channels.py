# sync/channels.py

"""
Change-feed subscriber.

One Channel per (table, tenant scope, filter). A channel owns exactly one
backend subscription and a consumer task that drains its event queue, so
events of one channel reach handlers in the order the backend sent them.
Nothing is ordered across channels.

On ``error`` a channel is left as is; retrying is up to the caller, who can
watch ``state`` / ``state_history`` or pass ``on_state_change``.
"""

import asyncio
import inspect
from typing import Callable, Dict, List, Optional, Tuple

from core.errors import BackendError, ValidationError
from core.logging_config import logger
from core.notifications import Notifier
from models.enums import ConnectionState
from models.events import ChangeEvent, ChannelHandlers


# Raw realtime status → channel state
_STATUS_MAP = {
    "SUBSCRIBED": ConnectionState.subscribed,
    "CHANNEL_ERROR": ConnectionState.error,
    "TIMED_OUT": ConnectionState.error,
    "CLOSED": ConnectionState.closed,
}

ChannelKey = Tuple[str, Optional[str], str]


def default_filter(tenant_scope: str) -> str:
    return f"condominium_id=eq.{tenant_scope}"


class Channel:
    def __init__(
        self,
        table: str,
        tenant_scope: Optional[str],
        filter: str,
        notifier: Optional[Notifier] = None,
        on_state_change: Optional[Callable[["Channel", ConnectionState], None]] = None,
    ):
        self.table = table
        self.tenant_scope = tenant_scope
        self.filter = filter
        self.name = f"{table}-{tenant_scope or filter}"
        self.handler_set: List[ChannelHandlers] = []
        self.state = ConnectionState.connecting
        self.state_history: List[ConnectionState] = [ConnectionState.connecting]
        self.handle = None
        self.delivered = 0

        self._notifier = notifier
        self._on_state_change = on_state_change
        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    @property
    def key(self) -> ChannelKey:
        return (self.table, self.tenant_scope, self.filter)

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.closed

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------
    def set_state(self, state: ConnectionState, error: Optional[Exception] = None):
        if state == self.state:
            return

        previous = self.state
        self.state = state
        self.state_history.append(state)

        if state == ConnectionState.error:
            logger.error(f"[REALTIME] Channel {self.name}: {previous} -> {state} ({error or 'no detail'})")
            if self._notifier:
                self._notifier.error(
                    "Real-time sync failed",
                    f"Sync for {self.table} stopped; reload to retry",
                    retryable=True,
                )
        else:
            logger.info(f"[REALTIME] Channel {self.name}: {previous} -> {state}")

        if self._on_state_change:
            self._on_state_change(self, state)

    def on_status(self, status: str, error: Optional[Exception] = None):
        state = _STATUS_MAP.get(str(status).upper())
        if state is None:
            logger.debug(f"[REALTIME] Channel {self.name}: ignoring status {status}")
            return
        # A closed channel stays closed
        if self.is_closed:
            return
        self.set_state(state, error)

    # ------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------
    def deliver(self, payload: dict):
        """Called by the backend for every raw change; enqueue in arrival order."""
        if self.is_closed:
            return
        try:
            event = ChangeEvent.from_payload(payload, tenant_scope=self.tenant_scope)
        except Exception as e:
            logger.warning(f"[REALTIME] Channel {self.name}: unreadable payload dropped: {e}")
            return
        self._queue.put_nowait(event)

    def start(self):
        if self._consumer is None:
            self._consumer = asyncio.ensure_future(self._consume())

    async def _consume(self):
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    async def dispatch(self, event: ChangeEvent):
        logger.debug(f"[REALTIME] {event.event_kind} on {self.table}: {event.record_id}")
        self.delivered += 1

        for handlers in list(self.handler_set):
            handler = handlers.for_kind(event.event_kind)
            if handler is None:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One failing handler must not starve the others or kill the channel
                logger.error(f"[REALTIME] Handler failed on {self.name}: {e}", exc_info=True)

    async def drain(self):
        """Wait until every queued event has been handled."""
        if self._consumer is not None and not self._consumer.done():
            await self._queue.join()

    async def stop(self):
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        # Drop anything still queued: nothing is delivered after close
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class ChangeFeedSubscriber:
    """
    Opens and closes channels against the backend's realtime transport.

    Subscribing twice to the same (table, tenant, filter) shares the channel
    and adds to its handler set; the backend subscription is removed once
    the last handler set is unsubscribed.
    """

    def __init__(self, backend, notifier: Optional[Notifier] = None):
        self.backend = backend
        self.notifier = notifier
        self._channels: Dict[ChannelKey, Channel] = {}

    @property
    def channels(self) -> List[Channel]:
        return list(self._channels.values())

    async def subscribe(
        self,
        table: str,
        tenant_scope: Optional[str],
        handlers: ChannelHandlers,
        filter: Optional[str] = None,
        on_state_change: Optional[Callable[[Channel, ConnectionState], None]] = None,
    ) -> Channel:
        if filter is None:
            if not tenant_scope:
                raise ValidationError(f"Subscribing to {table} needs a tenant scope or a filter", field_name="tenant_scope")
            filter = default_filter(tenant_scope)

        key = (table, tenant_scope, filter)
        channel = self._channels.get(key)
        if channel is not None and not channel.is_closed:
            channel.handler_set.append(handlers)
            return channel

        channel = Channel(table, tenant_scope, filter, notifier=self.notifier, on_state_change=on_state_change)
        channel.handler_set.append(handlers)
        self._channels[key] = channel
        channel.start()

        try:
            channel.handle = await self.backend.subscribe(
                channel.name, table, filter, channel.deliver, channel.on_status
            )
        except BackendError as e:
            channel.set_state(ConnectionState.error, e)
            await channel.stop()
            self._channels.pop(key, None)

        return channel

    async def unsubscribe(self, channel: Optional[Channel], handlers: Optional[ChannelHandlers] = None):
        """
        Remove ``handlers`` from the channel (or all of them when None) and
        close it once no handler set is left. Safe to call repeatedly.
        """
        if channel is None or channel.is_closed:
            return

        if handlers is not None:
            channel.handler_set = [h for h in channel.handler_set if h is not handlers]
            if channel.handler_set:
                return
        else:
            channel.handler_set = []

        if self._channels.get(channel.key) is channel:
            del self._channels[channel.key]

        logger.info(f"[REALTIME] Unsubscribing from {channel.name}")
        channel.set_state(ConnectionState.closed)
        await channel.stop()

        if channel.handle is not None:
            handle, channel.handle = channel.handle, None
            try:
                await self.backend.unsubscribe(handle)
            except BackendError as e:
                # Locally closed either way; the server drops it on disconnect
                logger.warning(f"[REALTIME] Failed to remove channel {channel.name}: {e}")

    async def unsubscribe_all(self):
        for channel in list(self._channels.values()):
            await self.unsubscribe(channel)

    async def drain(self):
        for channel in list(self._channels.values()):
            await channel.drain()
