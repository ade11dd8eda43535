"""Relay: local frames -> bus publishes, bus deliveries -> local frames.

Two producer tasks (local frames, bus deliveries) feed one ordered hand-off
queue. The relay loop handles one event at a time and acknowledges it before
that producer pulls its next item, so each side is re-armed only after its
previous event was fully handled. Any terminal event stops the loop; the bus
session is closed exactly once on every exit path.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from busrelay.core.errors import (
    BusClosed,
    BusDeliveryError,
    BusError,
    FrameReadFailed,
    RelayError,
    TransportClosed,
    TransportError,
)
from busrelay.events import (
    BUS,
    LOCAL,
    DeliveryIn,
    FrameIn,
    LocalClosed,
    LocalFailed,
    RelayEvent,
    SubscriptionClosed,
    SubscriptionFailed,
    delivery_in,
    frame_in,
    local_closed,
    local_failed,
    subscription_closed,
    subscription_failed,
)
from busrelay.gateway.bus import BusSession

if TYPE_CHECKING:
    from busrelay.config.schema import RelaySettings
    from busrelay.transport.framing import FrameTransport

SessionFactory = Callable[..., Awaitable[BusSession]]

# (source, (event type, event), ack future or None for terminal events)
_Handoff = asyncio.Queue[tuple[str, tuple[str, RelayEvent], "asyncio.Future[None] | None"]]


class RelayState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Termination:
    """Clean end of a run: one side closed without a fault."""

    reason: str  # "local_closed" | "bus_closed"
    cause: RelayError

    @property
    def clean(self) -> bool:
        return self.cause.clean


class Relay:
    """Drives one FrameTransport and one BusSession until either side ends."""

    def __init__(
        self,
        settings: RelaySettings,
        transport: FrameTransport,
        *,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._session_factory: SessionFactory = session_factory or BusSession.connect
        self._state = RelayState.STARTING
        self.published = 0
        self.forwarded = 0

    @property
    def state(self) -> RelayState:
        return self._state

    async def run(self) -> Termination:
        """Establish the bus session, relay until a terminal event, clean up.

        Returns a Termination when a side closed cleanly; raises the RelayError
        for every fault (startup failures included).
        """
        self._state = RelayState.STARTING
        s = self._settings
        try:
            session = await self._session_factory(
                s.broker_url,
                s.service_name,
                s.identity,
                exchange_name=s.exchange,
                tag_publishes=s.tag_publishes,
                consumer_tag=s.consumer_tag,
            )
        except BaseException:
            self._state = RelayState.TERMINATED
            raise

        try:
            self._state = RelayState.RUNNING
            logger.info("Relay running as {}", s.identity)
            termination = await self._pump(session)
            logger.info("Relay terminated: {}", termination.reason)
            return termination
        except RelayError as exc:
            logger.error("Relay failed: {}", exc)
            raise
        finally:
            self._state = RelayState.TERMINATED
            await session.close()
            logger.debug("Relay stopped (published={}, forwarded={})", self.published, self.forwarded)

    async def _pump(self, session: BusSession) -> Termination:
        handoff: _Handoff = asyncio.Queue()
        producers = [
            asyncio.create_task(self._produce_local(handoff), name="relay-local"),
            asyncio.create_task(self._produce_bus(session, handoff), name="relay-bus"),
        ]
        try:
            while True:
                source, (type_name, evt), ack = await handoff.get()
                logger.trace("Relay event {} from {}", type_name, source)
                outcome = await self._handle(session, evt)
                if outcome is not None:
                    return outcome
                if ack is not None and not ack.done():
                    ack.set_result(None)
        finally:
            for task in producers:
                task.cancel()
            for task in producers:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _handle(self, session: BusSession, evt: RelayEvent) -> Termination | None:
        if isinstance(evt, FrameIn):
            await session.publish(evt.payload)
            self.published += 1
            return None
        if isinstance(evt, DeliveryIn):
            await self._transport.encode(evt.payload)
            self.forwarded += 1
            return None
        if isinstance(evt, LocalClosed):
            return Termination("local_closed", TransportClosed("Local side closed", code="local_closed"))
        if isinstance(evt, SubscriptionClosed):
            return Termination("bus_closed", BusClosed("Bus subscription closed", code="bus_closed"))
        if isinstance(evt, (LocalFailed, SubscriptionFailed)):
            raise evt.error
        raise TypeError(f"Unexpected relay event: {evt!r}")

    @staticmethod
    async def _hand_off(
        handoff: _Handoff,
        source: str,
        item: tuple[str, RelayEvent],
        *,
        terminal: bool = False,
    ) -> None:
        if terminal:
            handoff.put_nowait((source, item, None))
            return
        ack: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        handoff.put_nowait((source, item, ack))
        await ack

    async def _produce_local(self, handoff: _Handoff) -> None:
        try:
            async with contextlib.aclosing(self._transport.decode()) as frames:
                async for payload in frames:
                    await self._hand_off(handoff, LOCAL, frame_in(payload))
        except TransportError as exc:
            await self._hand_off(handoff, LOCAL, local_failed(exc), terminal=True)
            return
        except Exception as exc:
            err = FrameReadFailed(f"Error reading from local side: {exc}", code="read_failed", original_error=exc)
            await self._hand_off(handoff, LOCAL, local_failed(err), terminal=True)
            return
        await self._hand_off(handoff, LOCAL, local_closed(), terminal=True)

    async def _produce_bus(self, session: BusSession, handoff: _Handoff) -> None:
        try:
            async with contextlib.aclosing(session.deliveries()) as deliveries:
                async for payload in deliveries:
                    await self._hand_off(handoff, BUS, delivery_in(payload))
        except BusError as exc:
            await self._hand_off(handoff, BUS, subscription_failed(exc), terminal=True)
            return
        except Exception as exc:
            err = BusDeliveryError(f"Bus consumer error: {exc}", code="delivery_error", original_error=exc)
            await self._hand_off(handoff, BUS, subscription_failed(err), terminal=True)
            return
        await self._hand_off(handoff, BUS, subscription_closed(), terminal=True)
