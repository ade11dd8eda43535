"""Relay events: what the local and bus producers hand to the relay loop."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any

from busrelay.core.errors import BusError, TransportError

LOCAL = "local"
BUS = "bus"


@dataclass
class FrameIn:
    """One frame read from the local side."""

    payload: bytes


@dataclass
class LocalClosed:
    """Local byte source reached end-of-stream on a frame boundary."""

    pass


@dataclass
class LocalFailed:
    """Reading the local side failed."""

    error: TransportError


@dataclass
class DeliveryIn:
    """One message delivered on the bus subscription."""

    payload: bytes


@dataclass
class SubscriptionClosed:
    """Bus subscription (or its channel) closed."""

    pass


@dataclass
class SubscriptionFailed:
    """Broker reported a consumer-level error."""

    error: BusError


RelayEvent = FrameIn | LocalClosed | LocalFailed | DeliveryIn | SubscriptionClosed | SubscriptionFailed


def event(type_name: str):
    """Decorator to mark a factory as producing an event with a given type."""

    def decorator(f: Any) -> Any:
        @functools.wraps(f)
        def wrapper(*args: Any, **kwargs: Any) -> tuple[str, object]:
            evt = f(*args, **kwargs)
            return (type_name, evt)

        wrapper.TYPE = type_name  # type: ignore[attr-defined]
        return wrapper

    return decorator


@event("frame_in")
def frame_in(payload: bytes) -> FrameIn:
    return FrameIn(payload=bytes(payload))


@event("local_closed")
def local_closed() -> LocalClosed:
    return LocalClosed()


@event("local_failed")
def local_failed(error: TransportError) -> LocalFailed:
    return LocalFailed(error=error)


@event("delivery_in")
def delivery_in(payload: bytes) -> DeliveryIn:
    return DeliveryIn(payload=bytes(payload))


@event("subscription_closed")
def subscription_closed() -> SubscriptionClosed:
    return SubscriptionClosed()


@event("subscription_failed")
def subscription_failed(error: BusError) -> SubscriptionFailed:
    return SubscriptionFailed(error=error)
