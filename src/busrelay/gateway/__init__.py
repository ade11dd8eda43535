"""Gateway: bus session and relay loop."""

from busrelay.gateway.bus import BusSession
from busrelay.gateway.relay import Relay, RelayState, Termination

__all__ = ["BusSession", "Relay", "RelayState", "Termination"]
