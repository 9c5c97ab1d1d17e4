from enum import Enum
from typing import Any, Optional


class ConnectionState(Enum):
    """Enum for the phases of a connection to the thermometer."""

    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    DISCOVERING_CHARACTERISTICS = "discovering_characteristics"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


# states in which a peripheral handle is held and a disconnect triggers a rescan
CONNECTED_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.DISCOVERING_SERVICES,
    ConnectionState.DISCOVERING_CHARACTERISTICS,
    ConnectionState.SUBSCRIBED,
})


class SessionSnapshot:
    """Read-only copy of a ConnectionSession."""

    def __init__(self, state: ConnectionState, peripheral: Any, characteristic: Any):
        self._state = state
        self._peripheral = peripheral
        self._characteristic = characteristic

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def peripheral(self) -> Any:
        return self._peripheral

    @property
    def characteristic(self) -> Any:
        return self._characteristic

    def __str__(self):
        return (f"SessionSnapshot(state={self.state.name}, peripheral={self.peripheral}, "
                f"characteristic={self.characteristic})")


class ConnectionSession:
    """
    The connection to the one targeted peripheral.
    Owned and mutated exclusively by the ConnectionStateMachine, it lives as long as the machine does.
    """

    def __init__(self):
        self.state: ConnectionState = ConnectionState.IDLE
        self.peripheral: Optional[Any] = None
        self.characteristic: Optional[Any] = None

    def clear(self) -> None:
        """Forgets the peripheral and characteristic handles."""
        self.peripheral = None
        self.characteristic = None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            peripheral=self.peripheral,
            characteristic=self.characteristic,
        )
