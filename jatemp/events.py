from enum import Enum
from typing import Any, List, Optional


class AdapterState(Enum):
    """State of the local Bluetooth adapter. Values are the status texts reported to listeners."""

    UNKNOWN = "Unknown"
    RESETTING = "Resetting"
    UNSUPPORTED = "Unsupported"
    UNAUTHORIZED = "Unauthorized"
    POWERED_OFF = "Powered off"
    POWERED_ON = "Powered on"


class Event:
    """Base class of every event processed by the ConnectionStateMachine."""

    def __repr__(self):
        fields = ", ".join(f"{key}={value!r}" for key, value in vars(self).items())
        return f"{type(self).__name__}({fields})"

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    __hash__ = None


class AdapterEvent(Event):
    """Base class of every event a BleAdapter emits."""


class AdapterStateChanged(AdapterEvent):
    def __init__(self, state: AdapterState):
        self.state = state


class PeripheralDiscovered(AdapterEvent):
    def __init__(self, peripheral: Any, name: Optional[str]):
        self.peripheral = peripheral
        self.name = name


class Connected(AdapterEvent):
    def __init__(self, peripheral: Any):
        self.peripheral = peripheral


class Disconnected(AdapterEvent):
    def __init__(self, peripheral: Any, error: Optional[Exception] = None):
        self.peripheral = peripheral
        self.error = error


class ServicesDiscovered(AdapterEvent):
    def __init__(self, peripheral: Any, services: List[Any], error: Optional[Exception] = None):
        self.peripheral = peripheral
        self.services = services
        self.error = error


class CharacteristicsDiscovered(AdapterEvent):
    def __init__(self, service: Any, characteristics: List[Any], error: Optional[Exception] = None):
        self.service = service
        self.characteristics = characteristics
        self.error = error


class ValueUpdated(AdapterEvent):
    def __init__(self, characteristic: Any, data: Optional[bytes], error: Optional[Exception] = None):
        self.characteristic = characteristic
        self.data = data
        self.error = error


class DiscoveryTimedOut(Event):
    """
    Not an adapter event: posted by the state machine to itself when a connection or discovery step
    did not progress in time.
    Only the timer of the given generation is still relevant, older ones are ignored.
    """

    def __init__(self, generation: int):
        self.generation = generation
