from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, List, Optional

from jatemp.events import AdapterEvent

EventSink = Callable[[AdapterEvent], Any]


class BleAdapter(ABC):
    """
    The capabilities of the local Bluetooth stack the driver relies on.

    Every command is fire-and-forget: it returns immediately and its outcome is reported later
    as an AdapterEvent passed to the registered event sink. Events caused by a command are always
    emitted after that command was issued.
    """

    def __init__(self):
        self._event_sink: Optional[EventSink] = None

    def set_event_sink(self, event_sink: Optional[EventSink]) -> None:
        """
        Sets the callable receiving every event of this adapter.
        Args:
            event_sink (Optional[EventSink]): The receiver, f.e. ConnectionStateMachine.post. None to mute the adapter.
        """
        self._event_sink = event_sink

    def start(self) -> None:
        """Begins reporting events, starting with the current adapter state."""

    async def close(self) -> None:
        """Releases scanner and connection resources."""

    def _emit(self, event: AdapterEvent) -> None:
        if self._event_sink:
            self._event_sink(event)

    @abstractmethod
    def start_scan(self, service_uuids: List[str]) -> None:
        """Starts scanning for peripherals advertising one of the given services."""

    @abstractmethod
    def stop_scan(self) -> None:
        ...

    @abstractmethod
    def connect(self, peripheral: Any) -> None:
        ...

    @abstractmethod
    def disconnect(self, peripheral: Any) -> None:
        ...

    @abstractmethod
    def discover_services(self, peripheral: Any, service_uuids: List[str]) -> None:
        """Discovers the services of a connected peripheral, limited to the given UUIDs."""

    @abstractmethod
    def discover_characteristics(self, service: Any) -> None:
        ...

    @abstractmethod
    def read_value(self, characteristic: Any) -> None:
        ...

    @abstractmethod
    def set_notify(self, enabled: bool, characteristic: Any) -> None:
        """Enables or disables value-change notifications for a characteristic."""
