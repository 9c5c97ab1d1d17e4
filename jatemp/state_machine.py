import asyncio
import logging
from asyncio import TimerHandle
from collections.abc import Callable
from typing import Any, Awaitable, Dict, List, Optional

from jatemp.adapter import BleAdapter
from jatemp.const import (
    STATUS_CHARACTERISTIC_OK,
    STATUS_CONNECTED,
    STATUS_DEVICE_FOUND,
    STATUS_RESTART_SCAN,
)
from jatemp.device_filter import DeviceFilter
from jatemp.events import (
    AdapterState,
    AdapterStateChanged,
    CharacteristicsDiscovered,
    Connected,
    Disconnected,
    DiscoveryTimedOut,
    Event,
    PeripheralDiscovered,
    ServicesDiscovered,
    ValueUpdated,
)
from jatemp.payload import DecodeError, Reading, decode_payload
from jatemp.session import CONNECTED_STATES, ConnectionSession, ConnectionState, SessionSnapshot
from jatemp.status import StatusListener

# states that wait for the peripheral to answer and may be bounded by the discovery timeout
_TIMED_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.DISCOVERING_SERVICES,
    ConnectionState.DISCOVERING_CHARACTERISTICS,
})


class ConnectionStateMachine:
    """
    Drives the connection to the thermometer: scan, connect, discover the service and characteristic,
    subscribe to notifications and publish accepted readings. Rescans whenever the link is lost.

    Events are processed strictly one at a time, either by posting them to the queue consumed by run()
    or by awaiting handle_event() directly.
    """

    logging = logging.getLogger(__name__)

    def __init__(
        self,
        adapter: BleAdapter,
        device_filter: DeviceFilter = None,
        discovery_timeout: Optional[float] = None,
    ):
        """
        Args:
            adapter (BleAdapter): The Bluetooth stack to issue commands to.
            device_filter (DeviceFilter, optional): Decides which device and characteristic are the target.
                Defaults to a filter for the JATEMP thermometer.
            discovery_timeout (Optional[float]): Seconds a connection or discovery step may take before the
                peripheral is disconnected and scanning restarts. None (default) waits forever.
        Raises:
            ValueError: If discovery_timeout is not positive.
        """
        if discovery_timeout is not None and discovery_timeout <= 0:
            raise ValueError("discovery_timeout must be a positive number of seconds or None")

        self._adapter = adapter
        self._filter = device_filter if device_filter else DeviceFilter()
        self._discovery_timeout = discovery_timeout

        self._session = ConnectionSession()
        self._status: Optional[str] = None
        self._latest_reading: Optional[Reading] = None
        self._status_listeners: List[StatusListener] = []

        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._timeout_handle: Optional[TimerHandle] = None
        self._timeout_generation = 0

        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            AdapterStateChanged: self._on_adapter_state_changed,
            PeripheralDiscovered: self._on_peripheral_discovered,
            Connected: self._on_connected,
            Disconnected: self._on_disconnected,
            ServicesDiscovered: self._on_services_discovered,
            CharacteristicsDiscovered: self._on_characteristics_discovered,
            ValueUpdated: self._on_value_updated,
            DiscoveryTimedOut: self._on_discovery_timed_out,
        }

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def session(self) -> SessionSnapshot:
        return self._session.snapshot()

    @property
    def status(self) -> Optional[str]:
        """The last status text reported to the listeners, None before the first one."""
        return self._status

    @property
    def latest_reading(self) -> Optional[Reading]:
        """The last accepted reading, None if none was received yet."""
        return self._latest_reading

    def add_status_listener(self, listener: StatusListener) -> None:
        """
        Adds a listener that is informed about status changes and accepted readings.
        Args:
            listener (StatusListener): The listener to be added.
        """
        self._status_listeners.append(listener)

    def post(self, event: Event) -> None:
        """
        Queues an event for processing by run(). Safe to call from any thread once run() was started.
        Args:
            event (Event): The event to process.
        """
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        else:
            self._queue.put_nowait(event)

    async def run(self) -> None:
        """
        Processes posted events in arrival order until cancelled.
        """
        self._loop = asyncio.get_running_loop()
        self.logging.debug("event loop started")
        try:
            while True:
                event = await self._queue.get()
                try:
                    await self.handle_event(event)
                finally:
                    self._queue.task_done()
        finally:
            self._cancel_discovery_timeout()
            self.logging.debug("event loop stopped")

    async def reset(self) -> None:
        """
        Forgets the current session and pending events and returns to IDLE,
        so the next POWERED_ON starts scanning again.
        """
        async with self._lock:
            while not self._queue.empty():
                self._queue.get_nowait()
                self._queue.task_done()
            self._session.clear()
            self._transition(ConnectionState.IDLE)

    async def handle_event(self, event: Event) -> None:
        """
        Advances the state machine by a single event.
        Args:
            event (Event): The event emitted by the adapter or by the discovery timer.
        """
        async with self._lock:
            handler = self._handlers.get(type(event))
            if handler is None:
                self.logging.warning(f"ignoring unknown event {event!r}")
                return
            await handler(event)

    async def _on_adapter_state_changed(self, event: AdapterStateChanged):
        if event.state == AdapterState.POWERED_ON:
            if self.state != ConnectionState.IDLE:
                self.logging.debug(f"adapter powered on while {self.state.name}, ignoring")
                return
            self.logging.info("bluetooth adapter powered on, scanning for thermometer...")
            await self._set_status(AdapterState.POWERED_ON.value)
            self._start_scan()
            return

        self.logging.info(f"bluetooth adapter is unavailable: {event.state.value}")
        if self.state != ConnectionState.IDLE:
            self._cancel_discovery_timeout()
            self._session.clear()
            self._transition(ConnectionState.IDLE)
        await self._set_status(event.state.value)

    async def _on_peripheral_discovered(self, event: PeripheralDiscovered):
        if self.state != ConnectionState.SCANNING:
            self.logging.debug(f"ignoring discovered peripheral {event.name} while {self.state.name}")
            return
        if not self._filter.matches_advertisement(event.name):
            if event.name is not None:
                self.logging.debug(f"ignoring device {event.name}")
            return

        self.logging.info(f"found device {event.name}")
        await self._set_status(STATUS_DEVICE_FOUND)
        self._adapter.stop_scan()
        self._session.peripheral = event.peripheral
        self._adapter.connect(event.peripheral)
        self._transition(ConnectionState.CONNECTING)

    async def _on_connected(self, event: Connected):
        if self.state != ConnectionState.CONNECTING:
            self.logging.debug(f"ignoring connection event while {self.state.name}")
            return
        if event.peripheral is not self._session.peripheral:
            self.logging.debug(f"ignoring connection event of stale peripheral {event.peripheral}")
            return

        self.logging.info(f"connected to {self._session.peripheral}")
        await self._set_status(STATUS_CONNECTED)
        self._adapter.discover_services(self._session.peripheral, [self._filter.identity.service_id])
        self._transition(ConnectionState.DISCOVERING_SERVICES)

    async def _on_services_discovered(self, event: ServicesDiscovered):
        if self.state != ConnectionState.DISCOVERING_SERVICES:
            self.logging.debug(f"ignoring discovered services while {self.state.name}")
            return
        if event.error is not None:
            self.logging.warning(f"service discovery failed: {event.error}")
            return

        matched = False
        for service in event.services:
            if self._filter.matches_service(service.uuid):
                self.logging.info(f"found service {service.uuid}")
                self._adapter.discover_characteristics(service)
                matched = True
            else:
                self.logging.debug(f"skipping service {service.uuid}")
        if not matched:
            self.logging.warning(f"{self._session.peripheral} does not offer the thermometer service")
        self._transition(ConnectionState.DISCOVERING_CHARACTERISTICS)

    async def _on_characteristics_discovered(self, event: CharacteristicsDiscovered):
        if self.state != ConnectionState.DISCOVERING_CHARACTERISTICS:
            self.logging.debug(f"ignoring discovered characteristics while {self.state.name}")
            return
        if event.error is not None:
            self.logging.warning(f"characteristic discovery failed: {event.error}")
            return

        target = None
        for characteristic in event.characteristics:
            self._adapter.read_value(characteristic)
            if self._filter.matches_characteristic(characteristic.uuid):
                self.logging.info(f"characteristic OK: {characteristic.uuid}")
                # with several matches the last one iterated is kept
                target = characteristic
                self._session.characteristic = characteristic
                self._adapter.set_notify(True, characteristic)
            else:
                self.logging.debug(f"found characteristic {characteristic.uuid}")

        if target is None:
            self.logging.warning(f"service {event.service.uuid} has no matching characteristic")
            return
        await self._set_status(STATUS_CHARACTERISTIC_OK)
        self._transition(ConnectionState.SUBSCRIBED)

    async def _on_value_updated(self, event: ValueUpdated):
        if self.state not in (ConnectionState.DISCOVERING_CHARACTERISTICS, ConnectionState.SUBSCRIBED):
            self.logging.debug(f"ignoring value update while {self.state.name}")
            return
        if event.error is not None:
            self.logging.debug(f"value update failed: {event.error}")
            return
        if event.data is None:
            return

        try:
            reading = decode_payload(event.data)
        except DecodeError as e:
            self.logging.debug(f"dropping notification: {e}")
            return

        if not self._filter.matches_characteristic(event.characteristic.uuid):
            return
        if not reading.accepted:
            self.logging.debug(f"dropping reading without marker: {reading.raw_text!r}")
            return

        self.logging.info(f"reading: {reading.raw_text}")
        self._latest_reading = reading
        for listener in self._status_listeners:
            if listener.on_reading:
                await self._call_listener(listener.on_reading, reading)

    async def _on_disconnected(self, event: Disconnected):
        if self.state not in CONNECTED_STATES:
            self.logging.debug(f"ignoring disconnect while {self.state.name}")
            return

        if event.error is not None:
            self.logging.info(f"disconnected from {self._session.peripheral}: {event.error}")
        else:
            self.logging.info(f"disconnected from {self._session.peripheral}")
        self._cancel_discovery_timeout()
        self._session.clear()
        self._transition(ConnectionState.DISCONNECTED)

        await self._set_status(STATUS_RESTART_SCAN)
        self._start_scan()

    async def _on_discovery_timed_out(self, event: DiscoveryTimedOut):
        if event.generation != self._timeout_generation or self.state not in _TIMED_STATES:
            return

        self.logging.warning(
            f"no progress after {self._discovery_timeout} seconds while {self.state.name}, disconnecting..."
        )
        self._adapter.disconnect(self._session.peripheral)

    def _start_scan(self):
        self._adapter.start_scan([self._filter.identity.service_id])
        self._transition(ConnectionState.SCANNING)

    def _transition(self, state: ConnectionState):
        self.logging.debug(f"{self._session.state.name} -> {state.name}")
        self._session.state = state
        if state in _TIMED_STATES:
            self._schedule_discovery_timeout()
        else:
            self._cancel_discovery_timeout()

    def _schedule_discovery_timeout(self):
        self._cancel_discovery_timeout()
        if self._discovery_timeout is None:
            return
        self._timeout_generation += 1
        event = DiscoveryTimedOut(self._timeout_generation)
        self._timeout_handle = asyncio.get_running_loop().call_later(self._discovery_timeout, self.post, event)

    def _cancel_discovery_timeout(self):
        if self._timeout_handle:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        self._timeout_generation += 1

    async def _set_status(self, status: str):
        self._status = status
        for listener in self._status_listeners:
            if listener.on_status:
                await self._call_listener(listener.on_status, status)

    async def _call_listener(self, callback: Callable[[Any], Awaitable[Any]], value: Any):
        try:
            await callback(value)
        except Exception:
            self.logging.exception(f"status listener failed to handle {value!r}")
