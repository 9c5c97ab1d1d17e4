import asyncio
import logging
from asyncio import Task
from collections.abc import Callable
from typing import Any, Awaitable, List, Optional, Set

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.backends.service import BleakGATTService
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

from jatemp.adapter import BleAdapter
from jatemp.const import ADAPTER_PROBE_INTERVAL
from jatemp.events import (
    AdapterState,
    AdapterStateChanged,
    CharacteristicsDiscovered,
    Connected,
    Disconnected,
    PeripheralDiscovered,
    ServicesDiscovered,
    ValueUpdated,
)

# names of bleak.exc.BleakBluetoothNotAvailableReason members
_UNAVAILABLE_REASONS = {
    "NO_BLUETOOTH": AdapterState.UNSUPPORTED,
    "POWERED_OFF": AdapterState.POWERED_OFF,
    "DENIED_BY_USER": AdapterState.UNAUTHORIZED,
    "DENIED_BY_SYSTEM": AdapterState.UNAUTHORIZED,
}


def adapter_state_from_error(error: Exception) -> AdapterState:
    """
    Maps an error raised while starting a scan to the adapter state it indicates.
    Args:
        error (Exception): The error raised by bleak or the OS.
    Returns:
        AdapterState: The matching state, AdapterState.UNKNOWN if the error carries no availability reason.
    """
    reason = getattr(error, "reason", None)
    return _UNAVAILABLE_REASONS.get(getattr(reason, "name", None), AdapterState.UNKNOWN)


class BleakAdapter(BleAdapter):
    """
    BleAdapter backed by bleak. Supports a single peripheral at a time.

    Commands are queued as tasks on the running event loop and executed one after another,
    except for disconnect() which is executed immediately so it can abort a hanging connection attempt.
    """

    logging = logging.getLogger(__name__)

    def __init__(self, probe_interval: float = ADAPTER_PROBE_INTERVAL):
        """
        Args:
            probe_interval (float): Seconds to wait before announcing the adapter as powered on again
                after scanning could not be started. Defaults to ADAPTER_PROBE_INTERVAL.
        """
        super().__init__()
        self._probe_interval = probe_interval

        self._scanner: Optional[BleakScanner] = None
        self._client: Optional[BleakClient] = None
        self._peripheral: Optional[BLEDevice] = None

        self._command_lock = asyncio.Lock()
        self._tasks: Set[Task] = set()
        self._probe_task: Optional[Task] = None

    def start(self) -> None:
        """
        Announces the adapter as powered on. Whether it really is shows up once scanning is started.
        """
        self.logging.info("bluetooth adapter started")
        self._emit(AdapterStateChanged(AdapterState.POWERED_ON))

    async def close(self) -> None:
        """
        Stops scanning, cancels pending commands and disconnects from the current peripheral.
        No events are emitted for the disconnection.
        """
        if self._probe_task:
            self._probe_task.cancel()
            self._probe_task = None
        for task in list(self._tasks):
            task.cancel()

        scanner = self._scanner
        self._scanner = None
        if scanner:
            try:
                await scanner.stop()
            except BleakError as e:
                self.logging.error(f"error while stopping scanner: {e}")

        client = self._client
        self._client = None
        self._peripheral = None
        if client and client.is_connected:
            try:
                await client.disconnect()
            except BleakError as e:
                self.logging.error(f"error while disconnecting: {e}")

    def start_scan(self, service_uuids: List[str]) -> None:
        self._spawn(self._start_scan, list(service_uuids))

    def stop_scan(self) -> None:
        self._spawn(self._stop_scan)

    def connect(self, peripheral: BLEDevice) -> None:
        self._spawn(self._connect, peripheral)

    def disconnect(self, peripheral: BLEDevice) -> None:
        self._spawn(self._disconnect, peripheral, serialized=False)

    def discover_services(self, peripheral: BLEDevice, service_uuids: List[str]) -> None:
        self._spawn(self._discover_services, peripheral, list(service_uuids))

    def discover_characteristics(self, service: BleakGATTService) -> None:
        self._spawn(self._discover_characteristics, service)

    def read_value(self, characteristic: BleakGATTCharacteristic) -> None:
        self._spawn(self._read_value, characteristic)

    def set_notify(self, enabled: bool, characteristic: BleakGATTCharacteristic) -> None:
        self._spawn(self._set_notify, enabled, characteristic)

    def _spawn(self, command: Callable[..., Awaitable[Any]], *args, serialized: bool = True) -> Task:
        async def run():
            if serialized:
                async with self._command_lock:
                    await command(*args)
            else:
                await command(*args)

        task = asyncio.ensure_future(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _start_scan(self, service_uuids: List[str]):
        if self._scanner is not None:
            self.logging.debug("already scanning")
            return

        scanner = BleakScanner(
            detection_callback=self._on_detection,
            service_uuids=service_uuids,
        )
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            state = adapter_state_from_error(e)
            self.logging.error(f"failed to start scanning ({state.value}): {e}")
            self._emit(AdapterStateChanged(state))
            self._schedule_probe()
            return

        self._scanner = scanner
        self.logging.info(f"scanning for devices advertising {service_uuids}...")

    async def _stop_scan(self):
        scanner = self._scanner
        self._scanner = None
        if scanner is None:
            return
        try:
            await scanner.stop()
            self.logging.debug("scanning stopped")
        except BleakError as e:
            self.logging.error(f"error while stopping scanner: {e}")

    async def _connect(self, peripheral: BLEDevice):
        client = BleakClient(peripheral, disconnected_callback=self._on_disconnected)
        self._client = client
        self._peripheral = peripheral

        self.logging.info(f"connecting to {peripheral.address}...")
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self.logging.error(f"failed to connect to {peripheral.address}: {e}")
            if self._client is client:
                self._forget_client()
                self._emit(Disconnected(peripheral, e))
            return

        if self._client is not client:
            # disconnect() gave up on this attempt while it was still connecting
            self.logging.info(f"connection attempt to {peripheral.address} was cancelled, disconnecting...")
            try:
                await client.disconnect()
            except (BleakError, asyncio.TimeoutError, OSError) as e:
                self.logging.error(f"error while disconnecting from {peripheral.address}: {e}")
            return

        self.logging.info(f"connected to {peripheral.address}")
        self._emit(Connected(peripheral))

    async def _disconnect(self, peripheral: BLEDevice):
        client = self._client
        if client is None or self._peripheral is not peripheral:
            self.logging.debug(f"not connected to {peripheral}, nothing to disconnect")
            return

        self.logging.info(f"disconnecting from {peripheral.address}...")
        try:
            await client.disconnect()
        except BleakError as e:
            self.logging.error(f"error while disconnecting from {peripheral.address}: {e}")

        if self._client is client:
            # bleak does not call the disconnected callback if the link never came up
            self._forget_client()
            self._emit(Disconnected(peripheral))

    async def _discover_services(self, peripheral: BLEDevice, service_uuids: List[str]):
        client = self._client
        if client is None or self._peripheral is not peripheral:
            self._emit(ServicesDiscovered(peripheral, [], BleakError(f"not connected to {peripheral}")))
            return

        wanted = {normalize_uuid_str(uuid) for uuid in service_uuids}
        try:
            # bleak performs the GATT discovery while connecting
            services = [
                service for service in client.services
                if not wanted or normalize_uuid_str(service.uuid) in wanted
            ]
        except BleakError as e:
            self.logging.error(f"service discovery failed: {e}")
            self._emit(ServicesDiscovered(peripheral, [], e))
            return

        for service in services:
            self.logging.debug(f"Service: {service.uuid} ({service.handle})")
        self._emit(ServicesDiscovered(peripheral, services))

    async def _discover_characteristics(self, service: BleakGATTService):
        characteristics = list(service.characteristics)
        for characteristic in characteristics:
            self.logging.debug(
                f"  Characteristic: {characteristic.uuid} ({characteristic.handle}): {characteristic.properties}")
        self._emit(CharacteristicsDiscovered(service, characteristics))

    async def _read_value(self, characteristic: BleakGATTCharacteristic):
        client = self._client
        if client is None:
            self.logging.debug(f"not connected, cannot read {characteristic.uuid}")
            return
        if "read" not in characteristic.properties:
            self.logging.debug(f"characteristic {characteristic.uuid} is not readable")
            return

        try:
            data = await client.read_gatt_char(characteristic)
        except (BleakError, asyncio.TimeoutError, OSError, EOFError) as e:
            self.logging.error(f"error while reading {characteristic.uuid}: {e}")
            self._emit(ValueUpdated(characteristic, None, e))
            return
        self._emit(ValueUpdated(characteristic, bytes(data)))

    async def _set_notify(self, enabled: bool, characteristic: BleakGATTCharacteristic):
        client = self._client
        if client is None:
            self.logging.debug(f"not connected, cannot change notifications of {characteristic.uuid}")
            return

        try:
            if enabled:
                await client.start_notify(characteristic, self._on_notification)
                self.logging.info(f"subscribed to {characteristic.uuid}")
            else:
                await client.stop_notify(characteristic)
                self.logging.info(f"unsubscribed from {characteristic.uuid}")
        except BleakError as e:
            self.logging.error(f"error while changing notifications of {characteristic.uuid}: {e}")

    def _on_detection(self, device: BLEDevice, advertisement_data: AdvertisementData):
        self._emit(PeripheralDiscovered(device, advertisement_data.local_name or device.name))

    def _on_notification(self, sender: BleakGATTCharacteristic, data: bytearray):
        self._emit(ValueUpdated(sender, bytes(data)))

    def _on_disconnected(self, client: BleakClient):
        """
        Callback function that is called by bleak when the client is disconnected.
        Args:
            client (BleakClient): The BleakClient instance that was disconnected.
        """
        if client is not self._client:
            return
        peripheral = self._peripheral
        self._forget_client()
        self.logging.info(f"disconnected from {client.address}")
        self._emit(Disconnected(peripheral))

    def _forget_client(self):
        self._client = None
        self._peripheral = None

    def _schedule_probe(self):
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.ensure_future(self._probe())

    async def _probe(self):
        """
        Waits before announcing the adapter as powered on again, which makes the state machine retry scanning.
        """
        await asyncio.sleep(self._probe_interval)
        self.logging.info("retrying bluetooth adapter...")
        self._emit(AdapterStateChanged(AdapterState.POWERED_ON))
