import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak.exc import BleakError

from jatemp.bleak_adapter import BleakAdapter, adapter_state_from_error
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
from tests import (
    OTHER_CHARACTERISTIC_UUID,
    OTHER_SERVICE_UUID,
    SERVICE_UUID,
    TestBase,
    make_characteristic,
    make_service,
)


async def _settle(adapter: BleakAdapter):
    """Waits until every queued command of the adapter has finished."""
    while adapter._tasks:
        await asyncio.gather(*list(adapter._tasks), return_exceptions=True)


def _mock_client() -> MagicMock:
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.read_gatt_char = AsyncMock()
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()
    client.is_connected = True
    return client


class TestBleakAdapter(TestBase):

    def setup_method(self):
        self.events = []
        self.under_test = BleakAdapter(probe_interval=0)
        self.under_test.set_event_sink(self.events.append)
        self.device = SimpleNamespace(address="00:11:22:33:44:55", name="JATEMP-01")

    async def _connect(self, client_class: MagicMock) -> MagicMock:
        client = _mock_client()
        client_class.return_value = client
        self.under_test.connect(self.device)
        await _settle(self.under_test)
        self.events.clear()
        return client

    async def test_start_reports_powered_on(self):
        # WHEN
        self.under_test.start()

        # THEN
        assert self.events == [AdapterStateChanged(AdapterState.POWERED_ON)]

    @patch("jatemp.bleak_adapter.BleakScanner")
    async def test_start_scan_filters_by_service(self, scanner_class):
        # GIVEN
        scanner_class.return_value.start = AsyncMock()

        # WHEN
        self.under_test.start_scan([SERVICE_UUID])
        await _settle(self.under_test)

        # THEN
        scanner_class.assert_called_once_with(
            detection_callback=self.under_test._on_detection,
            service_uuids=[SERVICE_UUID],
        )
        scanner_class.return_value.start.assert_awaited_once()
        assert self.events == []

    @patch("jatemp.bleak_adapter.BleakScanner")
    async def test_start_scan_twice_keeps_one_scanner(self, scanner_class):
        # GIVEN
        scanner_class.return_value.start = AsyncMock()

        # WHEN
        self.under_test.start_scan([SERVICE_UUID])
        self.under_test.start_scan([SERVICE_UUID])
        await _settle(self.under_test)

        # THEN
        scanner_class.assert_called_once()

    @patch("jatemp.bleak_adapter.BleakScanner")
    async def test_scan_failure_reports_state_and_retries(self, scanner_class):
        # GIVEN
        scanner_class.return_value.start = AsyncMock(side_effect=BleakError("no adapter"))

        # WHEN
        self.under_test.start_scan([SERVICE_UUID])
        await _settle(self.under_test)
        await asyncio.sleep(0.05)

        # THEN
        assert self.events == [
            AdapterStateChanged(AdapterState.UNKNOWN),
            AdapterStateChanged(AdapterState.POWERED_ON),
        ]

    @patch("jatemp.bleak_adapter.BleakScanner")
    async def test_stop_scan(self, scanner_class):
        # GIVEN
        scanner = scanner_class.return_value
        scanner.start = AsyncMock()
        scanner.stop = AsyncMock()
        self.under_test.start_scan([SERVICE_UUID])

        # WHEN
        self.under_test.stop_scan()
        await _settle(self.under_test)

        # THEN
        scanner.stop.assert_awaited_once()

    async def test_detection_reports_advertised_name(self):
        # WHEN
        self.under_test._on_detection(self.device, SimpleNamespace(local_name="JATEMP-07"))
        self.under_test._on_detection(self.device, SimpleNamespace(local_name=None))

        # THEN
        assert self.events == [
            PeripheralDiscovered(self.device, "JATEMP-07"),
            PeripheralDiscovered(self.device, "JATEMP-01"),
        ]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_connect_reports_connected(self, client_class):
        # GIVEN
        client = _mock_client()
        client_class.return_value = client

        # WHEN
        self.under_test.connect(self.device)
        await _settle(self.under_test)

        # THEN
        client_class.assert_called_once_with(self.device, disconnected_callback=self.under_test._on_disconnected)
        client.connect.assert_awaited_once()
        assert self.events == [Connected(self.device)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_connect_failure_reports_disconnected(self, client_class):
        # GIVEN
        error = BleakError("device not found")
        client = _mock_client()
        client.connect.side_effect = error
        client_class.return_value = client

        # WHEN
        self.under_test.connect(self.device)
        await _settle(self.under_test)

        # THEN
        assert self.events == [Disconnected(self.device, error)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_disconnect_during_connect_drops_late_link(self, client_class):
        # GIVEN
        gate = asyncio.Event()
        client = _mock_client()
        client.connect.side_effect = gate.wait
        client_class.return_value = client
        self.under_test.connect(self.device)
        await asyncio.sleep(0)

        # WHEN
        self.under_test.disconnect(self.device)
        await asyncio.sleep(0)
        gate.set()
        await _settle(self.under_test)

        # THEN
        assert self.events == [Disconnected(self.device)]
        assert client.disconnect.await_count == 2
        assert self.under_test._client is None

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_link_loss_reports_disconnected(self, client_class):
        # GIVEN
        client = await self._connect(client_class)

        # WHEN
        self.under_test._on_disconnected(client)
        self.under_test._on_disconnected(client)

        # THEN
        assert self.events == [Disconnected(self.device)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_disconnect_reports_once(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        client.disconnect.side_effect = lambda: self.under_test._on_disconnected(client)

        # WHEN
        self.under_test.disconnect(self.device)
        await _settle(self.under_test)

        # THEN
        client.disconnect.assert_awaited_once()
        assert self.events == [Disconnected(self.device)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_disconnect_without_callback_still_reports(self, client_class):
        # GIVEN
        client = await self._connect(client_class)

        # WHEN
        self.under_test.disconnect(self.device)
        await _settle(self.under_test)

        # THEN
        client.disconnect.assert_awaited_once()
        assert self.events == [Disconnected(self.device)]

    async def test_disconnect_unknown_peripheral_is_ignored(self):
        # WHEN
        self.under_test.disconnect(self.device)
        await _settle(self.under_test)

        # THEN
        assert self.events == []

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_discover_services_filters_by_uuid(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        service = make_service()
        client.services = [make_service(uuid=OTHER_SERVICE_UUID), service]

        # WHEN
        self.under_test.discover_services(self.device, [SERVICE_UUID.upper()])
        await _settle(self.under_test)

        # THEN
        assert self.events == [ServicesDiscovered(self.device, [service])]

    async def test_discover_services_without_connection_reports_error(self):
        # WHEN
        self.under_test.discover_services(self.device, [SERVICE_UUID])
        await _settle(self.under_test)

        # THEN
        assert len(self.events) == 1
        assert self.events[0].services == []
        assert isinstance(self.events[0].error, BleakError)

    async def test_discover_characteristics(self):
        # GIVEN
        characteristics = [make_characteristic(), make_characteristic(uuid=OTHER_CHARACTERISTIC_UUID)]
        service = make_service(characteristics=characteristics)

        # WHEN
        self.under_test.discover_characteristics(service)
        await _settle(self.under_test)

        # THEN
        assert self.events == [CharacteristicsDiscovered(service, characteristics)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_read_value_reports_value(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        client.read_gatt_char.return_value = bytearray(b"23.5 PW\r\n")
        characteristic = make_characteristic()

        # WHEN
        self.under_test.read_value(characteristic)
        await _settle(self.under_test)

        # THEN
        client.read_gatt_char.assert_awaited_once_with(characteristic)
        assert self.events == [ValueUpdated(characteristic, b"23.5 PW\r\n")]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_read_value_skips_unreadable_characteristic(self, client_class):
        # GIVEN
        client = await self._connect(client_class)

        # WHEN
        self.under_test.read_value(make_characteristic(properties=["notify"]))
        await _settle(self.under_test)

        # THEN
        client.read_gatt_char.assert_not_awaited()
        assert self.events == []

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_read_failure_reports_error(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        error = BleakError("read not permitted")
        client.read_gatt_char.side_effect = error
        characteristic = make_characteristic()

        # WHEN
        self.under_test.read_value(characteristic)
        await _settle(self.under_test)

        # THEN
        assert self.events == [ValueUpdated(characteristic, None, error)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_read_failure_on_closed_link_reports_error(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        error = EOFError()
        client.read_gatt_char.side_effect = error
        characteristic = make_characteristic()

        # WHEN
        self.under_test.read_value(characteristic)
        await _settle(self.under_test)

        # THEN
        assert self.events == [ValueUpdated(characteristic, None, error)]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_notifications_are_reported(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        characteristic = make_characteristic()

        # WHEN
        self.under_test.set_notify(True, characteristic)
        await _settle(self.under_test)
        callback = client.start_notify.await_args.args[1]
        callback(characteristic, bytearray(b"24.0 PW\r\n"))

        # THEN
        client.start_notify.assert_awaited_once_with(characteristic, self.under_test._on_notification)
        assert self.events == [ValueUpdated(characteristic, b"24.0 PW\r\n")]

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_disable_notifications(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        characteristic = make_characteristic()

        # WHEN
        self.under_test.set_notify(False, characteristic)
        await _settle(self.under_test)

        # THEN
        client.stop_notify.assert_awaited_once_with(characteristic)

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_notify_failure_is_only_logged(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        client.start_notify.side_effect = BleakError("notify not supported")

        # WHEN
        self.under_test.set_notify(True, make_characteristic())
        await _settle(self.under_test)

        # THEN
        assert self.events == []

    @patch("jatemp.bleak_adapter.BleakClient")
    async def test_close_disconnects_silently(self, client_class):
        # GIVEN
        client = await self._connect(client_class)
        client.disconnect.side_effect = lambda: self.under_test._on_disconnected(client)

        # WHEN
        await self.under_test.close()

        # THEN
        client.disconnect.assert_awaited_once()
        assert self.events == []

    @pytest.mark.parametrize("reason_name, expected", [
        ("POWERED_OFF", AdapterState.POWERED_OFF),
        ("NO_BLUETOOTH", AdapterState.UNSUPPORTED),
        ("DENIED_BY_USER", AdapterState.UNAUTHORIZED),
        ("DENIED_BY_SYSTEM", AdapterState.UNAUTHORIZED),
        ("SOMETHING_NEW", AdapterState.UNKNOWN),
    ])
    async def test_adapter_state_from_error(self, reason_name, expected):
        # GIVEN
        error = BleakError("bluetooth not available")
        error.reason = SimpleNamespace(name=reason_name)

        # THEN
        assert adapter_state_from_error(error) == expected

    async def test_adapter_state_from_plain_error(self):
        # THEN
        assert adapter_state_from_error(OSError("no dbus")) == AdapterState.UNKNOWN
