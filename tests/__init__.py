from types import SimpleNamespace
from typing import List
from unittest.mock import Mock

import pytest

from jatemp.adapter import BleAdapter
from jatemp.const import UUID_CHARACTERISTIC_READING, UUID_SERVICE_THERMOMETER

SERVICE_UUID = UUID_SERVICE_THERMOMETER.lower()
CHARACTERISTIC_UUID = UUID_CHARACTERISTIC_READING.lower()
OTHER_SERVICE_UUID = "0000180a-0000-1000-8000-00805f9b34fb"
OTHER_CHARACTERISTIC_UUID = "00002a29-0000-1000-8000-00805f9b34fb"


def make_characteristic(uuid: str = CHARACTERISTIC_UUID, properties: List[str] = None, handle: int = 42):
    if properties is None:
        properties = ["read", "notify"]
    return SimpleNamespace(uuid=uuid, properties=properties, handle=handle)


def make_service(uuid: str = SERVICE_UUID, characteristics: List = None, handle: int = 40):
    if characteristics is None:
        characteristics = [make_characteristic()]
    return SimpleNamespace(uuid=uuid, characteristics=characteristics, handle=handle)


def make_adapter() -> Mock:
    return Mock(spec=BleAdapter)


@pytest.mark.usefixtures('tmp_path')
class TestBase:
    pass
