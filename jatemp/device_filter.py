from typing import Optional

from bleak.uuids import normalize_uuid_str

from jatemp.const import BLUETOOTH_DEVICE_NAME, UUID_CHARACTERISTIC_READING, UUID_SERVICE_THERMOMETER


def _normalize(uuid: str) -> Optional[str]:
    try:
        return normalize_uuid_str(str(uuid))
    except ValueError:
        return None


class DeviceIdentity:
    """
    The one peripheral/characteristic pair this driver targets.
    UUIDs are stored in bleak's normalized (lower case, 128-bit) form.
    """

    def __init__(
        self,
        service_id: str = UUID_SERVICE_THERMOMETER,
        characteristic_id: str = UUID_CHARACTERISTIC_READING,
        name_prefix: str = BLUETOOTH_DEVICE_NAME,
    ):
        if not name_prefix:
            raise ValueError("name_prefix must not be empty")
        self._service_id = normalize_uuid_str(service_id)
        self._characteristic_id = normalize_uuid_str(characteristic_id)
        self._name_prefix = name_prefix

    @property
    def service_id(self) -> str:
        return self._service_id

    @property
    def characteristic_id(self) -> str:
        return self._characteristic_id

    @property
    def name_prefix(self) -> str:
        return self._name_prefix

    def __eq__(self, other):
        if isinstance(other, DeviceIdentity):
            return (self.service_id, self.characteristic_id, self.name_prefix) == (
                other.service_id, other.characteristic_id, other.name_prefix)
        return False

    def __hash__(self):
        return hash((self.service_id, self.characteristic_id, self.name_prefix))

    def __str__(self):
        return (f"DeviceIdentity(service_id={self.service_id}, "
                f"characteristic_id={self.characteristic_id}, name_prefix={self.name_prefix})")


class DeviceFilter:
    """
    Predicates deciding which advertisement, service and characteristic belong to the target device.
    """

    def __init__(self, identity: DeviceIdentity = None):
        self.identity = identity if identity else DeviceIdentity()

    def matches_advertisement(self, name: Optional[str]) -> bool:
        """
        Checks whether an advertised device name belongs to the target device.
        Args:
            name (Optional[str]): The advertised name, None if the device did not advertise one.
        Returns:
            bool: True if the name contains the expected name prefix.
        """
        if name is None:
            return False
        return self.identity.name_prefix in name

    def matches_service(self, uuid: str) -> bool:
        return _normalize(uuid) == self.identity.service_id

    def matches_characteristic(self, uuid: str) -> bool:
        return _normalize(uuid) == self.identity.characteristic_id
