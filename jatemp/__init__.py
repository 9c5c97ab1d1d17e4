from jatemp.client import JatempClient
from jatemp.device_filter import DeviceFilter, DeviceIdentity
from jatemp.payload import DecodeError, InvalidEncodingError, Reading, decode_payload
from jatemp.session import ConnectionState
from jatemp.status import StatusListener

__all__ = [
    "JatempClient",
    "DeviceFilter",
    "DeviceIdentity",
    "DecodeError",
    "InvalidEncodingError",
    "Reading",
    "decode_payload",
    "ConnectionState",
    "StatusListener",
]
