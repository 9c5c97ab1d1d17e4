import logging

from jatemp.const import PAYLOAD_LINE_ENDING, PAYLOAD_MARKER

logger = logging.getLogger(__name__)


class DecodeError(ValueError):
    """Raised when a characteristic value cannot be turned into a Reading."""


class InvalidEncodingError(DecodeError):
    """Raised when a characteristic value is not valid UTF-8."""


class Reading:
    """
    A single decoded value of the thermometer characteristic.

    A reading is only meaningful to the user when it is accepted,
    i.e. when its text contains the payload marker.
    """

    def __init__(self, raw_text: str, marker: str = PAYLOAD_MARKER):
        self.raw_text = raw_text
        self.accepted = marker in raw_text

    def __eq__(self, other):
        if isinstance(other, Reading):
            return self.raw_text == other.raw_text and self.accepted == other.accepted
        if isinstance(other, str):
            return self.raw_text == other
        return False

    def __hash__(self):
        return hash(self.raw_text)

    def __str__(self):
        return self.raw_text

    def __repr__(self):
        return f"Reading(raw_text={self.raw_text!r}, accepted={self.accepted})"


def decode_payload(data: bytes | bytearray, marker: str = PAYLOAD_MARKER) -> Reading:
    """
    Decodes the raw value of the thermometer characteristic.

    Args:
        data (bytes | bytearray): The raw characteristic value.
        marker (str): Substring a reading must contain to be accepted. Defaults to PAYLOAD_MARKER.
    Returns:
        Reading: The decoded reading, accepted or not.
    Raises:
        InvalidEncodingError: If the value is not valid UTF-8.
    """
    try:
        text = bytes(data).decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidEncodingError(f"payload is not valid UTF-8: {bytes(data)!r}") from e

    text = text.replace(PAYLOAD_LINE_ENDING, "")
    logger.debug(f"decoded payload {text!r}")
    return Reading(raw_text=text, marker=marker)
