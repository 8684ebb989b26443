"""
Request framing and response validation for the GoodWe LAN protocols.

Three wire formats are supported:

AA55 (ES/EM/BP families and discovery, UDP)::

    AA 55 | C0 7F | control | function | length | data | checksum (2, BE)

    The checksum is the 16-bit sum of every preceding byte.  Responses
    carry ``AA 55 7F C0`` followed by the response type (control and
    function with bit 7 set), length, data and checksum.  ``data`` holds
    at most 255 bytes.

Modbus RTU over UDP (ET/DT families)::

    request:  addr | 0x03 | register (2) | count (2) | CRC-16 (2, LE)
    response: AA 55 | addr | 0x03 | byte count | data | CRC-16 (2, LE)

    The response CRC covers everything after the AA 55 prefix.

Modbus TCP (``tcp`` / ``modbus`` protocols)::

    PDU: function (0x03 or 0x04) | register (2) | count (2)

    MBAP framing, transaction ids and response correlation are handled by
    pymodbus in :mod:`goodwe_lan.src.transport`; the command only carries
    the read request and checks the number of register bytes returned.

Every command object knows its request bytes and how to validate and strip
its own response, so the handler stays protocol agnostic.  Invalid requests
and validation failures raise :class:`~goodwe_lan.src.errors.FrameError`
(``PROTOCOL_ERROR``).

CHANGELOG:
- 2026-03-14: Modbus TCP framing moved to pymodbus; range-check request fields
- 2026-03-06: Add transaction id matching for Modbus TCP responses
- 2026-03-01: Add Modbus RTU and Modbus TCP read commands
- 2026-02-27: Initial creation with AA55 framing (STORY-103)

TODO:
- None
"""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from goodwe_lan.src.errors import FrameError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

AA55_HEADER = b"\xaa\x55"
AA55_REQUEST_ADDRESSES = b"\xc0\x7f"
"""Source (client, 0xC0) and destination (inverter, 0x7F) addresses."""

AA55_MIN_RESPONSE_LEN = 9
"""Header (2) + addresses (2) + type (2) + length (1) + checksum (2)."""

AA55_MAX_DATA_LEN = 0xFF
"""The length field is a single byte."""

MODBUS_READ_HOLDING = 0x03
MODBUS_READ_INPUT = 0x04
MODBUS_EXCEPTION_BIT = 0x80

MODBUS_MAX_READ_COUNT = 125
"""Largest register count a single Modbus read may request."""

DEFAULT_COMM_ADDR = 0xF7
"""Default Modbus unit id of ET/EH/BT/BH and ES inverters."""

DT_COMM_ADDR = 0x7F
"""Default Modbus unit id of DT/MS/D-NS/XS inverters."""


# ---------------------------------------------------------------------------
# Checksums
# ---------------------------------------------------------------------------


def aa55_checksum(data: bytes) -> int:
    """Return the 16-bit byte sum used by AA55 frames."""
    return sum(data) & 0xFFFF


def _build_crc16_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
        table.append(crc)
    return tuple(table)


_CRC16_TABLE = _build_crc16_table()


def crc16(data: bytes) -> int:
    """Return the Modbus CRC-16 (poly 0xA001, init 0xFFFF) of *data*."""
    crc = 0xFFFF
    for byte in data:
        crc = (crc >> 8) ^ _CRC16_TABLE[(crc ^ byte) & 0xFF]
    return crc


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise FrameError(f"Invalid request {name}: {value} (valid range: {low}-{high})")


def _check_register_read(unit_label: str, unit: int, start_register: int, count: int) -> None:
    _check_range(unit_label, unit, 0, 0xFF)
    _check_range("start register", start_register, 0, 0xFFFF)
    _check_range("register count", count, 1, MODBUS_MAX_READ_COUNT)
    if start_register + count - 1 > 0xFFFF:
        raise FrameError(
            f"Invalid request register window: {start_register} + {count} "
            "registers runs past 0xFFFF"
        )


# ---------------------------------------------------------------------------
# Request builders
# ---------------------------------------------------------------------------


def create_aa55_request(control: int, function: int, data: bytes = b"") -> bytes:
    """Build a complete AA55 request frame.

    Raises:
        FrameError: A control or function code outside 0..255, or more
            than 255 data bytes.
    """
    _check_range("control code", control, 0, 0xFF)
    _check_range("function code", function, 0, 0xFF)
    if len(data) > AA55_MAX_DATA_LEN:
        raise FrameError(
            f"Invalid AA55 request: {len(data)} data bytes exceed the "
            f"{AA55_MAX_DATA_LEN}-byte frame limit"
        )
    frame = (
        AA55_HEADER
        + AA55_REQUEST_ADDRESSES
        + bytes((control, function, len(data)))
        + data
    )
    return frame + struct.pack(">H", aa55_checksum(frame))


def create_rtu_read_request(comm_addr: int, start_register: int, count: int) -> bytes:
    """Build a Modbus RTU "read holding registers" request with CRC."""
    _check_register_read("comm address", comm_addr, start_register, count)
    frame = struct.pack(">BBHH", comm_addr, MODBUS_READ_HOLDING, start_register, count)
    return frame + struct.pack("<H", crc16(frame))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class ProtocolCommand(ABC):
    """A request plus the rules to validate and unwrap its response."""

    request: bytes

    @abstractmethod
    def validate(self, response: bytes) -> None:
        """Raise :class:`FrameError` when *response* is not a valid reply."""

    @abstractmethod
    def extract(self, response: bytes) -> bytes:
        """Return the payload of an already validated *response*."""

    def parse(self, response: bytes) -> bytes:
        """Validate *response* and return its payload."""
        self.validate(response)
        return self.extract(response)


@dataclass(frozen=True)
class Aa55Command(ProtocolCommand):
    """AA55 request identified by its control and function codes.

    Attributes:
        control: Control code (``0x01`` for read commands).
        function: Function code.
        data: Optional request data, at most 255 bytes.
        request: Complete frame, derived from the fields above.
    """

    control: int
    function: int
    data: bytes = b""
    request: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        # frozen=True requires object.__setattr__
        object.__setattr__(
            self, "request", create_aa55_request(self.control, self.function, self.data)
        )

    @classmethod
    def from_payload(cls, payload: bytes) -> Aa55Command:
        """Build a command from raw ``control | function | data`` bytes."""
        if len(payload) < 2:
            raise FrameError(
                f"Invalid AA55 request payload: need control and function bytes, "
                f"got {len(payload)} byte(s)"
            )
        return cls(payload[0], payload[1], bytes(payload[2:]))

    @property
    def response_type(self) -> bytes:
        """Expected response control and function bytes."""
        return bytes((self.control, self.function | 0x80))

    def validate(self, response: bytes) -> None:
        if len(response) < AA55_MIN_RESPONSE_LEN:
            raise FrameError(
                f"Invalid AA55 response: too short ({len(response)} bytes)"
            )
        if response[:2] != AA55_HEADER:
            raise FrameError(f"Invalid AA55 response header: {response[:2].hex()}")
        if response[4:6] != self.response_type:
            raise FrameError(
                f"Invalid AA55 response type: {response[4:6].hex()} "
                f"(expected {self.response_type.hex()})"
            )
        if response[6] != len(response) - AA55_MIN_RESPONSE_LEN:
            raise FrameError(
                f"Invalid AA55 response length: header says {response[6]}, "
                f"frame carries {len(response) - AA55_MIN_RESPONSE_LEN}"
            )
        expected = aa55_checksum(response[:-2])
        (actual,) = struct.unpack(">H", response[-2:])
        if actual != expected:
            raise FrameError(
                f"Invalid AA55 checksum: 0x{actual:04x} (expected 0x{expected:04x})"
            )

    def extract(self, response: bytes) -> bytes:
        return response[7:-2]


@dataclass(frozen=True)
class ModbusRtuReadCommand(ProtocolCommand):
    """Modbus RTU "read holding registers" over UDP.

    Attributes:
        comm_addr: Modbus unit id of the inverter.
        start_register: First register address.
        count: Number of 16-bit registers to read (1..125).
    """

    comm_addr: int
    start_register: int
    count: int
    request: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        object.__setattr__(
            self,
            "request",
            create_rtu_read_request(self.comm_addr, self.start_register, self.count),
        )

    def validate(self, response: bytes) -> None:
        if len(response) < 7:
            raise FrameError(
                f"Invalid Modbus RTU response: too short ({len(response)} bytes)"
            )
        if response[:2] != AA55_HEADER:
            raise FrameError(
                f"Invalid Modbus RTU response header: {response[:2].hex()}"
            )
        function = response[3]
        if function == MODBUS_READ_HOLDING | MODBUS_EXCEPTION_BIT:
            raise FrameError(f"Modbus exception response, code: {response[4]}")
        if function != MODBUS_READ_HOLDING:
            raise FrameError(f"Invalid Modbus RTU response function code: {function}")
        byte_count = response[4]
        if len(response) != byte_count + 7:
            raise FrameError(
                f"Invalid Modbus RTU response length: byte count {byte_count}, "
                f"frame length {len(response)}"
            )
        expected = crc16(response[2:-2])
        (actual,) = struct.unpack("<H", response[-2:])
        if actual != expected:
            raise FrameError(
                f"Invalid Modbus RTU response CRC: 0x{actual:04x} "
                f"(expected 0x{expected:04x})"
            )

    def extract(self, response: bytes) -> bytes:
        return response[5:-2]


@dataclass(frozen=True)
class ModbusTcpReadCommand(ProtocolCommand):
    """Modbus TCP register read, executed through pymodbus.

    ``request`` is the bare PDU.  The transport hands back the register
    words packed big-endian, so a valid response is exactly ``2 * count``
    bytes and is returned unchanged.

    Attributes:
        unit_id: Modbus unit id (device id) of the inverter.
        start_register: First register address.
        count: Number of 16-bit registers to read (1..125).
        function: ``0x03`` (holding) or ``0x04`` (input) registers.
    """

    unit_id: int
    start_register: int
    count: int
    function: int = MODBUS_READ_HOLDING
    request: bytes = field(init=False, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        if self.function not in (MODBUS_READ_HOLDING, MODBUS_READ_INPUT):
            raise FrameError(
                f"Invalid Modbus request function code: {self.function} "
                "(only register reads 0x03 and 0x04 are supported over TCP)"
            )
        _check_register_read("unit id", self.unit_id, self.start_register, self.count)
        object.__setattr__(
            self,
            "request",
            struct.pack(">BHH", self.function, self.start_register, self.count),
        )

    @classmethod
    def from_pdu(cls, pdu: bytes, unit_id: int) -> ModbusTcpReadCommand:
        """Build a read command from a raw ``function | register | count`` PDU."""
        if len(pdu) != 5:
            raise FrameError(
                f"Invalid Modbus request PDU: expected 5 bytes "
                f"(function, register, count), got {len(pdu)}"
            )
        function, start_register, count = struct.unpack(">BHH", pdu)
        return cls(unit_id, start_register, count, function)

    def validate(self, response: bytes) -> None:
        if len(response) != self.count * 2:
            raise FrameError(
                f"Invalid Modbus response byte count: {len(response)} "
                f"(expected {self.count * 2})"
            )

    def extract(self, response: bytes) -> bytes:
        return bytes(response)


# ---------------------------------------------------------------------------
# Well-known AA55 commands
# ---------------------------------------------------------------------------

READ_DEVICE_INFO = Aa55Command(0x01, 0x02)
"""Device version info (ES family); response type ``01 82``."""

DISCOVERY_REQUEST = READ_DEVICE_INFO
"""Broadcast request; every inverter answers with its version info."""

READ_RUNNING_DATA = Aa55Command(0x01, 0x06)
"""Running data block (ES family); response type ``01 86``."""
