"""
GoodWe family tables, sensor definitions and register decoding.

Each supported family maps to a :class:`FamilyConfig` describing how to read
its runtime block (AA55 running-data command or a Modbus register range),
where its device-info block lives and which sensors the block carries.

Sensor offsets are register addresses for Modbus families and byte offsets
into the AA55 payload for the ES group.  All multi-byte values are big-endian.
Unsigned values equal to the all-ones sentinel (0xFFFF / 0xFFFFFFFF) mean
"not available" and are omitted from decoded output.

References:
    - GoodWe ET/EH/BT/BH Modbus protocol (registers 35000-35225)
    - GoodWe DT/MS/D-NS/XS Modbus protocol (registers 30001-30172)
    - https://github.com/marcelblijleven/goodwe

CHANGELOG:
- 2026-03-10: Add family detection from serial number and model name tags
- 2026-03-07: Skip phase 2/3 sensors on single-phase families
- 2026-03-03: Initial creation (STORY-106)

TODO:
- None
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from goodwe_lan.src.errors import ErrorCode, FrameError, InverterError
from goodwe_lan.src.frames import DEFAULT_COMM_ADDR, DT_COMM_ADDR

logger = logging.getLogger(__name__)

SensorValue = float | int | str
RuntimeData = dict[str, SensorValue]

# ---------------------------------------------------------------------------
# Data definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SensorDef:
    """Definition of a single decoded value.

    Attributes:
        id: Unique identifier used as the output dict key.
        offset: Register address (Modbus families) or byte offset (AA55).
        type: Decoder name, one of :data:`SENSOR_TYPES`.
        unit: Engineering unit (``"V"``, ``"A"``, ``"W"``, ``"kWh"``...).
            Empty when the decoder's default unit applies.
        name: Human-readable label.
        kind: Circuit the value belongs to (``PV``, ``AC``, ``BAT``,
            ``GRID``, ``UPS``) or ``None``.
        phase: AC phase (1-3).  Phase 2/3 values only exist on
            three-phase inverters.
        scale: Divisor for the ``Decimal`` type.
    """

    id: str
    offset: int
    type: str
    unit: str = ""
    name: str = ""
    kind: str | None = None
    phase: int = 1
    scale: int = 1

    def __post_init__(self) -> None:  # noqa: D105
        if self.type not in SENSOR_TYPES:
            msg = f"Sensor '{self.id}': unknown type '{self.type}'"
            raise ValueError(msg)
        if not self.unit:
            # frozen=True requires object.__setattr__
            object.__setattr__(self, "unit", SENSOR_TYPES[self.type].unit)

    @property
    def size(self) -> int:
        """Number of payload bytes the value occupies."""
        return SENSOR_TYPES[self.type].size


@dataclass(frozen=True, slots=True)
class FamilyConfig:
    """How to talk to one inverter family.

    Attributes:
        family: Family code (``ET``, ``DT``, ``ES``...).
        protocol: ``"modbus"`` (register reads) or ``"aa55"``.
        sensors: Runtime sensor table.
        register_start: First runtime register (Modbus families).
        register_count: Number of runtime registers (Modbus families).
        device_info_start: First device-info register (Modbus families).
        device_info_count: Number of device-info registers.
        comm_addr: Default Modbus unit id.
        three_phase: Whether phase 2/3 sensors are reported.
    """

    family: str
    protocol: str
    sensors: tuple[SensorDef, ...]
    register_start: int = 0
    register_count: int = 0
    device_info_start: int = 0
    device_info_count: int = 0
    comm_addr: int = DEFAULT_COMM_ADDR
    three_phase: bool = False


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Decoder:
    size: int
    unit: str
    read: Callable[[bytes, SensorDef], SensorValue | None] = field(repr=False)


def _u8(buf: bytes) -> int:
    return buf[0]


def _u16(buf: bytes) -> int | None:
    (val,) = struct.unpack(">H", buf[:2])
    return None if val == 0xFFFF else val


def _s16(buf: bytes) -> int:
    (val,) = struct.unpack(">h", buf[:2])
    return val


def _u32(buf: bytes) -> int | None:
    (val,) = struct.unpack(">I", buf[:4])
    return None if val == 0xFFFFFFFF else val


def _s32(buf: bytes) -> int:
    (val,) = struct.unpack(">i", buf[:4])
    return val


def _scaled(reader: Callable[[bytes], int | None], divisor: int) -> Callable:
    def read(buf: bytes, _sensor: SensorDef) -> float | None:
        val = reader(buf)
        return None if val is None else round(val / divisor, 3)

    return read


def _raw(reader: Callable[[bytes], int | None]) -> Callable:
    def read(buf: bytes, _sensor: SensorDef) -> int | None:
        return reader(buf)

    return read


def _read_decimal(buf: bytes, sensor: SensorDef) -> float | None:
    val = _u16(buf)
    return None if val is None else round(val / sensor.scale, 3)


def _read_timestamp(buf: bytes, _sensor: SensorDef) -> str | None:
    year, month, day, hour, minute, second = buf[:6]
    try:
        return datetime(2000 + year, month, day, hour, minute, second).isoformat()
    except ValueError:
        return None


SENSOR_TYPES: dict[str, _Decoder] = {
    "Voltage": _Decoder(2, "V", _scaled(_u16, 10)),
    "Current": _Decoder(2, "A", _scaled(_u16, 10)),
    "CurrentS": _Decoder(2, "A", _scaled(_s16, 10)),
    "Frequency": _Decoder(2, "Hz", _scaled(_u16, 100)),
    "Power": _Decoder(2, "W", _raw(_u16)),
    "PowerS": _Decoder(2, "W", _raw(_s16)),
    "Power4": _Decoder(4, "W", _raw(_u32)),
    "Power4S": _Decoder(4, "W", _raw(_s32)),
    "Energy": _Decoder(2, "kWh", _scaled(_u16, 10)),
    "Energy4": _Decoder(4, "kWh", _scaled(_u32, 10)),
    "Temp": _Decoder(2, "C", _scaled(_s16, 10)),
    "Byte": _Decoder(1, "", _raw(_u8)),
    "Integer": _Decoder(2, "", _raw(_u16)),
    "Long": _Decoder(4, "", _raw(_u32)),
    "Decimal": _Decoder(2, "", _read_decimal),
    "Timestamp": _Decoder(6, "", _read_timestamp),
}
"""Decoder per sensor type: payload size, default unit, read function."""


# ---------------------------------------------------------------------------
# ET group (ET, EH, BT, BH, GEH): Modbus registers 35100-35224
# ---------------------------------------------------------------------------

_ET_SENSORS: tuple[SensorDef, ...] = (
    SensorDef("timestamp", 35100, "Timestamp", name="Timestamp"),
    SensorDef("vpv1", 35103, "Voltage", name="PV1 Voltage", kind="PV"),
    SensorDef("ipv1", 35104, "Current", name="PV1 Current", kind="PV"),
    SensorDef("ppv1", 35105, "Power4", name="PV1 Power", kind="PV"),
    SensorDef("vpv2", 35107, "Voltage", name="PV2 Voltage", kind="PV"),
    SensorDef("ipv2", 35108, "Current", name="PV2 Current", kind="PV"),
    SensorDef("ppv2", 35109, "Power4", name="PV2 Power", kind="PV"),
    SensorDef("vpv3", 35111, "Voltage", name="PV3 Voltage", kind="PV"),
    SensorDef("ipv3", 35112, "Current", name="PV3 Current", kind="PV"),
    SensorDef("ppv3", 35113, "Power4", name="PV3 Power", kind="PV"),
    SensorDef("vpv4", 35115, "Voltage", name="PV4 Voltage", kind="PV"),
    SensorDef("ipv4", 35116, "Current", name="PV4 Current", kind="PV"),
    SensorDef("ppv4", 35117, "Power4", name="PV4 Power", kind="PV"),
    SensorDef("vac1", 35121, "Voltage", name="On-grid L1 Voltage", kind="AC"),
    SensorDef("iac1", 35122, "Current", name="On-grid L1 Current", kind="AC"),
    SensorDef("fac1", 35123, "Frequency", name="On-grid L1 Frequency", kind="AC"),
    SensorDef("vac2", 35126, "Voltage", name="On-grid L2 Voltage", kind="AC", phase=2),
    SensorDef("iac2", 35127, "Current", name="On-grid L2 Current", kind="AC", phase=2),
    SensorDef("fac2", 35128, "Frequency", name="On-grid L2 Frequency", kind="AC", phase=2),
    SensorDef("vac3", 35131, "Voltage", name="On-grid L3 Voltage", kind="AC", phase=3),
    SensorDef("iac3", 35132, "Current", name="On-grid L3 Current", kind="AC", phase=3),
    SensorDef("fac3", 35133, "Frequency", name="On-grid L3 Frequency", kind="AC", phase=3),
    SensorDef("grid_mode", 35136, "Integer", name="Grid Mode", kind="GRID"),
    SensorDef("pac", 35138, "PowerS", name="Total Inverter Power", kind="AC"),
    SensorDef("active_power", 35140, "PowerS", name="Active Power", kind="GRID"),
    SensorDef("reactive_power", 35142, "PowerS", "var", "Reactive Power", "GRID"),
    SensorDef("apparent_power", 35144, "PowerS", "VA", "Apparent Power", "GRID"),
    SensorDef("load_ptotal", 35172, "PowerS", name="Load Total", kind="AC"),
    SensorDef("temperature_air", 35174, "Temp", name="Inverter Temperature (Air)"),
    SensorDef("temperature_module", 35175, "Temp", name="Inverter Temperature (Module)"),
    SensorDef("temperature", 35176, "Temp", name="Inverter Temperature (Radiator)"),
    SensorDef("bus_voltage", 35178, "Voltage", name="Bus Voltage"),
    SensorDef("battery_voltage", 35180, "Voltage", name="Battery Voltage", kind="BAT"),
    SensorDef("battery_current", 35181, "CurrentS", name="Battery Current", kind="BAT"),
    SensorDef("battery_power", 35182, "Power4S", name="Battery Power", kind="BAT"),
    SensorDef("battery_mode", 35184, "Integer", name="Battery Mode code", kind="BAT"),
    SensorDef("warning_code", 35185, "Integer", name="Warning code"),
    SensorDef("safety_country", 35186, "Integer", name="Safety Country code"),
    SensorDef("work_mode", 35187, "Integer", name="Work Mode code"),
    SensorDef("operation_mode", 35188, "Integer", name="Operation Mode code"),
    SensorDef("error_codes", 35189, "Long", name="Error Codes"),
    SensorDef("e_total", 35191, "Energy4", name="Total PV Generation", kind="PV"),
    SensorDef("e_day", 35193, "Energy4", name="Today's PV Generation", kind="PV"),
    SensorDef("e_total_exp", 35195, "Energy4", name="Total Energy (export)", kind="AC"),
    SensorDef("h_total", 35197, "Long", "h", "Hours Total", "PV"),
    SensorDef("e_day_exp", 35199, "Energy", name="Today Energy (export)", kind="AC"),
    SensorDef("e_total_imp", 35200, "Energy4", name="Total Energy (import)", kind="AC"),
    SensorDef("e_day_imp", 35202, "Energy", name="Today Energy (import)", kind="AC"),
    SensorDef("e_load_total", 35203, "Energy4", name="Total Load", kind="AC"),
    SensorDef("e_load_day", 35205, "Energy", name="Today Load", kind="AC"),
    SensorDef("e_bat_charge_total", 35206, "Energy4", name="Total Battery Charge", kind="BAT"),
    SensorDef("e_bat_charge_day", 35208, "Energy", name="Today Battery Charge", kind="BAT"),
    SensorDef("e_bat_discharge_total", 35209, "Energy4", name="Total Battery Discharge", kind="BAT"),
    SensorDef("e_bat_discharge_day", 35211, "Energy", name="Today Battery Discharge", kind="BAT"),
    SensorDef("diagnose_result", 35220, "Long", name="Diag Status Code"),
)

# ---------------------------------------------------------------------------
# DT group (DT, MS, D-NS, XS): Modbus registers 30100-30172
# ---------------------------------------------------------------------------

_DT_SENSORS: tuple[SensorDef, ...] = (
    SensorDef("timestamp", 30100, "Timestamp", name="Timestamp"),
    SensorDef("vpv1", 30103, "Voltage", name="PV1 Voltage", kind="PV"),
    SensorDef("ipv1", 30104, "Current", name="PV1 Current", kind="PV"),
    SensorDef("vpv2", 30105, "Voltage", name="PV2 Voltage", kind="PV"),
    SensorDef("ipv2", 30106, "Current", name="PV2 Current", kind="PV"),
    SensorDef("vpv3", 30107, "Voltage", name="PV3 Voltage", kind="PV"),
    SensorDef("ipv3", 30108, "Current", name="PV3 Current", kind="PV"),
    SensorDef("vline1", 30115, "Voltage", name="On-grid L1-L2 Voltage", kind="AC"),
    SensorDef("vline2", 30116, "Voltage", name="On-grid L2-L3 Voltage", kind="AC", phase=2),
    SensorDef("vline3", 30117, "Voltage", name="On-grid L3-L1 Voltage", kind="AC", phase=3),
    SensorDef("vac1", 30118, "Voltage", name="On-grid L1 Voltage", kind="AC"),
    SensorDef("vac2", 30119, "Voltage", name="On-grid L2 Voltage", kind="AC", phase=2),
    SensorDef("vac3", 30120, "Voltage", name="On-grid L3 Voltage", kind="AC", phase=3),
    SensorDef("iac1", 30121, "Current", name="On-grid L1 Current", kind="AC"),
    SensorDef("iac2", 30122, "Current", name="On-grid L2 Current", kind="AC", phase=2),
    SensorDef("iac3", 30123, "Current", name="On-grid L3 Current", kind="AC", phase=3),
    SensorDef("fac1", 30124, "Frequency", name="On-grid L1 Frequency", kind="AC"),
    SensorDef("fac2", 30125, "Frequency", name="On-grid L2 Frequency", kind="AC", phase=2),
    SensorDef("fac3", 30126, "Frequency", name="On-grid L3 Frequency", kind="AC", phase=3),
    SensorDef("pac", 30127, "Power4", name="Total Power", kind="AC"),
    SensorDef("work_mode", 30129, "Integer", name="Work Mode code"),
    SensorDef("error_codes", 30130, "Long", name="Error Codes"),
    SensorDef("warning_code", 30132, "Integer", name="Warning code"),
    SensorDef("apparent_power", 30133, "Power4", "VA", "Apparent Power", "AC"),
    SensorDef("reactive_power", 30135, "Power4S", "var", "Reactive Power", "AC"),
    SensorDef("power_factor", 30139, "Decimal", name="Power Factor", scale=1000),
    SensorDef("temperature", 30141, "Temp", name="Inverter Temperature"),
    SensorDef("temperature_heatsink", 30142, "Temp", name="Heatsink Temperature"),
    SensorDef("e_day", 30144, "Energy", name="Today's PV Generation", kind="PV"),
    SensorDef("e_total", 30145, "Energy4", name="Total PV Generation", kind="PV"),
    SensorDef("h_total", 30147, "Long", "h", "Hours Total", "PV"),
    SensorDef("safety_country", 30149, "Integer", name="Safety Country code"),
    SensorDef("bus_voltage", 30163, "Voltage", name="Bus Voltage"),
    SensorDef("nbus_voltage", 30164, "Voltage", name="NBus Voltage"),
    SensorDef("rssi", 30172, "Integer", name="RSSI"),
)

# ---------------------------------------------------------------------------
# ES group (ES, EM, BP): AA55 running data, byte offsets
# ---------------------------------------------------------------------------

_ES_SENSORS: tuple[SensorDef, ...] = (
    SensorDef("vpv1", 0, "Voltage", name="PV1 Voltage", kind="PV"),
    SensorDef("ipv1", 2, "Current", name="PV1 Current", kind="PV"),
    SensorDef("pv1_mode", 4, "Byte", name="PV1 Mode code", kind="PV"),
    SensorDef("vpv2", 5, "Voltage", name="PV2 Voltage", kind="PV"),
    SensorDef("ipv2", 7, "Current", name="PV2 Current", kind="PV"),
    SensorDef("pv2_mode", 9, "Byte", name="PV2 Mode code", kind="PV"),
    SensorDef("battery_voltage", 10, "Voltage", name="Battery Voltage", kind="BAT"),
    SensorDef("battery_status", 14, "Integer", name="Battery Status", kind="BAT"),
    SensorDef("battery_temperature", 16, "Temp", name="Battery Temperature", kind="BAT"),
    SensorDef("battery_charge_limit", 20, "Integer", "A", "Battery Charge Limit", "BAT"),
    SensorDef("battery_discharge_limit", 22, "Integer", "A", "Battery Discharge Limit", "BAT"),
    SensorDef("battery_error", 24, "Integer", name="Battery Error Code", kind="BAT"),
    SensorDef("battery_soc", 26, "Byte", "%", "Battery State of Charge", "BAT"),
    SensorDef("battery_soh", 29, "Byte", "%", "Battery State of Health", "BAT"),
    SensorDef("battery_mode", 30, "Byte", name="Battery Mode code", kind="BAT"),
    SensorDef("battery_warning", 31, "Integer", name="Battery Warning", kind="BAT"),
    SensorDef("meter_status", 33, "Byte", name="Meter Status code", kind="AC"),
    SensorDef("vac1", 34, "Voltage", name="On-grid Voltage", kind="AC"),
    SensorDef("iac1", 36, "Current", name="On-grid Current", kind="AC"),
    SensorDef("fac1", 40, "Frequency", name="On-grid Frequency", kind="AC"),
    SensorDef("grid_mode", 42, "Byte", name="Work Mode code", kind="GRID"),
    SensorDef("backup_voltage", 43, "Voltage", name="Back-up Voltage", kind="UPS"),
    SensorDef("backup_current", 45, "Current", name="Back-up Current", kind="UPS"),
    SensorDef("pac", 47, "Power", name="On-grid Power", kind="AC"),
    SensorDef("backup_frequency", 49, "Frequency", name="Back-up Frequency", kind="UPS"),
    SensorDef("load_mode", 51, "Byte", name="Load Mode code", kind="AC"),
    SensorDef("work_mode", 52, "Byte", name="Energy Mode code"),
    SensorDef("temperature", 53, "Temp", name="Inverter Temperature"),
    SensorDef("error_codes", 55, "Long", name="Error Codes"),
    SensorDef("e_total", 59, "Energy4", name="Total PV Generation", kind="PV"),
    SensorDef("h_total", 63, "Long", "h", "Hours Total", "PV"),
    SensorDef("e_day", 67, "Energy", name="Today's PV Generation", kind="PV"),
    SensorDef("e_load_day", 69, "Energy", name="Today's Load", kind="AC"),
    SensorDef("e_load_total", 71, "Energy4", name="Total Load", kind="AC"),
    SensorDef("total_power", 75, "PowerS", name="Total Power", kind="AC"),
    SensorDef("effective_work_mode", 77, "Byte", name="Effective Work Mode code"),
    SensorDef("grid_in_out", 80, "Byte", name="On-grid Mode code", kind="GRID"),
    SensorDef("backup_power", 81, "Power", name="Back-up Power", kind="UPS"),
    SensorDef("meter_power_factor", 83, "Decimal", name="Meter Power Factor", kind="GRID", scale=1000),
    SensorDef("diagnose_result", 89, "Long", name="Diag Status Code"),
)


# ---------------------------------------------------------------------------
# Family table
# ---------------------------------------------------------------------------

ET_GROUP = ("ET", "EH", "BT", "BH", "GEH")
DT_GROUP = ("DT", "MS", "D-NS", "XS")
ES_GROUP = ("ES", "EM", "BP")

THREE_PHASE_FAMILIES = frozenset({"ET", "BT", "DT", "MS", "D-NS"})
"""Families that report phase 2/3 values."""


def _build_family_configs() -> dict[str, FamilyConfig]:
    configs: dict[str, FamilyConfig] = {}
    for family in ET_GROUP:
        configs[family] = FamilyConfig(
            family=family,
            protocol="modbus",
            sensors=_ET_SENSORS,
            register_start=35100,
            register_count=125,
            device_info_start=35000,
            device_info_count=33,
            comm_addr=DEFAULT_COMM_ADDR,
            three_phase=family in THREE_PHASE_FAMILIES,
        )
    for family in DT_GROUP:
        configs[family] = FamilyConfig(
            family=family,
            protocol="modbus",
            sensors=_DT_SENSORS,
            register_start=30100,
            register_count=73,
            device_info_start=30001,
            device_info_count=33,
            comm_addr=DT_COMM_ADDR,
            three_phase=family in THREE_PHASE_FAMILIES,
        )
    for family in ES_GROUP:
        configs[family] = FamilyConfig(
            family=family,
            protocol="aa55",
            sensors=_ES_SENSORS,
            comm_addr=DEFAULT_COMM_ADDR,
            three_phase=family in THREE_PHASE_FAMILIES,
        )
    return configs


FAMILY_CONFIGS: dict[str, FamilyConfig] = _build_family_configs()


def get_family_config(family: str) -> FamilyConfig | None:
    """Return the configuration for *family* (case-insensitive) or ``None``."""
    return FAMILY_CONFIGS.get(family.strip().upper())


def get_sensors(family: str) -> tuple[SensorDef, ...]:
    """Return the runtime sensor table for *family*.

    Raises:
        InverterError: ``UNSUPPORTED_FAMILY`` for unknown families.
    """
    config = get_family_config(family)
    if config is None:
        raise InverterError(
            f"Unsupported inverter family: {family}",
            code=ErrorCode.UNSUPPORTED_FAMILY,
        )
    return config.sensors


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def parse_sensor_data(
    sensors: Iterable[SensorDef],
    payload: bytes,
    base_register: int | None = None,
    three_phase: bool = True,
) -> RuntimeData:
    """Decode *payload* into a ``{sensor_id: value}`` dict.

    Args:
        sensors: Sensor table to apply.
        payload: Response payload with framing already stripped.
        base_register: First register of the payload for Modbus reads;
            ``None`` when offsets are byte offsets (AA55).
        three_phase: Include phase 2/3 sensors.

    Returns:
        Decoded values in table order.  Sentinel ("not available") values
        are omitted.

    Raises:
        FrameError: The payload is too short for a sensor in the table.
    """
    data: RuntimeData = {}
    for sensor in sensors:
        if sensor.phase > 1 and not three_phase:
            continue
        if base_register is None:
            start = sensor.offset
        else:
            start = (sensor.offset - base_register) * 2
        end = start + sensor.size
        if start < 0 or end > len(payload):
            raise FrameError(
                f"Invalid response payload: sensor '{sensor.id}' needs bytes "
                f"{start}-{end}, payload has {len(payload)}"
            )
        value = SENSOR_TYPES[sensor.type].read(payload[start:end], sensor)
        if value is None:
            logger.debug("Sensor '%s': value not available", sensor.id)
            continue
        data[sensor.id] = value
    return data


def build_sensor_metadata(sensors: Iterable[SensorDef]) -> dict[str, dict[str, str]]:
    """Return ``{sensor_id: {"name", "unit"}}`` for output shaping."""
    return {s.id: {"name": s.name or s.id, "unit": s.unit} for s in sensors}


def _decode_string(buf: bytes) -> str | None:
    text = buf.decode("ascii", errors="ignore").replace("\x00", "").strip()
    return text or None


def decode_modbus_device_info(payload: bytes) -> dict:
    """Decode the ET/DT device-info register block (at least 33 registers)."""
    if len(payload) < 66:
        raise FrameError(
            f"Invalid device info response: expected at least 66 bytes, got {len(payload)}"
        )
    return {
        "modbus_version": _u16(payload[0:2]),
        "rated_power": _u16(payload[2:4]),
        "ac_output_type": _u16(payload[4:6]),
        "serial_number": _decode_string(payload[6:22]),
        "model_name": _decode_string(payload[22:32]),
        "dsp1_version": _u16(payload[32:34]),
        "dsp2_version": _u16(payload[34:36]),
        "arm_version": _u16(payload[38:40]),
        "firmware": _decode_string(payload[42:54]),
        "arm_firmware": _decode_string(payload[54:66]),
    }


def decode_aa55_device_info(payload: bytes) -> dict:
    """Decode the AA55 version-info payload (ES group and discovery)."""
    if len(payload) < 47:
        raise FrameError(
            f"Invalid device info response: expected at least 47 bytes, got {len(payload)}"
        )
    return {
        "firmware": _decode_string(payload[0:5]),
        "model_name": _decode_string(payload[5:15]),
        "serial_number": _decode_string(payload[31:47]),
    }


# ---------------------------------------------------------------------------
# Family detection
# ---------------------------------------------------------------------------

_SERIAL_TAGS: dict[str, str] = {
    "ETU": "ET", "ETL": "ET", "ETR": "ET", "ETC": "ET",
    "EHU": "EH", "EHR": "EH",
    "BTU": "BT", "BHU": "BH", "BHN": "BH", "GEH": "GEH",
    "ESU": "ES", "ESA": "ES", "EMU": "EM", "EMJ": "EM",
    "BPS": "BP", "BPU": "BP",
    "DTU": "DT", "DTS": "DT", "DTN": "D-NS", "DSN": "D-NS",
    "MSU": "MS", "MST": "MS", "MSC": "MS",
    "XSN": "XS", "XSC": "XS",
}
"""Three-letter tags found inside serial numbers, mapped to family codes."""

DEFAULT_FAMILY = "ET"


def detect_family(serial_number: str | None, model_name: str | None) -> str:
    """Guess the family code from identification strings.

    The serial number is searched for known tags first, then the model name
    suffix (``GW10K-ET`` -> ``ET``) and tags.  Unrecognised devices default
    to ``ET``, the most common Modbus family.
    """
    if serial_number:
        for tag, family in _SERIAL_TAGS.items():
            if tag in serial_number.upper():
                return family
    if model_name:
        upper = model_name.upper()
        if "-" in upper:
            suffix = upper.split("-", 1)[1]
            if suffix in FAMILY_CONFIGS:
                return suffix
            for family in FAMILY_CONFIGS:
                if suffix.startswith(family):
                    return family
        for tag, family in _SERIAL_TAGS.items():
            if tag in upper:
                return family
    return DEFAULT_FAMILY
