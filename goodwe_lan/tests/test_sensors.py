"""
Tests for family tables, sensor decoding and family detection.

CHANGELOG:
- 2026-03-10: Add family detection tests
- 2026-03-07: Add single-phase filtering tests
- 2026-03-03: Initial creation (STORY-106)

TODO:
- None
"""

from __future__ import annotations

import struct

import pytest

from goodwe_lan.src.errors import ErrorCode, FrameError, InverterError
from goodwe_lan.src.sensors import (
    FAMILY_CONFIGS,
    SENSOR_TYPES,
    SensorDef,
    build_sensor_metadata,
    decode_aa55_device_info,
    decode_modbus_device_info,
    detect_family,
    get_family_config,
    get_sensors,
    parse_sensor_data,
)
from goodwe_lan.tests.fakes import register_block, version_info_payload

# ===========================================================================
# AC1: Family table
# ===========================================================================


class TestFamilyTable:
    """AC1: Family lookup and per-group settings."""

    @pytest.mark.parametrize("family", ["ET", "EH", "BT", "BH", "GEH"])
    def test_et_group(self, family: str) -> None:
        config = get_family_config(family)
        assert config.protocol == "modbus"
        assert config.register_start == 35100
        assert config.register_count == 125
        assert config.comm_addr == 0xF7

    @pytest.mark.parametrize("family", ["DT", "MS", "D-NS", "XS"])
    def test_dt_group(self, family: str) -> None:
        config = get_family_config(family)
        assert config.register_start == 30100
        assert config.comm_addr == 0x7F

    @pytest.mark.parametrize("family", ["ES", "EM", "BP"])
    def test_es_group_uses_aa55(self, family: str) -> None:
        assert get_family_config(family).protocol == "aa55"

    def test_lookup_is_case_insensitive(self) -> None:
        assert get_family_config(" d-ns ").family == "D-NS"

    def test_unknown_family(self) -> None:
        assert get_family_config("XYZ") is None
        with pytest.raises(InverterError) as exc_info:
            get_sensors("XYZ")
        assert exc_info.value.code == ErrorCode.UNSUPPORTED_FAMILY

    def test_three_phase_flags(self) -> None:
        three_phase = {f for f, c in FAMILY_CONFIGS.items() if c.three_phase}
        assert three_phase == {"ET", "BT", "DT", "MS", "D-NS"}

    @pytest.mark.parametrize("family", sorted(FAMILY_CONFIGS))
    def test_sensor_ids_unique(self, family: str) -> None:
        ids = [s.id for s in get_sensors(family)]
        assert len(ids) == len(set(ids))

    @pytest.mark.parametrize("family", ["ET", "DT"])
    def test_modbus_sensors_fit_register_window(self, family: str) -> None:
        config = get_family_config(family)
        end = config.register_start + config.register_count
        for sensor in config.sensors:
            assert config.register_start <= sensor.offset
            assert sensor.offset + sensor.size // 2 <= end, sensor.id


# ===========================================================================
# AC2: Sensor decoding
# ===========================================================================


class TestParseSensorData:
    """AC2: Decoding values by type."""

    def test_register_offsets(self) -> None:
        sensors = (
            SensorDef("v", 100, "Voltage"),
            SensorDef("f", 101, "Frequency"),
            SensorDef("p", 102, "Power4"),
        )
        payload = bytes(register_block(100, 4, {100: 2301, 101: 4998, 103: 1234}))

        data = parse_sensor_data(sensors, payload, base_register=100)

        assert data == {"v": pytest.approx(230.1), "f": pytest.approx(49.98), "p": 1234}

    def test_byte_offsets(self) -> None:
        sensors = (SensorDef("soc", 0, "Byte"), SensorDef("t", 1, "Temp"))
        payload = b"\x55" + struct.pack(">h", -52)

        data = parse_sensor_data(sensors, payload)

        assert data == {"soc": 0x55, "t": pytest.approx(-5.2)}

    def test_signed_types(self) -> None:
        sensors = (SensorDef("i", 0, "CurrentS"), SensorDef("p", 2, "Power4S"))
        payload = struct.pack(">hi", -25, -3000)
        assert parse_sensor_data(sensors, payload) == {"i": pytest.approx(-2.5), "p": -3000}

    def test_unsigned_sentinels_omitted(self) -> None:
        sensors = (
            SensorDef("v", 0, "Voltage"),
            SensorDef("e", 2, "Energy4"),
            SensorDef("n", 6, "Integer"),
        )
        payload = b"\xff\xff" + b"\xff\xff\xff\xff" + b"\x00\x07"
        assert parse_sensor_data(sensors, payload) == {"n": 7}

    def test_decimal_scale(self) -> None:
        sensors = (SensorDef("pf", 0, "Decimal", scale=1000),)
        assert parse_sensor_data(sensors, struct.pack(">H", 987)) == {"pf": 0.987}

    def test_timestamp(self) -> None:
        sensors = (SensorDef("ts", 0, "Timestamp"),)
        payload = bytes((24, 6, 15, 13, 45, 7))
        assert parse_sensor_data(sensors, payload) == {"ts": "2024-06-15T13:45:07"}

    def test_invalid_timestamp_omitted(self) -> None:
        sensors = (SensorDef("ts", 0, "Timestamp"),)
        assert parse_sensor_data(sensors, b"\x00" * 6) == {}

    def test_payload_too_short(self) -> None:
        sensors = (SensorDef("e", 2, "Energy4"),)
        with pytest.raises(FrameError, match="Invalid response payload") as exc_info:
            parse_sensor_data(sensors, b"\x00" * 4)
        assert exc_info.value.code == ErrorCode.PROTOCOL_ERROR

    def test_single_phase_skips_phase_2_and_3(self) -> None:
        sensors = (
            SensorDef("vac1", 0, "Voltage"),
            SensorDef("vac2", 2, "Voltage", phase=2),
            SensorDef("vac3", 4, "Voltage", phase=3),
        )
        payload = b"\x08\xfd" * 2

        # Phase 2/3 bytes are never read, so a short payload is fine
        assert list(parse_sensor_data(sensors, payload, three_phase=False)) == ["vac1"]
        with pytest.raises(FrameError):
            parse_sensor_data(sensors, payload, three_phase=True)

    def test_full_et_block_decodes(self) -> None:
        config = get_family_config("ET")
        payload = bytes(register_block(35100, config.register_count, {35138: 0xFF38}))

        data = parse_sensor_data(
            config.sensors, payload, base_register=config.register_start
        )

        assert data["pac"] == -200
        assert "vac3" in data


# ===========================================================================
# AC3: Sensor definitions and metadata
# ===========================================================================


class TestSensorDef:
    """AC3: Definitions fill default units and reject unknown types."""

    def test_default_unit(self) -> None:
        assert SensorDef("v", 0, "Voltage").unit == "V"
        assert SensorDef("r", 0, "PowerS", "var").unit == "var"

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError, match="unknown type"):
            SensorDef("x", 0, "Weird")

    def test_sizes(self) -> None:
        assert SENSOR_TYPES["Byte"].size == 1
        assert SensorDef("t", 0, "Timestamp").size == 6
        assert SensorDef("p", 0, "Power4").size == 4

    def test_metadata(self) -> None:
        metadata = build_sensor_metadata(get_sensors("ET"))
        assert metadata["vpv1"] == {"name": "PV1 Voltage", "unit": "V"}
        assert metadata["e_total"]["unit"] == "kWh"


# ===========================================================================
# AC4: Device info and family detection
# ===========================================================================


class TestDeviceInfo:
    """AC4: Identification blocks."""

    def test_aa55_device_info(self) -> None:
        info = decode_aa55_device_info(version_info_payload())
        assert info == {
            "firmware": "02041",
            "model_name": "GW5048D-ES",
            "serial_number": "95000ESU123W0001",
        }

    def test_aa55_device_info_too_short(self) -> None:
        with pytest.raises(FrameError):
            decode_aa55_device_info(b"\x00" * 46)

    def test_modbus_device_info(self) -> None:
        payload = bytearray(66)
        payload[2:4] = struct.pack(">H", 5000)
        payload[6:22] = b"5010KDTN000W0001"
        payload[22:32] = b"GW5K-DT\x00\x00\x00"
        payload[32:34] = struct.pack(">H", 7)

        info = decode_modbus_device_info(bytes(payload))

        assert info["rated_power"] == 5000
        assert info["serial_number"] == "5010KDTN000W0001"
        assert info["model_name"] == "GW5K-DT"
        assert info["dsp1_version"] == 7
        assert info["firmware"] is None

    def test_modbus_device_info_too_short(self) -> None:
        with pytest.raises(FrameError, match="at least 66 bytes"):
            decode_modbus_device_info(b"\x00" * 64)


class TestDetectFamily:
    """AC4: Family guessing from serial number and model name."""

    @pytest.mark.parametrize(
        ("serial", "model", "expected"),
        [
            ("9010KETU000W0001", None, "ET"),
            ("95000ESU123W0001", "GW5048D-ES", "ES"),
            ("5010KDTN000W0001", None, "D-NS"),
            (None, "GW10K-BT", "BT"),
            (None, "GW5K-DT-20", "DT"),
            (None, "GW3000-XS", "XS"),
            (None, "GW5048-EM", "EM"),
            (None, "GW6000-EH", "EH"),
            (None, None, "ET"),
            ("UNKNOWN0000", "GW1000", "ET"),
        ],
    )
    def test_detect(self, serial: str | None, model: str | None, expected: str) -> None:
        assert detect_family(serial, model) == expected
