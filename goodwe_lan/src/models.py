"""
Pydantic value types returned by the protocol handler and discovery.

CHANGELOG:
- 2026-03-05: Add StatusEvent for observer notifications
- 2026-02-28: Initial creation (STORY-105)

TODO:
- None
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

from goodwe_lan.src.errors import ErrorRecord

StatusState = Literal[
    "connecting", "connected", "disconnected", "reading", "retrying", "error"
]


class DeviceInfo(BaseModel):
    """Identification block read from an inverter.

    Fields the family's device-info block does not carry stay ``None``.
    ``family`` is not part of the wire data; the handler assigns it from its
    configuration after decoding.

    Attributes:
        model_name: Model string, e.g. ``"GW10K-ET"``.
        serial_number: 16-character serial number.
        firmware: Firmware version string.
        arm_firmware: ARM firmware version string.
        modbus_version: Modbus protocol version.
        rated_power: Rated output power in watts.
        ac_output_type: AC output type code.
        dsp1_version: DSP1 software version.
        dsp2_version: DSP2 software version.
        arm_version: ARM software version.
        family: Family code used to talk to the inverter.
    """

    model_name: str | None = None
    serial_number: str | None = None
    firmware: str | None = None
    arm_firmware: str | None = None
    modbus_version: int | None = None
    rated_power: int | None = None
    ac_output_type: int | None = None
    dsp1_version: int | None = None
    dsp2_version: int | None = None
    arm_version: int | None = None
    family: str | None = None


class DiscoveryRecord(BaseModel):
    """One inverter that answered the discovery broadcast."""

    model_config = ConfigDict(frozen=True)

    ip: str
    port: int
    family: str
    serial_number: str | None = None
    model_name: str | None = None


class StatusEvent(BaseModel):
    """Payload of the handler's ``status`` event.

    Attributes:
        state: Lifecycle or request state.
        attempt: 1-based attempt number for ``reading``/``retrying``.
        max_attempts: Total attempts allowed for the current command.
        message: Error text for ``error``/``retrying`` states.
    """

    model_config = ConfigDict(frozen=True)

    state: StatusState
    attempt: int | None = None
    max_attempts: int | None = None
    message: str | None = None


class StatusSnapshot(BaseModel):
    """Point-in-time view of a handler, as returned by ``get_status()``."""

    model_config = ConfigDict(frozen=True)

    connected: bool
    consecutive_failures: int
    protocol: str
    host: str
    port: int
    last_error: ErrorRecord | None = None
