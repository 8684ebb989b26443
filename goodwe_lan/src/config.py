"""
Inverter connection configuration loaded from arguments or environment.

Uses Pydantic BaseSettings so the same settings object can be built from
keyword arguments (library use) or GOODWE_* environment variables and .env
files (CLI use).  The configuration is frozen: a handler never sees it
change after construction.

CHANGELOG:
- 2026-03-04: Add backoff settings for the retry engine
- 2026-02-27: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PORT = 8899
"""UDP/TCP port of the inverter's WiFi/LAN module."""

SUPPORTED_PROTOCOLS = ("udp", "tcp", "modbus")
"""Protocol names accepted by ``ProtocolHandler.connect``."""


class ConnectionConfig(BaseSettings):
    """Connection parameters for a single inverter.

    ``protocol`` accepts any string here; the handler
    rejects unsupported values on ``connect()`` before opening a socket.

    Attributes:
        host: Inverter IP address or hostname.  May be empty for UDP until
            the first command is sent.
        port: Inverter port (default 8899).
        protocol: ``udp`` (AA55 / Modbus RTU over UDP), ``tcp`` or
            ``modbus`` (Modbus TCP).
        timeout_ms: Response timeout per attempt in milliseconds.
        retries: Extra attempts after the first failed one.
        family: Inverter family code (ET, EH, BT, BH, GEH, ES, EM, BP, DT,
            MS, D-NS, XS).
        comm_addr: Modbus unit id.  ``None`` uses the family default.
        backoff_ms: Delay before the first retry in milliseconds.
        max_backoff_ms: Upper bound for the exponential retry delay.
    """

    host: str = ""
    port: int = DEFAULT_PORT
    protocol: str = "udp"
    timeout_ms: int = 1000
    retries: int = 3
    family: str = "ET"
    comm_addr: int | None = None
    backoff_ms: int = 200
    max_backoff_ms: int = 5000

    model_config = SettingsConfigDict(
        env_prefix="GOODWE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("protocol")
    @classmethod
    def normalize_protocol(cls, v: str) -> str:
        """Lower-case the protocol name; support is checked on connect."""
        return v.strip().lower()

    @field_validator("family")
    @classmethod
    def normalize_family(cls, v: str) -> str:
        """Upper-case the family code (``d-ns`` -> ``D-NS``)."""
        return v.strip().upper()

    @field_validator("port")
    @classmethod
    def port_must_be_valid(cls, v: int) -> int:
        """Validate port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("GOODWE_PORT must be between 1 and 65535")
        return v

    @field_validator("timeout_ms")
    @classmethod
    def timeout_must_be_positive(cls, v: int) -> int:
        """Validate the response timeout is positive."""
        if v <= 0:
            raise ValueError("GOODWE_TIMEOUT_MS must be > 0")
        return v

    @field_validator("retries")
    @classmethod
    def retries_must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("GOODWE_RETRIES must be >= 0")
        return v

    @field_validator("backoff_ms", "max_backoff_ms")
    @classmethod
    def backoff_must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Backoff delays must be >= 0")
        return v

    @field_validator("comm_addr")
    @classmethod
    def comm_addr_must_be_valid(cls, v: int | None) -> int | None:
        """Validate Modbus unit id fits in one byte."""
        if v is not None and (v < 0 or v > 255):
            raise ValueError("GOODWE_COMM_ADDR must be between 0 and 255")
        return v

    @property
    def timeout_s(self) -> float:
        """Response timeout in seconds, for asyncio APIs."""
        return self.timeout_ms / 1000
