"""
Client-side LAN protocol stack for GoodWe solar inverters.

Talks to inverters over UDP (AA55 and Modbus RTU framing) or Modbus TCP,
retries transient failures with bounded backoff, discovers inverters by
broadcast and decodes family-specific register blocks.

CHANGELOG:
- 2026-02-27: Initial creation (STORY-100)

TODO:
- None
"""

from goodwe_lan.src.config import ConnectionConfig
from goodwe_lan.src.discovery import discover_inverters
from goodwe_lan.src.errors import (
    ConfigurationError,
    ErrorCode,
    InverterError,
    enhance_error,
    infer_error_code,
)
from goodwe_lan.src.formatting import create_error_response, format_output
from goodwe_lan.src.handler import ProtocolHandler
from goodwe_lan.src.settings import validate_setting

__all__ = [
    "ConfigurationError",
    "ConnectionConfig",
    "ErrorCode",
    "InverterError",
    "ProtocolHandler",
    "create_error_response",
    "discover_inverters",
    "enhance_error",
    "format_output",
    "infer_error_code",
    "validate_setting",
]
