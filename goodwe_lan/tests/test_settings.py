"""
Tests for setting validation.

CHANGELOG:
- 2026-03-04: Initial creation (STORY-108)

TODO:
- None
"""

from __future__ import annotations

import pytest

from goodwe_lan.src.settings import SETTINGS, ValidationResult, validate_setting

# ===========================================================================
# AC1: Range settings
# ===========================================================================


class TestRangeSettings:
    """AC1: Numeric bounds are inclusive."""

    @pytest.mark.parametrize("value", [0, 15000, 30000, "2500", 12.5])
    def test_valid(self, value) -> None:
        assert validate_setting("grid_export_limit", value) == ValidationResult(True)

    def test_above_maximum(self) -> None:
        result = validate_setting("grid_export_limit", 30001)
        assert result.valid is False
        assert result.error == "Grid export limit out of range: 30001. Valid range: 0-30000W"

    def test_below_minimum(self) -> None:
        result = validate_setting("battery_discharge_depth", -1)
        assert result.error == "Battery discharge depth out of range: -1. Valid range: 0-100%"

    @pytest.mark.parametrize("value", ["abc", None, True, float("nan")])
    def test_not_a_number(self, value) -> None:
        result = validate_setting("battery_charge_current", value)
        assert result.valid is False
        assert result.error.endswith("Must be a number")
        assert result.error.startswith("Invalid Battery charge current: ")


# ===========================================================================
# AC2: Enum, unknown and read-only settings
# ===========================================================================


class TestOtherSettings:
    """AC2: Fixed-value, unknown and read-only settings."""

    def test_enum_valid(self) -> None:
        assert validate_setting("operation_mode", "eco").valid is True

    def test_enum_invalid(self) -> None:
        result = validate_setting("backup_supply", "maybe")
        assert result.error == "Invalid Backup supply: maybe. Must be one of: on, off"

    def test_unknown_setting(self) -> None:
        assert validate_setting("turbo", 1).error == "Unknown setting: turbo"

    @pytest.mark.parametrize("name", ["rated_power", "safety_country"])
    def test_read_only(self, name: str) -> None:
        result = validate_setting(name, 1)
        assert result.valid is False
        assert result.error == f"Setting {name} is read-only"

    def test_table_keys_match_names(self) -> None:
        assert all(key == s.name for key, s in SETTINGS.items())
