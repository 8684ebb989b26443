"""
Static table of inverter settings and value validation.

Validation only: writing a setting to the inverter is not supported.  The
messages returned here are shown to users as is.

CHANGELOG:
- 2026-03-04: Initial creation (STORY-108)

TODO:
- None
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Data definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SettingDescriptor:
    """Definition of a single inverter setting.

    Attributes:
        name: Setting identifier.
        label: Human-readable name used in validation messages.
        kind: ``"range"`` (numeric bounds) or ``"enum"`` (fixed values).
        minimum: Lower bound for ``range`` settings.
        maximum: Upper bound for ``range`` settings.
        unit: Unit appended to range messages.
        allowed_values: Accepted values for ``enum`` settings.
        writable: ``False`` for read-only settings.
    """

    name: str
    label: str
    kind: str
    minimum: float | None = None
    maximum: float | None = None
    unit: str = ""
    allowed_values: tuple[str, ...] = ()
    writable: bool = True


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of :func:`validate_setting`; ``error`` is set when invalid."""

    valid: bool
    error: str | None = None


SETTINGS: dict[str, SettingDescriptor] = {
    s.name: s
    for s in (
        SettingDescriptor(
            "grid_export_limit", "Grid export limit", "range", 0, 30000, "W"
        ),
        SettingDescriptor(
            "battery_discharge_depth", "Battery discharge depth", "range", 0, 100, "%"
        ),
        SettingDescriptor(
            "battery_charge_current", "Battery charge current", "range", 0, 100, "A"
        ),
        SettingDescriptor(
            "grid_peak_shaving", "Grid peak shaving", "range", 0, 30000, "W"
        ),
        SettingDescriptor(
            "operation_mode",
            "Operation mode",
            "enum",
            allowed_values=("general", "off_grid", "backup", "eco", "peak_shaving"),
        ),
        SettingDescriptor(
            "backup_supply", "Backup supply", "enum", allowed_values=("on", "off")
        ),
        SettingDescriptor(
            "rated_power", "Rated power", "range", 0, 30000, "W", writable=False
        ),
        SettingDescriptor(
            "safety_country", "Safety country", "range", 0, 255, writable=False
        ),
    )
}
"""Known settings keyed by name.  Never mutated."""


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def validate_setting(name: str, value: Any) -> ValidationResult:
    """Check *value* against the descriptor of setting *name*.

    Args:
        name: Setting identifier from :data:`SETTINGS`.
        value: Candidate value; numbers may be given as numeric strings.

    Returns:
        ``ValidationResult(valid=True)`` or a result whose ``error`` names
        the problem (unknown setting, read-only, non-numeric value, out of
        range, or not one of the allowed values).
    """
    setting = SETTINGS.get(name)
    if setting is None:
        return ValidationResult(False, f"Unknown setting: {name}")
    if not setting.writable:
        return ValidationResult(False, f"Setting {name} is read-only")

    if setting.kind == "enum":
        if str(value) not in setting.allowed_values:
            return ValidationResult(
                False,
                f"Invalid {setting.label}: {value}. "
                f"Must be one of: {', '.join(setting.allowed_values)}",
            )
        return ValidationResult(True)

    if isinstance(value, bool):
        number = None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = None
    if number is None or math.isnan(number):
        return ValidationResult(
            False, f"Invalid {setting.label}: {value}. Must be a number"
        )

    if (setting.minimum is not None and number < setting.minimum) or (
        setting.maximum is not None and number > setting.maximum
    ):
        return ValidationResult(
            False,
            f"{setting.label} out of range: {value}. Valid range: "
            f"{_format_number(setting.minimum)}-{_format_number(setting.maximum)}"
            f"{setting.unit}",
        )
    return ValidationResult(True)
