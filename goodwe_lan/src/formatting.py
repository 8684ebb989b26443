"""
Output shaping for decoded runtime data and error responses.

Pure functions only: no I/O, no clock except the timestamp stamped on error
responses.

CHANGELOG:
- 2026-03-14: Reject unknown families in array output
- 2026-03-08: Attach sensor name/unit metadata to array output when a family is given
- 2026-03-03: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from goodwe_lan.src.errors import InverterError, infer_error_code
from goodwe_lan.src.sensors import (
    RuntimeData,
    build_sensor_metadata,
    get_sensors,
)

logger = logging.getLogger(__name__)

OUTPUT_MODES = ("flat", "categorized", "array")

_PV_PREFIXES = ("vpv", "ipv", "ppv")
_GRID_PREFIXES = ("vac", "iac", "fac")
_ENERGY_PREFIXES = ("e_", "h_")


def categorize_sensor_data(data: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Bucket sensor values by id prefix.

    Buckets: ``pv`` (vpv*/ipv*/ppv*), ``battery`` (battery_*), ``grid``
    (vac*/iac*/fac* and pac), ``energy`` (e_*/h_*) and ``status`` for
    everything else.  Every input key lands in exactly one bucket.
    """
    result: dict[str, dict[str, Any]] = {
        "pv": {},
        "battery": {},
        "grid": {},
        "energy": {},
        "status": {},
    }
    for key, value in data.items():
        if key.startswith(_PV_PREFIXES):
            bucket = "pv"
        elif key.startswith("battery_"):
            bucket = "battery"
        elif key.startswith(_GRID_PREFIXES) or key == "pac":
            bucket = "grid"
        elif key.startswith(_ENERGY_PREFIXES):
            bucket = "energy"
        else:
            bucket = "status"
        result[bucket][key] = value
    return result


def convert_to_array(
    data: Mapping[str, Any],
    family: str | None = None,
) -> list[dict[str, Any]]:
    """Return ``[{"id", "value"}]`` in input order.

    With a *family* each entry also carries the sensor's ``name`` and
    ``unit``.

    Raises:
        InverterError: ``UNSUPPORTED_FAMILY`` when *family* is unknown.
    """
    metadata: dict[str, dict[str, str]] = {}
    if family:
        metadata = build_sensor_metadata(get_sensors(family))
    items = []
    for key, value in data.items():
        item: dict[str, Any] = {"id": key, "value": value}
        if key in metadata:
            item.update(metadata[key])
        items.append(item)
    return items


def format_output(
    data: Mapping[str, Any],
    mode: str = "flat",
    family: str | None = None,
) -> Any:
    """Shape *data* for output.

    Args:
        data: Decoded runtime data.
        mode: ``flat`` (unchanged), ``categorized`` or ``array``.  Any other
            value returns *data* unchanged.
        family: Optional family code used to add metadata in ``array`` mode.
    """
    if mode == "categorized":
        return categorize_sensor_data(data)
    if mode == "array":
        return convert_to_array(data, family)
    if mode != "flat":
        logger.debug("Unknown output mode '%s', returning data unchanged", mode)
    return data


def filter_sensors(
    data: RuntimeData,
    sensor_id: str | None = None,
    sensors: Iterable[str] | None = None,
) -> RuntimeData:
    """Keep only the requested sensor ids.

    A single *sensor_id* takes precedence over the *sensors* list.  Unknown
    ids are dropped silently.  With neither argument, *data* is returned
    unchanged.
    """
    if sensor_id:
        return {sensor_id: data[sensor_id]} if sensor_id in data else {}
    if sensors:
        wanted = list(sensors)
        return {key: data[key] for key in wanted if key in data}
    return data


def create_error_response(
    error: BaseException,
    command: str = "unknown",
) -> dict[str, Any]:
    """Build the JSON-ready failure envelope for *error*.

    An enriched :class:`InverterError` contributes its code, details and
    suggestions.  Anything else gets an inferred code and empty extras.
    """
    if isinstance(error, InverterError) and error.record is not None:
        record = error.record
        body = {
            "code": str(record.code),
            "message": record.message,
            "details": record.details.model_dump(),
            "suggestions": list(record.suggestions),
        }
    else:
        body = {
            "code": str(infer_error_code(error)),
            "message": str(error) or type(error).__name__,
            "details": {},
            "suggestions": [],
        }
    return {
        "success": False,
        "command": command,
        "timestamp": datetime.now(UTC).isoformat(),
        "error": body,
    }
