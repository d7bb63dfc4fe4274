"""
JSON wire format for tracking snapshots.

One datagram carries one snapshot::

    {"ts": 1700000000000,
     "trackers": [{"id": 0, "tracked": true, "seen": true,
                   "position": [x, y, z], "rotation": [x, y, z, w],
                   "class": "HMD"}]}

``ts`` is milliseconds since the Unix epoch. Trackers appear in ascending id
order. Non-finite numbers are rejected rather than encoded.
"""

from __future__ import annotations

import json
import math
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .devices import Device, DeviceCategory
from .pose import Quaternion

_SEPARATORS = (",", ":")
_WIRE_KEYS = ("id", "tracked", "seen", "position", "rotation", "class")


class SerializationError(ValueError):
    """Raised when a snapshot cannot be encoded or decoded."""


@dataclass
class TrackedSnapshot:
    """Timestamped, id-ordered device list."""

    timestamp: int
    devices: list[Device] = field(default_factory=list)


def current_timestamp_ms() -> int:
    """Wall-clock milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def device_to_wire(device: Device) -> dict[str, Any]:
    return {
        "id": device.id,
        "tracked": device.tracked,
        "seen": device.seen,
        "position": list(device.position),
        "rotation": list(device.rotation),
        "class": device.category.value,
    }


def _reject_constant(token: str) -> Any:
    raise SerializationError(f"Non-finite number {token} in payload")


def _parse_finite(token: str) -> float:
    value = float(token)
    if not math.isfinite(value):
        raise SerializationError(f"Number {token} out of range in payload")
    return value


def _require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SerializationError(f"'{name}' must be an integer, got {value!r}")
    return value


def _require_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise SerializationError(f"'{name}' must be a boolean, got {value!r}")
    return value


def _require_numbers(value: Any, name: str, count: int) -> tuple[float, ...]:
    if not isinstance(value, list) or len(value) != count:
        raise SerializationError(f"'{name}' must be a list of {count} numbers, got {value!r}")
    for v in value:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise SerializationError(f"'{name}' must be a list of {count} numbers, got {value!r}")
    return tuple(float(v) for v in value)


def device_from_wire(data: dict[str, Any]) -> Device:
    if not isinstance(data, dict):
        raise SerializationError(f"Invalid tracker entry {data!r}")
    missing = [key for key in _WIRE_KEYS if key not in data]
    if missing:
        raise SerializationError(f"Tracker entry missing {missing}: {data!r}")
    try:
        category = DeviceCategory(data["class"])
    except ValueError as e:
        raise SerializationError(f"Unknown device class {data['class']!r}") from e

    return Device(
        id=_require_int(data["id"], "id"),
        tracked=_require_bool(data["tracked"], "tracked"),
        seen=_require_bool(data["seen"], "seen"),
        position=_require_numbers(data["position"], "position", 3),  # type: ignore[arg-type]
        rotation=Quaternion(*_require_numbers(data["rotation"], "rotation", 4)),
        category=category,
    )


def serialize_snapshot(timestamp: int, devices: Sequence[Device]) -> str:
    """
    Encode a snapshot as compact JSON text.

    Args:
        timestamp: Milliseconds since the Unix epoch
        devices: Devices in the order they should appear on the wire

    Returns:
        Single-line JSON document

    Raises:
        SerializationError: If any numeric field is NaN or infinite
    """
    message = {
        "ts": int(timestamp),
        "trackers": [device_to_wire(device) for device in devices],
    }
    try:
        return json.dumps(message, allow_nan=False, separators=_SEPARATORS)
    except ValueError as e:
        raise SerializationError(f"Snapshot at ts={timestamp} not encodable: {e}") from e


def encode_snapshot(snapshot: TrackedSnapshot) -> bytes:
    """Serialize a snapshot to UTF-8 datagram bytes."""
    return serialize_snapshot(snapshot.timestamp, snapshot.devices).encode("utf-8")


def deserialize_snapshot(payload: str | bytes) -> TrackedSnapshot:
    """
    Decode a datagram produced by :func:`serialize_snapshot`.

    Raises:
        SerializationError: If the payload is not a valid snapshot
    """
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        message = json.loads(payload, parse_constant=_reject_constant, parse_float=_parse_finite)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"Payload is not JSON: {e}") from e

    if not isinstance(message, dict) or "ts" not in message or "trackers" not in message:
        raise SerializationError("Payload must be an object with 'ts' and 'trackers'")
    if not isinstance(message["trackers"], list):
        raise SerializationError("'trackers' must be a list")

    timestamp = _require_int(message["ts"], "ts")

    devices = [device_from_wire(entry) for entry in message["trackers"]]
    return TrackedSnapshot(timestamp=timestamp, devices=devices)
