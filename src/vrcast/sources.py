"""
Pose source interface.

A pose source is the only way the rest of the package reaches tracking
hardware. Each ``poll()`` returns one :class:`RawPose` per hardware slot, with
the slot index doubling as the device id.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol

from .pose import Matrix34

ZERO_MATRIX: tuple[tuple[float, ...], ...] = (
    (0.0, 0.0, 0.0, 0.0),
    (0.0, 0.0, 0.0, 0.0),
    (0.0, 0.0, 0.0, 0.0),
)

IDENTITY_MATRIX: tuple[tuple[float, ...], ...] = (
    (1.0, 0.0, 0.0, 0.0),
    (0.0, 1.0, 0.0, 0.0),
    (0.0, 0.0, 1.0, 0.0),
)


class HardwareError(Exception):
    """Raised when the tracking runtime cannot be opened or polled."""


class TrackedDeviceClass(IntEnum):
    """Device class values as reported by OpenVR."""

    INVALID = 0
    HMD = 1
    CONTROLLER = 2
    GENERIC_TRACKER = 3
    TRACKING_REFERENCE = 4
    DISPLAY_REDIRECT = 5

    @classmethod
    def _missing_(cls, value):
        return cls.INVALID


class ControllerRole(IntEnum):
    """Controller role values as reported by OpenVR."""

    INVALID = 0
    LEFT_HAND = 1
    RIGHT_HAND = 2
    OPT_OUT = 3
    TREADMILL = 4
    STYLUS = 5

    @classmethod
    def _missing_(cls, value):
        return cls.INVALID


@dataclass(frozen=True)
class RawPose:
    """One slot of a hardware poll."""

    slot: int
    valid: bool
    matrix: Matrix34 = ZERO_MATRIX
    device_class: TrackedDeviceClass = TrackedDeviceClass.INVALID
    controller_role: ControllerRole | None = None


class PoseSource(Protocol):
    """
    Tracking hardware seen through its poll capability.

    ``open()`` acquires the runtime, ``close()`` releases it; both are also
    reachable through ``with``.
    """

    def open(self) -> None: ...

    def poll(self) -> list[RawPose]: ...

    def close(self) -> None: ...

    def __enter__(self) -> PoseSource: ...

    def __exit__(self, exc_type, exc, tb) -> None: ...
