"""
Simulated tracking rig for running the publisher without VR hardware.

The rig reports a fixed-size slot array like OpenVR does: a walking HMD, two
hand controllers, a body tracker that drops out for two seconds out of every
ten, and two base stations. Remaining slots are empty.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from .sources import (
    ControllerRole,
    HardwareError,
    RawPose,
    TrackedDeviceClass,
)

DEFAULT_SLOT_COUNT = 16


class MovementPattern(Enum):
    """Movement patterns for simulated devices."""

    STATIC = "static"
    CIRCLE = "circle"
    FIGURE8 = "figure8"


@dataclass(frozen=True)
class SimulatedDevice:
    """Description of one simulated slot."""

    device_class: TrackedDeviceClass
    pattern: MovementPattern
    center: tuple[float, float, float]
    radius: float = 0.0
    speed: float = 0.5  # rad/s
    controller_role: ControllerRole | None = None
    dropout_period: float = 0.0  # seconds, 0 disables dropouts
    dropout_duration: float = 0.0


DEFAULT_RIG: tuple[SimulatedDevice, ...] = (
    SimulatedDevice(TrackedDeviceClass.HMD, MovementPattern.CIRCLE, (0.0, 1.7, 0.0), radius=1.0),
    SimulatedDevice(
        TrackedDeviceClass.CONTROLLER,
        MovementPattern.CIRCLE,
        (-0.25, 1.2, 0.0),
        radius=1.0,
        controller_role=ControllerRole.LEFT_HAND,
    ),
    SimulatedDevice(
        TrackedDeviceClass.CONTROLLER,
        MovementPattern.CIRCLE,
        (0.25, 1.2, 0.0),
        radius=1.0,
        controller_role=ControllerRole.RIGHT_HAND,
    ),
    SimulatedDevice(
        TrackedDeviceClass.GENERIC_TRACKER,
        MovementPattern.FIGURE8,
        (0.0, 1.0, 0.0),
        radius=0.8,
        dropout_period=10.0,
        dropout_duration=2.0,
    ),
    SimulatedDevice(TrackedDeviceClass.TRACKING_REFERENCE, MovementPattern.STATIC, (-2.0, 2.2, -2.0)),
    SimulatedDevice(TrackedDeviceClass.TRACKING_REFERENCE, MovementPattern.STATIC, (2.0, 2.2, 2.0)),
)


def yaw_matrix(yaw: float, position: tuple[float, float, float]) -> tuple[tuple[float, ...], ...]:
    """3x4 pose matrix for a rotation of ``yaw`` radians about the up (y) axis."""
    c, s = math.cos(yaw), math.sin(yaw)
    x, y, z = position
    return (
        (c, 0.0, s, x),
        (0.0, 1.0, 0.0, y),
        (-s, 0.0, c, z),
    )


def _device_pose(device: SimulatedDevice, elapsed: float) -> tuple[tuple[float, ...], ...]:
    cx, cy, cz = device.center
    angle = elapsed * device.speed

    if device.pattern == MovementPattern.CIRCLE:
        position = (cx + device.radius * math.cos(angle), cy, cz + device.radius * math.sin(angle))
        # Face along the direction of travel
        return yaw_matrix(-angle, position)
    if device.pattern == MovementPattern.FIGURE8:
        position = (
            cx + device.radius * math.sin(angle),
            cy,
            cz + device.radius * math.sin(angle) * math.cos(angle),
        )
        return yaw_matrix(angle, position)
    return yaw_matrix(math.atan2(-cx, -cz), device.center)


def _is_dropped_out(device: SimulatedDevice, elapsed: float) -> bool:
    if device.dropout_period <= 0:
        return False
    return elapsed % device.dropout_period >= device.dropout_period - device.dropout_duration


class SimulatedSource:
    """
    Pose source that animates :data:`DEFAULT_RIG` (or a custom rig).

    Args:
        slot_count: Length of the slot array returned by ``poll()``
        rig: Devices occupying the first slots
        clock: Monotonic clock in seconds, injectable for tests
    """

    def __init__(
        self,
        slot_count: int = DEFAULT_SLOT_COUNT,
        rig: tuple[SimulatedDevice, ...] = DEFAULT_RIG,
        clock: Callable[[], float] = time.monotonic,
    ):
        if slot_count < len(rig):
            raise ValueError(f"slot_count {slot_count} is smaller than the rig ({len(rig)} devices)")
        self.slot_count = slot_count
        self.rig = rig
        self._clock = clock
        self._started_at: float | None = None

    def open(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()
            logger.info(f"Simulated rig started with {len(self.rig)} devices in {self.slot_count} slots")

    def poll(self) -> list[RawPose]:
        if self._started_at is None:
            raise HardwareError("Simulated source is not open")

        elapsed = self._clock() - self._started_at
        entries = []
        for slot in range(self.slot_count):
            if slot >= len(self.rig):
                entries.append(RawPose(slot=slot, valid=False))
                continue
            device = self.rig[slot]
            entries.append(
                RawPose(
                    slot=slot,
                    valid=not _is_dropped_out(device, elapsed),
                    matrix=_device_pose(device, elapsed),
                    device_class=device.device_class,
                    controller_role=device.controller_role,
                )
            )
        return entries

    def close(self) -> None:
        self._started_at = None

    def __enter__(self) -> SimulatedSource:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
