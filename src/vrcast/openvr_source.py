"""
OpenVR pose source.

Holds the single OpenVR runtime context for the life of the process. The
context is acquired by ``open()`` and released by ``close()``; nothing outside
this module touches the binding.
"""

from __future__ import annotations

from loguru import logger

try:
    import openvr
except ImportError:
    logger.error("openvr binding not found, install it with 'pip install openvr'")
    raise

from .sources import ControllerRole, HardwareError, RawPose, TrackedDeviceClass

TRACKING_ORIGINS = {
    "standing": openvr.TrackingUniverseStanding,
    "seated": openvr.TrackingUniverseSeated,
}


def _matrix_rows(matrix) -> tuple[tuple[float, ...], ...]:
    return tuple(tuple(float(v) for v in row) for row in matrix.m)


class OpenVRSource:
    """
    Poll device poses from a running SteamVR / OpenVR runtime.

    A slot counts as valid when its device is connected and reports a valid
    pose.

    Args:
        origin: Tracking universe, "standing" or "seated"
        predicted_seconds: Pose prediction horizon passed to the runtime
    """

    def __init__(self, origin: str = "standing", predicted_seconds: float = 0.0):
        if origin not in TRACKING_ORIGINS:
            raise ValueError(
                f"origin must be one of {sorted(TRACKING_ORIGINS)}, got {origin!r}"
            )
        self.origin = origin
        self.predicted_seconds = predicted_seconds
        self._system = None

    @property
    def is_open(self) -> bool:
        return self._system is not None

    def open(self) -> None:
        """Initialise the OpenVR runtime as a background application."""
        if self._system is not None:
            return
        logger.info("Initializing OpenVR...")
        try:
            self._system = openvr.init(openvr.VRApplication_Other)
        except Exception as e:
            raise HardwareError(f"OpenVR initialisation failed: {e}") from e
        logger.info(f"OpenVR initialized ({self.origin} tracking origin)")

    def poll(self) -> list[RawPose]:
        """Return one entry per OpenVR device slot."""
        if self._system is None:
            raise HardwareError("OpenVR source is not open")

        system = self._system
        try:
            poses = system.getDeviceToAbsoluteTrackingPose(
                TRACKING_ORIGINS[self.origin],
                self.predicted_seconds,
                openvr.k_unMaxTrackedDeviceCount,
            )
            entries = []
            for slot, pose in enumerate(poses):
                device_class = TrackedDeviceClass(system.getTrackedDeviceClass(slot))
                role = ControllerRole(system.getControllerRoleForTrackedDeviceIndex(slot))
                entries.append(
                    RawPose(
                        slot=slot,
                        valid=bool(pose.bDeviceIsConnected and pose.bPoseIsValid),
                        matrix=_matrix_rows(pose.mDeviceToAbsoluteTracking),
                        device_class=device_class,
                        controller_role=None if role == ControllerRole.INVALID else role,
                    )
                )
        except Exception as e:
            raise HardwareError(f"OpenVR poll failed: {e}") from e
        return entries

    def close(self) -> None:
        """Shut the runtime connection down."""
        if self._system is None:
            return
        self._system = None
        openvr.shutdown()
        logger.info("OpenVR shut down")

    def __enter__(self) -> OpenVRSource:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
