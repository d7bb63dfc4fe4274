# server.py
import sys

# ruff: noqa: E402, I001

# Python version check - must be at the very beginning
MIN_PY = (3, 11)
if sys.version_info < MIN_PY:
    sys.stderr.write(
        f"ERROR: vrcast requires Python {MIN_PY[0]}.{MIN_PY[1]}+ "
        f"(current: {sys.version.split()[0]}).\n"
    )
    sys.exit(1)

import argparse
import time
import tomllib
from collections.abc import Callable
from functools import lru_cache
from pathlib import Path

from loguru import logger

from . import network_utils
from .config import (
    ConfigurationError,
    DefaultConfigError,
    PublisherConfig,
    create_config_from_args,
)
from .devices import DeviceRegistry
from .logging_utils import configure_logging
from .multicast import MulticastPublisher, PublisherError, TransportError
from .serializer import SerializationError, TrackedSnapshot, current_timestamp_ms, encode_snapshot
from .simulator import SimulatedSource
from .sources import HardwareError, PoseSource


@lru_cache(maxsize=1)
def get_version() -> str:
    """
    Return the package version.
    Priority:
      1) importlib.metadata for 'vrcast' (when installed)
      2) parse nearest pyproject.toml (when running from source)
      3) 'unknown'
    """
    import importlib.metadata as im

    try:
        return im.version("vrcast")
    except im.PackageNotFoundError:
        pass

    for parent in Path(__file__).resolve().parents:
        toml_path = parent / "pyproject.toml"
        if toml_path.exists():
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            v = (data.get("project") or {}).get("version")
            if v:
                return v
            break

    return "unknown"


class TrackingServer:
    """
    Fixed-cadence loop that polls a pose source and multicasts snapshots.

    Each cycle polls the source, updates the registry, stamps the snapshot with
    wall-clock milliseconds, serializes it and sends it as one datagram. A
    failed send or an unencodable snapshot drops that cycle only; hardware
    errors end the loop.

    Usage:
        with SimulatedSource() as source, MulticastPublisher() as publisher:
            TrackingServer(source, publisher).run()
    """

    POLL_INTERVAL = 0.02  # 50Hz
    STATUS_LOG_INTERVAL = 10.0

    def __init__(
        self,
        source: PoseSource,
        publisher: MulticastPublisher,
        registry: DeviceRegistry | None = None,
        poll_interval: float = POLL_INTERVAL,
        seen_only: bool = True,
        echo: bool = False,
        status_log_interval: float = STATUS_LOG_INTERVAL,
        clock: Callable[[], int] = current_timestamp_ms,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.publisher = publisher
        self.registry = registry if registry is not None else DeviceRegistry()
        self.poll_interval = poll_interval
        self.seen_only = seen_only
        self.echo = echo
        self.status_log_interval = status_log_interval
        self._clock = clock
        self._sleep = sleep

        self.running = False
        self._last_status_log = time.monotonic()
        self._stats = {
            "cycles": 0,
            "broadcasts": 0,
            "bytes_sent": 0,
            "dropped_cycles": 0,
            "transport_errors": 0,
            "serialization_errors": 0,
            "clock_errors": 0,
        }

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def run_once(self) -> bytes | None:
        """
        Run one poll/publish cycle.

        Returns:
            The datagram that was sent, or None when the cycle was dropped

        Raises:
            HardwareError: If the pose source fails
        """
        self._stats["cycles"] += 1
        self.registry.ingest(self.source.poll())
        try:
            timestamp = self._clock()
        except (OSError, OverflowError, ValueError) as e:
            self._stats["clock_errors"] += 1
            self._stats["dropped_cycles"] += 1
            logger.warning(f"Dropping cycle {self._stats['cycles']}: clock read failed: {e}")
            return None
        snapshot = TrackedSnapshot(timestamp, self.registry.snapshot(seen_only=self.seen_only))

        try:
            payload = encode_snapshot(snapshot)
        except SerializationError as e:
            self._stats["serialization_errors"] += 1
            self._stats["dropped_cycles"] += 1
            logger.error(f"Dropping cycle {self._stats['cycles']}: {e}")
            return None

        if self.echo:
            logger.debug(payload.decode("utf-8"))

        try:
            sent = self.publisher.broadcast(payload)
        except TransportError as e:
            self._stats["transport_errors"] += 1
            self._stats["dropped_cycles"] += 1
            logger.warning(f"Dropping cycle {self._stats['cycles']}: {e}")
            return None

        self._stats["broadcasts"] += 1
        self._stats["bytes_sent"] += sent
        return payload

    def run(self, max_cycles: int | None = None) -> None:
        """Poll and publish until stop() is called or max_cycles is reached."""
        self.running = True
        logger.info(
            f"Publishing to {self.publisher.group}:{self.publisher.port} "
            f"every {self.poll_interval * 1000:.0f} ms"
        )
        try:
            while self.running:
                self.run_once()

                current_time = time.monotonic()
                if current_time - self._last_status_log >= self.status_log_interval:
                    self._log_status()
                    self._last_status_log = current_time

                if max_cycles is not None and self._stats["cycles"] >= max_cycles:
                    break
                self._sleep(self.poll_interval)
        finally:
            self.running = False
            logger.info(
                f"Loop ended. Cycles: {self._stats['cycles']}, "
                f"broadcasts: {self._stats['broadcasts']}, "
                f"dropped: {self._stats['dropped_cycles']}"
            )

    def stop(self) -> None:
        self.running = False

    def _log_status(self) -> None:
        logger.info(
            f"Status: {len(self.registry)} slots, {self.registry.tracked_count} tracked, "
            f"{self.registry.seen_count} seen, {self._stats['broadcasts']} broadcasts, "
            f"{self._stats['dropped_cycles']} dropped"
        )
        for line in self.registry.status_lines():
            logger.info(f"  {line}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Publish OpenVR device poses to a UDP multicast group"
    )
    parser.add_argument("--config", type=Path, help="User TOML configuration file")
    parser.add_argument(
        "--address",
        help="Multicast destination as GROUP:PORT (default: 239.255.42.98:50692)",
    )
    parser.add_argument(
        "--interface", help="Local interface address or name for the group membership"
    )
    parser.add_argument("--ttl", type=int, help="Multicast TTL (default: 1)")
    parser.add_argument(
        "--no-loopback",
        action="store_true",
        help="Do not deliver published datagrams to listeners on this host",
    )
    parser.add_argument(
        "--interval", type=float, help="Seconds between poll cycles (default: 0.02)"
    )
    parser.add_argument(
        "--origin", choices=["standing", "seated"], help="OpenVR tracking origin"
    )
    parser.add_argument(
        "--broadcast-all",
        action="store_true",
        help="Publish every known slot, not only devices seen at least once",
    )
    parser.add_argument(
        "--missing-slot",
        choices=["untracked", "unchanged"],
        help="How slots missing from a poll are treated",
    )
    parser.add_argument(
        "--axis-order", choices=["xyz", "yzx", "zxy"], help="Axis order of published poses"
    )
    parser.add_argument(
        "--simulate", action="store_true", help="Use the simulated rig instead of OpenVR"
    )
    parser.add_argument(
        "--echo", action="store_true", help="Echo each payload at DEBUG level"
    )
    parser.add_argument("--log-dir", type=Path, help="Directory for the JSON log file")
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", help="loguru rotation rule, e.g. '10 MB'")
    parser.add_argument("--log-retention", help="loguru retention rule, e.g. '1 week'")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )
    return parser


def create_source(config: PublisherConfig, simulate: bool) -> PoseSource:
    """Pick the simulated rig or the OpenVR runtime."""
    if simulate:
        return SimulatedSource(slot_count=config.simulated_device_slots)

    # Imported here so --simulate works on machines without the binding
    from .openvr_source import OpenVRSource

    return OpenVRSource(origin=config.tracking_origin)


def main():
    parser = build_parser()
    args = parser.parse_args()

    try:
        config, overrides = create_config_from_args(args)
    except (ConfigurationError, DefaultConfigError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        raise SystemExit(1) from e
    except FileNotFoundError as e:
        print(f"ERROR: Config file not found: {e.filename}", file=sys.stderr)
        raise SystemExit(1) from e
    except tomllib.TOMLDecodeError as e:
        print(f"ERROR: Invalid TOML in {args.config}: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    configure_logging(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )

    try:
        interface = network_utils.resolve_interface_address(config.interface)
    except ValueError as e:
        logger.error(f"Invalid interface: {e}")
        raise SystemExit(1) from e

    logger.info("=" * 80)
    logger.info("vrcast Starting")
    logger.info("=" * 80)
    logger.info(f"  Version: {get_version()}")
    logger.info(f"  Destination: {config.multicast_group}:{config.port}")
    logger.info(f"  Interface: {interface}")
    local_ips = network_utils.get_local_ip_addresses()
    if local_ips:
        logger.info(f"  Local addresses: {', '.join(local_ips)}")
    logger.info(f"  Source: {'simulated rig' if args.simulate else 'OpenVR'}")
    logger.info(f"  Tracking origin: {config.tracking_origin}")
    logger.info(f"  Broadcast filter: {config.broadcast_filter}")
    logger.info(f"  Missing slots: {config.missing_slot_policy}")
    logger.info(f"  Axis order: {config.axis_order}")
    for override in overrides:
        logger.info(
            f"  Config override: {override.key} = {override.new_value!r} "
            f"(default {override.default_value!r})"
        )
    logger.info("=" * 80)

    try:
        publisher = MulticastPublisher(
            group=config.multicast_group,
            port=config.port,
            interface=interface,
            ttl=config.multicast_ttl,
            loopback=config.multicast_loopback,
        )
    except PublisherError as e:
        logger.error(str(e))
        raise SystemExit(1) from e

    try:
        source = create_source(config, args.simulate)
        with source:
            server = TrackingServer(
                source,
                publisher,
                registry=DeviceRegistry(
                    missing_slot_policy=config.missing_slot_policy,
                    axis_order=config.axis_order,
                ),
                poll_interval=config.poll_interval,
                seen_only=config.seen_only,
                echo=config.echo_snapshots,
                status_log_interval=config.status_log_interval,
            )
            logger.info("Publisher started. Press Ctrl+C to stop.")
            server.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal (Ctrl+C)...")
    except HardwareError as e:
        logger.error(f"Tracking hardware failure: {e}")
        raise SystemExit(1) from e
    except ImportError as e:
        logger.error(f"Tracking source unavailable: {e}")
        raise SystemExit(1) from e
    finally:
        publisher.close()
        logger.info("Shutdown complete.")
