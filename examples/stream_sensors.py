"""Connect to a Sphero robot and print the events it sends.

Usage:
    uv run python examples/stream_sensors.py --name BB-1234 --duration 20
    uv run python examples/stream_sensors.py --address AA:BB:CC:DD:EE:FF --name SM-0001
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections import Counter
from datetime import datetime

from bleak import BleakScanner

from spheroble import (
    V1,
    BLETimeoutError,
    CollisionEvent,
    ConnectionStateChanged,
    PowerStateEvent,
    ProtocolErrorEvent,
    SensorStreamEvent,
    SpheroDevice,
)


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _print_event(event) -> None:
    if isinstance(event, SensorStreamEvent):
        attitude = event.sample.attitude
        print(
            f"[{_timestamp()}] sensors pitch={attitude.pitch} roll={attitude.roll} yaw={attitude.yaw} "
            f"accel={event.sample.accelerometer}"
        )
    elif isinstance(event, PowerStateEvent):
        print(f"[{_timestamp()}] power {event.status.volts:.2f}V state={event.status.state}")
    elif isinstance(event, CollisionEvent):
        print(f"[{_timestamp()}] collision axis={event.collision.axis} speed={event.collision.speed}")
    elif isinstance(event, ConnectionStateChanged):
        suffix = f" error={event.error}" if event.error else ""
        print(f"[{_timestamp()}] state {event.previous.value} -> {event.state.value}{suffix}")
    elif isinstance(event, ProtocolErrorEvent):
        print(f"[{_timestamp()}] dropped frame: {event.error}")
    else:
        print(f"[{_timestamp()}] {event}")


async def run(address: str | None, name: str, duration: float) -> None:
    """Connect, enable streaming (v1) or poll the battery (v2), print events."""
    ble_device = None
    if address is None:
        print(f"Scanning for {name}...")
        ble_device = await BleakScanner.find_device_by_name(name, timeout=10.0)
        if ble_device is None:
            print(f"{name} not found")
            return
        address = ble_device.address

    counts: Counter[str] = Counter()
    async with SpheroDevice(address, ble_device=ble_device, name=name) as robot:
        print(f"Connected to {name} ({address}), protocol {robot.variant.name}")
        if robot.variant is V1:
            await robot.set_data_streaming(max_rate_divisor=40)
            await robot.configure_collision_detection()
            await robot.set_power_notify(True)
        else:
            await robot.request_power_state()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration
        while loop.time() < deadline and robot.is_connected:
            try:
                event = await robot.next_event(timeout=max(deadline - loop.time(), 0.1))
            except BLETimeoutError:
                continue
            counts[type(event).__name__] += 1
            _print_event(event)

        if robot.variant is V1 and robot.is_connected:
            await robot.set_data_streaming(0, source_mask_high=0)

    print("\nSummary:")
    for event_type, count in sorted(counts.items()):
        print(f"  {event_type}={count}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print events from a Sphero robot.")
    parser.add_argument("--name", required=True, help="Advertised name, e.g. BB-1234 or SM-0001")
    parser.add_argument("--address", help="MAC address (default: scan by name)")
    parser.add_argument(
        "--duration",
        type=float,
        default=20.0,
        help="Listen duration in seconds. Default: 20",
    )
    parser.add_argument("--debug", action="store_true", help="Log wire traffic.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.WARNING)
    try:
        asyncio.run(run(address=args.address, name=args.name, duration=args.duration))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
