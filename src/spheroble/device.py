"""Main Sphero BLE device class."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .exceptions import BLETimeoutError
from .models.enums import ColorLED, ConnectionState, DriveFlag, RollMode, Stance
from .models.events import (
    CollisionEvent,
    Event,
    LocatorEvent,
    PowerStateEvent,
    SensorStreamEvent,
    SignalStrengthEvent,
)
from .models.sensors import CollisionData, LocatorData, PowerStatus, SensorStreamSample
from .protocol import (
    Command,
    ProtocolVariant,
    build_boost_payload,
    build_configure_collision_detection_payload,
    build_configure_locator_payload,
    build_drive_payload,
    build_play_animation_payload,
    build_roll_payload,
    build_set_back_led_payload,
    build_set_data_streaming_payload,
    build_set_heading_payload,
    build_set_inactive_timeout_payload,
    build_set_led_payload,
    build_set_non_persistent_option_flags_payload,
    build_set_option_flags_payload,
    build_set_power_notify_payload,
    build_set_rgb_led_payload,
    build_set_rotation_rate_payload,
    build_set_stabilization_payload,
    build_set_stance_payload,
    build_sleep_payload,
    select_variant,
)
from .session import ConnectionStateMachine
from .transport import BleakTransport, Transport

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)

# every channel; SensorStreamSample decodes exactly this layout
_FULL_MASK = 0xFFFFFFFF


class SpheroDevice:
    """Sphero robot connected over BLE.

    Main API for driving a robot and reading its sensors. The protocol
    variant is picked from the advertised name unless given explicitly.

    Usage:
        async with SpheroDevice("AA:BB:CC:DD:EE:FF", name="BB-1234") as robot:
            await robot.set_color(0, 0, 255)
            await robot.roll(80, 90)
            event = await robot.next_event()

        # Explicit variant, e.g. for a renamed robot
        async with SpheroDevice(mac, variant=V2) as robot:
            await robot.drive(60, 180)
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            name: str | None = None,
            variant: ProtocolVariant | None = None,
            timeout: float = 10.0,
            max_attempts: int = 4,
            use_services_cache: bool = True,
            transport: Transport | None = None,
            max_queued_events: int = 1000,
    ):
        """Initialize Sphero device.

        Args:
            mac_address: Device MAC address
            ble_device: Optional BLEDevice from a scanner or Home Assistant
            name: Advertised name, used to pick the variant (default: ble_device.name)
            variant: Protocol variant, overrides name based selection
            timeout: BLE connection timeout in seconds (default: 10)
            max_attempts: Maximum connection attempts (default: 4)
            use_services_cache: Enable GATT service caching (default: True)
            transport: Transport to use instead of a BleakTransport
            max_queued_events: Events kept for next_event; the oldest is
                dropped when full (default: 1000)

        Raises:
            ValueError: If no variant is given and the name matches none
        """
        self.mac_address = mac_address
        if name is None and ble_device is not None:
            name = ble_device.name
        self.name = name

        if variant is None:
            variant = select_variant(name)
        if variant is None:
            raise ValueError(
                f"Cannot determine protocol variant for device name {name!r}; pass variant="
            )
        self._variant = variant

        if transport is None:
            transport = BleakTransport(
                mac_address,
                ble_device,
                timeout=timeout,
                max_attempts=max_attempts,
                use_services_cache=use_services_cache,
            )
        self._transport = transport
        self._machine = ConnectionStateMachine(transport, variant, self._handle_event)
        self._events: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queued_events)

        self._power: PowerStatus | None = None
        self._locator: LocatorData | None = None
        self._sensors: SensorStreamSample | None = None
        self._collision: CollisionData | None = None
        self._rssi: int | None = None

    async def __aenter__(self) -> SpheroDevice:
        """Connect and unlock the robot."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Disconnect from robot."""
        await self.disconnect()

    async def connect(self) -> None:
        """Connect, run the unlock handshake and subscribe to responses.

        Raises:
            BLEConnectionError: If connection or handshake fails
            BLETimeoutError: If connection times out
        """
        _LOGGER.info("Connecting to %s (%s)", self.name or self.mac_address, self._variant.name)
        await self._machine.start()

    async def disconnect(self) -> None:
        await self._machine.stop()

    @property
    def variant(self) -> ProtocolVariant:
        return self._variant

    @property
    def state(self) -> ConnectionState:
        return self._machine.state

    @property
    def is_connected(self) -> bool:
        return self._machine.is_ready

    @property
    def power(self) -> PowerStatus | None:
        """Last reported battery status."""
        return self._power

    @property
    def locator(self) -> LocatorData | None:
        """Last reported position."""
        return self._locator

    @property
    def sensors(self) -> SensorStreamSample | None:
        """Last sensor stream sample."""
        return self._sensors

    @property
    def last_collision(self) -> CollisionData | None:
        return self._collision

    @property
    def rssi(self) -> int | None:
        return self._rssi

    def _handle_event(self, event: Event) -> None:
        if isinstance(event, PowerStateEvent):
            self._power = event.status
        elif isinstance(event, LocatorEvent):
            self._locator = event.locator
        elif isinstance(event, SensorStreamEvent):
            self._sensors = event.sample
        elif isinstance(event, CollisionEvent):
            self._collision = event.collision
        elif isinstance(event, SignalStrengthEvent):
            self._rssi = event.rssi
        if self._events.full():
            dropped = self._events.get_nowait()
            _LOGGER.debug("Event queue full, dropping %s", type(dropped).__name__)
        self._events.put_nowait(event)

    async def next_event(self, timeout: float = 5.0) -> Event:
        """Wait for the next event from the robot.

        Args:
            timeout: Wait timeout in seconds (default: 5)

        Returns:
            Next queued event

        Raises:
            BLETimeoutError: If no event arrives within timeout
        """
        try:
            return await asyncio.wait_for(self._events.get(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BLETimeoutError(f"No event received within {timeout}s") from e

    async def wait_for(self, event_type: type, timeout: float = 5.0) -> Event:
        """Wait for an event of one type, discarding others queued before it.

        Raises:
            BLETimeoutError: If no such event arrives within timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            event = await self.next_event(max(deadline - loop.time(), 0))
            if isinstance(event, event_type):
                return event

    async def send_command(self, command: Command, payload: bytes = b"") -> int:
        """Send a catalog command with a prebuilt payload.

        Returns:
            Sequence number used for the frame

        Raises:
            ProtocolError: If not connected or the robot lacks the command
        """
        return await self._machine.send(command, payload)

    # -- status ----------------------------------------------------------

    async def ping(self) -> int:
        return await self.send_command(Command.PING)

    async def request_power_state(self) -> int:
        """Ask for battery status; answered by a PowerStateEvent."""
        return await self.send_command(self._variant.power_query)

    async def request_locator(self) -> int:
        """Ask for the position; answered by a LocatorEvent (v1)."""
        return await self.send_command(Command.GET_LOCATOR_DATA)

    async def set_power_notify(self, enabled: bool = True) -> int:
        return await self.send_command(Command.SET_POWER_NOTIFY, build_set_power_notify_payload(enabled))

    # -- driving ---------------------------------------------------------

    async def roll(self, speed: int, heading: int, mode: RollMode = RollMode.ROLL) -> int:
        """Roll at speed (0-255) towards heading (degrees, 0-359)."""
        return await self.send_command(Command.ROLL, build_roll_payload(speed, heading, mode))

    async def brake(self, heading: int = 0) -> int:
        return await self.roll(0, heading, RollMode.BRAKE)

    async def drive(self, speed: int, heading: int, flags: DriveFlag = DriveFlag.NONE) -> int:
        """Drive at speed towards heading (v2)."""
        return await self.send_command(Command.DRIVE, build_drive_payload(speed, heading, flags))

    async def boost(self, duration: int, heading: int) -> int:
        return await self.send_command(Command.BOOST, build_boost_payload(duration, heading))

    async def set_heading(self, heading: int) -> int:
        return await self.send_command(Command.SET_HEADING, build_set_heading_payload(heading))

    async def set_stabilization(self, enabled: bool) -> int:
        return await self.send_command(Command.SET_STABILIZATION, build_set_stabilization_payload(enabled))

    async def set_rotation_rate(self, rate: int) -> int:
        return await self.send_command(Command.SET_ROTATION_RATE, build_set_rotation_rate_payload(rate))

    # -- lights and animations -------------------------------------------

    async def set_color(self, red: int, green: int, blue: int, persist: bool = False) -> int:
        """Set the main LED colour (v1)."""
        return await self.send_command(
            Command.SET_RGB_LED, build_set_rgb_led_payload(red, green, blue, persist)
        )

    async def set_back_led(self, brightness: int) -> int:
        return await self.send_command(Command.SET_BACK_LED, build_set_back_led_payload(brightness))

    async def set_led(self, led: ColorLED | int, red: int, green: int, blue: int) -> int:
        """Set an addressable LED group (v2)."""
        return await self.send_command(Command.SET_LED, build_set_led_payload(led, red, green, blue))

    async def play_animation(self, animation: int) -> int:
        return await self.send_command(Command.PLAY_ANIMATION, build_play_animation_payload(animation))

    async def set_stance(self, stance: Stance) -> int:
        return await self.send_command(Command.SET_STANCE, build_set_stance_payload(stance))

    # -- sensors ---------------------------------------------------------

    async def set_data_streaming(
            self,
            source_mask: int = _FULL_MASK,
            max_rate_divisor: int = 10,
            frames_per_packet: int = 1,
            packet_count: int = 0,
            source_mask_high: int | None = _FULL_MASK,
    ) -> int:
        """Start (or, with a zero mask, stop) the sensor stream.

        Samples arrive as SensorStreamEvents; this command is not
        acknowledged. Only the full channel set at one frame per packet
        decodes into samples, so a running stream must use both full
        masks and frames_per_packet=1. Send other layouts with
        send_command and build_set_data_streaming_payload.

        Raises:
            ValueError: If a running stream asks for a partial layout
        """
        if source_mask and (
                source_mask != _FULL_MASK or source_mask_high != _FULL_MASK or frames_per_packet != 1
        ):
            raise ValueError(
                "Sensor stream decoding needs source_mask=source_mask_high=0xFFFFFFFF "
                "and frames_per_packet=1"
            )
        return await self.send_command(
            Command.SET_DATA_STREAMING,
            build_set_data_streaming_payload(
                source_mask, max_rate_divisor, frames_per_packet, packet_count, source_mask_high
            ),
        )

    async def configure_collision_detection(
            self,
            enabled: bool = True,
            threshold: tuple[int, int] = (100, 100),
            speed_threshold: tuple[int, int] = (1, 1),
            dead_time: int = 10,
    ) -> int:
        return await self.send_command(
            Command.CONFIGURE_COLLISION_DETECTION,
            build_configure_collision_detection_payload(enabled, threshold, speed_threshold, dead_time),
        )

    async def configure_locator(self, flags: int = 0x01, x: int = 0, y: int = 0, yaw_tare: int = 0) -> int:
        return await self.send_command(
            Command.CONFIGURE_LOCATOR, build_configure_locator_payload(flags, x, y, yaw_tare)
        )

    # -- options and power -----------------------------------------------

    async def set_option_flags(self, flags: int) -> int:
        return await self.send_command(Command.SET_OPTION_FLAGS, build_set_option_flags_payload(flags))

    async def set_non_persistent_option_flags(self, flags: int) -> int:
        return await self.send_command(
            Command.SET_NON_PERSISTENT_OPTION_FLAGS, build_set_non_persistent_option_flags_payload(flags)
        )

    async def set_inactive_timeout(self, seconds: int) -> int:
        return await self.send_command(Command.SET_INACTIVE_TIMEOUT, build_set_inactive_timeout_payload(seconds))

    async def sleep(self, wakeup_interval: int = 5, wake_macro: int = 0, script_line: int = 0) -> int:
        """Put the robot to sleep (v1); it disconnects shortly after."""
        return await self.send_command(
            Command.SLEEP, build_sleep_payload(wakeup_interval, wake_macro, script_line)
        )

    async def wake(self) -> int:
        return await self.send_command(Command.WAKE)
