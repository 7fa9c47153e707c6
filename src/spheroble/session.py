"""Per-connection session state and the connection state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Final

from .exceptions import (
    BLEConnectionError,
    BufferOverflowError,
    HandshakeStepFailedError,
    ProtocolError,
    SpheroError,
    TransportDisconnectedError,
)
from .models.enums import ConnectionState
from .models.events import ConnectionStateChanged, Event, ProtocolErrorEvent, SignalStrengthEvent
from .protocol.chunking import ResponseReassembler
from .protocol.commands import Command, CommandEncoder
from .protocol.responses import ResponseDispatcher
from .protocol.variants import HandshakeStep, ProtocolVariant
from .transport.base import Transport

_LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[Event], None]

_STARTING: Final = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.DISCOVERING_CONTROL_SERVICE,
    ConnectionState.RUNNING_HANDSHAKE,
    ConnectionState.SUBSCRIBING_NOTIFICATIONS,
})
_RECEIVING: Final = frozenset({
    ConnectionState.SUBSCRIBING_NOTIFICATIONS,
    ConnectionState.READY,
})


class ConnectionSession:
    """State of one connection: lifecycle state, sequence counter, buffer."""

    def __init__(self, variant: ProtocolVariant):
        self.variant = variant
        self.state = ConnectionState.DISCONNECTED
        self.sequence_counter = 0
        self.reassembler = ResponseReassembler(variant)

    def next_sequence_number(self) -> int:
        """Return the current sequence number and advance it, wrapping at 256."""
        sequence_number = self.sequence_counter
        self.sequence_counter = (sequence_number + 1) % 256
        return sequence_number

    def reset(self) -> None:
        """Discard sequence and buffer state."""
        self.sequence_counter = 0
        self.reassembler.reset()


class ConnectionStateMachine:
    """Drives one device from connect through the unlock handshake to READY.

    Transport callbacks and notification chunks are handled synchronously;
    every outcome is reported through ``on_event``. Exceptions raised by
    ``on_event`` propagate to whoever delivered the triggering event.

    Usage:
        machine = ConnectionStateMachine(transport, V1, events.append)
        await machine.start()
        await machine.send(Command.ROLL, build_roll_payload(80, 90))
        await machine.stop()
    """

    def __init__(self, transport: Transport, variant: ProtocolVariant, on_event: EventCallback):
        """Initialize state machine.

        Args:
            transport: GATT transport for the device
            variant: Protocol variant of the device family
            on_event: Receives every event of the session
        """
        self.transport = transport
        self.variant = variant
        self.session = ConnectionSession(variant)
        self.encoder = CommandEncoder(variant)
        self.dispatcher = ResponseDispatcher(variant)
        self._on_event = on_event

        self._command_handle: Any = None
        self._failure: SpheroError | None = None
        self._pending_error: SpheroError | None = None

        transport.set_disconnected_callback(self._on_transport_disconnected)
        transport.set_error_callback(self._on_transport_error)

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def is_ready(self) -> bool:
        return self.session.state is ConnectionState.READY

    @property
    def failure(self) -> SpheroError | None:
        """Error that ended the last session, if it failed."""
        return self._failure

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        """Connect, unlock and subscribe; returns once the session is READY.

        Raises:
            ProtocolError: If the session is already running
            BLEConnectionError: If connecting, discovery or subscribing fails
            HandshakeStepFailedError: If an unlock write fails
            TransportDisconnectedError: If the link drops during startup
        """
        if self.session.state not in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            raise ProtocolError(f"Session already {self.session.state.value}")

        self.session.reset()
        self._failure = None
        self._pending_error = None

        try:
            self._transition(ConnectionState.CONNECTING)
            await self.transport.connect()
            self._check_link()

            self._transition(ConnectionState.DISCOVERING_CONTROL_SERVICE)
            await self._discover()

            self._transition(ConnectionState.RUNNING_HANDSHAKE)
            for index, step in enumerate(self.variant.handshake):
                await self._run_step(index, step)

            self._transition(ConnectionState.SUBSCRIBING_NOTIFICATIONS)
            response_handle = self.transport.get_characteristic(
                self.variant.control_service_uuid, self.variant.response_characteristic_uuid
            )
            await self.transport.subscribe(response_handle, self.handle_notification)
            self._check_link()
            await self._subscribe_signal_strength()

            # READY internally so the baseline query can be sent; the
            # application only hears about READY after it went out.
            self.session.state = ConnectionState.READY
            await self.send(self.variant.baseline_query)
            self._check_link()
        except SpheroError as e:
            self._fail(e)
            await self._close_link()
            raise

        _LOGGER.info("Session ready (%s)", self.variant.name)
        self._on_event(ConnectionStateChanged(
            ConnectionState.READY, ConnectionState.SUBSCRIBING_NOTIFICATIONS
        ))

    async def stop(self) -> None:
        """Tear down the session and disconnect the transport."""
        previous = self.session.state
        if previous is ConnectionState.DISCONNECTED:
            return

        self.session.state = ConnectionState.DISCONNECTED
        self.session.reset()
        self._command_handle = None
        if previous is not ConnectionState.FAILED:
            _LOGGER.info("Disconnecting (%s)", self.variant.name)
            self._on_event(ConnectionStateChanged(ConnectionState.DISCONNECTED, previous))
        await self.transport.disconnect()

    async def _close_link(self) -> None:
        """Disconnect after a failed startup without masking its error."""
        try:
            await self.transport.disconnect()
        except SpheroError as e:
            _LOGGER.warning("Error disconnecting after failed startup: %s", e)

    async def _discover(self) -> None:
        services = await self.transport.discover_services()
        self._check_link()

        required = {self.variant.control_service_uuid.lower()}
        required.update(step.service_uuid.lower() for step in self.variant.handshake)
        missing = required - {uuid.lower() for uuid in services}
        if missing:
            raise BLEConnectionError(f"Required services not found: {', '.join(sorted(missing))}")

        self._command_handle = self.transport.get_characteristic(
            self.variant.control_service_uuid, self.variant.command_characteristic_uuid
        )
        _LOGGER.debug("Control service %s found", self.variant.control_service_uuid)

    async def _run_step(self, index: int, step: HandshakeStep) -> None:
        _LOGGER.debug("Handshake step %d: %s", index, step.description or step.characteristic_uuid)
        try:
            handle = self.transport.get_characteristic(step.service_uuid, step.characteristic_uuid)
            await self.transport.write_characteristic(handle, step.payload, response=True)
        except BLEConnectionError as e:
            self._pending_error = None
            raise HandshakeStepFailedError(
                f"Handshake step {index} ({step.description or step.characteristic_uuid}) failed: {e}",
                step=step,
                index=index,
            ) from e
        self._check_link()

    async def _subscribe_signal_strength(self) -> None:
        service_uuid = self.variant.signal_strength_service_uuid
        characteristic_uuid = self.variant.signal_strength_characteristic_uuid
        if not service_uuid or not characteristic_uuid:
            return
        try:
            handle = self.transport.get_characteristic(service_uuid, characteristic_uuid)
            await self.transport.subscribe(handle, self.handle_signal_strength)
        except BLEConnectionError as e:
            self._pending_error = None
            _LOGGER.warning("Signal strength notifications unavailable: %s", e)
        self._check_link()

    def _check_link(self) -> None:
        """Raise if the link failed while an operation was awaited."""
        if self.session.state is ConnectionState.FAILED:
            raise self._failure or TransportDisconnectedError("Session failed")
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error

    def _transition(self, state: ConnectionState) -> None:
        previous = self.session.state
        self.session.state = state
        _LOGGER.debug("State %s -> %s", previous.value, state.value)
        self._on_event(ConnectionStateChanged(state, previous))

    def _fail(self, error: SpheroError) -> None:
        """Move to FAILED and report one disconnect; repeated calls are no-ops."""
        previous = self.session.state
        if previous in (ConnectionState.FAILED, ConnectionState.DISCONNECTED):
            _LOGGER.debug("Ignoring failure in state %s: %s", previous.value, error)
            return

        _LOGGER.warning("Session failed in state %s: %s", previous.value, error)
        self._failure = error
        self.session.state = ConnectionState.FAILED
        self.session.reset()
        self._command_handle = None
        self._on_event(ConnectionStateChanged(ConnectionState.DISCONNECTED, previous, error))

    def _on_transport_disconnected(self) -> None:
        self._fail(TransportDisconnectedError("Transport disconnected"))

    def _on_transport_error(self, error: SpheroError) -> None:
        if self.session.state in _STARTING:
            # the awaiting startup step reports it
            self._pending_error = self._pending_error or error
            return
        self._fail(error)

    # -- commands --------------------------------------------------------

    async def send(self, command: Command, payload: bytes = b"") -> int:
        """Send a catalog command.

        Args:
            command: Command to send
            payload: Command data, see the ``build_*_payload`` helpers

        Returns:
            Sequence number used for the frame

        Raises:
            ProtocolError: If not READY or the variant lacks the command
            BLEConnectionError: If the write fails
        """
        self._require_ready()
        sequence_number = self.session.sequence_counter
        data = self.encoder.build_command(self.session, command, payload)
        _LOGGER.debug("Sending %s seq=%d", command.name, sequence_number)
        await self.transport.write_characteristic(self._command_handle, data, response=True)
        return sequence_number

    async def send_raw(
            self,
            target: int,
            command_id: int,
            payload: bytes = b"",
            synchronous: bool = True,
            reset_timeout: bool = True,
    ) -> int:
        """Send a command that is not in the catalog.

        Returns:
            Sequence number used for the frame

        Raises:
            ProtocolError: If not READY
            BLEConnectionError: If the write fails
        """
        self._require_ready()
        sequence_number = self.session.sequence_counter
        data = self.encoder.build(
            self.session, target, command_id, payload,
            synchronous=synchronous, reset_timeout=reset_timeout,
        )
        await self.transport.write_characteristic(self._command_handle, data, response=True)
        return sequence_number

    def _require_ready(self) -> None:
        if self.session.state is not ConnectionState.READY:
            raise ProtocolError(f"Cannot send commands in state {self.session.state.value}")

    # -- inbound ---------------------------------------------------------

    def handle_notification(self, data: bytes) -> None:
        """Process one notification chunk from the response characteristic."""
        if self.session.state not in _RECEIVING:
            _LOGGER.debug("Dropping %d bytes received in state %s", len(data), self.session.state.value)
            return

        overflow: BufferOverflowError | None = None
        try:
            frames = self.session.reassembler.feed(data)
        except BufferOverflowError as e:
            frames = e.frames
            overflow = e

        for frame in frames:
            self._on_event(self.dispatcher.dispatch(frame))
        if overflow is not None:
            self._on_event(ProtocolErrorEvent(overflow))

    def handle_signal_strength(self, data: bytes) -> None:
        """Process an RSSI notification (one signed byte, dBm)."""
        if not data or self.session.state not in _RECEIVING:
            return
        rssi = int.from_bytes(data[:1], "big", signed=True)
        self._on_event(SignalStrengthEvent(rssi))
