"""Test the connection state machine against a scripted transport."""

from __future__ import annotations

import asyncio

import pytest

from spheroble.exceptions import (
    BLEConnectionError,
    BufferOverflowError,
    HandshakeStepFailedError,
    ProtocolError,
    TransportDisconnectedError,
)
from spheroble.models.enums import ConnectionState
from spheroble.models.events import (
    ConnectionStateChanged,
    LocatorEvent,
    PowerStateEvent,
    ProtocolErrorEvent,
    SignalStrengthEvent,
)
from spheroble.protocol.commands import Command, build_roll_payload
from spheroble.protocol.variants import (
    V1,
    V1_ANTI_DOS_UUID,
    V1_COMMANDS_UUID,
    V1_RADIO_SERVICE_UUID,
    V1_RESPONSES_UUID,
    V1_RSSI_UUID,
    V1_TX_POWER_UUID,
    V1_WAKE_UUID,
    V2,
    V2_ANTI_DOS_UUID,
    V2_API_CHARACTERISTIC_UUID,
)
from spheroble.session import ConnectionSession, ConnectionStateMachine

V1_LOCATOR_QUERY = b"\xff\xff\x02\x15\x00\x01\xe7"
V1_LOCATOR_ACK = bytes.fromhex("ffff00040801001000200005bd")
V2_BATTERY_QUERY = bytes.fromhex("8d0a130300dfd8")

STARTUP = [
    ConnectionState.CONNECTING,
    ConnectionState.DISCOVERING_CONTROL_SERVICE,
    ConnectionState.RUNNING_HANDSHAKE,
    ConnectionState.SUBSCRIBING_NOTIFICATIONS,
    ConnectionState.READY,
]


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _states(events: list) -> list[ConnectionState]:
    return [event.state for event in events if isinstance(event, ConnectionStateChanged)]


def _disconnects(events: list) -> list[ConnectionStateChanged]:
    return [
        event for event in events
        if isinstance(event, ConnectionStateChanged) and event.state is ConnectionState.DISCONNECTED
    ]


class TestConnectionSession:
    """Test per-connection state."""

    def test_sequence_wraps(self):
        session = ConnectionSession(V1)
        session.sequence_counter = 255

        assert session.next_sequence_number() == 255
        assert session.next_sequence_number() == 0

    def test_reset(self):
        session = ConnectionSession(V2)
        session.next_sequence_number()
        session.reassembler.feed(b"\x8d\x01")

        session.reset()

        assert session.sequence_counter == 0
        assert session.reassembler.buffered == 0


@pytest.mark.asyncio
async def test_v1_startup_reaches_ready(fake_transport, events) -> None:
    """Unlock, TX power and wake go out in order before the baseline query."""
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    await machine.start()

    assert machine.is_ready
    assert _states(events) == STARTUP
    assert events[-1] == ConnectionStateChanged(ConnectionState.READY, ConnectionState.SUBSCRIBING_NOTIFICATIONS)
    assert fake_transport.writes == [
        (V1_ANTI_DOS_UUID, b"011i3"),
        (V1_TX_POWER_UUID, b"\x07"),
        (V1_WAKE_UUID, b"\x01"),
        (V1_COMMANDS_UUID, V1_LOCATOR_QUERY),
    ]
    assert set(fake_transport.subscriptions) == {V1_RESPONSES_UUID, V1_RSSI_UUID}


@pytest.mark.asyncio
async def test_v2_startup_reaches_ready(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V2, events.append)

    await machine.start()

    assert _states(events) == STARTUP
    assert fake_transport.writes == [
        (V2_ANTI_DOS_UUID, b"usetheforce...band"),
        (V2_API_CHARACTERISTIC_UUID, V2_BATTERY_QUERY),
    ]
    assert set(fake_transport.subscriptions) == {V2_API_CHARACTERISTIC_UUID}


@pytest.mark.asyncio
async def test_handshake_waits_for_write_completion(fake_transport, events) -> None:
    """No later step, and no READY, before the unlock write completes."""
    gate = fake_transport.write_gates[V1_ANTI_DOS_UUID] = asyncio.Event()
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    task = asyncio.create_task(machine.start())
    await _settle()

    assert machine.state is ConnectionState.RUNNING_HANDSHAKE
    assert fake_transport.writes == []
    assert ConnectionState.READY not in _states(events)

    gate.set()
    await task

    assert machine.is_ready


@pytest.mark.asyncio
async def test_ready_reported_after_baseline_query(fake_transport, events) -> None:
    gate = fake_transport.write_gates[V1_COMMANDS_UUID] = asyncio.Event()
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    task = asyncio.create_task(machine.start())
    await _settle()

    assert ConnectionState.READY not in _states(events)

    gate.set()
    await task

    assert _states(events)[-1] is ConnectionState.READY
    assert fake_transport.writes_to(V1_COMMANDS_UUID) == [V1_LOCATOR_QUERY]


@pytest.mark.asyncio
async def test_handshake_step_failure(fake_transport, events) -> None:
    """A refused TX power write fails the session with step index 1."""
    fake_transport.fail_writes[V1_TX_POWER_UUID] = BLEConnectionError("write refused")
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    with pytest.raises(HandshakeStepFailedError) as excinfo:
        await machine.start()

    assert excinfo.value.index == 1
    assert excinfo.value.step is V1.handshake[1]
    assert machine.state is ConnectionState.FAILED
    assert machine.failure is excinfo.value
    assert fake_transport.writes_to(V1_COMMANDS_UUID) == []

    disconnects = _disconnects(events)
    assert len(disconnects) == 1
    assert disconnects[0].previous is ConnectionState.RUNNING_HANDSHAKE
    assert disconnects[0].error is excinfo.value


@pytest.mark.asyncio
async def test_failed_startup_closes_link(fake_transport, events) -> None:
    """The link is not left open after a handshake write fails."""
    fake_transport.fail_writes[V1_TX_POWER_UUID] = BLEConnectionError("write refused")
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    with pytest.raises(HandshakeStepFailedError):
        await machine.start()

    assert ("disconnect",) in fake_transport.calls
    assert not fake_transport.is_connected
    assert len(_disconnects(events)) == 1


@pytest.mark.asyncio
async def test_disconnect_error_keeps_startup_error(fake_transport, events) -> None:
    fake_transport.fail_writes[V1_TX_POWER_UUID] = BLEConnectionError("write refused")
    fake_transport.fail_disconnect = BLEConnectionError("adapter gone")
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    with pytest.raises(HandshakeStepFailedError):
        await machine.start()

    assert fake_transport.calls[-1] == ("disconnect",)
    assert machine.state is ConnectionState.FAILED


@pytest.mark.asyncio
async def test_disconnect_during_handshake(fake_transport, events) -> None:
    gate = fake_transport.write_gates[V1_ANTI_DOS_UUID] = asyncio.Event()
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    task = asyncio.create_task(machine.start())
    await _settle()
    fake_transport.drop()

    assert machine.state is ConnectionState.FAILED

    gate.set()
    with pytest.raises(TransportDisconnectedError):
        await task

    assert len(_disconnects(events)) == 1
    assert ConnectionState.READY not in _states(events)
    assert fake_transport.writes_to(V1_TX_POWER_UUID) == []


@pytest.mark.asyncio
async def test_transport_error_during_startup_is_deferred(fake_transport, events) -> None:
    """The awaiting step raises the reported error once it completes."""
    gate = fake_transport.write_gates[V1_ANTI_DOS_UUID] = asyncio.Event()
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    error = BLEConnectionError("service error")

    task = asyncio.create_task(machine.start())
    await _settle()
    fake_transport.error_callback(error)

    assert machine.state is ConnectionState.RUNNING_HANDSHAKE

    gate.set()
    with pytest.raises(BLEConnectionError) as excinfo:
        await task

    assert excinfo.value is error
    assert machine.state is ConnectionState.FAILED
    assert _disconnects(events)[0].error is error


@pytest.mark.asyncio
async def test_missing_control_service(transport_factory, events) -> None:
    transport = transport_factory(services={V1_RADIO_SERVICE_UUID})
    machine = ConnectionStateMachine(transport, V1, events.append)

    with pytest.raises(BLEConnectionError, match="Required services not found"):
        await machine.start()

    assert transport.writes == []
    assert _disconnects(events)[0].previous is ConnectionState.DISCOVERING_CONTROL_SERVICE
    assert transport.calls[-1] == ("disconnect",)


@pytest.mark.asyncio
async def test_signal_strength_failure_is_not_fatal(fake_transport, events) -> None:
    fake_transport.fail_subscribe[V1_RSSI_UUID] = BLEConnectionError("not permitted")
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    await machine.start()

    assert machine.is_ready
    assert V1_RSSI_UUID not in fake_transport.subscriptions


@pytest.mark.asyncio
async def test_response_subscription_failure_is_fatal(fake_transport, events) -> None:
    fake_transport.fail_subscribe[V1_RESPONSES_UUID] = BLEConnectionError("not permitted")
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    with pytest.raises(BLEConnectionError):
        await machine.start()

    assert _disconnects(events)[0].previous is ConnectionState.SUBSCRIBING_NOTIFICATIONS


@pytest.mark.asyncio
async def test_start_twice_rejected(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    with pytest.raises(ProtocolError, match="already ready"):
        await machine.start()


@pytest.mark.asyncio
async def test_send_before_ready(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)

    with pytest.raises(ProtocolError, match="Cannot send commands"):
        await machine.send(Command.PING)

    assert fake_transport.writes == []


@pytest.mark.asyncio
async def test_send_uses_next_sequence_number(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    first = await machine.send(Command.ROLL, build_roll_payload(0x80, 270))
    second = await machine.send_raw(0x02, 0x30, build_roll_payload(0, 0), synchronous=False)

    assert (first, second) == (1, 2)
    assert fake_transport.writes_to(V1_COMMANDS_UUID)[1] == bytes.fromhex("ffff0230010580010e0137")
    assert fake_transport.writes_to(V1_COMMANDS_UUID)[2][1] == 0xFD


@pytest.mark.asyncio
async def test_send_unsupported_command(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V2, events.append)
    await machine.start()

    with pytest.raises(ProtocolError, match="not supported"):
        await machine.send(Command.ROLL, build_roll_payload(0, 0))


@pytest.mark.asyncio
async def test_fragmented_notification_dispatched(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    for i in range(len(V1_LOCATOR_ACK)):
        fake_transport.notify(V1_RESPONSES_UUID, V1_LOCATOR_ACK[i:i + 1])

    locators = [event for event in events if isinstance(event, LocatorEvent)]
    assert len(locators) == 1
    assert locators[0].sequence_number == 4


@pytest.mark.asyncio
async def test_checksum_error_is_not_fatal(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    fake_transport.notify(V1_RESPONSES_UUID, V1_LOCATOR_ACK[:-1] + b"\x00")
    fake_transport.notify(V1_RESPONSES_UUID, bytes.fromhex("fffe01000202fa"))

    assert isinstance(events[-2], ProtocolErrorEvent)
    assert isinstance(events[-1], PowerStateEvent)
    assert machine.is_ready


@pytest.mark.asyncio
async def test_buffer_overflow_reported(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V2, events.append)
    await machine.start()

    fake_transport.notify(V2_API_CHARACTERISTIC_UUID, b"\x8d" + b"\x01" * 10_000)

    assert isinstance(events[-1], ProtocolErrorEvent)
    assert isinstance(events[-1].error, BufferOverflowError)
    assert machine.is_ready


@pytest.mark.asyncio
async def test_signal_strength_notification(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    fake_transport.notify(V1_RSSI_UUID, b"\xc4")

    assert events[-1] == SignalStrengthEvent(-60)


@pytest.mark.asyncio
async def test_disconnect_when_ready(fake_transport, events) -> None:
    """One disconnect event, however often the transport reports it."""
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    fake_transport.drop()
    fake_transport.drop()

    disconnects = _disconnects(events)
    assert len(disconnects) == 1
    assert disconnects[0].previous is ConnectionState.READY
    assert isinstance(disconnects[0].error, TransportDisconnectedError)
    assert machine.state is ConnectionState.FAILED

    with pytest.raises(ProtocolError):
        await machine.send(Command.PING)


@pytest.mark.asyncio
async def test_transport_error_when_ready(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()
    error = BLEConnectionError("write failed")

    fake_transport.error_callback(error)

    assert machine.failure is error
    assert _disconnects(events)[0].error is error


@pytest.mark.asyncio
async def test_notifications_ignored_after_failure(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()
    handler = fake_transport.subscriptions[V1_RESPONSES_UUID]
    fake_transport.drop()
    count = len(events)

    handler(V1_LOCATOR_ACK)

    assert len(events) == count


@pytest.mark.asyncio
async def test_stop(fake_transport, events) -> None:
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()

    await machine.stop()
    await machine.stop()

    assert machine.state is ConnectionState.DISCONNECTED
    assert events[-1] == ConnectionStateChanged(ConnectionState.DISCONNECTED, ConnectionState.READY)
    assert fake_transport.calls.count(("disconnect",)) == 1


@pytest.mark.asyncio
async def test_restart_after_failure(fake_transport, events) -> None:
    """A new session starts with sequence number 0 again."""
    machine = ConnectionStateMachine(fake_transport, V1, events.append)
    await machine.start()
    await machine.send(Command.PING)
    fake_transport.drop()

    await machine.start()

    assert machine.is_ready
    assert machine.failure is None
    assert fake_transport.writes_to(V1_COMMANDS_UUID)[-1] == V1_LOCATOR_QUERY
