"""Shared fixtures: a scripted in-memory GATT transport."""

from __future__ import annotations

import asyncio

import pytest

from spheroble.exceptions import BLEConnectionError
from spheroble.protocol.variants import (
    V1_CONTROL_SERVICE_UUID,
    V1_RADIO_SERVICE_UUID,
    V2_API_SERVICE_UUID,
    V2_DFU_SERVICE_UUID,
)

ALL_SERVICES = {
    V1_CONTROL_SERVICE_UUID,
    V1_RADIO_SERVICE_UUID,
    V2_API_SERVICE_UUID,
    V2_DFU_SERVICE_UUID,
}


class FakeTransport:
    """Transport double recording every call.

    Characteristic handles are the characteristic UUID strings.
    """

    def __init__(self, services: set[str] | None = None):
        self.services = set(ALL_SERVICES if services is None else services)
        self.connected = False
        self.calls: list[tuple] = []
        self.writes: list[tuple[str, bytes]] = []
        self.descriptor_writes: list[tuple[str, bytes]] = []
        self.subscriptions: dict[str, object] = {}

        self.fail_writes: dict[str, Exception] = {}
        self.fail_subscribe: dict[str, Exception] = {}
        self.missing_characteristics: set[str] = set()
        self.fail_disconnect: Exception | None = None
        self.write_gates: dict[str, asyncio.Event] = {}

        self.disconnected_callback = None
        self.error_callback = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.calls.append(("connect",))
        self.connected = True

    async def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        if self.fail_disconnect is not None:
            raise self.fail_disconnect
        self.connected = False

    async def discover_services(self) -> set[str]:
        self.calls.append(("discover_services",))
        return set(self.services)

    def get_characteristic(self, service_uuid: str, characteristic_uuid: str) -> str:
        if service_uuid not in self.services:
            raise BLEConnectionError(f"Service {service_uuid} not found")
        if characteristic_uuid in self.missing_characteristics:
            raise BLEConnectionError(f"Characteristic {characteristic_uuid} not found")
        return characteristic_uuid

    async def write_characteristic(self, handle: str, data: bytes, response: bool = True) -> None:
        self.calls.append(("write", handle))
        gate = self.write_gates.get(handle)
        if gate is not None:
            await gate.wait()
        error = self.fail_writes.get(handle)
        if error is not None:
            raise error
        self.writes.append((handle, bytes(data)))

    async def write_descriptor(self, handle: str, data: bytes) -> None:
        self.descriptor_writes.append((handle, bytes(data)))

    async def subscribe(self, handle: str, callback) -> None:
        self.calls.append(("subscribe", handle))
        error = self.fail_subscribe.get(handle)
        if error is not None:
            raise error
        self.subscriptions[handle] = callback

    def set_disconnected_callback(self, callback) -> None:
        self.disconnected_callback = callback

    def set_error_callback(self, callback) -> None:
        self.error_callback = callback

    # -- test helpers ----------------------------------------------------

    def notify(self, handle: str, data: bytes) -> None:
        """Deliver one notification chunk to the subscriber of handle."""
        self.subscriptions[handle](bytes(data))

    def drop(self) -> None:
        """Simulate the link going away."""
        self.connected = False
        if self.disconnected_callback:
            self.disconnected_callback()

    def writes_to(self, handle: str) -> list[bytes]:
        return [data for target, data in self.writes if target == handle]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def transport_factory():
    """Build FakeTransports with a custom service set."""
    return FakeTransport
