"""GATT transport interface consumed by the protocol engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from ..exceptions import SpheroError

NotificationCallback = Callable[[bytes], None]
DisconnectedCallback = Callable[[], None]
ErrorCallback = Callable[[SpheroError], None]


class Transport(Protocol):
    """Minimal GATT client the session state machine drives.

    Characteristic handles are opaque; they are whatever
    :meth:`get_characteristic` returns and are only passed back to the
    same transport.
    """

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None:
        """Open the link.

        Raises:
            BLEConnectionError: If the link cannot be established
            BLETimeoutError: If connecting timed out
        """
        ...

    async def disconnect(self) -> None: ...

    async def discover_services(self) -> set[str]:
        """Return the lowercase UUIDs of the services the device offers."""
        ...

    def get_characteristic(self, service_uuid: str, characteristic_uuid: str) -> Any:
        """Resolve a characteristic handle.

        Raises:
            BLEConnectionError: If the service or characteristic is missing
        """
        ...

    async def write_characteristic(self, handle: Any, data: bytes, response: bool = True) -> None:
        """Write to a characteristic, returning once the write completed.

        Raises:
            BLEConnectionError: If the write failed or was refused
        """
        ...

    async def write_descriptor(self, handle: Any, data: bytes) -> None: ...

    async def subscribe(self, handle: Any, callback: NotificationCallback) -> None:
        """Enable notifications and deliver each chunk, in order, to callback."""
        ...

    def set_disconnected_callback(self, callback: DisconnectedCallback | None) -> None: ...

    def set_error_callback(self, callback: ErrorCallback | None) -> None: ...
