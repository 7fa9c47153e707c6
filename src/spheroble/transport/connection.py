"""BLE transport backed by bleak."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError
from bleak_retry_connector import BleakClientWithServiceCache, establish_connection

from ..exceptions import BLEConnectionError, BLETimeoutError, SpheroError
from .base import DisconnectedCallback, ErrorCallback, NotificationCallback

if TYPE_CHECKING:
    from bleak.backends.device import BLEDevice

_LOGGER = logging.getLogger(__name__)


class BleakTransport:
    """GATT transport for one robot.

    Features:
    - Automatic retry logic with bleak-retry-connector
    - Service caching for faster reconnections
    - Disconnect and error callbacks for the session state machine
    """

    def __init__(
            self,
            mac_address: str,
            ble_device: BLEDevice | None = None,
            timeout: float = 10.0,
            max_attempts: int = 4,
            use_services_cache: bool = True,
    ):
        """Initialize BLE transport.

        Args:
            mac_address: Device MAC address
            ble_device: Optional BLEDevice from a scanner or Home Assistant
            timeout: Connection timeout in seconds (default: 10)
            max_attempts: Maximum connection attempts for bleak-retry-connector (default: 4)
            use_services_cache: Enable GATT service caching for faster reconnections (default: True)
        """
        self.mac_address = mac_address
        self.ble_device = ble_device
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.use_services_cache = use_services_cache

        self._client: BleakClient | None = None
        self._disconnected_callback: DisconnectedCallback | None = None
        self._error_callback: ErrorCallback | None = None

    def set_disconnected_callback(self, callback: DisconnectedCallback | None) -> None:
        self._disconnected_callback = callback

    def set_error_callback(self, callback: ErrorCallback | None) -> None:
        self._error_callback = callback

    async def connect(self) -> None:
        """Establish BLE connection to device.

        Raises:
            BLEConnectionError: If connection fails
            BLETimeoutError: If connection times out
        """
        if self.is_connected:
            return

        try:
            _LOGGER.debug(
                "Connecting to %s with bleak-retry-connector (max_attempts=%d)",
                self.mac_address,
                self.max_attempts
            )

            if self.ble_device:
                device = self.ble_device
            else:
                device = await BleakScanner.find_device_by_address(
                    self.mac_address,
                    timeout=self.timeout
                )
                if device is None:
                    raise BLEConnectionError(
                        f"Device {self.mac_address} not found during scan"
                    )

            self._client = await establish_connection(
                client_class=BleakClientWithServiceCache,
                device=device,
                name=device.name or self.mac_address,
                disconnected_callback=self._on_disconnected,
                max_attempts=self.max_attempts,
                use_services_cache=self.use_services_cache,
                timeout=self.timeout,
            )

            _LOGGER.debug("Connected to %s", self.mac_address)

        except SpheroError:
            raise
        except asyncio.TimeoutError as e:
            raise BLETimeoutError(
                f"Connection timeout after {self.timeout}s"
            ) from e
        except Exception as e:
            raise BLEConnectionError(
                f"Failed to connect: {e}"
            ) from e

    async def disconnect(self) -> None:
        """Disconnect from device."""
        client, self._client = self._client, None
        if client and client.is_connected:
            try:
                _LOGGER.debug("Disconnecting from %s", self.mac_address)
                await client.disconnect()
            except BleakError as e:
                _LOGGER.warning("Error during disconnect: %s", e)

    def _on_disconnected(self, client: BleakClient) -> None:
        if self._client is not client:
            return  # requested disconnect, or a stale client
        _LOGGER.info("Device %s disconnected", self.mac_address)
        self._client = None
        if self._disconnected_callback:
            self._disconnected_callback()

    def _report(self, error: SpheroError) -> SpheroError:
        if self._error_callback:
            self._error_callback(error)
        return error

    def _require_client(self) -> BleakClient:
        if not self._client or not self._client.is_connected:
            raise BLEConnectionError("Not connected")
        return self._client

    async def discover_services(self) -> set[str]:
        """Return the lowercase UUIDs of the connected device's services."""
        client = self._require_client()
        return {service.uuid.lower() for service in client.services}

    def get_characteristic(self, service_uuid: str, characteristic_uuid: str) -> Any:
        """Look up a characteristic of a discovered service.

        Raises:
            BLEConnectionError: If service or characteristic not found
        """
        client = self._require_client()
        service = client.services.get_service(service_uuid)
        if not service:
            raise BLEConnectionError(f"Service {service_uuid} not found")
        characteristic = service.get_characteristic(characteristic_uuid)
        if not characteristic:
            raise BLEConnectionError(
                f"Characteristic {characteristic_uuid} not found in service {service_uuid}"
            )
        return characteristic

    async def write_characteristic(self, handle: Any, data: bytes, response: bool = True) -> None:
        """Write to a characteristic.

        Args:
            handle: Characteristic from :meth:`get_characteristic`
            data: Bytes to write
            response: Wait for write confirmation (default: True)

        Raises:
            BLEConnectionError: If not connected or write fails
        """
        client = self._require_client()
        try:
            await client.write_gatt_char(handle, data, response=response)
        except BleakError as e:
            raise self._report(BLEConnectionError(f"Write failed: {e}")) from e

    async def write_descriptor(self, handle: Any, data: bytes) -> None:
        """Write to a descriptor, given as object or integer handle.

        Raises:
            BLEConnectionError: If not connected or write fails
        """
        client = self._require_client()
        try:
            await client.write_gatt_descriptor(getattr(handle, "handle", handle), data)
        except BleakError as e:
            raise self._report(BLEConnectionError(f"Descriptor write failed: {e}")) from e

    async def subscribe(self, handle: Any, callback: NotificationCallback) -> None:
        """Start notifications; bleak enables them through the CCCD.

        Raises:
            BLEConnectionError: If not connected or notifications fail
        """
        client = self._require_client()

        def _notification_callback(sender: Any, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await client.start_notify(handle, _notification_callback)
        except BleakError as e:
            raise self._report(BLEConnectionError(f"Subscribe failed: {e}")) from e
        _LOGGER.debug("Notifications started on %s", getattr(handle, "uuid", handle))

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._client is not None and self._client.is_connected
