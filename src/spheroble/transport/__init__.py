"""GATT transports."""

from .base import Transport
from .connection import BleakTransport

__all__ = ["Transport", "BleakTransport"]
