"""Compute device selection."""

from .api import (
    CPUDeviceAPI,
    DeviceAPI,
    DeviceAPIError,
    DeviceProperties,
    TorchDeviceAPI,
)
from .device import Device, create_device

__all__ = [
    "CPUDeviceAPI",
    "Device",
    "DeviceAPI",
    "DeviceAPIError",
    "DeviceProperties",
    "TorchDeviceAPI",
    "create_device",
]
