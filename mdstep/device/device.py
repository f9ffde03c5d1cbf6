"""Device selection with batched error reporting."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from numpy.typing import NDArray

from ..config import DeviceSettings
from ..exceptions import ConfigurationError, DeviceError
from .api import (
    CPUDeviceAPI,
    DeviceAPI,
    DeviceAPIError,
    DeviceProperties,
    TorchDeviceAPI,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Device:
    """
    One bound compute device.

    Every failing backend call appends a message instead of raising, so a
    construction sequence reports all of its failures at once through
    :meth:`check_errors`. Construction ends with a checkpoint: an invalid
    device never produces a Device object.

    Args:
        api: Backend API.
        device_id: Device to bind. None asks the backend for its current
            device.

    Raises:
        DeviceError: If any backend call of the construction failed.
    """

    def __init__(self, api: DeviceAPI, device_id: int | None = None) -> None:
        self._api = api
        self._errors: list[str] = []

        if device_id is None:
            device_id = self._call("Getting the current device", api.get_device)
            if device_id is None:
                device_id = 0
        self._device_id = device_id

        self._device_count = self._call(
            "Getting the device count", api.get_device_count
        )
        count = self._device_count
        if count is not None and not 0 <= device_id < count:
            self.add_error(
                "The device ID is out of range. "
                f"The device ID is {device_id} and the device count is "
                f"{self._device_count}"
            )

        self._properties = self._call(
            "Getting the device properties", api.get_device_properties, device_id
        )
        self._call("Setting the device", api.set_device, device_id)

        self.check_errors("Device initialization")
        logger.info(
            "Using %s device %d (%s)",
            api.name,
            self._device_id,
            self._properties.name if self._properties else "unknown",
        )

    def _call(self, action: str, func: Callable[..., T], *args: Any) -> T | None:
        try:
            return func(*args)
        except DeviceAPIError as e:
            self.add_error(f"{action} failed with the following error:\n\n{e}")
            return None

    @property
    def api(self) -> DeviceAPI:
        """Return backend API."""
        return self._api

    @property
    def device_id(self) -> int:
        """Return bound device id."""
        return self._device_id

    @property
    def device_count(self) -> int | None:
        """Return number of devices reported by the backend."""
        return self._device_count

    @property
    def properties(self) -> DeviceProperties | None:
        """Return device properties."""
        return self._properties

    @property
    def errors(self) -> tuple[str, ...]:
        """Messages collected since the last checkpoint."""
        return tuple(self._errors)

    def add_error(self, message: str) -> None:
        """Record a failure to report at the next checkpoint."""
        logger.debug("Device error recorded: %s", message)
        self._errors.append(message)

    def check_errors(self, context: str) -> None:
        """
        Raise one aggregated error if any failure has been recorded.

        Args:
            context: What was being done, e.g. "Device initialization".

        Raises:
            DeviceError: With every recorded message, in order.
        """
        if not self._errors:
            return
        messages = self._errors
        self._errors = []
        raise DeviceError(context, messages)

    def to_device(self, *arrays: NDArray[Any]) -> tuple[Any, ...]:
        """Copy host arrays to the device."""
        moved = tuple(
            self._call("Copying data to the device", self._api.to_device, a)
            for a in arrays
        )
        self.check_errors("Data transfer")
        return moved

    def to_host(self, *arrays: Any) -> tuple[NDArray[Any], ...]:
        """Copy device arrays back to host NumPy arrays."""
        moved = tuple(
            self._call("Copying data to the host", self._api.to_host, a)
            for a in arrays
        )
        self.check_errors("Data transfer")
        return moved  # type: ignore[return-value]


def create_device(settings: DeviceSettings) -> Device:
    """
    Create and validate a device from settings.

    Args:
        settings: Device settings.

    Returns:
        Bound Device.

    Raises:
        ConfigurationError: If the backend name is unknown.
        ImportError: If the backend's package is not installed.
        DeviceError: If the device cannot be bound.
    """
    if settings.backend == "cpu":
        api: DeviceAPI = CPUDeviceAPI()
    elif settings.backend == "cuda":
        api = TorchDeviceAPI()
    else:
        raise ConfigurationError(
            f"Unknown device backend: {settings.backend}. Available: cpu, cuda"
        )
    return Device(api, settings.device_id)
