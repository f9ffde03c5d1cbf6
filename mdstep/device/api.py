"""Backend APIs wrapped by :class:`mdstep.device.Device`."""

from __future__ import annotations

import platform
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    import torch


class DeviceAPIError(RuntimeError):
    """A single backend call failed; the message is the backend's error text."""


@dataclass(frozen=True)
class DeviceProperties:
    """
    Static description of a compute device.

    Attributes:
        name: Device name reported by the backend.
        total_memory: Device memory in bytes (0 if unknown).
        backend: Backend name.
    """

    name: str
    total_memory: int
    backend: str


class DeviceAPI(ABC):
    """
    Minimal runtime API of a compute backend.

    Every method that can fail raises DeviceAPIError carrying the backend's
    error text. Callers collect those errors instead of failing on the first.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return backend name."""
        ...

    @abstractmethod
    def get_device(self) -> int:
        """Return the id of the device currently bound by the backend."""
        ...

    @abstractmethod
    def get_device_count(self) -> int:
        """Return number of devices visible to the backend."""
        ...

    @abstractmethod
    def get_device_properties(self, device_id: int) -> DeviceProperties:
        """Return properties of a device."""
        ...

    @abstractmethod
    def set_device(self, device_id: int) -> None:
        """Bind subsequent work to a device."""
        ...

    @abstractmethod
    def to_device(self, array: NDArray[Any]) -> Any:
        """Copy a host array to the bound device."""
        ...

    @abstractmethod
    def to_host(self, array: Any) -> NDArray[Any]:
        """Copy a device array back to a host NumPy array."""
        ...


class CPUDeviceAPI(DeviceAPI):
    """
    Host backend with a single device 0.

    Arrays stay NumPy arrays; transfers do not copy.
    """

    @property
    def name(self) -> str:
        """Return backend name."""
        return "cpu"

    def _check_ordinal(self, device_id: int) -> None:
        if device_id != 0:
            raise DeviceAPIError("invalid device ordinal")

    def get_device(self) -> int:
        """Return the only host device."""
        return 0

    def get_device_count(self) -> int:
        """Return number of host devices."""
        return 1

    def get_device_properties(self, device_id: int) -> DeviceProperties:
        """Return properties of the host device."""
        self._check_ordinal(device_id)
        return DeviceProperties(
            name=platform.processor() or platform.machine() or "cpu",
            total_memory=0,
            backend=self.name,
        )

    def set_device(self, device_id: int) -> None:
        """Bind to the host device."""
        self._check_ordinal(device_id)

    def to_device(self, array: NDArray[Any]) -> NDArray[Any]:
        """Return the array itself."""
        return np.asarray(array)

    def to_host(self, array: Any) -> NDArray[Any]:
        """Return the array itself."""
        return np.asarray(array)


class TorchDeviceAPI(DeviceAPI):
    """
    CUDA backend through ``torch.cuda``.

    Requires PyTorch built with CUDA support.
    """

    def __init__(self) -> None:
        """Initialize torch backend."""
        try:
            import torch
        except ImportError as e:
            raise ImportError(
                "torch is required for the cuda backend. "
                "Install with: pip install torch"
            ) from e

        self._torch = torch
        self._device_id = 0

    @property
    def name(self) -> str:
        """Return backend name."""
        return "cuda"

    def get_device(self) -> int:
        """Return the current CUDA device."""
        try:
            return int(self._torch.cuda.current_device())
        except (RuntimeError, AssertionError) as e:
            raise DeviceAPIError(str(e)) from e

    def get_device_count(self) -> int:
        """Return number of CUDA devices."""
        try:
            return int(self._torch.cuda.device_count())
        except (RuntimeError, AssertionError) as e:
            raise DeviceAPIError(str(e)) from e

    def get_device_properties(self, device_id: int) -> DeviceProperties:
        """Return properties of a CUDA device."""
        try:
            props = self._torch.cuda.get_device_properties(device_id)
        except (RuntimeError, AssertionError) as e:
            raise DeviceAPIError(str(e)) from e
        return DeviceProperties(
            name=props.name, total_memory=int(props.total_memory), backend=self.name
        )

    def set_device(self, device_id: int) -> None:
        """Bind the current thread to a CUDA device."""
        try:
            self._torch.cuda.set_device(device_id)
        except (RuntimeError, AssertionError) as e:
            raise DeviceAPIError(str(e)) from e
        self._device_id = device_id

    def to_device(self, array: NDArray[Any]) -> torch.Tensor:
        """Copy a host array to the bound CUDA device."""
        try:
            return self._torch.as_tensor(array, device=f"cuda:{self._device_id}")
        except (RuntimeError, AssertionError) as e:
            raise DeviceAPIError(str(e)) from e

    def to_host(self, array: Any) -> NDArray[Any]:
        """Copy a tensor back to host memory."""
        try:
            return array.detach().cpu().numpy()
        except RuntimeError as e:
            raise DeviceAPIError(str(e)) from e
