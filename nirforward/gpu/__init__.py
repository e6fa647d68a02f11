"""GPU device discovery and per-device serialization using PyTorch CUDA."""

import logging
import threading
from typing import Optional

import numpy as np
import torch

from nirforward.errors import DeviceUnavailable

logger = logging.getLogger(__name__)


class GPUContext:
    """Process-wide view of the CUDA devices available to the solvers."""

    _available: Optional[bool] = None
    _locks: dict[str, threading.Lock] = {}
    _locks_guard = threading.Lock()

    @classmethod
    def is_available(cls) -> bool:
        """Check if a CUDA device is present."""
        if cls._available is None:
            try:
                cls._available = torch.cuda.is_available() and torch.cuda.device_count() > 0
            except Exception:
                logger.debug("CUDA availability check failed", exc_info=True)
                cls._available = False
        return cls._available

    @classmethod
    def devices(cls) -> list[tuple[int, str, tuple[int, int]]]:
        """(index, name, compute capability) for every CUDA device, 0-based."""
        if not cls.is_available():
            return []
        return [
            (i, torch.cuda.get_device_name(i), torch.cuda.get_device_capability(i))
            for i in range(torch.cuda.device_count())
        ]

    @classmethod
    def best_device_index(cls) -> int:
        """Index of the device with the highest compute capability (first on ties)."""
        devices = cls.devices()
        if not devices:
            raise DeviceUnavailable("No CUDA-capable GPU found")
        return max(devices, key=lambda d: (d[2], -d[0]))[0]

    @classmethod
    def select_device(cls, index: int = -1) -> torch.device:
        """Resolve a 0-based GPU index (-1 = best compute capability) to a device.

        Raises:
            DeviceUnavailable: If no GPU is present or the index is out of range.
        """
        if not cls.is_available():
            raise DeviceUnavailable("No CUDA-capable GPU found")
        if index < 0:
            index = cls.best_device_index()
        count = torch.cuda.device_count()
        if index >= count:
            raise DeviceUnavailable(f"GPU index {index} requested but only {count} device(s) present")
        return torch.device('cuda', index)

    @classmethod
    def device_lock(cls, device: torch.device) -> threading.Lock:
        """Lock allowing one solve in flight per device."""
        key = str(device)
        with cls._locks_guard:
            if key not in cls._locks:
                cls._locks[key] = threading.Lock()
            return cls._locks[key]

    @classmethod
    def to_gpu(cls, arr: np.ndarray, device: torch.device) -> torch.Tensor:
        """Upload a NumPy array to `device`, keeping its dtype."""
        return torch.from_numpy(np.ascontiguousarray(arr)).to(device)

    @classmethod
    def to_cpu(cls, tensor: torch.Tensor) -> np.ndarray:
        """Download a tensor to a NumPy array."""
        return tensor.detach().cpu().numpy()

    @classmethod
    def reset(cls) -> None:
        """Forget the cached CUDA availability (mainly for testing)."""
        cls._available = None


__all__ = ['GPUContext']
