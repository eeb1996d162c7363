"""Backend dispatcher for the feature runtime.

Maps a model configuration onto an inference runtime:
- PyTorch: TorchScript modules via torch.jit
- ONNX: ONNX Runtime sessions
- TensorFlow / OpenVINO: not bundled, always unavailable

Also reports which devices the installed runtimes can dispatch to.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
import platform
import sys
from typing import TYPE_CHECKING

from ..core.config import MLBackend, MLDevice
from .base import (
    BackendError,
    BackendFactory,
    BackendHandle,
    BackendUnavailableError,
    InferenceBackend,
    InferenceError,
)

if TYPE_CHECKING:
    from ..core.config import ModelConfig, ModelType

logger = logging.getLogger(__name__)


def is_cuda_available() -> bool:
    """Check whether any installed runtime can use CUDA."""
    try:
        import torch

        if torch.cuda.is_available():
            return True
    except ImportError:
        pass

    from . import onnx

    return "CUDAExecutionProvider" in onnx.get_available_providers()


def is_opencl_available() -> bool:
    """Check whether ONNX Runtime exposes an OpenCL-capable provider."""
    from . import onnx

    return "OpenVINOExecutionProvider" in onnx.get_available_providers()


def is_vulkan_available() -> bool:
    """Check whether PyTorch was built with Vulkan support."""
    try:
        import torch

        return bool(getattr(torch, "is_vulkan_available", lambda: False)())
    except ImportError:
        return False


def get_available_backends() -> dict[str, bool]:
    """Detect which inference runtimes are installed.

    Returns:
        Dict mapping backend name to availability status.
    """
    from . import onnx, pytorch

    return {
        MLBackend.PYTORCH.value: pytorch.is_available(),
        MLBackend.TENSORFLOW.value: False,
        MLBackend.ONNX.value: onnx.is_available(),
        MLBackend.OPENVINO.value: False,
    }


def get_available_devices() -> list[MLDevice]:
    """Devices the installed runtimes can dispatch to.

    CPU is always available.
    """
    devices = [MLDevice.CPU]
    if is_cuda_available():
        devices.append(MLDevice.CUDA)
    if is_opencl_available():
        devices.append(MLDevice.OPENCL)
    if is_vulkan_available():
        devices.append(MLDevice.VULKAN)
    return devices


def get_backend_info() -> dict:
    """Get detailed information about available backends.

    Returns:
        Dict with platform info, backend and device availability.
    """
    from . import onnx

    return {
        "platform": {
            "system": platform.system(),
            "machine": platform.machine(),
            "python": sys.version,
        },
        "backends": get_available_backends(),
        "devices": [d.value for d in get_available_devices()],
        "onnx_providers": onnx.get_available_providers(),
    }


def create_backend(config: ModelConfig, model_type: ModelType) -> InferenceBackend:
    """Create the inference backend selected by ``config.backend``.

    Args:
        config: Model configuration.
        model_type: Type of the model being loaded.

    Returns:
        InferenceBackend ready to run.

    Raises:
        BackendUnavailableError: If the runtime is missing or cannot load the model.
    """
    backend = config.backend
    logger.debug("Creating %s backend for %s", backend.value, model_type.value)

    if backend == MLBackend.PYTORCH:
        from . import pytorch

        return pytorch.get_backend()(config, model_type)

    elif backend == MLBackend.ONNX:
        from . import onnx

        return onnx.get_backend()(config, model_type)

    else:
        msg = f"{backend.value} backend is not supported by this runtime"
        raise BackendUnavailableError(msg)


__all__ = [
    "BackendError",
    "BackendFactory",
    "BackendHandle",
    "BackendUnavailableError",
    "InferenceBackend",
    "InferenceError",
    "create_backend",
    "get_available_backends",
    "get_available_devices",
    "get_backend_info",
    "is_cuda_available",
    "is_opencl_available",
    "is_vulkan_available",
]
