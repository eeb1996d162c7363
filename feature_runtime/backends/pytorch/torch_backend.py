"""TorchScript backend.

Loads a scripted module with ``torch.jit.load``. The module is called with
the named inputs as keyword tensors and must return a dict of tensors.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from ...core.config import MLDevice
from ..base import BackendUnavailableError, InferenceBackend, InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ...core.config import ModelConfig, ModelType

logger = logging.getLogger(__name__)


def resolve_torch_device(device: MLDevice):
    """Map a device tag to a ``torch.device``.

    Raises:
        BackendUnavailableError: If PyTorch cannot dispatch to the device.
    """
    import torch

    if device == MLDevice.CPU:
        return torch.device("cpu")
    if device == MLDevice.CUDA and torch.cuda.is_available():
        return torch.device("cuda")
    if device == MLDevice.VULKAN and getattr(torch, "is_vulkan_available", lambda: False)():
        return torch.device("vulkan")

    msg = f"PyTorch cannot dispatch to device {device.value}"
    raise BackendUnavailableError(msg)


class TorchBackend(InferenceBackend):
    """Scripted PyTorch module for one model file."""

    def __init__(self, config: ModelConfig, model_type: ModelType) -> None:
        try:
            import torch
        except ImportError as e:
            msg = "PyTorch is required. Install with: pip install feature-runtime[torch]"
            raise BackendUnavailableError(msg) from e

        if not config.model_path:
            msg = f"No model_path configured for {model_type.value}"
            raise BackendUnavailableError(msg)

        model_path = Path(config.model_path)
        if not model_path.exists():
            msg = f"TorchScript model not found: {model_path}"
            raise BackendUnavailableError(msg)

        self._device = resolve_torch_device(config.device)
        self._dtype = torch.float16 if config.use_fp16 else torch.float32

        module = torch.jit.load(str(model_path), map_location=self._device)
        module = module.to(dtype=self._dtype)
        module.eval()
        self._module = module
        logger.info("TorchScript module ready for %s on %s", model_path.name, self._device)

    @property
    def name(self) -> str:
        """Human-readable backend name."""
        return f"PyTorch ({self._device})"

    def run(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        import torch

        if self._module is None:
            msg = "TorchScript module is released"
            raise InferenceError(msg)

        tensors = {}
        for name, value in inputs.items():
            tensor = torch.from_numpy(np.ascontiguousarray(value)).to(self._device)
            if tensor.is_floating_point():
                tensor = tensor.to(self._dtype)
            tensors[name] = tensor

        with torch.inference_mode():
            outputs = self._module(**tensors)

        if not isinstance(outputs, dict):
            msg = f"TorchScript module must return a dict, got {type(outputs).__name__}"
            raise InferenceError(msg)

        result = {}
        for name, tensor in outputs.items():
            if tensor.is_floating_point():
                tensor = tensor.float()
            result[name] = tensor.detach().cpu().numpy()
        return result

    def close(self) -> None:
        self._module = None
        try:
            import torch

            if self._device.type == "cuda":
                torch.cuda.empty_cache()
        except ImportError:
            pass
