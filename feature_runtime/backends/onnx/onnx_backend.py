"""ONNX Runtime backend.

Wraps an ``onnxruntime.InferenceSession``. Inputs are matched to the graph
inputs by name; outputs are returned under the graph output names.

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
    import onnxruntime as ort
    from numpy.typing import NDArray

    from ...core.config import ModelConfig, ModelType

logger = logging.getLogger(__name__)


def get_execution_providers(device: MLDevice) -> list[str]:
    """Get ONNX Runtime execution providers for a device.

    Args:
        device: Requested device

    Returns:
        List of execution provider names in priority order
    """
    if device == MLDevice.CUDA:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    elif device == MLDevice.OPENCL:
        return ["OpenVINOExecutionProvider", "CPUExecutionProvider"]
    else:
        return ["CPUExecutionProvider"]


class ONNXBackend(InferenceBackend):
    """ONNX Runtime session for one model file."""

    def __init__(self, config: ModelConfig, model_type: ModelType) -> None:
        try:
            import onnxruntime as ort
        except ImportError as e:
            msg = "onnxruntime is required. Install with: pip install feature-runtime[onnx]"
            raise BackendUnavailableError(msg) from e

        if not config.model_path:
            msg = f"No model_path configured for {model_type.value}"
            raise BackendUnavailableError(msg)

        model_path = Path(config.model_path)
        if not model_path.exists():
            msg = f"ONNX model not found: {model_path}"
            raise BackendUnavailableError(msg)

        # Session options
        sess_options = ort.SessionOptions()
        sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

        available = set(ort.get_available_providers())
        providers = [p for p in get_execution_providers(config.device) if p in available]
        if not providers:
            msg = f"No ONNX Runtime provider available for device {config.device.value}"
            raise BackendUnavailableError(msg)

        self._session: ort.InferenceSession | None = ort.InferenceSession(
            str(model_path),
            sess_options=sess_options,
            providers=providers,
        )
        self._use_fp16 = config.use_fp16

        # Get actual provider being used
        active_providers = self._session.get_providers()
        self._provider_name = active_providers[0] if active_providers else "Unknown"

        self._input_names = [inp.name for inp in self._session.get_inputs()]
        self._output_names = [out.name for out in self._session.get_outputs()]
        logger.info("ONNX session ready for %s (%s)", model_path.name, self._provider_name)

    @property
    def name(self) -> str:
        """Human-readable backend name."""
        return f"ONNX ({self._provider_name})"

    def run(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        if self._session is None:
            msg = "ONNX session is closed"
            raise InferenceError(msg)

        missing = [name for name in self._input_names if name not in inputs]
        if missing:
            msg = f"Missing ONNX inputs: {', '.join(missing)}"
            raise InferenceError(msg)

        feed = {}
        for name in self._input_names:
            value = np.asarray(inputs[name])
            if self._use_fp16 and value.dtype == np.float32:
                value = value.astype(np.float16)
            feed[name] = value

        outputs = self._session.run(self._output_names, feed)
        result = {}
        for name, value in zip(self._output_names, outputs):
            value = np.asarray(value)
            if value.dtype == np.float16:
                value = value.astype(np.float32)
            result[name] = value
        return result

    def close(self) -> None:
        self._session = None
