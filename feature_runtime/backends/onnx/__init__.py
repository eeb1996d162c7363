"""ONNX Runtime inference backend.

Supports CPU, CUDA and OpenVINO execution providers.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations


def is_available() -> bool:
    """Check if ONNX Runtime backend is available."""
    try:
        import onnxruntime  # noqa: F401

        return True
    except ImportError:
        return False


def get_available_providers() -> list[str]:
    """Get list of available ONNX Runtime execution providers."""
    try:
        import onnxruntime

        return onnxruntime.get_available_providers()
    except ImportError:
        return []


# Lazy import to avoid loading onnxruntime if not needed
def get_backend():
    """Get ONNXBackend class (lazy import)."""
    from .onnx_backend import ONNXBackend

    return ONNXBackend


__all__ = ["get_available_providers", "get_backend", "is_available"]
