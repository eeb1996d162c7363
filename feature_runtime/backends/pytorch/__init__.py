"""PyTorch (TorchScript) inference backend.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations


def is_available() -> bool:
    """Check if PyTorch is installed."""
    try:
        import torch  # noqa: F401

        return True
    except ImportError:
        return False


def get_backend():
    """Get TorchBackend class (lazy import)."""
    from .torch_backend import TorchBackend

    return TorchBackend


__all__ = ["get_backend", "is_available"]
