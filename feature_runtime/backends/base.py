"""Inference backend contract.

A backend is the opaque runtime that executes a network. The runtime only
exchanges named numpy arrays with it and owns it through a BackendHandle.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
import weakref
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ..core.config import ModelConfig, ModelType

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Base error raised by inference backends."""


class BackendUnavailableError(BackendError):
    """The requested runtime, device or model file cannot be used."""


class InferenceError(BackendError):
    """A backend call failed."""


class InferenceBackend(ABC):
    """Abstract inference runtime."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name (e.g., 'ONNX (CPUExecutionProvider)')."""
        ...

    @abstractmethod
    def run(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        """Execute the network.

        Args:
            inputs: Named input arrays

        Returns:
            Named output arrays
        """
        ...

    def close(self) -> None:
        """Release runtime resources."""


BackendFactory = Callable[["ModelConfig", "ModelType"], InferenceBackend]


class BackendHandle:
    """Owned handle to an acquired backend.

    The backend is created by ``acquire`` and closed exactly once, either
    by ``release`` or when the handle is garbage collected.

    Example:
        >>> with BackendHandle(create_backend, config, ModelType.SUPERPOINT_DETECTOR) as h:
        ...     outputs = h.run({"image": tensor})
    """

    def __init__(
        self,
        factory: BackendFactory,
        config: ModelConfig,
        model_type: ModelType,
    ) -> None:
        self._factory = factory
        self._config = config
        self._model_type = model_type
        self._backend: InferenceBackend | None = None
        self._finalizer: weakref.finalize | None = None

    @property
    def is_acquired(self) -> bool:
        """Whether the backend is currently held."""
        return self._backend is not None

    @property
    def backend(self) -> InferenceBackend:
        """The held backend."""
        if self._backend is None:
            msg = "Backend handle is not acquired"
            raise BackendError(msg)
        return self._backend

    def acquire(self) -> InferenceBackend:
        """Create the backend if not already held.

        Raises:
            BackendUnavailableError: If the factory cannot create it.
        """
        if self._backend is not None:
            return self._backend

        backend = self._factory(self._config, self._model_type)
        if backend is None:
            msg = f"No backend created for {self._model_type.value}"
            raise BackendUnavailableError(msg)

        self._backend = backend
        self._finalizer = weakref.finalize(self, _close_backend, backend)
        logger.debug("Acquired backend %s for %s", backend.name, self._model_type.value)
        return backend

    def release(self) -> None:
        """Close the backend. Safe to call repeatedly."""
        if self._finalizer is not None:
            self._finalizer()
            self._finalizer = None
        self._backend = None

    def run(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        """Run the held backend."""
        return self.backend.run(inputs)

    def __enter__(self) -> BackendHandle:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def _close_backend(backend: InferenceBackend) -> None:
    try:
        backend.close()
    except Exception as e:
        logger.error("Failed to close backend %s: %s", backend.name, e)
