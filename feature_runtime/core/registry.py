"""Model registry.

Binds names (and model types) to model instances and owns the settings
shared by every model: default device, cache directory and download
policy. All operations report failures as return values and log them.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from ..utils.cache import clear_directory, directory_size, format_size
from .config import MLDevice, ModelConfig, ModelKind, ModelType, RegistryConfig
from .model_interface import DetectorModel, MatcherModel

if TYPE_CHECKING:
    from .model_interface import MLModel

logger = logging.getLogger(__name__)


def _probe_devices() -> list[MLDevice]:
    from ..backends import get_available_devices

    return get_available_devices()


class ModelRegistry:
    """Catalog of named models sharing one set of runtime settings.

    One reentrant lock guards the tables and settings. Model loading and
    unloading run outside it, under each model's own lock.

    Example:
        >>> registry = ModelRegistry()
        >>> registry.register_model("d1", SuperPointDetector())
        >>> registry.load_model("d1", ModelConfig(model_path="superpoint.pt"))
        True
        >>> detector = registry.get_detector("d1")
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        device_probe: Callable[[], list[MLDevice]] | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            config: Registry settings (defaults when omitted)
            device_probe: Lists the devices usable by the installed runtimes
        """
        config = config or RegistryConfig()
        self._lock = threading.RLock()
        self._models: dict[str, MLModel] = {}
        self._types: dict[ModelType, str] = {}
        self._device_probe = device_probe or _probe_devices
        self._default_device = config.default_device
        self._cache_dir = config.cache_dir
        self._download_enabled = config.download_enabled

    def register_model(self, name: str, model: MLModel | None) -> bool:
        """Bind ``name`` (and the model's type) to ``model``.

        An existing binding under the same name is replaced.

        Returns:
            False if ``model`` is None
        """
        if model is None:
            logger.error("Cannot register null model '%s'", name)
            return False

        with self._lock:
            if name in self._models:
                logger.warning("Model '%s' already registered, overwriting", name)
                self._types = {t: n for t, n in self._types.items() if n != name}
            self._models[name] = model
            self._types[model.model_type] = name

        logger.info("Registered model '%s' (%s)", name, model.model_type.value)
        return True

    def get_model(self, key: str | ModelType) -> MLModel | None:
        """Look up a model by registered name or by model type."""
        with self._lock:
            if isinstance(key, ModelType):
                name = self._types.get(key)
                model = self._models.get(name) if name is not None else None
            else:
                model = self._models.get(key)

        if model is None:
            label = key.value if isinstance(key, ModelType) else key
            logger.warning("Model '%s' not found", label)
        return model

    def get_detector(self, key: str | ModelType) -> DetectorModel | None:
        """Look up a model and return it only if it is a detector."""
        model = self.get_model(key)
        if model is None:
            return None
        if model.kind != ModelKind.DETECTOR or not isinstance(model, DetectorModel):
            logger.warning("Model '%s' is not a detector", model.name)
            return None
        return model

    def get_matcher(self, key: str | ModelType) -> MatcherModel | None:
        """Look up a model and return it only if it is a matcher."""
        model = self.get_model(key)
        if model is None:
            return None
        if model.kind != ModelKind.MATCHER or not isinstance(model, MatcherModel):
            logger.warning("Model '%s' is not a matcher", model.name)
            return None
        return model

    def load_model(self, name: str, config: ModelConfig | None = None) -> bool:
        """Load a registered model.

        Args:
            name: Registered name
            config: Load configuration (default device when omitted)

        Returns:
            True if the model is loaded afterwards
        """
        with self._lock:
            model = self._models.get(name)
            if config is None:
                config = ModelConfig(device=self._default_device)

        if model is None:
            logger.error("Model '%s' not found", name)
            return False
        if model.is_loaded:
            logger.info("Model '%s' already loaded", name)
            return True
        return model.load(config)

    def unload_model(self, name: str) -> bool:
        """Unload a registered model.

        Returns:
            False if ``name`` is not registered
        """
        with self._lock:
            model = self._models.get(name)

        if model is None:
            logger.error("Model '%s' not found", name)
            return False
        if not model.is_loaded:
            return True
        model.unload()
        return True

    def unload_all_models(self) -> None:
        """Unload every registered model, continuing past failures."""
        with self._lock:
            models = list(self._models.items())

        for name, model in models:
            try:
                model.unload()
            except Exception as e:
                logger.error("Failed to unload model '%s': %s", name, e)

    def get_available_models(self) -> list[str]:
        """Registered names, in registration order."""
        with self._lock:
            return list(self._models)

    def get_available_model_types(self) -> list[ModelType]:
        """Model types with a bound model."""
        with self._lock:
            return list(self._types)

    def is_model_loaded(self, name: str) -> bool:
        """Whether ``name`` is registered and loaded."""
        with self._lock:
            model = self._models.get(name)
        return model is not None and model.is_loaded

    def is_model_type_available(self, model_type: ModelType) -> bool:
        """Whether a model of ``model_type`` is registered."""
        with self._lock:
            return model_type in self._types

    def get_available_devices(self) -> list[MLDevice]:
        """Devices the installed runtimes can use. CPU is always listed."""
        devices = list(self._device_probe())
        if MLDevice.CPU not in devices:
            devices.insert(0, MLDevice.CPU)
        return devices

    def is_device_available(self, device: MLDevice) -> bool:
        return device in self.get_available_devices()

    def set_default_device(self, device: MLDevice) -> bool:
        """Set the device used by ``load_model`` without explicit config.

        Returns:
            False if the device is unavailable (default unchanged)
        """
        if not self.is_device_available(device):
            logger.warning("Device %s not available", device.value)
            return False
        with self._lock:
            self._default_device = device
        logger.info("Set default device to %s", device.value)
        return True

    def get_default_device(self) -> MLDevice:
        with self._lock:
            return self._default_device

    def set_model_cache_directory(self, path: str | Path | None) -> None:
        """Set the model cache directory (None or "" unsets it)."""
        with self._lock:
            self._cache_dir = Path(path) if path else None
        logger.info("Set model cache directory to %s", self._cache_dir)

    def get_model_cache_directory(self) -> Path | None:
        with self._lock:
            return self._cache_dir

    def set_download_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._download_enabled = enabled
        logger.info("Model download %s", "enabled" if enabled else "disabled")

    def is_download_enabled(self) -> bool:
        with self._lock:
            return self._download_enabled

    def clear_cache(self) -> None:
        """Delete and recreate the cache directory."""
        with self._lock:
            cache_dir = self._cache_dir
            if cache_dir is None:
                logger.warning("Cache directory not set")
                return
            try:
                clear_directory(cache_dir)
            except OSError as e:
                logger.error("Failed to clear cache %s: %s", cache_dir, e)
                return
        logger.info("Cleared model cache %s", cache_dir)

    def get_cache_size(self) -> int:
        """Total bytes stored below the cache directory (0 if unset)."""
        with self._lock:
            cache_dir = self._cache_dir
        if cache_dir is None:
            return 0
        try:
            return directory_size(cache_dir)
        except OSError as e:
            logger.error("Failed to compute cache size: %s", e)
            return 0

    def get_model_info(self) -> dict[str, Any]:
        """Snapshot of the registry state."""
        with self._lock:
            models = list(self._models.items())
            cache_dir = self._cache_dir
            info: dict[str, Any] = {
                "registered_models": len(models),
                "loaded_models": sum(1 for _, m in models if m.is_loaded),
                "cache_dir": str(cache_dir) if cache_dir is not None else None,
                "cache_size": self.get_cache_size(),
                "download_enabled": self._download_enabled,
                "default_device": self._default_device.value,
                "models": {
                    name: {
                        "type": model.model_type.value,
                        "kind": model.kind.value,
                        "loaded": model.is_loaded,
                        "backend": model.backend.value,
                        "device": model.device.value,
                    }
                    for name, model in models
                },
            }
        return info

    def print_model_info(self) -> None:
        """Log a human-readable summary of the registry."""
        info = self.get_model_info()
        logger.info("=== Model registry ===")
        logger.info("Registered models: %d", info["registered_models"])
        logger.info("Loaded models: %d", info["loaded_models"])
        logger.info("Cache directory: %s", info["cache_dir"] or "Not set")
        logger.info("Cache size: %s", format_size(info["cache_size"]))
        logger.info("Download enabled: %s", "Yes" if info["download_enabled"] else "No")
        logger.info("Default device: %s", info["default_device"])
        for name, entry in info["models"].items():
            logger.info(
                "  - %s (type: %s, loaded: %s, backend: %s, device: %s)",
                name,
                entry["type"],
                "Yes" if entry["loaded"] else "No",
                entry["backend"],
                entry["device"],
            )


_registry: ModelRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> ModelRegistry:
    """Process-wide registry, created on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = ModelRegistry()
        return _registry
