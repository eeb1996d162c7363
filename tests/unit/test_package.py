"""Unit tests for package-level exports.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import pytest


# ==============================================================================
# Package Import Tests
# ==============================================================================


class TestPackageImports:
    """Tests for package imports."""

    def test_import_package(self):
        """Package can be imported."""
        import feature_runtime

        assert feature_runtime is not None

    def test_version(self):
        """Version is defined."""
        from feature_runtime import __version__

        assert __version__ == "0.1.0"

    def test_author(self):
        from feature_runtime import __author__

        assert __author__ == "Delanoe Pirard"

    def test_license(self):
        from feature_runtime import __license__

        assert __license__ == "Apache-2.0"

    def test_all_exports_resolve(self):
        """Every name in __all__ is importable."""
        import feature_runtime

        for name in feature_runtime.__all__:
            assert hasattr(feature_runtime, name), name

    def test_core_exports_resolve(self):
        import feature_runtime.core as core

        for name in core.__all__:
            assert hasattr(core, name), name


# ==============================================================================
# Export Identity Tests
# ==============================================================================


class TestExports:
    """Top-level names are the implementation objects."""

    @pytest.mark.parametrize(
        ("name", "module"),
        [
            ("ModelRegistry", "feature_runtime.core.registry"),
            ("SuperPointDetector", "feature_runtime.models.superpoint"),
            ("LoFTRMatcher", "feature_runtime.models.loftr"),
            ("ModelConfig", "feature_runtime.core.config"),
            ("DetectionResult", "feature_runtime.core.model_interface"),
            ("SyntheticBackend", "feature_runtime.backends.synthetic"),
        ],
    )
    def test_export_origin(self, name, module):
        import importlib

        import feature_runtime

        assert getattr(feature_runtime, name) is getattr(importlib.import_module(module), name)

    def test_builtin_models(self):
        from feature_runtime.models import BUILTIN_MODELS

        assert set(BUILTIN_MODELS) == {"superpoint", "disk", "superglue", "loftr"}
