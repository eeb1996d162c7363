"""CLI for the feature runtime.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from .backends import get_available_backends
from .core.config import DEFAULT_CACHE_DIR, RegistryConfig
from .core.registry import ModelRegistry
from .models import register_default_models
from .utils.cache import format_size


def _build_registry(args: argparse.Namespace) -> ModelRegistry:
    """Registry configured from --config and --cache-dir, with built-in models."""
    config = RegistryConfig.from_yaml(args.config) if args.config else RegistryConfig()
    if args.cache_dir:
        config = config.model_copy(update={"cache_dir": Path(args.cache_dir)})

    registry = ModelRegistry(config)
    register_default_models(registry)
    return registry


def cmd_info(args: argparse.Namespace) -> int:
    """Show registered models and registry settings."""
    info = _build_registry(args).get_model_info()

    print(f"Registered models: {info['registered_models']}")
    print(f"Loaded models:     {info['loaded_models']}")
    print(f"Cache directory:   {info['cache_dir'] or 'Not set'}")
    print(f"Cache size:        {format_size(info['cache_size'])}")
    print(f"Download enabled:  {'yes' if info['download_enabled'] else 'no'}")
    print(f"Default device:    {info['default_device']}")
    print()
    for name, entry in info["models"].items():
        icon = "✓" if entry["loaded"] else "-"
        print(f"{icon} {name:<12} {entry['type']:<20} {entry['kind']:<9} {entry['backend']}/{entry['device']}")
    return 0


def cmd_devices(args: argparse.Namespace) -> int:
    """List available devices and inference runtimes."""
    registry = _build_registry(args)

    print("Devices:")
    for device in registry.get_available_devices():
        marker = " (default)" if device == registry.get_default_device() else ""
        print(f"  {device.value}{marker}")

    print("Backends:")
    for name, available in get_available_backends().items():
        print(f"  {'✓' if available else '✗'} {name}")
    return 0


def cmd_cache(args: argparse.Namespace) -> int:
    """Show or clear the model cache."""
    registry = _build_registry(args)
    cache_dir = registry.get_model_cache_directory()

    if args.action == "size":
        size = registry.get_cache_size()
        print(f"{cache_dir}: {format_size(size)} ({size} bytes)")
        return 0

    registry.clear_cache()
    if cache_dir is None or registry.get_cache_size() != 0:
        print("Error: cache was not cleared", file=sys.stderr)
        return 1
    print(f"Cleared {cache_dir}")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="feature-runtime",
        description="Feature detection and matching model runtime",
    )
    parser.add_argument(
        "--cache-dir",
        dest="cache_dir",
        help=f"Model cache directory (default: {DEFAULT_CACHE_DIR})",
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Registry configuration YAML file",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Info command
    info_parser = subparsers.add_parser("info", help="Show registered models")
    info_parser.set_defaults(func=cmd_info)

    # Devices command
    devices_parser = subparsers.add_parser("devices", help="List available devices")
    devices_parser.set_defaults(func=cmd_devices)

    # Cache command
    cache_parser = subparsers.add_parser("cache", help="Inspect or clear the model cache")
    cache_parser.add_argument(
        "action",
        choices=["size", "clear"],
        help="Show the cache size or delete its contents",
    )
    cache_parser.set_defaults(func=cmd_cache)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except (OSError, ValidationError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
