"""Feature runtime utilities.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from .cache import clear_directory, directory_size, format_size

__all__ = [
    "clear_directory",
    "directory_size",
    "format_size",
]
