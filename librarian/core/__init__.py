"""librarian.core -- Configuration, errors, type definitions and file utilities."""

from librarian.core.config import Config
from librarian.core.errors import LibrarianError
from librarian.core.tokens import estimate_tokens
from librarian.core.types import FLASH, PRO, GenerationOptions, Generator, now_iso

__all__ = [
    "Config",
    "LibrarianError",
    "estimate_tokens",
    "FLASH",
    "PRO",
    "GenerationOptions",
    "Generator",
    "now_iso",
]
