"""
Librarian -- keeps a project memory document in sync with git history.

    from librarian import Config, SyncPipeline

    config = Config.load(".")
    result = SyncPipeline.from_config(config).sync_latest()
    print(result.outcome)
"""

from librarian.core.config import Config
from librarian.core.errors import (
    ChangesetError,
    ConflictResolutionError,
    GenerationError,
    GenerationFailure,
    LibrarianError,
    MemorySchemaError,
    NoCommitsError,
)
from librarian.core.types import FLASH, PRO, GenerationOptions
from librarian.memory.store import MemoryStore
from librarian.pipeline import CycleResult, Outcome, SyncPipeline
from librarian.summarizer import Summarizer

__version__ = "0.1.0"

__all__ = [
    "Config",
    "SyncPipeline",
    "Summarizer",
    "MemoryStore",
    "CycleResult",
    "Outcome",
    "GenerationOptions",
    "FLASH",
    "PRO",
    "LibrarianError",
    "ChangesetError",
    "NoCommitsError",
    "GenerationError",
    "GenerationFailure",
    "MemorySchemaError",
    "ConflictResolutionError",
]
