# Semantic Dupes - Find semantically duplicated components, hooks and functions
# Copyright (C) 2025  Jonathan Louis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Exception hierarchy for semantic-dupes.

Four families, handled differently by the indexer:

- ConfigurationError: fatal for the run, fixed only by a forced rebuild.
- EmbeddingServiceError: transient failures that exhausted their retries.
- MalformedEmbeddingError: a single chunk could not be embedded.
- IndexStateError: persisted state is missing or corrupt.
"""

from pathlib import Path
from typing import Optional, Union


class SemanticDupesError(Exception):
    """Base class for all semantic-dupes errors."""


# --- Configuration --------------------------------------------------------

class ConfigurationError(SemanticDupesError):
    """Tool configuration and persisted index disagree."""


class DimensionMismatchError(ConfigurationError):
    """A vector does not have the dimension the index was built with."""

    def __init__(self, expected: int, actual: int, context: str = "vector"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context} dimension mismatch: expected {expected}, got {actual}. "
            "Rebuild the index with --force."
        )


class IncompatibleIndexError(ConfigurationError):
    """The persisted manifest cannot be used with the current configuration."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Incompatible index: {reason}")


# --- Embedding ------------------------------------------------------------

class EmbeddingError(SemanticDupesError):
    """Base class for embedding failures."""


class EmbeddingServiceError(EmbeddingError):
    """Embedding service unreachable or failing after all retries."""


class MalformedEmbeddingError(EmbeddingError):
    """The service answered, but not with a usable vector."""


# --- Persisted state ------------------------------------------------------

class IndexStateError(SemanticDupesError):
    """Base class for problems with the on-disk index."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class IndexNotFoundError(IndexStateError):
    """No index has been built for this directory yet."""


class CorruptIndexError(IndexStateError):
    """An index document exists but cannot be read."""


# --- Chunking and run control --------------------------------------------

class ChunkingError(SemanticDupesError):
    """A source file could not be parsed into chunks."""


class IndexingCancelled(SemanticDupesError):
    """The run was cancelled before anything was persisted."""


class IndexingTimeout(IndexingCancelled):
    """The run exceeded its externally imposed deadline."""
