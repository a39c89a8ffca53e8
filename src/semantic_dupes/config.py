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
Configuration for semantic-dupes.

Settings come from three places, later ones winning:

1. Defaults on IndexerConfig
2. A .sdupesrc or .sdupes.toml file ([sdupes] table) in the project
   directory or any parent
3. Explicit arguments from the caller (API keyword arguments, CLI flags)
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any, List
import logging
import os

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore


logger = logging.getLogger(__name__)

CONFIG_NAMES = [".sdupesrc", ".sdupes.toml"]
CONFIG_SECTION = "sdupes"

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "nomic-embed-text"


@dataclass
class IndexerConfig:
    """Every tunable of an indexing run."""

    # Embedding service
    model: str = DEFAULT_MODEL
    base_url: str = field(default_factory=lambda: os.environ.get("OLLAMA_HOST", DEFAULT_BASE_URL))
    dimension: Optional[int] = None       # None = known-model table or first response
    request_timeout: float = 60.0         # Seconds per request
    max_retries: int = 3
    backoff: float = 0.5                  # Initial retry delay, doubled per attempt
    ready_timeout: float = 10.0           # Bounded wait for the service to come up
    batch_size: int = 10
    concurrency: int = 4                  # Embedding requests in flight

    # Scanning and chunking
    exclude: List[str] = field(default_factory=list)
    min_lines: int = 3
    max_lines: int = 150
    include_anonymous: bool = True
    kinds: Optional[List[str]] = None     # Chunk kinds to index (None = all)
    max_embedding_chars: int = 6000

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "IndexerConfig":
        """Build a config from a [sdupes] table, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            key = key.replace("-", "_")
            if key not in known:
                logger.debug("Ignoring unknown config key: %s", key)
                continue
            values[key] = value

        if "exclude" in values and not isinstance(values["exclude"], list):
            values["exclude"] = [str(values["exclude"])]

        return cls(**values)

    def merged(self, **overrides: Any) -> "IndexerConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    def chunking_fingerprint(self) -> Dict[str, Any]:
        """Options that change chunk boundaries (stored in the manifest)."""
        return {
            "min_lines": self.min_lines,
            "max_lines": self.max_lines,
            "include_anonymous": self.include_anonymous,
            "kinds": sorted(self.kinds) if self.kinds is not None else None,
            "max_embedding_chars": self.max_embedding_chars,
        }


def find_config_file(start_path: Path) -> Optional[Path]:
    """
    Search for .sdupesrc or .sdupes.toml in start_path and parent directories.

    Searches up to the root directory or until a config file is found.

    Args:
        start_path: Directory to start searching from

    Returns:
        Path to config file if found, None otherwise
    """
    # Start from the given path and walk up to root
    current = Path(start_path).resolve()

    while True:
        for name in CONFIG_NAMES:
            config_path = current / name
            if config_path.is_file():
                return config_path

        parent = current.parent

        # Stop if we've reached the root
        if parent == current:
            break

        current = parent

    return None


def load_config(path: Path) -> Dict[str, Any]:
    """
    Load the [sdupes] table from the nearest config file.

    Returns an empty dict if no config file is found or it cannot be read;
    a broken config file never stops indexing.

    Example config file (.sdupesrc or .sdupes.toml):
        [sdupes]
        model = "nomic-embed-text"
        base_url = "http://localhost:11434"
        exclude = ["**/stories/**", "**/*.generated.ts"]
        min_lines = 3
        max_lines = 150
        batch_size = 10
        concurrency = 4
        threshold = 0.85
        min_group_size = 2
    """
    config_path = find_config_file(path)

    if config_path is None:
        return {}

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return {}

    logger.debug("Loaded config from %s", config_path)
    return data.get(CONFIG_SECTION, {})


def resolve_config(path: Path, **overrides: Any) -> IndexerConfig:
    """Config file values for path with explicit overrides applied."""
    return IndexerConfig.from_mapping(load_config(path)).merged(**overrides)
