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
Index manifest - the compatibility gate between runs.

Stored as JSON in .sdupes_index/manifest.json for easy inspection. It is
always written last, after the stores it describes.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import shutil

from .errors import CorruptIndexError, IndexNotFoundError
from .models import IndexManifest
from .storage import read_json_document, write_json_atomic


MANIFEST_FILE = "manifest.json"
MANIFEST_VERSION = 1


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_manifest(
    embedding_model: str,
    dimension: int,
    chunking: Optional[Dict[str, Any]] = None,
    created_at: Optional[str] = None,
) -> IndexManifest:
    """Create a manifest for a fresh index."""
    now = utc_now()
    return IndexManifest(
        version=MANIFEST_VERSION,
        embedding_model=embedding_model,
        dimension=dimension,
        created_at=created_at or now,
        updated_at=now,
        chunking=dict(chunking or {}),
    )


def get_manifest_path(index_dir: Path) -> Path:
    return Path(index_dir) / MANIFEST_FILE


def load_manifest(index_dir: Path) -> Optional[IndexManifest]:
    """
    Load the manifest from disk.

    Returns None if no index has been built yet.

    Raises:
        CorruptIndexError: If the manifest exists but is invalid
    """
    path = get_manifest_path(index_dir)

    try:
        data = read_json_document(path)
    except IndexNotFoundError:
        return None

    try:
        return IndexManifest.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptIndexError(f"Malformed manifest {path}: {e}", path) from e


def save_manifest(index_dir: Path, manifest: IndexManifest):
    """Save the manifest atomically."""
    write_json_atomic(get_manifest_path(index_dir), manifest.to_dict())


def clear_index(index_dir: Path) -> bool:
    """Delete the index directory. Returns True if it existed."""
    index_dir = Path(index_dir)
    if index_dir.exists():
        shutil.rmtree(index_dir)
        return True
    return False


def check_compatibility(
    manifest: IndexManifest,
    embedding_model: str,
    dimension: Optional[int] = None,
    chunking: Optional[Dict[str, Any]] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Check if a persisted index can be updated incrementally.

    Any mismatch means a full rebuild; nothing is merged across versions,
    models or chunking settings.

    Returns:
        (compatible, reason_if_not)
    """
    if manifest.version != MANIFEST_VERSION:
        return (False, f"Index format changed: {manifest.version} -> {MANIFEST_VERSION}")

    if manifest.embedding_model != embedding_model:
        return (False, f"Embedding model changed: {manifest.embedding_model} -> {embedding_model}")

    if dimension is not None and manifest.dimension != dimension:
        return (False, f"Vector dimension changed: {manifest.dimension} -> {dimension}")

    if chunking is not None and manifest.chunking != chunking:
        return (False, "Chunking options changed")

    return (True, None)
