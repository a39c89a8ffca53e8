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
JSON documents of the on-disk index.

Every document is plain JSON so the index can be inspected by hand.
"""

from pathlib import Path
from typing import Any
import json
import os

from .errors import CorruptIndexError, IndexNotFoundError


def write_json_atomic(path: Path, data: Any):
    """
    Save a JSON document atomically.

    Writes to a temp file then renames for crash safety.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")

    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")

    os.replace(temp_path, path)


def read_json_document(path: Path) -> Any:
    """
    Load a JSON document of the index.

    Raises:
        IndexNotFoundError: If the file does not exist
        CorruptIndexError: If the file is not valid JSON
    """
    path = Path(path)

    if not path.exists():
        raise IndexNotFoundError(f"No index document at {path}", path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptIndexError(f"Corrupt index document {path}: {e}", path) from e
