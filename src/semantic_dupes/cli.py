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
CLI entry point for semantic-dupes.

Usage:
    sdupes index <path> [--force]
    sdupes find <path> [--threshold 0.85] [--kind component]
    sdupes search "<query>" [--path <path>]
    sdupes similar <file>:<line> [--path <path>]
    sdupes stats <path>
    sdupes clear <path>
"""

from dataclasses import asdict
from pathlib import Path
from typing import Optional
import functools
import json
import logging
import sys

import click

from . import __version__
from . import api
from .config import load_config
from .errors import SemanticDupesError
from .manifest import clear_index
from .models import CHUNK_KINDS, DuplicateGroup
from .scanner import INDEX_DIR_NAME


def merge_config_with_cli(
    config: dict,
    cli_value,
    config_key: str,
    default_value,
):
    """
    Merge config file value with CLI value.

    If CLI value differs from default, use CLI (user explicitly set it).
    Otherwise, use config value if present, else use default.
    """
    if cli_value != default_value:
        return cli_value

    return config.get(config_key, default_value)


def print_progress(current: int, total: int, message: str, width: int = 30):
    """Print a progress bar with message."""
    filled = int(width * current / max(total, 1))
    bar = "=" * filled + ">" + " " * (width - filled - 1) if filled < width else "=" * width
    # Use \r to overwrite line, \033[K to clear to end of line
    click.echo(f"\r   [{bar}] {current}/{total} {message}\033[K", nl=False, err=True)
    if current >= total:
        click.echo(err=True)


def handle_errors(func):
    """Turn library errors into a one-line message and exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SemanticDupesError as e:
            click.echo(f"❌ {e}", err=True)
            sys.exit(1)
    return wrapper


def emit_json(data):
    click.echo(json.dumps(data, indent=2, default=str))


def group_to_dict(group: DuplicateGroup) -> dict:
    return {
        "id": group.id,
        "kind": group.kind,
        "avg_similarity": round(group.avg_similarity, 4),
        "size_ratio": round(group.size_ratio, 4),
        "duplicate_score": round(group.duplicate_score, 4),
        "members": [
            {
                "id": m.id,
                "name": m.name,
                "file_path": m.file_path,
                "start_line": m.metadata.start_line,
                "end_line": m.metadata.end_line,
                "kind": m.metadata.kind,
                "score": round(m.score, 4),
            }
            for m in group.members
        ],
    }


@click.group()
@click.option("-v", "--verbose", count=True, help="Log progress (-vv for debug output)")
@click.version_option(version=__version__)
def main(verbose: int):
    """
    Find semantically duplicated components, hooks and functions.

    Workflow:

      # Step 1: Build or update the index (incremental) - saves to .sdupes_index/
      sdupes index ./src

      # Step 2: List duplicate groups
      sdupes find ./src --threshold 0.85

      # Look up similar code
      sdupes search "validate an email address" --path ./src
      sdupes similar components/UserCard.tsx:12 --path ./src
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=".")
@click.option("--force", is_flag=True, help="Discard the existing index and rebuild")
@click.option("--model", type=str, default=None, help="Ollama embedding model (default: nomic-embed-text)")
@click.option("-e", "--exclude", multiple=True, help="Glob patterns to exclude (repeatable)")
@click.option("--timeout", type=float, default=None, help="Abort if indexing takes longer (seconds)")
@click.option("--pull", is_flag=True, help="Pull the embedding model if Ollama does not have it")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@handle_errors
def index(
    path: str,
    force: bool,
    model: Optional[str],
    exclude: tuple,
    timeout: Optional[float],
    pull: bool,
    as_json: bool,
):
    """Build or incrementally update the index of PATH."""
    root_path = Path(path).resolve()

    def on_progress(message: str, current: Optional[int] = None, total: Optional[int] = None):
        if as_json:
            return
        if current is not None and total:
            print_progress(current, total, message)
        else:
            click.echo(f"🔍 {message}...", err=True)

    result = api.index_directory(
        root_path,
        force=force,
        model=model,
        exclude=list(exclude) or None,
        on_progress=on_progress,
        timeout=timeout,
        pull_model=pull,
    )

    if as_json:
        emit_json(asdict(result))
        return

    if result.forced_rebuild:
        click.echo(f"♻️  Rebuilt index: {result.rebuild_reason}")
    click.echo(
        f"✅ {result.added} added, {result.modified} modified, {result.deleted} deleted, "
        f"{result.unchanged} unchanged"
    )
    click.echo(
        f"   {result.total_chunks} chunks in {result.total_files} files "
        f"({result.embedded} embedded, {result.reused} reused) in {result.duration:.1f}s"
    )
    for file_path, reason in result.skipped_files:
        click.echo(f"⚠️  Skipped {file_path}: {reason}", err=True)
    for failure in result.failed_chunks:
        click.echo(f"⚠️  Not embedded {failure.file_path} ({failure.name or 'anonymous'}): {failure.reason}", err=True)


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=".")
@click.option("-t", "--threshold", type=float, default=0.85, help="Similarity threshold 0.0-1.0 (default: 0.85)")
@click.option("-m", "--min-group-size", type=int, default=2, help="Minimum chunks per group (default: 2)")
@click.option("-k", "--kind", type=click.Choice(CHUNK_KINDS), default=None, help="Only this kind of chunk")
@click.option("--json", "as_json", is_flag=True, help="Print groups as JSON")
@handle_errors
def find(path: str, threshold: float, min_group_size: int, kind: Optional[str], as_json: bool):
    """List groups of semantically duplicated code in PATH."""
    root_path = Path(path).resolve()

    # Config values override defaults, but explicit CLI args override config
    config = load_config(root_path)
    threshold = merge_config_with_cli(config, threshold, "threshold", 0.85)
    min_group_size = merge_config_with_cli(config, min_group_size, "min_group_size", 2)

    groups = api.find_duplicates(root_path, threshold=threshold, min_group_size=min_group_size, kind=kind)

    if as_json:
        emit_json([group_to_dict(g) for g in groups])
        return

    if not groups:
        click.echo(f"✨ No duplicate groups at threshold {threshold:.2f}")
        return

    click.echo(f"📊 {len(groups)} duplicate groups (threshold {threshold:.2f})\n")
    for group in groups:
        click.echo(
            f"#{group.id} {group.kind} x{group.size}  "
            f"similarity {group.avg_similarity:.0%}  score {group.duplicate_score:.3f}"
        )
        for member in group.members:
            click.echo(f"   {member.metadata.location}  {member.name or '(anonymous)'}  {member.score:.0%}")
        click.echo()


def _print_results(results, as_json: bool):
    if as_json:
        emit_json([asdict(r) for r in results])
        return
    if not results:
        click.echo("✨ No similar code found")
        return
    for r in results:
        click.echo(f"{r.score:.0%}  {r.file_path}:{r.start_line}-{r.end_line}  {r.name or '(anonymous)'} [{r.kind}]")


@main.command()
@click.argument("query")
@click.option("-p", "--path", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=".")
@click.option("-n", "--top", type=int, default=10, help="Maximum results (default: 10)")
@click.option("-t", "--threshold", type=float, default=0.5, help="Minimum similarity (default: 0.5)")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@handle_errors
def search(query: str, path: str, top: int, threshold: float, as_json: bool):
    """Find code semantically similar to QUERY."""
    results = api.search_similar(query, path=Path(path).resolve(), top=top, threshold=threshold)
    _print_results(results, as_json)


@main.command()
@click.argument("location")
@click.option("-p", "--path", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=".")
@click.option("-n", "--top", type=int, default=10, help="Maximum results (default: 10)")
@click.option("-t", "--threshold", type=float, default=0.5, help="Minimum similarity (default: 0.5)")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@handle_errors
def similar(location: str, path: str, top: int, threshold: float, as_json: bool):
    """Find code similar to the chunk at LOCATION (file:line)."""
    file_path, sep, line = location.rpartition(":")
    if not sep or not line.isdigit():
        raise click.BadParameter("expected FILE:LINE", param_hint="LOCATION")

    results = api.find_similar_at_location(
        Path(path).resolve(), file_path, int(line), top=top, threshold=threshold
    )
    _print_results(results, as_json)


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=".")
@click.option("--json", "as_json", is_flag=True, help="Print stats as JSON")
@handle_errors
def stats(path: str, as_json: bool):
    """Show a summary of the index of PATH."""
    summary = api.get_index_stats(Path(path).resolve())

    if as_json:
        emit_json(summary)
        return

    click.echo(f"📁 {summary['index_dir']}")
    click.echo(f"   Model:     {summary['embedding_model']} ({summary['dimension']} dims)")
    click.echo(f"   Chunks:    {summary['chunk_count']} in {summary['file_count']} files")
    for kind, count in summary["kinds"].items():
        click.echo(f"     {kind}: {count}")
    click.echo(f"   Created:   {summary['created_at']}")
    click.echo(f"   Updated:   {summary['updated_at']}")


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, dir_okay=True), default=".")
def clear(path: str):
    """Delete the index of PATH."""
    root_path = Path(path).resolve()
    api.clear_indexer_cache(root_path)
    if clear_index(root_path / INDEX_DIR_NAME):
        click.echo(f"🗑️  Removed {root_path / INDEX_DIR_NAME}")
    else:
        click.echo("No index to remove")


if __name__ == "__main__":
    main()
