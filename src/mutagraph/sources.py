"""Collect and parse the project's Python source files."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path

from mutagraph.cast.builder import parse_module
from mutagraph.cast.models import ParsedModule
from mutagraph.config import ScanConfig
from mutagraph.exceptions import ParserError

logger = logging.getLogger("mutagraph.sources")


def collect_files(root: str | Path, config: ScanConfig | None = None) -> list[str]:
    """Relative posix paths of every .py file to mutate, sorted."""
    root = Path(root).resolve()
    config = config or ScanConfig()
    max_size = config.max_file_size_kb * 1024
    exclude = config.exclude_patterns + _read_gitignore(root)

    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)

        dirnames[:] = [
            d
            for d in dirnames
            if not _should_exclude(os.path.join(rel_dir, d) if rel_dir != "." else d, exclude)
        ]

        for filename in filenames:
            if not filename.endswith(".py"):
                continue
            rel_path = os.path.join(rel_dir, filename) if rel_dir != "." else filename
            if _should_exclude(rel_path, exclude):
                continue
            full_path = Path(dirpath) / filename
            try:
                if full_path.stat().st_size > max_size:
                    continue
            except OSError:
                continue
            files.append(Path(rel_path).as_posix())

    return sorted(files)


def load_modules(
    root: str | Path,
    files: list[str],
    progress_callback: callable | None = None,
) -> tuple[dict[str, ParsedModule], list[str]]:
    """Parse each file into a snapshot.

    Returns the parsed modules keyed by relative path, and the files that
    were skipped because they could not be decoded or parsed.
    """
    root = Path(root)
    modules: dict[str, ParsedModule] = {}
    skipped: list[str] = []
    total = len(files)
    for i, rel_path in enumerate(files):
        if progress_callback:
            progress_callback(rel_path, i + 1, total)
        try:
            text = (root / rel_path).read_bytes().decode("utf-8")
            modules[rel_path] = parse_module(text, rel_path)
        except (OSError, UnicodeDecodeError, ParserError) as e:
            logger.warning(f"Skipping {rel_path}: {e}")
            skipped.append(rel_path)
    return modules, skipped


def _should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    path_parts = Path(path).parts
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        for part in path_parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False


def _read_gitignore(root: Path) -> list[str]:
    """Read .gitignore patterns from the project root."""
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []

    patterns = []
    try:
        for line in gitignore.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("!"):
                patterns.append(line.rstrip("/"))
    except OSError:
        return []
    return patterns
