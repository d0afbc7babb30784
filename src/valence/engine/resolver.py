"""File resolver: expand glob patterns into candidate paths and select them per validator."""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from valence.errors import ResolveError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from valence.engine.definitions import Validator

logger = logging.getLogger(__name__)

DEFAULT_IGNORE: tuple[str, ...] = ("node_modules/**", ".git/**")


def normalize_path(path: str) -> str:
    """POSIX separators, no leading ``./``."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _is_ignored(rel_path: str, ignore: Iterable[str]) -> bool:
    for pattern in ignore:
        if fnmatch.fnmatch(rel_path, pattern):
            return True
        # "dir/**" also covers the directory's direct children at any depth.
        if pattern.endswith("/**") and (
            rel_path.startswith(pattern[:-2]) or f"/{pattern[:-2]}" in f"/{rel_path}"
        ):
            return True
    return False


def resolve_files(
    patterns: Iterable[str],
    root: Path,
    *,
    ignore: Iterable[str] = DEFAULT_IGNORE,
) -> list[str]:
    """Expand *patterns* relative to *root* into a sorted, deduplicated path list.

    Only regular files are returned, as POSIX paths relative to *root*.
    Raises :class:`ResolveError` for empty or absolute patterns and for
    patterns that escape *root*.
    """
    ignore = tuple(ignore)
    found: set[str] = set()

    for pattern in patterns:
        if not pattern or not pattern.strip():
            msg = "Empty file pattern"
            raise ResolveError(msg)
        posix = PurePosixPath(normalize_path(pattern))
        if posix.is_absolute() or Path(pattern).is_absolute():
            msg = f"File pattern must be relative to the project root: {pattern}"
            raise ResolveError(msg)
        if ".." in posix.parts:
            msg = f"File pattern escapes the project root: {pattern}"
            raise ResolveError(msg)

        try:
            matches = list(root.glob(str(posix)))
        except (ValueError, NotImplementedError) as exc:
            msg = f"Invalid file pattern {pattern!r}: {exc}"
            raise ResolveError(msg) from exc

        for match in matches:
            if not match.is_file():
                continue
            rel = match.relative_to(root).as_posix()
            if _is_ignored(rel, ignore):
                logger.debug("Ignoring %s", rel)
                continue
            found.add(rel)

    return sorted(found)


def filter_for(validator: Validator, paths: Iterable[str]) -> list[str]:
    """Keep the paths selected by *validator*'s file pattern, preserving order."""
    return [path for path in paths if validator.matches(path)]
