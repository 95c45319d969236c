"""Ant-style file sets and the file operations used by built-in tasks."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, List, Sequence
import os
import re
import shutil
import tempfile


def _pattern_to_regex(pattern: str) -> re.Pattern[str]:
    text = pattern.replace("\\", "/").lstrip("/")
    if text.endswith("/"):
        text += "**"
    # ``dir/**`` also selects ``dir`` itself
    suffix = ""
    if text.endswith("/**"):
        text = text[:-3]
        suffix = "(?:/.*)?"

    parts: List[str] = []
    index = 0
    while index < len(text):
        if text.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
        elif text.startswith("**", index):
            parts.append(".*")
            index += 2
        elif text[index] == "*":
            parts.append("[^/]*")
            index += 1
        elif text[index] == "?":
            parts.append("[^/]")
            index += 1
        else:
            parts.append(re.escape(text[index]))
            index += 1
    return re.compile("^" + "".join(parts) + suffix + "$")


@dataclass(slots=True)
class FilePattern:
    """A single Ant-style pattern such as ``**/*.dart`` or ``build/``."""

    pattern: str
    regex: re.Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.regex = _pattern_to_regex(self.pattern)

    def matches(self, relative: str) -> bool:
        return bool(self.regex.match(relative))


@dataclass(slots=True)
class FileSet:
    """Files under ``root`` selected by include and exclude patterns.

    An exclude pattern matching a directory prunes everything below it; a file
    is selected when it matches an include pattern and no exclude pattern.
    """

    root: Path
    includes: Sequence[str] = ()
    excludes: Sequence[str] = ()

    def _compiled(self, patterns: Sequence[str]) -> List[FilePattern]:
        return [FilePattern(pattern) for pattern in patterns]

    @staticmethod
    def _matches_any(patterns: Sequence[FilePattern], relative: str) -> bool:
        return any(pattern.matches(relative) for pattern in patterns)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.files())

    def files(self) -> List[Path]:
        """Return matching paths relative to ``root``, sorted."""

        if not self.root.is_dir():
            return []

        includes = self._compiled(self.includes)
        excludes = self._compiled(self.excludes)
        selected: List[Path] = []

        for current, dirnames, filenames in os.walk(self.root):
            current_path = Path(current)
            kept_dirs: List[str] = []
            for dirname in sorted(dirnames):
                relative_dir = (current_path / dirname).relative_to(self.root).as_posix()
                if self._matches_any(excludes, relative_dir):
                    continue
                kept_dirs.append(dirname)
            dirnames[:] = kept_dirs

            for filename in sorted(filenames):
                relative = PurePosixPath((current_path / filename).relative_to(self.root).as_posix())
                text = str(relative)
                if includes and not self._matches_any(includes, text):
                    continue
                if self._matches_any(excludes, text):
                    continue
                selected.append(Path(relative))

        return sorted(selected)


def delete_paths(paths: Iterable[Path]) -> List[Path]:
    """Delete files or directory trees, returning the ones that existed."""

    deleted: List[Path] = []
    for path in paths:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
            deleted.append(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
            deleted.append(path)
    return deleted


def stage_files(
    destination: Path,
    file_sets: Sequence[FileSet],
    extra_files: Sequence[Path] = (),
) -> List[Path]:
    """Copy ``file_sets`` and ``extra_files`` into ``destination`` atomically.

    The copy is assembled in a temporary sibling directory which then replaces
    ``destination``, so an interrupted copy never leaves a half-written
    destination behind. Missing ``extra_files`` are ignored.
    """

    destination.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{destination.name}-", dir=destination.parent))
    copied: List[Path] = []
    try:
        for file_set in file_sets:
            for relative in file_set.files():
                target = staging / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(file_set.root / relative, target)
                copied.append(relative)

        for extra in extra_files:
            if not extra.is_file():
                continue
            shutil.copy2(extra, staging / extra.name)
            copied.append(Path(extra.name))

        if destination.exists():
            shutil.rmtree(destination)
        try:
            staging.rename(destination)
        except OSError:
            shutil.move(str(staging), str(destination))
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    return sorted(copied)


__all__ = ["FilePattern", "FileSet", "delete_paths", "stage_files"]
