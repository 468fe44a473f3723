"""Source tree scanner.

Walks a directory and returns one ``FileInfo`` per file that survives the
filters, in this order of precedence:

1. **Hidden** -- any path segment starting with ``.`` is skipped unless
   hidden files are included.
2. **Exclude** -- a path matching any exclude glob is skipped, even when
   an include glob also matches.
3. **Include** -- the path must match at least one include glob.
4. **Depth** -- files nested deeper than ``max_depth`` are omitted.
5. **Size** -- files larger than ``max_file_size`` are omitted.

Glob syntax: ``**`` matches any number of path segments (including none),
``*`` and ``?`` never cross ``/``. A pattern without ``/`` is also tried
against the file's base name.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import re
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from trilium_sync.config_schema import MAX_FILE_SIZE, ImportOptions
from trilium_sync.core.async_utils import run_sync

from .errors import ValidationError
from .models import FileInfo, FileMetadata

logger = logging.getLogger(__name__)

_MIME_OVERRIDES: dict[str, str] = {
    "md": "text/markdown",
    "markdown": "text/markdown",
    "mdown": "text/markdown",
    "mkd": "text/markdown",
    "json": "application/json",
    "jsonl": "application/jsonl",
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
}


# ------------------------------------------------------------------
# Glob matching
# ------------------------------------------------------------------


def _segment_to_regex(segment: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(segment):
        ch = segment[i]
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = segment.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = segment[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Translate a glob into an anchored regular expression."""
    parts = pattern.strip("/").split("/")
    regex = ""
    for index, part in enumerate(parts):
        last = index == len(parts) - 1
        if part == "**":
            regex += ".*" if last else "(?:[^/]+/)*"
        else:
            regex += _segment_to_regex(part) + ("" if last else "/")
    return re.compile(f"^{regex}$")


def glob_match(path: str, pattern: str) -> bool:
    """Return ``True`` if a POSIX relative path matches a glob."""
    if compile_glob(pattern).match(path):
        return True
    if "/" not in pattern:
        return bool(compile_glob(pattern).match(path.rsplit("/", 1)[-1]))
    return False


def matches_any(path: str, patterns: list[str]) -> bool:
    return any(glob_match(path, p) for p in patterns)


def guess_mime_type(extension: str) -> str:
    if extension in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[extension]
    guessed, _ = mimetypes.guess_type(f"file.{extension}")
    return guessed or "application/octet-stream"


def _is_hidden(relative_path: str) -> bool:
    return any(part.startswith(".") for part in relative_path.split("/"))


# ------------------------------------------------------------------
# Scanner
# ------------------------------------------------------------------


class Scanner:
    """Walk a source tree and describe the files to process.

    Args:
        include: Globs a file must match (default ``**/*``).
        exclude: Globs that always remove a file.
        max_depth: Deepest allowed ``/`` count in a relative path.
        include_hidden: Keep dot-files and dot-directories.
        max_file_size: Files above this many bytes are skipped.
    """

    def __init__(
        self,
        include: list[str] | None = None,
        exclude: list[str] | None = None,
        max_depth: int = 10,
        include_hidden: bool = False,
        max_file_size: int = MAX_FILE_SIZE,
    ) -> None:
        self.include = list(include) if include else ["**/*"]
        self.exclude = list(exclude or [])
        self.max_depth = max_depth
        self.include_hidden = include_hidden
        self.max_file_size = max_file_size

    @classmethod
    def from_options(cls, options: ImportOptions) -> Scanner:
        return cls(
            include=options.include,
            exclude=options.exclude,
            max_depth=options.max_depth,
            include_hidden=options.include_hidden,
            max_file_size=options.max_file_size,
        )

    def accepts(self, relative_path: str) -> bool:
        """Apply the hidden/exclude/include/depth rules to one path."""
        if not self.include_hidden and _is_hidden(relative_path):
            return False
        if matches_any(relative_path, self.exclude):
            return False
        if not matches_any(relative_path, self.include):
            return False
        return relative_path.count("/") <= self.max_depth

    def _prune_directory(self, relative_dir: str) -> bool:
        if not self.include_hidden and _is_hidden(relative_dir):
            return True
        if relative_dir.count("/") + 1 > self.max_depth:
            return True
        for pattern in self.exclude:
            if pattern.endswith("/**") and glob_match(relative_dir, pattern[:-3]):
                return True
        return False

    def scan(self, root: str | Path) -> list[FileInfo]:
        """Scan ``root`` and return matching files sorted by relative path.

        Raises:
            ValidationError: If ``root`` is missing or not a directory.
        """
        root_path = Path(root).expanduser()
        if not root_path.exists():
            raise ValidationError(
                f"Source path does not exist: {root}",
                details={"path": str(root)},
            )
        if not root_path.is_dir():
            raise ValidationError(
                f"Source path is not a directory: {root}",
                details={"path": str(root)},
            )
        root_path = root_path.resolve()

        files: list[FileInfo] = []
        for dirpath, dirnames, filenames in os.walk(root_path):
            rel_dir = Path(dirpath).relative_to(root_path).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir

            dirnames[:] = sorted(
                d
                for d in dirnames
                if not self._prune_directory(f"{rel_dir}/{d}" if rel_dir else d)
            )

            for filename in sorted(filenames):
                rel = f"{rel_dir}/{filename}" if rel_dir else filename
                if not self.accepts(rel):
                    continue
                abs_path = Path(dirpath) / filename
                try:
                    stat = abs_path.stat()
                except OSError as exc:
                    logger.warning("Cannot stat %s: %s", abs_path, exc)
                    continue
                if stat.st_size > self.max_file_size:
                    logger.debug(
                        "Skipping %s: %d bytes exceeds limit", rel, stat.st_size
                    )
                    continue
                files.append(self._describe(abs_path, rel, rel_dir, stat))

        files.sort(key=lambda f: f.relative_path)
        logger.info("Scanned %s: %d files", root_path, len(files))
        return files

    async def scan_async(self, root: str | Path) -> list[FileInfo]:
        return await run_sync(self.scan, root)

    @staticmethod
    def _describe(
        abs_path: Path, rel: str, rel_dir: str, stat: os.stat_result
    ) -> FileInfo:
        extension = abs_path.suffix[1:].lower() if abs_path.suffix else ""
        return FileInfo(
            relative_path=rel,
            absolute_path=str(abs_path),
            name=abs_path.name,
            extension=extension,
            size=stat.st_size,
            depth=rel.count("/"),
            mime_type=guess_mime_type(extension),
            modified_at=datetime.fromtimestamp(
                stat.st_mtime, tz=timezone.utc
            ).isoformat(),
            metadata=FileMetadata(directory_path=rel_dir),
        )
