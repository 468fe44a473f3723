"""File handler module: path validation, encoding-aware reads, safe writes.

Provides the file I/O primitives shared by the import and export
pipelines. All sync functions are plain (no side effects besides file
I/O). Async wrappers route them through ``run_sync()`` so that every
filesystem access is an awaited boundary in the pipelines.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

from trilium_sync.core.async_utils import run_sync

SAMPLE_SIZE = 1024

# =============================================================================
# Path Validation
# =============================================================================


def validate_directory(path_str: str) -> Path:
    """Validate and resolve a directory that must already exist.

    Args:
        path_str: Path string to an existing directory.

    Returns:
        Resolved Path object.

    Raises:
        ValueError: If the path does not exist or is not a directory.
    """
    resolved = Path(path_str).expanduser().resolve()
    if not resolved.exists():
        raise ValueError(f"Directory not found: {path_str}")
    if not resolved.is_dir():
        raise ValueError(f"Path is not a directory: {path_str}")
    return resolved


def validate_output_path(path: Path, base_dir: Path) -> Path:
    """Make sure an output file stays inside its export root.

    Args:
        path: Output file path (need not exist).
        base_dir: Directory the output must live under.

    Returns:
        Resolved Path object for the output file.

    Raises:
        ValueError: If the resolved path escapes ``base_dir``.
    """
    resolved = path.resolve()
    base_resolved = base_dir.resolve()
    if not resolved.is_relative_to(base_resolved):
        raise ValueError(
            f"Output path is outside base directory: {resolved} not under {base_resolved}"
        )
    return resolved


# =============================================================================
# File Read/Write
# =============================================================================


def read_sample(path: Path, size: int = SAMPLE_SIZE) -> bytes:
    """Return the first ``size`` bytes of a file."""
    with open(path, "rb") as fh:
        return fh.read(size)


def decode_bytes(raw: bytes) -> tuple[str, str]:
    """Decode raw bytes with automatic encoding detection.

    Uses charset-normalizer and defaults to UTF-8 for empty input or when
    detection fails.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a text file with automatic encoding detection.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    return decode_bytes(path.read_bytes())


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write text atomically, creating parent directories as needed.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    return write_bytes(path, content.encode(encoding))


def write_bytes(path: Path, data: bytes) -> int:
    """Write bytes via a temp file in the same directory and ``os.replace``.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return len(data)


# =============================================================================
# Async Wrappers
# =============================================================================


async def read_sample_async(path: Path, size: int = SAMPLE_SIZE) -> bytes:
    """Async wrapper around ``read_sample``."""
    return await run_sync(read_sample, path, size)


async def read_bytes_async(path: Path) -> bytes:
    """Async wrapper around ``Path.read_bytes``."""
    return await run_sync(path.read_bytes)


async def read_text_async(path: Path) -> tuple[str, str]:
    """Async wrapper: read a text file with encoding detection.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    return await run_sync(read_file_with_encoding, path)


async def write_file_async(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Async wrapper around ``write_file``."""
    return await run_sync(write_file, path, content, encoding)


async def write_bytes_async(path: Path, data: bytes) -> int:
    """Async wrapper around ``write_bytes``."""
    return await run_sync(write_bytes, path, data)
