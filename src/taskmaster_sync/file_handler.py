"""File handler module: encoding-aware reads and atomic JSON writes.

Both persisted stores (the TaskMaster tasks file and the mapping file) go
through these helpers so readers never observe a partially written file.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from charset_normalizer import from_bytes

# =============================================================================
# File Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    # Plain UTF-8 (with or without BOM) is by far the common case.
    try:
        return (raw.decode("utf-8-sig"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        content = str(result)
    return (content, encoding)


# =============================================================================
# Atomic Write
# =============================================================================


def write_json_atomic(path: Path, data: Any, indent: int = 2) -> None:
    """Serialise *data* as JSON and atomically replace *path*.

    Writes to a temporary file in the same directory then calls
    ``os.replace()``.  Creates the parent directory if needed.  The temp
    file is removed if anything goes wrong.

    Args:
        path: Target file.
        data: JSON-serialisable value.
        indent: JSON indentation.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=indent, ensure_ascii=False)
            fh.write("\n")
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
