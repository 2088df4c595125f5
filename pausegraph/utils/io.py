"""File I/O helpers shared by the file-backed stores."""

import os
import tempfile
from pathlib import Path


def exclusive_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    """
    Write a file only if it does not exist yet.

    The data is written to a temp file in the target directory first and
    then hard-linked into place; the link fails with FileExistsError if
    another writer got there first. Readers never see a half-written file.

    Raises:
        FileExistsError: If `path` already exists
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.link(tmp_name, path)
    finally:
        os.unlink(tmp_name)
