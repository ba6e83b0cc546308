"""Atomic JSON writes: readers see the old file or the new one, never a partial write."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

TEMP_PREFIX = ".tmp_"


def atomic_write_json(data: Any, target_path: str | Path) -> None:
    """Write data to target_path as pretty-printed JSON atomically.

    Uses temp file + rename pattern:
    1. Write to a temporary file in the same directory as the target
    2. Flush and fsync so the bytes are on disk before the rename
    3. Rename temp file onto the target (atomic on the same filesystem)
    4. Remove the temp file on any failure

    Args:
        data: JSON-serializable object
        target_path: Destination file path

    Raises:
        OSError: If write or rename fails
        TypeError: If data is not JSON-serializable
    """
    target_path = Path(target_path)
    dir_path = target_path.parent
    dir_path.mkdir(parents=True, exist_ok=True)

    # Temp file must live next to the target for the rename to be atomic
    fd, temp_path = tempfile.mkstemp(dir=dir_path, prefix=TEMP_PREFIX, suffix=".json")

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, 0o644)
        os.replace(temp_path, target_path)

    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass  # Already renamed or never created
        raise
