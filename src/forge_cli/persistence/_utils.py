"""Write-then-rename helpers.

An interrupted process leaves either the old file or the new one, never a
truncated mix.
"""

import json
import os
from pathlib import Path
from typing import Any


def atomic_write_text(path: Path, content: str, mode: int | None = None) -> None:
    """Write text to a file atomically.

    Args:
        path: Target file.
        content: Text to write.
        mode: Optional permission bits applied to the file before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    if mode is not None:
        os.chmod(tmp_path, mode)
    tmp_path.replace(path)


def atomic_write_json(path: Path, data: Any, indent: int = 2, mode: int | None = None) -> None:
    """Write JSON data to a file atomically."""
    atomic_write_text(path, json.dumps(data, indent=indent, default=str) + "\n", mode=mode)
