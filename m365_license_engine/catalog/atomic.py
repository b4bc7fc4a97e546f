"""
Atomic file replacement for persisted artifacts (index, reports, catalog).
Content is written to a temp file beside the target, then moved over it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger("m365_license_engine.catalog.atomic")


def write_bytes_atomic(path: Path, data: bytes) -> Path:
    """Write `data` to `path` so readers never observe a partial file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        # Leave the previous artifact untouched
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.debug(f"Wrote {len(data)} bytes to {path}")
    return path


def write_text_atomic(path: Path, text: str, encoding: str = "utf-8") -> Path:
    return write_bytes_atomic(path, text.encode(encoding))


def write_json_atomic(path: Path, payload: Any) -> Path:
    """Serialize first, then replace; a serialization error leaves no file behind."""
    text = json.dumps(payload, indent=2, default=str, ensure_ascii=False)
    return write_text_atomic(path, text + "\n")
