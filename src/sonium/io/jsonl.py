# sonium/io/jsonl.py

"""Low-level JSONL read/write helpers."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def iter_jsonl_objects(
    path: Path,
    *,
    log_errors: bool = True,
) -> Iterator[dict[str, Any]]:
    """Iterate over JSON objects, one per line. Skips empty lines and invalid JSON."""
    if not path.exists():
        return

    with path.open("r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                if log_errors:
                    logger.warning(
                        "Skipping invalid JSON line %d in %s: %s",
                        line_number,
                        path,
                        exc,
                    )
                continue
            if isinstance(obj, dict):
                yield obj


def write_jsonl_atomic(path: Path, objects: Iterable[dict[str, Any]]) -> None:
    """Write objects to a JSONL file, one per line, replacing it atomically.

    The data goes to a temporary file in the same directory first, so readers
    see either the previous file or the complete new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            for obj in objects:
                f.write(json.dumps(obj, ensure_ascii=False) + "\n")
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
