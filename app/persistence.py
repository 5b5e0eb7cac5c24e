from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

ENVELOPE_KEY = "GetInvoice"


class StorageError(RuntimeError):
    """Raised when a collection could not be written to disk."""


def read_envelope(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_envelope(path: Path, payload: Dict[str, Any]) -> None:
    """Overwrite *path* with *payload* so readers see either the old or the new file.

    The JSON goes to a temp file in the same directory, is fsynced and then
    renamed over the target.
    """
    try:
        data = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise StorageError(f"Cannot serialize {path.name}: {exc}") from exc

    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_name = fh.name
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except (OSError, ValueError) as exc:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise StorageError(f"Failed to write {path}: {exc}") from exc

    logger.info("Wrote %s", path, extra={"bytes": len(data)})
