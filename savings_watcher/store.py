"""Persistent aggregate and the JSON file it is stored in.

The aggregate is whatever JSON-serializable object the caller's hooks
accumulate (e.g. spending totals).  It is loaded once at startup and
written back, as a full overwrite, at the end of every fetch batch.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()

_JSON_SUFFIX = ".json"


def resolve_save_path(name: str, base_dir: Path | None = None) -> Path:
    """Normalize a configured save-file name to ``<name>.json``.

    A trailing ``.json`` is optional; relative names resolve against
    *base_dir* (the working directory by default).
    """
    if name.endswith(_JSON_SUFFIX):
        name = name[: -len(_JSON_SUFFIX)]
    path = Path(name + _JSON_SUFFIX)
    if not path.is_absolute():
        path = (base_dir or Path.cwd()) / path
    return path


class JsonFileStore:
    """Load-on-start, overwrite-on-save JSON blob store."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Any | None:
        """Return the decoded file content, or ``None`` if it is missing or unreadable."""
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("save_file_unreadable", path=str(self._path), error=str(exc))
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("save_file_invalid_json", path=str(self._path), error=str(exc))
            return None

    async def save(self, data: Any) -> None:
        """Serialize *data* and overwrite the file.

        Raises ``TypeError``/``ValueError`` if *data* is not JSON-serializable
        and ``OSError`` if the file cannot be written.
        """
        encoded = json.dumps(data)
        await asyncio.to_thread(self._path.write_text, encoded, encoding="utf-8")
        logger.debug("data_saved", path=str(self._path), size=len(encoded))


class PersistentAggregate:
    """Mutable holder for the caller-defined aggregate object.

    Hooks receive this holder, so they can either mutate ``data`` in place
    or replace it outright.
    """

    def __init__(self, data: Any = None) -> None:
        self.data: Any = {} if data is None else data

    @classmethod
    def load(cls, store: JsonFileStore) -> PersistentAggregate:
        data = store.load()
        if data is None:
            logger.warning("save_file_not_loaded", path=str(store.path), using="{}")
            return cls()
        logger.debug("save_file_loaded", path=str(store.path))
        return cls(data)

    def __repr__(self) -> str:
        return f"PersistentAggregate({self.data!r})"
