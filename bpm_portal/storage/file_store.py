"""
Flat JSON document store used when SQLite is unwanted.

Both documents are read and rewritten wholesale. Writes overwrite the file in
place with no temp-file rename and no locking, so concurrent writers race and
the last write wins.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DATA_DOCUMENT: dict[str, Any] = {"tickets": [], "activity": [], "kbNotes": {}}
DEFAULT_SETTINGS_DOCUMENT: dict[str, Any] = {"theme": "marshmallow"}


def _dump(document: Any) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


class FileStore:
    """Data + settings JSON documents inside one directory."""

    def __init__(self, data_path: Path, settings_path: Path) -> None:
        self.data_path = Path(data_path)
        self.settings_path = Path(settings_path)

    def initialize(self) -> None:
        self.data_path.parent.mkdir(parents=True, exist_ok=True)
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)

    def read_data_text(self) -> str:
        """Return the stored data document verbatim, or the default shape when absent."""
        return self._read_text(self.data_path, DEFAULT_DATA_DOCUMENT)

    def write_data(self, document: Any) -> None:
        self._write(self.data_path, document)

    def read_settings_text(self) -> str:
        return self._read_text(self.settings_path, DEFAULT_SETTINGS_DOCUMENT)

    def write_settings(self, document: Any) -> None:
        self._write(self.settings_path, document)

    def read_data(self) -> Any:
        return json.loads(self.read_data_text())

    def read_settings(self) -> Any:
        return json.loads(self.read_settings_text())

    @staticmethod
    def _read_text(path: Path, default: dict[str, Any]) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return _dump(default)

    @staticmethod
    def _write(path: Path, document: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_dump(document), encoding="utf-8")
        logger.debug("Wrote %s.", path)
