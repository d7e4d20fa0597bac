"""Persistent configuration store.

The relay writes the full options document back whenever the server issues
a new credential, so that the token survives a restart.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from signalk_cloud.exceptions import RelayConfigError

_logger = logging.getLogger(__name__)


class ConfigStore(Protocol):
    def load(self) -> dict[str, Any]: ...

    def save(self, options: dict[str, Any]) -> None: ...


class MemoryConfigStore:
    """Keeps options in memory. Useful for embedding and tests."""

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        self._options: dict[str, Any] = dict(options or {})
        self.saves = 0

    def load(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._options))

    def save(self, options: dict[str, Any]) -> None:
        self._options = json.loads(json.dumps(options))
        self.saves += 1


class JsonFileConfigStore:
    """Options persisted as a JSON document on disk.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so a crash never leaves a truncated file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RelayConfigError(f"cannot read options from {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise RelayConfigError(f"options in {self._path} must be a JSON object")
        return data

    def save(self, options: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(options, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        _logger.debug("Saved options to %s", self._path)
