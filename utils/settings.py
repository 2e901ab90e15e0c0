from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union


class SettingsStore:
    """Application-scoped key-value settings persisted as one JSON document.

    Writes go through a temporary file and an atomic rename so a crash never
    leaves a truncated settings file behind.
    """

    def __init__(self, path: Union[str, os.PathLike[str]]):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def get(self, key: str, default: Optional[Any] = None) -> Optional[Any]:
        return self._read().get(key, default)

    def put(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)
