"""Persistent client settings: backend host, interview identity, upload toggle."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path


@dataclass(slots=True)
class AppSettings:
    api_host: str = ""
    user_id: str = ""
    session_id: str = ""
    upload_recordings: bool = True


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._settings = self._load()

    def _load(self) -> AppSettings:
        if not self.path.exists():
            return AppSettings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = {}
        if not isinstance(raw, dict):
            raw = {}
        settings = AppSettings()
        settings.api_host = str(raw.get("api_host", ""))
        settings.user_id = str(raw.get("user_id", ""))
        settings.session_id = str(raw.get("session_id", ""))
        settings.upload_recordings = _as_bool(raw.get("upload_recordings", settings.upload_recordings))
        return settings

    def get(self) -> AppSettings:
        return self._settings

    def update(self, **kwargs) -> AppSettings:
        for key, value in kwargs.items():
            if not hasattr(self._settings, key):
                continue
            current = getattr(self._settings, key)
            if isinstance(current, bool):
                setattr(self._settings, key, _as_bool(value))
            else:
                setattr(self._settings, key, str(value or "").strip())
        self._persist()
        return self._settings

    def _persist(self) -> None:
        self.path.write_text(json.dumps(asdict(self._settings)), encoding="utf-8")


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


__all__ = ["AppSettings", "SettingsStore"]
