from __future__ import annotations
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
import yaml


class SettingScope(str, Enum):
    USER = "user"
    WORKSPACE = "workspace"


SETTINGS_FILE = "settings.yaml"


class LoadedSettings:
    """
    User and workspace settings files; workspace values override user values.
    set_value() writes through to the file for that scope.
    """

    def __init__(self, user_dir: Path, workspace_dir: Optional[Path] = None):
        self._paths: Dict[SettingScope, Path] = {SettingScope.USER: Path(user_dir) / SETTINGS_FILE}
        if workspace_dir is not None:
            self._paths[SettingScope.WORKSPACE] = Path(workspace_dir) / SETTINGS_FILE
        self._data: Dict[SettingScope, Dict[str, Any]] = {
            scope: self._load(path) for scope, path in self._paths.items()
        }

    @staticmethod
    def _load(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {path}")
        return data

    @property
    def merged(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for scope in (SettingScope.USER, SettingScope.WORKSPACE):
            out.update(self._data.get(scope, {}))
        return out

    def for_scope(self, scope: SettingScope) -> Dict[str, Any]:
        return dict(self._data.get(SettingScope(scope), {}))

    def set_value(self, scope: SettingScope, key: str, value: Any) -> None:
        scope = SettingScope(scope)
        if scope not in self._paths:
            raise ValueError(f"No settings file configured for scope '{scope.value}'")
        self._data[scope][key] = value
        path = self._paths[scope]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(self._data[scope], sort_keys=True), encoding="utf-8")
