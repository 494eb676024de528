# src/parley/config_loader.py

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import yaml


class ConfigError(ValueError):
    pass


def _require(d: Dict[str, Any], dotted: str, typ: type) -> Any:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            raise ConfigError(f"Missing config key: {dotted}")
        cur = cur[k]
    if typ is bool and not isinstance(cur, bool):
        raise ConfigError(f"'{dotted}' must be a boolean")
    if typ is str and not isinstance(cur, str):
        raise ConfigError(f"'{dotted}' must be a string")
    if typ is int and (isinstance(cur, bool) or not isinstance(cur, int)):
        raise ConfigError(f"'{dotted}' must be an integer")
    return cur


def _optional(d: Dict[str, Any], dotted: str, typ: type) -> None:
    cur: Any = d
    for k in dotted.split("."):
        if not isinstance(cur, dict) or k not in cur:
            return
        cur = cur[k]
    if cur is not None:
        _require(d, dotted, typ)


def load_config(path: Path) -> Dict[str, Any]:
    if not path or not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Config is empty or invalid YAML: {path}")

    # Validate required keys (no defaults here)
    _require(raw, "provider", str)
    _require(raw, "model", str)
    _require(raw, "runtime.stream", bool)
    _optional(raw, "runtime.max_turns", int)
    _optional(raw, "runtime.max_retries", int)

    providers = raw.get("providers") or {}
    if not isinstance(providers, dict):
        raise ConfigError("'providers' must be a mapping of provider id -> settings")

    # Normalise ids; which ids exist is decided by the provider registry
    raw["provider"] = raw["provider"].strip().lower()
    raw["providers"] = {str(k).lower(): (v or {}) for k, v in providers.items()}
    for pid, pcfg in raw["providers"].items():
        if not isinstance(pcfg, dict):
            raise ConfigError(f"'providers.{pid}' must be a mapping")

    # Leave paths as provided; resolve them later in bootstrap/composition
    return raw


def provider_section(cfg: Dict[str, Any], provider_id: str) -> Dict[str, Any]:
    return dict((cfg.get("providers") or {}).get(provider_id) or {})


def configured_api_key(cfg: Dict[str, Any], provider_id: str) -> Optional[str]:
    section = provider_section(cfg, provider_id)
    key = section.get("apiKey") or section.get("api_key")
    return str(key).strip() if key else None
