# src/parley/secrets/sources.py

from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol, Optional, Dict, Iterable, List, Tuple, Union
import os, getpass, logging

import keyring
from keyring.errors import KeyringError

from parley.core.ports import CredentialCheck

logger = logging.getLogger(__name__)


class SecretSource(Protocol):
    def get(self, service: str) -> Optional[str]: ...
    def label(self, service: str) -> str: ...


class EnvSource:
    def _names(self, service: str) -> List[str]:
        # 1) exact env var name, 2) derived names
        names = [service]
        for key in (f"{service.upper()}_API_KEY", service.upper()):
            if key not in names:
                names.append(key)
        return names

    def get(self, service: str) -> Optional[str]:
        for key in self._names(service):
            val = os.getenv(key)
            if val and val.strip():
                return val.strip()
        return None

    def label(self, service: str) -> str:
        for key in self._names(service):
            if os.getenv(key):
                return f"environment variable {key}"
        primary = service if service.isupper() else f"{service.upper()}_API_KEY"
        return f"environment variable {primary}"


class SystemKeyringSource:
    ACCOUNTS = ("API_KEY", "default")

    def get(self, service: str) -> Optional[str]:
        try:
            cred = keyring.get_credential(service, None)
            if cred and getattr(cred, "password", None):
                return cred.password.strip()
            for account in (*self.ACCOUNTS, service, getpass.getuser()):
                val = keyring.get_password(service, account)
                if val:
                    return val.strip()
        except KeyringError as e:
            logger.debug("Keyring lookup for '%s' failed: %s", service, e)
        return None

    def label(self, service: str) -> str:
        return f"keyring service '{service}'"


_ALLOWED_METHODS = {"env", "keyring"}


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(method, str):
        methods = [method]
    else:
        methods = list(method)
    norm = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown secrets method '{m}'. Allowed: {sorted(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_secret_sources(method: Union[str, Iterable[str]]) -> List[SecretSource]:
    sources: List[SecretSource] = []
    for name in _normalise_methods(method):
        if name == "env":
            sources.append(EnvSource())
        elif name == "keyring":
            sources.append(SystemKeyringSource())
    return sources


@dataclass(frozen=True)
class ResolvedSecret:
    value: Optional[str]
    checks: Tuple[CredentialCheck, ...]


class SecretsResolver:
    """
    Resolve secrets using one or more methods in order.
    mapping: per-provider map of names -> service/env-key
      e.g. { "deepseek": { "api_key": "deepseek" } } or { "deepseek": { "api_key": "DEEPSEEK_API_KEY" } }
    Every lookup also reports which sources were consulted, so error messages
    can say "DEEPSEEK_API_KEY: NOT SET" without ever printing a value.
    """
    def __init__(self, method: Union[str, Iterable[str]], mapping: Dict[str, Dict[str, str]] | None = None):
        self._sources = build_secret_sources(method)
        self._map = mapping or {}

    def service_for(self, provider: str, name: str = "api_key") -> str:
        return self._map.get(provider, {}).get(name, provider)

    def lookup(self, provider: str, name: str = "api_key") -> ResolvedSecret:
        service = self.service_for(provider, name)
        checks: List[CredentialCheck] = []
        for src in self._sources:
            val = src.get(service)
            checks.append(CredentialCheck(src.label(service), bool(val)))
            if val:
                return ResolvedSecret(val, tuple(checks))
        return ResolvedSecret(None, tuple(checks))

    def secret(self, provider: str, name: str = "api_key") -> Optional[str]:
        return self.lookup(provider, name).value
