from __future__ import annotations
import datetime as dt
import json
import logging
from pathlib import Path
from typing import Callable, Optional

from .sources import ResolvedSecret

logger = logging.getLogger(__name__)


class CachedCredentialStore:
    """
    File cache for the OAuth-style bearer token.
    - clear_cached_credential_file() forgets the cached token (new sign-in)
    - get_active_credential() returns the cached token, or asks token_source
      for a fresh one and caches it
    """
    FILE_NAME = "oauth_creds.json"

    def __init__(self, directory: Path, token_source: Optional[Callable[[], ResolvedSecret]] = None):
        self._dir = Path(directory)
        self._token_source = token_source
        self.last_checks = ()

    @property
    def path(self) -> Path:
        return self._dir / self.FILE_NAME

    def clear_cached_credential_file(self) -> None:
        if self.path.exists():
            logger.debug("Removing cached credential %s", self.path)
        self.path.unlink(missing_ok=True)

    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable credential cache %s: %s", self.path, e)
            return None
        token = data.get("access_token") if isinstance(data, dict) else None
        return token or None

    def get_active_credential(self) -> Optional[str]:
        token = self._read()
        if token:
            return token
        if self._token_source is None:
            return None
        resolved = self._token_source()
        self.last_checks = resolved.checks
        if not resolved.value:
            return None
        self._dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({
            "access_token": resolved.value,
            "cached_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        }), encoding="utf-8")
        return resolved.value
