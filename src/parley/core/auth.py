"""
Authentication flow as an explicit state machine.

The controller decides when sign-in runs (automatically once at start-up,
or when the user picks a method), keeps at most one attempt in flight, and
tells the UI whether the auth dialog should be shown. The sign-in itself is
delegated to an ``Authenticator`` (for this app: build a content generator
for the method's credential).
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol, Union

logger = logging.getLogger(__name__)

SELECTED_AUTH_KEY = "selectedAuthType"


class AuthMethod(str, Enum):
    LOGIN_WITH_OAUTH = "oauth-personal"
    USE_OPENAI_KEY = "api-key"
    USE_DEEPSEEK = "deepseek"
    USE_LOCAL = "local"

    @property
    def provider_id(self) -> str:
        return _METHOD_PROVIDERS[self]

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]

    @classmethod
    def parse(cls, value: Union[str, "AuthMethod"]) -> "AuthMethod":
        if isinstance(value, AuthMethod):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown auth method '{value}'. Allowed: {allowed}") from None


_METHOD_PROVIDERS = {
    AuthMethod.LOGIN_WITH_OAUTH: "openai",
    AuthMethod.USE_OPENAI_KEY: "openai",
    AuthMethod.USE_DEEPSEEK: "deepseek",
    AuthMethod.USE_LOCAL: "echo",
}

_METHOD_LABELS = {
    AuthMethod.LOGIN_WITH_OAUTH: "Sign in with a cached OAuth token",
    AuthMethod.USE_OPENAI_KEY: "Use an OpenAI API key",
    AuthMethod.USE_DEEPSEEK: "Use a DeepSeek API key",
    AuthMethod.USE_LOCAL: "Offline echo provider (no credential)",
}


class AuthStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    DIALOG_OPEN = "dialog_open"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    AUTO_AUTH_FAILED = "auto_auth_failed"


class AuthError(Exception):
    pass


class AuthInProgressError(AuthError):
    """A second sign-in was requested while one is still running."""


class Authenticator(Protocol):
    def refresh_auth(self, method: AuthMethod) -> None: ...


class CredentialCache(Protocol):
    def clear_cached_credential_file(self) -> None: ...


class SettingsStore(Protocol):
    merged: Mapping[str, Any]

    def set_value(self, scope: Any, key: str, value: Any) -> None: ...


@dataclass(frozen=True)
class AuthState:
    dialog_open: bool = False
    authenticating: bool = False
    selected_method: Optional[AuthMethod] = None
    user_initiated: bool = False
    auto_auth_failed: bool = False
    authenticated: bool = False
    error: Optional[str] = None

    @property
    def status(self) -> AuthStatus:
        if self.authenticating:
            return AuthStatus.AUTHENTICATING
        if self.auto_auth_failed and self.dialog_open:
            return AuthStatus.AUTO_AUTH_FAILED
        if self.dialog_open:
            return AuthStatus.DIALOG_OPEN
        if self.authenticated:
            return AuthStatus.AUTHENTICATED
        return AuthStatus.UNAUTHENTICATED


def _error_text(exc: BaseException) -> str:
    return f"Failed to login. Message: {exc}"


class AuthFlowController:
    def __init__(
        self,
        settings: SettingsStore,
        authenticator: Authenticator,
        credentials: CredentialCache,
        *,
        on_complete: Optional[Callable[[AuthMethod], None]] = None,
    ):
        self._settings = settings
        self._authenticator = authenticator
        self._credentials = credentials
        self._on_complete = on_complete
        self._lock = threading.Lock()

        method: Optional[AuthMethod] = None
        selected = settings.merged.get(SELECTED_AUTH_KEY)
        if selected:
            try:
                method = AuthMethod.parse(selected)
            except ValueError as e:
                logger.warning("Ignoring stored %s: %s", SELECTED_AUTH_KEY, e)
        self._state = AuthState(dialog_open=method is None, selected_method=method)

    # ----- observation -----

    @property
    def state(self) -> AuthState:
        with self._lock:
            return self._state

    @property
    def status(self) -> AuthStatus:
        return self.state.status

    def _update(self, **changes: Any) -> AuthState:
        with self._lock:
            self._state = replace(self._state, **changes)
            return self._state

    # ----- transitions -----

    def open_auth_dialog(self) -> None:
        self._update(dialog_open=True)

    def cancel_authentication(self) -> None:
        """Stops the in-progress indication only; dialog and error are left as they are."""
        self._update(authenticating=False)

    def handle_auth_rejected(self, message: str) -> None:
        """The backend refused the active credential: reopen the dialog, no automatic retry."""
        logger.info("Credential rejected by backend; reopening auth dialog")
        self._update(authenticated=False, auto_auth_failed=True, dialog_open=True, error=message)

    def _begin(self, *, automatic: bool, method: Optional[AuthMethod] = None) -> Optional[AuthMethod]:
        """Atomically check the guards and flip 'authenticating' on."""
        with self._lock:
            s = self._state
            if s.authenticating:
                if automatic:
                    return None
                raise AuthInProgressError("Authentication already in progress")
            if automatic:
                if (s.dialog_open or s.selected_method is None or s.user_initiated
                        or s.auto_auth_failed or s.authenticated):
                    return None
                method = s.selected_method
            else:
                # user action resets the automatic-attempt guard
                self._state = replace(s, user_initiated=True, auto_auth_failed=False)
            self._state = replace(self._state, authenticating=True)
            return method

    def maybe_auto_authenticate(self) -> bool:
        """
        Sign in with the pre-selected method, at most once.
        Returns True when an attempt ran (successful or not).
        """
        method = self._begin(automatic=True)
        if method is None:
            return False
        logger.debug("Automatic sign-in with %s", method.value)
        try:
            self._authenticator.refresh_auth(method)
        except Exception as e:
            logger.info("Automatic sign-in failed: %s", e)
            self._update(authenticating=False, authenticated=False, auto_auth_failed=True,
                         dialog_open=True, error=_error_text(e))
            return True
        self._update(authenticating=False, authenticated=True, error=None)
        self._complete(method)
        return True

    def select_auth_method(self, method: Union[str, AuthMethod, None], scope: Any) -> bool:
        """
        User picked a method in the dialog. Returns True on successful sign-in.
        Raises AuthInProgressError if another attempt is running.
        """
        if method is None:
            self._update(dialog_open=False, error=None)
            return False

        chosen = AuthMethod.parse(method)
        self._begin(automatic=False, method=chosen)
        try:
            self._credentials.clear_cached_credential_file()
            self._settings.set_value(scope, SELECTED_AUTH_KEY, chosen.value)
            self._update(selected_method=chosen)
            logger.debug("User-initiated sign-in with %s", chosen.value)
            self._authenticator.refresh_auth(chosen)
        except Exception as e:
            logger.info("Sign-in with %s failed: %s", chosen.value, e)
            self._update(authenticating=False, authenticated=False, user_initiated=False,
                         dialog_open=True, error=_error_text(e))
            return False
        self._update(authenticating=False, authenticated=True, user_initiated=False,
                     dialog_open=False, error=None)
        self._complete(chosen)
        return True

    def _complete(self, method: AuthMethod) -> None:
        if self._on_complete is not None:
            self._on_complete(method)
