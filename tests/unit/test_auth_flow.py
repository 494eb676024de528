# tests/unit/test_auth_flow.py

from __future__ import annotations
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from parley.core.auth import (  # type: ignore
    SELECTED_AUTH_KEY,
    AuthFlowController,
    AuthInProgressError,
    AuthMethod,
    AuthStatus,
)
from parley.core.errors import MissingCredential  # type: ignore


# -------- fakes --------

class FakeSettings:
    def __init__(self, merged: Dict[str, Any] = None):
        self.merged = dict(merged or {})
        self.writes: List = []

    def set_value(self, scope, key, value):
        self.writes.append((scope, key, value))
        self.merged[key] = value


class FakeCredentials:
    def __init__(self):
        self.cleared = 0

    def clear_cached_credential_file(self):
        self.cleared += 1


class FakeAuthenticator:
    def __init__(self, fail_with: Exception = None):
        self.fail_with = fail_with
        self.calls: List[AuthMethod] = []

    def refresh_auth(self, method):
        self.calls.append(method)
        if self.fail_with is not None:
            raise self.fail_with


class BlockingAuthenticator(FakeAuthenticator):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def refresh_auth(self, method):
        self.calls.append(method)
        self.entered.set()
        assert self.release.wait(5)


def _controller(merged=None, authenticator=None, **kw):
    settings = FakeSettings(merged)
    creds = FakeCredentials()
    auth = authenticator or FakeAuthenticator()
    return AuthFlowController(settings, auth, creds, **kw), settings, auth, creds


# -------- initial state --------

def test_no_selected_method_opens_dialog():
    ctl, *_ = _controller()
    assert ctl.state.dialog_open
    assert ctl.status is AuthStatus.DIALOG_OPEN
    assert ctl.maybe_auto_authenticate() is False


def test_invalid_stored_method_is_ignored():
    ctl, *_ = _controller({SELECTED_AUTH_KEY: "carrier-pigeon"})
    assert ctl.state.selected_method is None
    assert ctl.state.dialog_open


def test_parse_rejects_unknown_method():
    assert AuthMethod.parse("API-KEY") is AuthMethod.USE_OPENAI_KEY
    with pytest.raises(ValueError):
        AuthMethod.parse("nope")


def test_methods_map_to_providers():
    assert AuthMethod.USE_DEEPSEEK.provider_id == "deepseek"
    assert AuthMethod.USE_OPENAI_KEY.provider_id == "openai"
    assert AuthMethod.LOGIN_WITH_OAUTH.provider_id == "openai"
    assert AuthMethod.USE_LOCAL.provider_id == "echo"


# -------- automatic sign-in --------

def test_auto_auth_runs_once_on_success():
    completed = []
    ctl, _, auth, _ = _controller({SELECTED_AUTH_KEY: "deepseek"}, on_complete=completed.append)
    assert ctl.state.dialog_open is False

    assert ctl.maybe_auto_authenticate() is True
    assert ctl.status is AuthStatus.AUTHENTICATED
    assert completed == [AuthMethod.USE_DEEPSEEK]

    assert ctl.maybe_auto_authenticate() is False
    assert auth.calls == [AuthMethod.USE_DEEPSEEK]


def test_auto_auth_failure_is_not_retried():
    err = MissingCredential("DeepSeek API key is not configured.")
    ctl, _, auth, _ = _controller({SELECTED_AUTH_KEY: "deepseek"}, authenticator=FakeAuthenticator(fail_with=err))

    assert ctl.maybe_auto_authenticate() is True
    s = ctl.state
    assert s.auto_auth_failed and s.dialog_open and not s.authenticating and not s.authenticated
    assert s.error == "Failed to login. Message: DeepSeek API key is not configured."
    assert ctl.status is AuthStatus.AUTO_AUTH_FAILED

    # closing the dialog still doesn't retrigger the automatic attempt
    ctl.select_auth_method(None, "user")
    assert ctl.maybe_auto_authenticate() is False
    assert len(auth.calls) == 1


# -------- user selection --------

def test_user_selection_success_persists_and_clears_cache():
    ctl, settings, auth, creds = _controller()
    assert ctl.select_auth_method("api-key", "user") is True

    s = ctl.state
    assert s.authenticated and not s.dialog_open and not s.authenticating and s.error is None
    assert s.selected_method is AuthMethod.USE_OPENAI_KEY
    assert settings.writes == [("user", SELECTED_AUTH_KEY, "api-key")]
    assert creds.cleared == 1
    assert auth.calls == [AuthMethod.USE_OPENAI_KEY]


def test_user_selection_failure_reopens_dialog():
    ctl, *_ = _controller(authenticator=FakeAuthenticator(fail_with=RuntimeError("nope")))
    assert ctl.select_auth_method(AuthMethod.USE_DEEPSEEK, "user") is False
    s = ctl.state
    assert s.dialog_open and not s.authenticating and not s.authenticated
    assert s.error == "Failed to login. Message: nope"


def test_user_selection_after_auto_failure_can_succeed():
    auth = FakeAuthenticator(fail_with=RuntimeError("no key"))
    ctl, *_ = _controller({SELECTED_AUTH_KEY: "deepseek"}, authenticator=auth)
    ctl.maybe_auto_authenticate()
    auth.fail_with = None
    assert ctl.select_auth_method("local", "user") is True
    s = ctl.state
    assert s.authenticated and not s.auto_auth_failed


def test_unknown_method_raises_value_error():
    ctl, *_ = _controller()
    with pytest.raises(ValueError):
        ctl.select_auth_method("bogus", "user")
    assert not ctl.state.authenticating


def test_second_selection_while_in_flight_is_rejected():
    blocking = BlockingAuthenticator()
    ctl, *_ = _controller(authenticator=blocking)
    results = []

    t = threading.Thread(target=lambda: results.append(ctl.select_auth_method("api-key", "user")))
    t.start()
    try:
        assert blocking.entered.wait(5)
        assert ctl.status is AuthStatus.AUTHENTICATING
        with pytest.raises(AuthInProgressError):
            ctl.select_auth_method("oauth-personal", "user")
        # automatic attempts are silently skipped instead
        assert ctl.maybe_auto_authenticate() is False
    finally:
        blocking.release.set()
        t.join(5)

    assert results == [True]
    assert blocking.calls == [AuthMethod.USE_OPENAI_KEY]
    assert ctl.state.selected_method is AuthMethod.USE_OPENAI_KEY


# -------- other transitions --------

def test_cancel_authentication_only_clears_flag():
    blocking = BlockingAuthenticator()
    ctl, *_ = _controller(authenticator=blocking)
    t = threading.Thread(target=lambda: ctl.select_auth_method("deepseek", "user"))
    t.start()
    try:
        assert blocking.entered.wait(5)
        ctl.cancel_authentication()
        s = ctl.state
        assert not s.authenticating
        assert s.dialog_open
    finally:
        blocking.release.set()
        t.join(5)


def test_handle_auth_rejected_reopens_dialog_without_retry():
    ctl, _, auth, _ = _controller({SELECTED_AUTH_KEY: "deepseek"})
    ctl.maybe_auto_authenticate()
    ctl.handle_auth_rejected("DeepSeek API authentication failed (Status: 403)")

    s = ctl.state
    assert s.dialog_open and s.auto_auth_failed and not s.authenticated
    assert "403" in s.error
    assert ctl.maybe_auto_authenticate() is False
    assert len(auth.calls) == 1


def test_open_dialog_and_close_with_none():
    ctl, *_ = _controller({SELECTED_AUTH_KEY: "local"})
    ctl.open_auth_dialog()
    assert ctl.status is AuthStatus.DIALOG_OPEN
    assert ctl.select_auth_method(None, "user") is False
    assert not ctl.state.dialog_open
