from __future__ import annotations
from typing import Optional


class ProviderError(Exception):
    """Base class for provider-level failures."""
    kind = "provider_error"


class ProviderClientError(ProviderError):
    """
    Non-retryable: caller/config issue (empty request, auth, unknown provider,
    unsupported capability, etc.). The fix is change input/config, not retry.
    """
    kind = "client_error"


class ProviderTransientError(ProviderError):
    """
    Retryable: network hiccups, timeouts, connection resets.
    Retrying the same turn is safe because nothing was committed.
    """
    kind = "transient_error"


class EmptyRequest(ProviderClientError):
    kind = "empty_request"


class AuthRejected(ProviderClientError):
    """The backend refused the credential (or none was configured)."""
    kind = "auth_rejected"

    def __init__(self, message: str, *, status: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.provider = provider


class MissingCredential(AuthRejected):
    kind = "credential_missing"


class UnsupportedProvider(ProviderClientError):
    kind = "unsupported_provider"


class Unsupported(ProviderClientError):
    kind = "unsupported"


class TransportError(ProviderTransientError):
    kind = "transport_error"


class BackendError(ProviderError):
    """Non-2xx answer that is not an auth rejection."""
    kind = "backend_error"

    def __init__(self, status: int, message: str):
        super().__init__(f"{message} (Status: {status})")
        self.status = int(status)
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.status == 429 or 500 <= self.status <= 599


class RequestCancelled(ProviderError):
    kind = "cancelled"


class TurnBudgetExceeded(Exception):
    """Session stopped issuing backend calls because max_turns ran out."""
    kind = "turn_budget_exceeded"

    def __init__(self, max_turns: int):
        super().__init__(f"Turn budget of {max_turns} exhausted before the model finished")
        self.max_turns = max_turns


def classify_status(status: int, message: str, *, auth_message: Optional[str] = None,
                    provider: Optional[str] = None) -> ProviderError:
    """
    Convert a non-2xx HTTP status into a neutral provider error.
    auth_message replaces the backend text for 401/403 so the user sees which
    credential sources were checked.
    """
    s = int(status)
    if s in (401, 403):
        return AuthRejected(auth_message or message, status=s, provider=provider)
    return BackendError(s, message)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderTransientError):
        return True
    if isinstance(exc, BackendError):
        return exc.retryable
    return False
