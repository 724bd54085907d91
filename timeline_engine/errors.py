"""Error taxonomy for the persistence boundary."""

from __future__ import annotations

from typing import Any, Literal

PersistenceErrorKind = Literal[
    "schema_access",
    "not_found",
    "constraint_violation",
    "network",
    "auth_expired",
    "other",
]

PERSISTENCE_ERROR_KIND_BY_CODE: dict[str, PersistenceErrorKind] = {
    "42501": "schema_access",
    "42P01": "schema_access",
    "42703": "schema_access",
    "PGRST204": "schema_access",
    "PGRST205": "schema_access",
    "PGRST116": "not_found",
    "23502": "constraint_violation",
    "23503": "constraint_violation",
    "23505": "constraint_violation",
    "23514": "constraint_violation",
    "PGRST301": "auth_expired",
    "PGRST303": "auth_expired",
    "401": "auth_expired",
}

_NETWORK_MARKERS = ("network", "fetch failed", "timed out", "timeout", "connection")
_AUTH_MARKERS = ("jwt expired", "invalid jwt", "refresh token", "not authenticated")


class PersistenceError(Exception):
    """A failure reported by the backing store, tagged with its kind."""

    def __init__(self, message: str, kind: PersistenceErrorKind = "other", code: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.kind == "network"

    @property
    def requires_reauth(self) -> bool:
        return self.kind == "auth_expired"


def classify_persistence_error(code: str | None, message: str | None = None) -> PersistenceErrorKind:
    """Map a store error code (and message, when the code is unknown) to a kind."""

    normalized = str(code or "").strip().upper()
    if normalized in PERSISTENCE_ERROR_KIND_BY_CODE:
        return PERSISTENCE_ERROR_KIND_BY_CODE[normalized]

    lowered = str(message or "").lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return "auth_expired"
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return "network"
    return "other"


def to_persistence_error(error: Any) -> PersistenceError:
    """Wrap an exception or an error payload (``code``/``message`` mapping) as PersistenceError."""

    if isinstance(error, PersistenceError):
        return error
    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message") or "Unknown persistence error")
    elif isinstance(error, (ConnectionError, TimeoutError)):
        return PersistenceError(str(error) or type(error).__name__, kind="network")
    else:
        code = getattr(error, "code", None)
        message = str(error) or type(error).__name__
    return PersistenceError(message, kind=classify_persistence_error(code, message), code=code)
