"""
Bursa Refresh — Error Taxonomy
───────────────────────────────
Every error carries the HTTP status the refresh endpoint maps it to.

  AuthorizationError  401  bad / missing secret, nothing logged to the job log
  ConfigurationError  400  invalid slice, unknown domain, empty universe
  ProviderFetchError  —    one provider call failed; recovered by the fallback
  PersistenceError    —    one store batch failed; counted, never aborts
  FatalError          500  whole window unrecoverable; job closed as failed
"""

from typing import Any, Dict, Optional


class RefreshError(Exception):
    """Base class. `code` is a stable machine-readable token."""

    code = "refresh_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        d = {"error": self.message, "code": self.code}
        if self.details:
            d.update(self.details)
        return d


class AuthorizationError(RefreshError):
    code = "unauthorized"
    status_code = 401


class ConfigurationError(RefreshError):
    code = "bad_configuration"
    status_code = 400


class ProviderFetchError(RefreshError):
    """Raised by a QuoteProvider when the call itself failed (transport, 5xx)."""

    code = "provider_fetch_failed"
    status_code = 502

    def __init__(self, provider: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{provider}: {message}", details)
        self.provider = provider


class PersistenceError(RefreshError):
    code = "persistence_failed"
    status_code = 500


class FatalError(RefreshError):
    code = "fatal"
    status_code = 500
