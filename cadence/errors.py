"""
cadence.errors — Error Hierarchy
=================================

Every failure the core raises on purpose derives from
:class:`CadenceError` and carries a short machine ``code`` so callers
(an HTTP layer, the worker, tests) can branch without string matching.

- :class:`ValidationError`: bad input, rejected before any mutation.
- :class:`ConfigurationError`: the system itself is misconfigured
  (empty tier catalog, missing rank constant).  Never defaulted away.
- :class:`ExternalServiceError`: the text generator failed or timed out.
- :class:`IdempotencyConflict`: a concurrent writer already serviced
  the same period bucket.  Benign; callers treat it as a no-op.
"""

from __future__ import annotations


class CadenceError(Exception):
    """Base class for all Cadence errors."""

    code = "cadence_error"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(CadenceError, ValueError):
    code = "validation_error"


class ConfigurationError(CadenceError, RuntimeError):
    code = "configuration_error"


class ExternalServiceError(CadenceError):
    code = "external_service_error"


class IdempotencyConflict(CadenceError):
    """Raised when a conditional insert loses the race for its key."""

    code = "idempotency_conflict"
