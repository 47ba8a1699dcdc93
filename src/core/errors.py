"""Domain error taxonomy for the assessment lifecycle.

Every error carries a stable ``kind`` string and the HTTP status the API
layer reports it with. Route handlers let these propagate; the application
exception handler turns them into ``{"error": kind, "detail": ...}`` bodies.
"""

from __future__ import annotations


class BmnlError(Exception):
    """Base class for all lifecycle errors."""

    kind = "error"
    status_code = 500

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.kind)
        self.detail = detail

    def to_dict(self) -> dict[str, str | None]:
        return {"error": self.kind, "detail": self.detail}


class NotFound(BmnlError):
    """Unknown participant, question, or flag."""

    kind = "not_found"
    status_code = 404


class InvalidState(BmnlError):
    """Operation is illegal for the participant's current lifecycle state."""

    kind = "invalid_state"
    status_code = 409


class IncompleteAssessment(BmnlError):
    """Aggregation attempted before every required answer is present."""

    kind = "incomplete_assessment"
    status_code = 409

    def __init__(self, missing: list[int] | None = None, detail: str | None = None) -> None:
        self.missing = sorted(missing or [])
        if detail is None and self.missing:
            detail = "Missing answers for questions: " + ", ".join(str(q) for q in self.missing)
        super().__init__(detail)


class ConsentRequired(BmnlError):
    """A consent-gated operation was attempted without active consent."""

    kind = "consent_required"
    status_code = 403


class DecryptionFailed(BmnlError):
    """Stored ciphertext failed its integrity check or no key could open it."""

    kind = "decryption_failed"
    status_code = 500


class Unauthorized(BmnlError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(BmnlError):
    kind = "forbidden"
    status_code = 403


class ConfigurationError(BmnlError):
    """Required secret or key material is missing or malformed."""

    kind = "configuration_error"
    status_code = 500


class StorageFailure(BmnlError):
    """The backing store is unavailable or rejected a write."""

    kind = "storage_failure"
    status_code = 503


class ValidationFailed(BmnlError):
    """Caller input failed validation (bad email, empty answer)."""

    kind = "validation_failed"
    status_code = 422
