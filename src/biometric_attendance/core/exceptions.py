from __future__ import annotations

from .enums import MarkOutcome


class DomainError(Exception):
    """Base exception for business rule violations."""


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""


class NotFound(DomainError):
    """Raised when a referenced identity does not exist or is inactive."""


class DimensionMismatch(DomainError):
    """Raised when an embedding does not have the expected length."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding must contain exactly {expected} numbers (got {actual})")
        self.expected = expected
        self.actual = actual


class SessionRejected(DomainError):
    """A session-state policy refused the requested action."""

    outcome: MarkOutcome
    default_message = "Attendance action rejected"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class AlreadyLoggedIn(SessionRejected):
    outcome = MarkOutcome.ALREADY_LOGGED_IN
    default_message = "You are already logged in for today"


class AlreadyCompleted(SessionRejected):
    outcome = MarkOutcome.ALREADY_COMPLETED
    default_message = "You have already completed your attendance for today"


class MustLoginFirst(SessionRejected):
    outcome = MarkOutcome.MUST_LOGIN_FIRST
    default_message = "You must login first before logging out"


class DuplicateEntry(DomainError):
    """Ledger already holds an entry for this (identity, day)."""


class EntryNotOpen(DomainError):
    """Ledger entry is missing or already has a time-out."""


class FaceExtractionError(DomainError):
    """Base for failures of the face feature extractor."""


class NoFaceDetected(FaceExtractionError):
    def __init__(self, message: str = "No face detected in the image. Please ensure your face is clearly visible."):
        super().__init__(message)


class MultipleFacesDetected(FaceExtractionError):
    def __init__(self, message: str = "Multiple faces detected. Please ensure only one face is visible."):
        super().__init__(message)


class LowQuality(FaceExtractionError):
    def __init__(self, message: str = "Face quality too low"):
        super().__init__(message)


class InfrastructureError(Exception):
    """Unrecoverable failure of a backing store or collaborator."""


class MalformedTemplate(InfrastructureError):
    """A stored biometric template cannot be decoded."""


class StorageError(InfrastructureError):
    """Object storage rejected or failed an upload."""
