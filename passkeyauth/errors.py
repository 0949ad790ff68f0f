"""Error taxonomy shared by the orchestrator and the HTTP layer."""

from __future__ import annotations


class PasskeyAuthError(Exception):
    """Base error carrying an opaque category and a caller-safe message."""

    category = "internal"
    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class ValidationError(PasskeyAuthError):
    category = "validation"
    status_code = 400
    public_message = "Invalid request payload"


class NotFoundError(PasskeyAuthError):
    category = "not_found"
    status_code = 404
    public_message = "Unknown user or credential"


class UserNotFound(NotFoundError):
    pass


class ConflictError(PasskeyAuthError):
    category = "conflict"
    status_code = 409
    public_message = "Username is not available"


class DuplicateUser(ConflictError):
    pass


class CeremonyError(PasskeyAuthError):
    category = "ceremony"
    status_code = 400
    public_message = "Ceremony failed, please try again"


class CeremonyInitFailed(CeremonyError):
    status_code = 500
    public_message = "Could not start the ceremony"


class NoPendingCeremony(CeremonyError):
    public_message = "No ceremony in progress"


class RegistrationRejected(CeremonyError):
    public_message = "Registration failed, please try again"


class LoginRejected(CeremonyError):
    status_code = 401
    public_message = "Login failed, please try again"


class PossibleCloneDetected(LoginRejected):
    pass


class StorageError(PasskeyAuthError):
    category = "storage"
    status_code = 500
    public_message = "Internal error"


class StorageFailed(StorageError):
    pass


class NotAuthenticatedError(PasskeyAuthError):
    category = "not_authenticated"
    status_code = 401
    public_message = "Not authenticated"


class NotAuthenticated(NotAuthenticatedError):
    pass


class EngineError(Exception):
    """Raised by ceremony engine adapters when a challenge or response is rejected."""


__all__ = [
    "CeremonyError",
    "CeremonyInitFailed",
    "ConflictError",
    "DuplicateUser",
    "EngineError",
    "LoginRejected",
    "NoPendingCeremony",
    "NotAuthenticated",
    "NotAuthenticatedError",
    "NotFoundError",
    "PasskeyAuthError",
    "PossibleCloneDetected",
    "RegistrationRejected",
    "StorageError",
    "StorageFailed",
    "UserNotFound",
    "ValidationError",
]
