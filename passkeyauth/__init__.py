"""Passwordless WebAuthn authentication service package."""

from .ceremony import CeremonyOrchestrator, sign_count_advanced
from .config import Settings, get_settings
from .engine import Assertion, CeremonyEngine, Fido2CeremonyEngine, RegisteredCredential
from .errors import (
    CeremonyError,
    CeremonyInitFailed,
    ConflictError,
    DuplicateUser,
    EngineError,
    LoginRejected,
    NoPendingCeremony,
    NotAuthenticated,
    NotAuthenticatedError,
    NotFoundError,
    PasskeyAuthError,
    PossibleCloneDetected,
    RegistrationRejected,
    StorageError,
    StorageFailed,
    UserNotFound,
    ValidationError,
)
from .sessions import AuthSession, AuthSessionStore, CeremonySession, CeremonySessionStore
from .store import CredentialRecord, CredentialStore, JsonDatabase, UserDirectory, UserRecord

__all__ = [
    "Assertion",
    "AuthSession",
    "AuthSessionStore",
    "CeremonyEngine",
    "CeremonyError",
    "CeremonyInitFailed",
    "CeremonyOrchestrator",
    "CeremonySession",
    "CeremonySessionStore",
    "ConflictError",
    "CredentialRecord",
    "CredentialStore",
    "DuplicateUser",
    "EngineError",
    "Fido2CeremonyEngine",
    "JsonDatabase",
    "LoginRejected",
    "NoPendingCeremony",
    "NotAuthenticated",
    "NotAuthenticatedError",
    "NotFoundError",
    "PasskeyAuthError",
    "PossibleCloneDetected",
    "RegisteredCredential",
    "RegistrationRejected",
    "Settings",
    "StorageError",
    "StorageFailed",
    "UserDirectory",
    "UserNotFound",
    "UserRecord",
    "ValidationError",
    "get_settings",
    "sign_count_advanced",
]
