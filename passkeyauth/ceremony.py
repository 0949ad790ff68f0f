"""Registration and login ceremonies, from challenge to session token."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Tuple

from .engine import CeremonyEngine
from .errors import (
    CeremonyInitFailed,
    EngineError,
    LoginRejected,
    NotAuthenticated,
    PossibleCloneDetected,
    RegistrationRejected,
    UserNotFound,
    ValidationError,
)
from .sessions import AUTHENTICATION, REGISTRATION, AuthSessionStore, CeremonySessionStore
from .store import CredentialRecord, CredentialStore, UserDirectory, UserRecord

logger = logging.getLogger(__name__)


def _require(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    return cleaned


def sign_count_advanced(stored: int, reported: int) -> bool:
    """Return True when ``reported`` is an acceptable successor of ``stored``.

    Authenticators that do not implement a counter always report zero.
    """

    if stored == 0 and reported == 0:
        return True
    return reported > stored


class CeremonyOrchestrator:
    """Drive begin/finish ceremonies against an engine and the stores."""

    def __init__(
        self,
        engine: CeremonyEngine,
        users: UserDirectory,
        credentials: CredentialStore,
        ceremonies: CeremonySessionStore,
        sessions: AuthSessionStore,
    ) -> None:
        self.engine = engine
        self.users = users
        self.credentials = credentials
        self.ceremonies = ceremonies
        self.sessions = sessions

    # Registration -------------------------------------------------------

    def begin_registration(self, username: str, display_name: str) -> Tuple[Dict[str, Any], str]:
        username = _require(username, "username")
        display_name = _require(display_name, "displayName")

        user = self.users.insert(
            UserRecord(id=str(uuid.uuid4()), name=username, display_name=display_name)
        )
        options = self._begin_registration_ceremony(user)
        return options, user.id

    def begin_add_credential(self, user: UserRecord) -> Dict[str, Any]:
        """Start registering one more credential for an authenticated user."""

        return self._begin_registration_ceremony(user)

    def _begin_registration_ceremony(self, user: UserRecord) -> Dict[str, Any]:
        existing = self.credentials.list_for_user(user.id)
        try:
            options, state = self.engine.begin_registration(user, existing)
        except EngineError as exc:
            logger.error("Failed to begin registration for user %s: %s", user.id, exc)
            raise CeremonyInitFailed() from exc
        self.ceremonies.put(user.id, REGISTRATION, state)
        return options

    def finish_registration(self, user_id: str, response: Mapping[str, Any]) -> CredentialRecord:
        user_id = _require(user_id, "userID")
        pending = self.ceremonies.pop(user_id, REGISTRATION)
        user = self._load_user(user_id)

        try:
            registered = self.engine.finish_registration(user, pending.state, response)
        except EngineError as exc:
            logger.warning("Registration rejected for user %s: %s", user_id, exc)
            raise RegistrationRejected() from exc

        record = self.credentials.register(
            CredentialRecord(
                id=str(uuid.uuid4()),
                user_id=user.id,
                public_key=registered.public_key,
                credential_id=registered.credential_id,
                sign_count=registered.sign_count,
                aaguid=registered.aaguid,
                attachment=registered.attachment,
                backup_state=registered.backup_state,
            )
        )
        logger.info("Successfully registered credential for user %s", user.id)
        return record

    # Login --------------------------------------------------------------

    def begin_login(self, username: str) -> Tuple[Dict[str, Any], str]:
        username = _require(username, "username")
        user = self.users.get_by_name(username)
        if user is None:
            raise UserNotFound(f"No user named {username!r}")

        credentials = self.credentials.list_for_user(user.id)
        try:
            options, state = self.engine.begin_login(user, credentials)
        except EngineError as exc:
            logger.error("Failed to begin login for user %s: %s", user.id, exc)
            raise CeremonyInitFailed() from exc
        self.ceremonies.put(user.id, AUTHENTICATION, state)
        return options, user.id

    def finish_login(self, user_id: str, response: Mapping[str, Any]) -> str:
        user_id = _require(user_id, "userID")
        pending = self.ceremonies.pop(user_id, AUTHENTICATION)
        user = self._load_user(user_id)
        credentials = self.credentials.list_for_user(user.id)

        try:
            assertion = self.engine.finish_login(user, pending.state, response, credentials)
        except EngineError as exc:
            logger.warning("Login rejected for user %s: %s", user_id, exc)
            raise LoginRejected() from exc

        stored = self.credentials.get_by_credential_id(assertion.credential_id)
        if stored is None or stored.user_id != user.id:
            logger.warning("Engine matched a credential user %s does not own", user_id)
            raise LoginRejected()

        if not sign_count_advanced(stored.sign_count, assertion.sign_count):
            self.credentials.flag_clone(stored.credential_id)
            logger.warning(
                "Sign count for credential %s went from %d to %d; flagged as possible clone",
                stored.id,
                stored.sign_count,
                assertion.sign_count,
            )
            raise PossibleCloneDetected()

        self.credentials.update_sign_count(stored.credential_id, assertion.sign_count)
        session = self.sessions.create(user.id)
        logger.info("Successfully validated credential for user %s", user.id)
        return session.token

    # Sessions -----------------------------------------------------------

    def resolve_session(self, token: str | None) -> UserRecord:
        user_id = self.sessions.resolve(token)
        user = self.users.get_by_id(user_id)
        if user is None:
            self.sessions.revoke(token)
            raise NotAuthenticated(f"Session user {user_id} no longer exists")
        return user

    def logout(self, token: str | None) -> bool:
        return self.sessions.revoke(token)

    def list_credentials(self, user: UserRecord) -> List[CredentialRecord]:
        return self.credentials.list_for_user(user.id)

    def _load_user(self, user_id: str) -> UserRecord:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound(f"Unknown user id {user_id}")
        return user


__all__ = ["CeremonyOrchestrator", "sign_count_advanced"]
