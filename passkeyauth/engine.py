"""Ceremony engine boundary and its python-fido2 implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from cryptography.exceptions import InvalidSignature
from fido2 import cbor
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_encode
from fido2.webauthn import (
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    RegistrationResponse,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .errors import EngineError
from .store import CredentialRecord, UserRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredCredential:
    """Credential material returned by a verified registration."""

    credential_id: bytes
    public_key: bytes
    sign_count: int
    aaguid: bytes
    attachment: Optional[str] = None
    backup_state: bool = False


@dataclass(frozen=True)
class Assertion:
    """Outcome of a verified login: which credential signed, and its counter."""

    credential_id: bytes
    sign_count: int


class CeremonyEngine(Protocol):
    def begin_registration(
        self, user: UserRecord, existing: Sequence[CredentialRecord]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]: ...

    def finish_registration(
        self, user: UserRecord, state: Dict[str, Any], response: Mapping[str, Any]
    ) -> RegisteredCredential: ...

    def begin_login(
        self, user: UserRecord, credentials: Sequence[CredentialRecord]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]: ...

    def finish_login(
        self,
        user: UserRecord,
        state: Dict[str, Any],
        response: Mapping[str, Any],
        credentials: Sequence[CredentialRecord],
    ) -> Assertion: ...


def make_json_safe(value: Any) -> Any:
    """Convert fido2 option objects into plain JSON types."""

    if isinstance(value, (bytes, bytearray, memoryview)):
        return websafe_encode(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): make_json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [make_json_safe(item) for item in value]
    return value


def _descriptors(credentials: Iterable[CredentialRecord]) -> List[PublicKeyCredentialDescriptor]:
    return [
        PublicKeyCredentialDescriptor(type=PublicKeyCredentialType.PUBLIC_KEY, id=record.credential_id)
        for record in credentials
    ]


def _attested(record: CredentialRecord) -> AttestedCredentialData:
    public_key = CoseKey.parse(cbor.decode(record.public_key))
    return AttestedCredentialData.create(record.aaguid or bytes(16), record.credential_id, public_key)


class Fido2CeremonyEngine:
    """Relying-party engine backed by :class:`fido2.server.Fido2Server`.

    The RP id and the accepted origins are fixed at construction. Clients whose
    ``clientDataJSON`` names another origin, or whose authenticator data hashes
    another RP id, are rejected here.
    """

    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        origins: Iterable[str],
        *,
        user_verification: str = "preferred",
    ) -> None:
        self.origins = frozenset(origins)
        self.user_verification = UserVerificationRequirement(user_verification)
        self._server = Fido2Server(
            PublicKeyCredentialRpEntity(name=rp_name, id=rp_id),
            attestation=AttestationConveyancePreference.NONE,
            verify_origin=self._verify_origin,
        )

    def _verify_origin(self, origin: str) -> bool:
        return origin in self.origins

    def begin_registration(
        self, user: UserRecord, existing: Sequence[CredentialRecord]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        entity = PublicKeyCredentialUserEntity(
            name=user.name,
            id=user.id.encode("utf-8"),
            display_name=user.display_name,
        )
        try:
            options, state = self._server.register_begin(
                entity,
                _descriptors(existing),
                resident_key_requirement=ResidentKeyRequirement.DISCOURAGED,
                user_verification=self.user_verification,
            )
        except (TypeError, ValueError) as exc:
            raise EngineError(str(exc)) from exc
        return make_json_safe(dict(options)), state

    def finish_registration(
        self, user: UserRecord, state: Dict[str, Any], response: Mapping[str, Any]
    ) -> RegisteredCredential:
        try:
            parsed = RegistrationResponse.from_dict(response)
            auth_data = self._server.register_complete(state, parsed)
        except (InvalidSignature, KeyError, TypeError, ValueError) as exc:
            raise EngineError(f"registration rejected: {exc}") from exc

        credential_data = auth_data.credential_data
        if credential_data is None:
            raise EngineError("registration response carries no attested credential data")

        attachment = parsed.authenticator_attachment
        return RegisteredCredential(
            credential_id=bytes(credential_data.credential_id),
            public_key=cbor.encode(dict(credential_data.public_key)),
            sign_count=auth_data.counter,
            aaguid=bytes(credential_data.aaguid),
            attachment=getattr(attachment, "value", attachment),
            backup_state=auth_data.is_backed_up(),
        )

    def begin_login(
        self, user: UserRecord, credentials: Sequence[CredentialRecord]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        try:
            options, state = self._server.authenticate_begin(
                _descriptors(credentials) or None,
                user_verification=self.user_verification,
            )
        except (TypeError, ValueError) as exc:
            raise EngineError(str(exc)) from exc
        return make_json_safe(dict(options)), state

    def finish_login(
        self,
        user: UserRecord,
        state: Dict[str, Any],
        response: Mapping[str, Any],
        credentials: Sequence[CredentialRecord],
    ) -> Assertion:
        try:
            parsed = AuthenticationResponse.from_dict(response)
            matched = self._server.authenticate_complete(
                state,
                [_attested(record) for record in credentials],
                parsed,
            )
        except (InvalidSignature, KeyError, TypeError, ValueError) as exc:
            raise EngineError(f"assertion rejected: {exc}") from exc
        return Assertion(
            credential_id=bytes(matched.credential_id),
            sign_count=parsed.response.authenticator_data.counter,
        )


__all__ = [
    "Assertion",
    "CeremonyEngine",
    "Fido2CeremonyEngine",
    "RegisteredCredential",
    "make_json_safe",
]
