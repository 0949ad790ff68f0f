"""Shared fixtures for the test-suite: a scripted engine and a fake clock."""

from __future__ import annotations

import os
import secrets
import tempfile
from typing import Any, Dict, Mapping, Sequence, Tuple

from passkeyauth.ceremony import CeremonyOrchestrator
from passkeyauth.engine import Assertion, RegisteredCredential
from passkeyauth.errors import EngineError
from passkeyauth.sessions import AuthSessionStore, CeremonySessionStore
from passkeyauth.store import CredentialRecord, CredentialStore, JsonDatabase, UserDirectory, UserRecord


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedEngine:
    """Engine double that checks the challenge round trip and a signature marker."""

    def __init__(self) -> None:
        self.fail_begin = False

    def begin_registration(
        self, user: UserRecord, existing: Sequence[CredentialRecord]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        if self.fail_begin:
            raise EngineError("engine unavailable")
        challenge = secrets.token_hex(16)
        options = {
            "publicKey": {
                "challenge": challenge,
                "user": {"id": user.id, "name": user.name, "displayName": user.display_name},
                "excludeCredentials": [record.credential_id.hex() for record in existing],
            }
        }
        return options, {"challenge": challenge, "user_id": user.id}

    def finish_registration(
        self, user: UserRecord, state: Dict[str, Any], response: Mapping[str, Any]
    ) -> RegisteredCredential:
        if response.get("challenge") != state["challenge"] or state["user_id"] != user.id:
            raise EngineError("challenge mismatch")
        return RegisteredCredential(
            credential_id=bytes.fromhex(response["credentialId"]),
            public_key=bytes.fromhex(response["publicKey"]),
            sign_count=0,
            aaguid=bytes(16),
            attachment=response.get("attachment"),
        )

    def begin_login(
        self, user: UserRecord, credentials: Sequence[CredentialRecord]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        if self.fail_begin:
            raise EngineError("engine unavailable")
        challenge = secrets.token_hex(16)
        options = {
            "publicKey": {
                "challenge": challenge,
                "allowCredentials": [record.credential_id.hex() for record in credentials],
            }
        }
        return options, {"challenge": challenge}

    def finish_login(
        self,
        user: UserRecord,
        state: Dict[str, Any],
        response: Mapping[str, Any],
        credentials: Sequence[CredentialRecord],
    ) -> Assertion:
        if response.get("challenge") != state["challenge"]:
            raise EngineError("challenge mismatch")
        if response.get("signature") != "valid":
            raise EngineError("bad signature")
        credential_id = bytes.fromhex(response["credentialId"])
        if not any(record.credential_id == credential_id for record in credentials):
            raise EngineError("unknown credential")
        return Assertion(credential_id=credential_id, sign_count=int(response["signCount"]))


def registration_response(
    options: Dict[str, Any],
    credential_id: bytes,
    *,
    public_key: bytes = b"\xa5\x01\x02",
    attachment: str | None = "platform",
) -> Dict[str, Any]:
    return {
        "challenge": options["publicKey"]["challenge"],
        "credentialId": credential_id.hex(),
        "publicKey": public_key.hex(),
        "attachment": attachment,
    }


def login_response(
    options: Dict[str, Any],
    credential_id: bytes,
    sign_count: int,
    *,
    signature: str = "valid",
) -> Dict[str, Any]:
    return {
        "challenge": options["publicKey"]["challenge"],
        "credentialId": credential_id.hex(),
        "signCount": sign_count,
        "signature": signature,
    }


class StoreMixin:
    """Provide a temporary JSON store path per test."""

    def make_store_path(self) -> str:
        handle, path = tempfile.mkstemp(suffix=".json")
        os.close(handle)
        os.remove(path)
        self.addCleanup(lambda: os.path.exists(path) and os.remove(path))  # type: ignore[attr-defined]
        return path

    def make_orchestrator(self, clock: FakeClock | None = None) -> CeremonyOrchestrator:
        clock = clock or FakeClock()
        db = JsonDatabase(self.make_store_path())
        return CeremonyOrchestrator(
            engine=ScriptedEngine(),
            users=UserDirectory(db),
            credentials=CredentialStore(db),
            ceremonies=CeremonySessionStore(ttl=300, clock=clock),
            sessions=AuthSessionStore(ttl=24 * 60 * 60, clock=clock),
        )
