"""JSON-backed user directory and credential store."""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional

from .errors import ConflictError, DuplicateUser, NotFoundError, StorageFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRecord:
    """Registered account."""

    id: str
    name: str
    display_name: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
        }

    @staticmethod
    def from_dict(data: Dict[str, str]) -> "UserRecord":
        return UserRecord(
            id=data["id"],
            name=data["name"],
            display_name=data["display_name"],
        )


@dataclass(frozen=True)
class CredentialRecord:
    """Authenticator credential bound to a user."""

    id: str
    user_id: str
    public_key: bytes
    credential_id: bytes
    sign_count: int = 0
    aaguid: bytes = b""
    clone_warning: bool = False
    attachment: Optional[str] = None
    backup_eligible: bool = False
    backup_state: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "public_key": self.public_key.hex(),
            "credential_id": self.credential_id.hex(),
            "sign_count": self.sign_count,
            "aaguid": self.aaguid.hex(),
            "clone_warning": self.clone_warning,
            "attachment": self.attachment,
            "backup_eligible": self.backup_eligible,
            "backup_state": self.backup_state,
        }

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "CredentialRecord":
        return CredentialRecord(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            public_key=bytes.fromhex(str(data["public_key"])),
            credential_id=bytes.fromhex(str(data["credential_id"])),
            sign_count=int(data.get("sign_count", 0)),  # type: ignore[arg-type]
            aaguid=bytes.fromhex(str(data.get("aaguid") or "")),
            clone_warning=bool(data.get("clone_warning", False)),
            attachment=data.get("attachment") or None,  # type: ignore[arg-type]
            backup_eligible=bool(data.get("backup_eligible", False)),
            backup_state=bool(data.get("backup_state", False)),
        )


class JsonDatabase:
    """Single JSON document guarded by one lock.

    Every write goes through :meth:`transaction`, which loads the document,
    hands it to the caller and replaces the file atomically only when the
    caller's block completes without raising.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        try:
            self._ensure_file()
        except OSError as exc:
            logger.exception("Cannot initialise store at %s", path)
            raise StorageFailed() from exc

    def _ensure_file(self) -> None:
        if not os.path.exists(self.path):
            self._save({"users": [], "credentials": []})

    def _load(self) -> Dict[str, list]:
        with open(self.path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        payload.setdefault("users", [])
        payload.setdefault("credentials", [])
        return payload

    def _save(self, payload: Dict[str, list]) -> None:
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp_path, self.path)

    def read(self) -> Dict[str, list]:
        with self._lock:
            try:
                return self._load()
            except (OSError, ValueError) as exc:
                logger.exception("Failed to read store %s", self.path)
                raise StorageFailed() from exc

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, list]]:
        with self._lock:
            try:
                payload = self._load()
            except (OSError, ValueError) as exc:
                logger.exception("Failed to read store %s", self.path)
                raise StorageFailed() from exc
            yield payload
            try:
                self._save(payload)
            except (OSError, TypeError, ValueError) as exc:
                logger.exception("Failed to write store %s", self.path)
                raise StorageFailed() from exc


class UserDirectory:
    """Look up and create users."""

    def __init__(self, db: JsonDatabase) -> None:
        self._db = db

    def get_by_id(self, user_id: str) -> Optional[UserRecord]:
        for raw_user in self._db.read()["users"]:
            if raw_user.get("id") == user_id:
                return UserRecord.from_dict(raw_user)
        return None

    def get_by_name(self, name: str) -> Optional[UserRecord]:
        for raw_user in self._db.read()["users"]:
            if raw_user.get("name") == name:
                return UserRecord.from_dict(raw_user)
        return None

    def insert(self, user: UserRecord) -> UserRecord:
        with self._db.transaction() as payload:
            for raw_user in payload["users"]:
                if raw_user.get("name") == user.name:
                    raise DuplicateUser(f"User '{user.name}' already exists")
                if raw_user.get("id") == user.id:
                    raise DuplicateUser(f"User id '{user.id}' already exists")
            payload["users"].append(user.to_dict())
        logger.info("Created user %s (%s)", user.id, user.name)
        return user


class CredentialStore:
    """Append-only credential history per user."""

    def __init__(self, db: JsonDatabase) -> None:
        self._db = db

    def list_for_user(self, user_id: str) -> List[CredentialRecord]:
        return [
            CredentialRecord.from_dict(raw)
            for raw in self._db.read()["credentials"]
            if raw.get("user_id") == user_id
        ]

    def get_by_credential_id(self, credential_id: bytes) -> Optional[CredentialRecord]:
        wanted = credential_id.hex()
        for raw in self._db.read()["credentials"]:
            if raw.get("credential_id") == wanted:
                return CredentialRecord.from_dict(raw)
        return None

    def insert(self, record: CredentialRecord) -> CredentialRecord:
        with self._db.transaction() as payload:
            self._append(payload, record)
        return record

    def register(self, record: CredentialRecord) -> CredentialRecord:
        """Insert a newly registered credential.

        Only the first credential a user ever registers is backup eligible.
        The existence check and the insert share one transaction, so two
        concurrent registrations for the same user cannot both see an empty
        history.
        """

        with self._db.transaction() as payload:
            existing = sum(1 for raw in payload["credentials"] if raw.get("user_id") == record.user_id)
            record = replace(record, backup_eligible=existing == 0)
            self._append(payload, record)
        logger.info(
            "Saved credential %s for user %s (backup eligible: %s)",
            record.id,
            record.user_id,
            record.backup_eligible,
        )
        return record

    def update_sign_count(self, credential_id: bytes, sign_count: int) -> CredentialRecord:
        return self._update(credential_id, sign_count=sign_count)

    def flag_clone(self, credential_id: bytes) -> CredentialRecord:
        return self._update(credential_id, clone_warning=True)

    def _update(self, credential_id: bytes, **changes: object) -> CredentialRecord:
        wanted = credential_id.hex()
        with self._db.transaction() as payload:
            for index, raw in enumerate(payload["credentials"]):
                if raw.get("credential_id") == wanted:
                    record = replace(CredentialRecord.from_dict(raw), **changes)  # type: ignore[arg-type]
                    payload["credentials"][index] = record.to_dict()
                    return record
            raise NotFoundError(f"Unknown credential {wanted}")

    @staticmethod
    def _append(payload: Dict[str, list], record: CredentialRecord) -> None:
        wanted = record.credential_id.hex()
        if any(raw.get("credential_id") == wanted for raw in payload["credentials"]):
            raise ConflictError("Credential already registered")
        payload["credentials"].append(record.to_dict())


__all__ = [
    "CredentialRecord",
    "CredentialStore",
    "JsonDatabase",
    "UserDirectory",
    "UserRecord",
]
