import unittest
from unittest import mock

from passkeyauth.ceremony import sign_count_advanced
from passkeyauth.engine import Assertion
from passkeyauth.errors import (
    CeremonyInitFailed,
    DuplicateUser,
    LoginRejected,
    NoPendingCeremony,
    NotAuthenticated,
    PossibleCloneDetected,
    RegistrationRejected,
    UserNotFound,
    ValidationError,
)

from support import FakeClock, StoreMixin, login_response, registration_response


class CeremonyTestCase(StoreMixin, unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.orchestrator = self.make_orchestrator(self.clock)

    def register(self, username: str, display_name: str, credential_id: bytes) -> str:
        options, user_id = self.orchestrator.begin_registration(username, display_name)
        self.orchestrator.finish_registration(user_id, registration_response(options, credential_id))
        return user_id

    def login(self, username: str, credential_id: bytes, sign_count: int) -> str:
        options, user_id = self.orchestrator.begin_login(username)
        return self.orchestrator.finish_login(user_id, login_response(options, credential_id, sign_count))


class TestRegistration(CeremonyTestCase):
    def test_first_credential_is_backup_eligible(self) -> None:
        user_id = self.register("alice", "Alice A", b"\x01")
        [credential] = self.orchestrator.credentials.list_for_user(user_id)
        self.assertTrue(credential.backup_eligible)
        self.assertEqual(self.orchestrator.users.get_by_id(user_id).display_name, "Alice A")

    def test_second_credential_is_not_backup_eligible(self) -> None:
        user_id = self.register("alice", "Alice A", b"\x01")
        token = self.login("alice", b"\x01", 1)
        alice = self.orchestrator.resolve_session(token)

        options = self.orchestrator.begin_add_credential(alice)
        self.assertEqual(options["publicKey"]["excludeCredentials"], ["01"])
        second = self.orchestrator.finish_registration(
            user_id, registration_response(options, b"\x02", attachment="cross-platform")
        )

        self.assertFalse(second.backup_eligible)
        stored = {record.credential_id: record for record in self.orchestrator.list_credentials(alice)}
        self.assertEqual(len(stored), 2)
        self.assertTrue(stored[b"\x01"].backup_eligible)
        self.assertFalse(stored[b"\x02"].backup_eligible)

    def test_registered_credential_reads_back_for_login(self) -> None:
        options, user_id = self.orchestrator.begin_registration("alice", "Alice A")
        written = self.orchestrator.finish_registration(
            user_id,
            registration_response(options, b"\xaa\xbb", public_key=b"\xa5\x01\x02\x03\x26", attachment="platform"),
        )
        [loaded] = self.orchestrator.credentials.list_for_user(user_id)
        self.assertEqual(loaded.credential_id, written.credential_id)
        self.assertEqual(loaded.public_key, b"\xa5\x01\x02\x03\x26")
        self.assertEqual(loaded.attachment, "platform")

    def test_duplicate_username(self) -> None:
        self.orchestrator.begin_registration("alice", "Alice A")
        with self.assertRaises(DuplicateUser):
            self.orchestrator.begin_registration("alice", "Another Alice")

    def test_blank_inputs_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.orchestrator.begin_registration("", "Alice A")
        with self.assertRaises(ValidationError):
            self.orchestrator.begin_registration("alice", "   ")
        self.assertIsNone(self.orchestrator.users.get_by_name("alice"))

    def test_finish_twice_fails_with_no_pending_ceremony(self) -> None:
        options, user_id = self.orchestrator.begin_registration("alice", "Alice A")
        response = registration_response(options, b"\x01")
        self.orchestrator.finish_registration(user_id, response)
        with self.assertRaises(NoPendingCeremony):
            self.orchestrator.finish_registration(user_id, response)

    def test_rejected_response_consumes_the_ceremony(self) -> None:
        options, user_id = self.orchestrator.begin_registration("alice", "Alice A")
        tampered = registration_response(options, b"\x01")
        tampered["challenge"] = "forged"
        with self.assertRaises(RegistrationRejected):
            self.orchestrator.finish_registration(user_id, tampered)
        self.assertFalse(self.orchestrator.ceremonies.pending(user_id))
        with self.assertRaises(NoPendingCeremony):
            self.orchestrator.finish_registration(user_id, registration_response(options, b"\x01"))
        self.assertEqual(self.orchestrator.credentials.list_for_user(user_id), [])

    def test_engine_failure_on_begin(self) -> None:
        self.orchestrator.engine.fail_begin = True
        with self.assertRaises(CeremonyInitFailed):
            self.orchestrator.begin_registration("alice", "Alice A")
        self.assertEqual(len(self.orchestrator.ceremonies), 0)

    def test_expired_ceremony(self) -> None:
        options, user_id = self.orchestrator.begin_registration("alice", "Alice A")
        self.clock.advance(301)
        with self.assertRaises(NoPendingCeremony):
            self.orchestrator.finish_registration(user_id, registration_response(options, b"\x01"))

    def test_login_ceremony_cannot_finish_registration(self) -> None:
        self.register("alice", "Alice A", b"\x01")
        options, user_id = self.orchestrator.begin_login("alice")
        with self.assertRaises(NoPendingCeremony):
            self.orchestrator.finish_registration(user_id, registration_response(options, b"\x02"))


class TestLogin(CeremonyTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user_id = self.register("alice", "Alice A", b"\x01")

    def test_token_resolves_to_user_until_expiry(self) -> None:
        token = self.login("alice", b"\x01", 1)
        self.assertEqual(self.orchestrator.resolve_session(token).id, self.user_id)
        self.clock.advance(24 * 60 * 60)
        with self.assertRaises(NotAuthenticated):
            self.orchestrator.resolve_session(token)

    def test_sign_count_is_written_back(self) -> None:
        self.login("alice", b"\x01", 5)
        [credential] = self.orchestrator.credentials.list_for_user(self.user_id)
        self.assertEqual(credential.sign_count, 5)
        self.assertTrue(credential.backup_eligible)

    def test_unknown_user(self) -> None:
        with self.assertRaises(UserNotFound):
            self.orchestrator.begin_login("nonexistent")
        self.assertEqual(len(self.orchestrator.ceremonies), 0)

    def test_tampered_response_issues_no_token(self) -> None:
        options, user_id = self.orchestrator.begin_login("alice")
        sessions_before = len(self.orchestrator.sessions)
        with self.assertRaises(LoginRejected):
            self.orchestrator.finish_login(user_id, login_response(options, b"\x01", 1, signature="forged"))
        self.assertEqual(len(self.orchestrator.sessions), sessions_before)
        self.assertFalse(self.orchestrator.ceremonies.pending(user_id))
        with self.assertRaises(NoPendingCeremony):
            self.orchestrator.finish_login(user_id, login_response(options, b"\x01", 1))

    def test_finish_twice_fails_with_no_pending_ceremony(self) -> None:
        options, user_id = self.orchestrator.begin_login("alice")
        response = login_response(options, b"\x01", 1)
        self.orchestrator.finish_login(user_id, response)
        with self.assertRaises(NoPendingCeremony):
            self.orchestrator.finish_login(user_id, response)

    def test_repeated_begin_invalidates_previous_challenge(self) -> None:
        first, user_id = self.orchestrator.begin_login("alice")
        self.orchestrator.begin_login("alice")
        with self.assertRaises(LoginRejected):
            self.orchestrator.finish_login(user_id, login_response(first, b"\x01", 1))
        self.assertFalse(self.orchestrator.ceremonies.pending(user_id))

    def test_non_increasing_sign_count_flags_clone(self) -> None:
        self.login("alice", b"\x01", 4)
        options, user_id = self.orchestrator.begin_login("alice")
        with self.assertRaises(PossibleCloneDetected):
            self.orchestrator.finish_login(user_id, login_response(options, b"\x01", 4))
        [credential] = self.orchestrator.credentials.list_for_user(user_id)
        self.assertTrue(credential.clone_warning)
        self.assertEqual(credential.sign_count, 4)

    def test_credential_of_another_user_is_rejected(self) -> None:
        bob_id = self.register("bob", "Bob B", b"\x02")
        options, user_id = self.orchestrator.begin_login("alice")
        stolen = Assertion(credential_id=b"\x02", sign_count=9)
        with mock.patch.object(self.orchestrator.engine, "finish_login", return_value=stolen):
            with self.assertRaises(LoginRejected):
                self.orchestrator.finish_login(user_id, login_response(options, b"\x01", 1))
        self.assertEqual(len(self.orchestrator.sessions), 0)
        [bob_credential] = self.orchestrator.credentials.list_for_user(bob_id)
        self.assertEqual(bob_credential.sign_count, 0)
        self.assertFalse(bob_credential.clone_warning)

    def test_counterless_authenticator_is_accepted(self) -> None:
        self.login("alice", b"\x01", 0)
        token = self.login("alice", b"\x01", 0)
        self.assertEqual(self.orchestrator.resolve_session(token).name, "alice")

    def test_session_for_vanished_user_is_rejected(self) -> None:
        token = self.login("alice", b"\x01", 1)
        with self.orchestrator.users._db.transaction() as payload:
            payload["users"].clear()
        with self.assertRaises(NotAuthenticated):
            self.orchestrator.resolve_session(token)

    def test_logout(self) -> None:
        token = self.login("alice", b"\x01", 1)
        self.assertTrue(self.orchestrator.logout(token))
        with self.assertRaises(NotAuthenticated):
            self.orchestrator.resolve_session(token)


class TestSignCountPolicy(unittest.TestCase):
    def test_policy(self) -> None:
        self.assertTrue(sign_count_advanced(0, 0))
        self.assertTrue(sign_count_advanced(0, 1))
        self.assertTrue(sign_count_advanced(3, 4))
        self.assertFalse(sign_count_advanced(3, 3))
        self.assertFalse(sign_count_advanced(3, 2))
        self.assertFalse(sign_count_advanced(3, 0))


if __name__ == "__main__":
    unittest.main()
