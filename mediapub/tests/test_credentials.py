import unittest
import uuid
from datetime import timedelta
from unittest.mock import patch

from mediapub.credentials import CredentialClass, CredentialValidator, DevTokenManager
from mediapub.db import DevTokenRecord, InMemoryDbClient
from mediapub.errors import AuthError, DatabaseError, ErrorKind, Store, ValidationError
from mediapub.security import hash_token
from mediapub.sessions import SessionManager

from testing_utils import FakeClock, make_user


class CredentialValidatorTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.clock = FakeClock()
        self.sessions = SessionManager(self.db, clock=self.clock)
        self.validator = CredentialValidator(self.db, self.sessions, clock=self.clock)
        self.dev_tokens = DevTokenManager(self.db, clock=self.clock)
        self.user = make_user(self.db)

    def test_session_token_resolves_to_owner(self):
        tokens = self.sessions.issue(self.user.user_id, self.user.username)
        self.assertEqual(
            self.validator.resolve(tokens.session_token, CredentialClass.SESSION_TOKEN),
            self.user.user_id,
        )

    def test_empty_credential_is_missing(self):
        for credential in ("", "  "):
            for credential_class in CredentialClass:
                with self.assertRaises(AuthError) as ctx:
                    self.validator.resolve(credential, credential_class)
                self.assertEqual(ctx.exception.kind, ErrorKind.MISSING_CREDENTIAL)

    def test_inactive_user_is_suspended_for_both_classes(self):
        tokens = self.sessions.issue(self.user.user_id, self.user.username)
        dev_token, _ = self.dev_tokens.issue(self.user.user_id, "ci", "upload")
        self.user.is_active = False

        with self.assertRaises(AuthError) as ctx:
            self.validator.resolve(tokens.session_token, CredentialClass.SESSION_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.ACCOUNT_SUSPENDED)
        with self.assertRaises(AuthError) as ctx:
            self.validator.resolve(dev_token, CredentialClass.DEV_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.ACCOUNT_SUSPENDED)

    def test_deleted_user_is_suspended(self):
        tokens = self.sessions.issue(self.user.user_id, self.user.username)
        del self.db.users[self.user.user_id]
        with self.assertRaises(AuthError) as ctx:
            self.validator.resolve(tokens.session_token, CredentialClass.SESSION_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.ACCOUNT_SUSPENDED)

    def test_dev_token_resolves_and_records_use(self):
        token, record = self.dev_tokens.issue(self.user.user_id, "ci", "upload")
        self.assertEqual(record.token_hash, hash_token(token))
        self.assertIsNone(self.db.dev_tokens[record.token_id].last_used_at)

        self.clock.advance(minutes=5)
        user_id = self.validator.resolve(token, CredentialClass.DEV_TOKEN)

        self.assertEqual(user_id, self.user.user_id)
        self.assertEqual(self.db.dev_tokens[record.token_id].last_used_at, self.clock.now)

    def test_dev_token_stored_in_clear_still_matches(self):
        now = self.clock.now
        self.db.create_dev_token(
            DevTokenRecord(
                token_id=uuid.uuid4(),
                user_id=self.user.user_id,
                token_hash="legacy-plain-token",
                name="legacy",
                scope="upload",
                expires_at=now + timedelta(days=1),
                created_at=now,
            )
        )
        self.assertEqual(
            self.validator.resolve("legacy-plain-token", CredentialClass.DEV_TOKEN),
            self.user.user_id,
        )

    def test_unknown_or_revoked_dev_token_is_invalid(self):
        token, record = self.dev_tokens.issue(self.user.user_id, "ci", "upload")
        self.assertTrue(self.dev_tokens.revoke(record.token_id))
        self.assertFalse(self.dev_tokens.revoke(record.token_id))

        for credential in (token, "f" * 64):
            with self.assertRaises(AuthError) as ctx:
                self.validator.resolve(credential, CredentialClass.DEV_TOKEN)
            self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CREDENTIAL)

    def test_expired_dev_token(self):
        token, record = self.dev_tokens.issue(
            self.user.user_id, "ci", "upload", ttl=timedelta(days=1)
        )
        self.clock.advance(days=1)
        with self.assertRaises(AuthError) as ctx:
            self.validator.resolve(token, CredentialClass.DEV_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.CREDENTIAL_EXPIRED)
        self.assertIsNone(self.db.dev_tokens[record.token_id].last_used_at)

    def test_expired_dev_token_accepted_when_enforcement_is_off(self):
        sessions = SessionManager(
            self.db, enforce_session_expiry=False, clock=self.clock
        )
        validator = CredentialValidator(self.db, sessions, clock=self.clock)
        token, _ = self.dev_tokens.issue(
            self.user.user_id, "ci", "upload", ttl=timedelta(days=1)
        )
        self.clock.advance(days=2)
        self.assertEqual(
            validator.resolve(token, CredentialClass.DEV_TOKEN), self.user.user_id
        )

    def test_credential_classes_do_not_cross(self):
        tokens = self.sessions.issue(self.user.user_id, self.user.username)
        dev_token, _ = self.dev_tokens.issue(self.user.user_id, "ci", "upload")

        with self.assertRaises(AuthError) as ctx:
            self.validator.resolve(tokens.session_token, CredentialClass.DEV_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CREDENTIAL)
        with self.assertRaises(AuthError) as ctx:
            self.validator.resolve(dev_token, CredentialClass.SESSION_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_SESSION_TOKEN)

    def test_store_failure_is_not_reported_as_rejection(self):
        failure = DatabaseError(ErrorKind.CONNECTION_FAILED, Store.RELATIONAL, "down")
        with patch.object(self.db, "find_dev_token", side_effect=failure):
            with self.assertRaises(DatabaseError) as ctx:
                self.validator.resolve("anything", CredentialClass.DEV_TOKEN)
        self.assertEqual(ctx.exception.kind, ErrorKind.CONNECTION_FAILED)
        self.assertEqual(ctx.exception.status_code, 417)


class DevTokenManagerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.clock = FakeClock()
        self.dev_tokens = DevTokenManager(self.db, clock=self.clock)
        self.user = make_user(self.db)

    def test_issue_stores_only_the_hash(self):
        token, record = self.dev_tokens.issue(self.user.user_id, " deploy ", "upload")
        stored = self.db.dev_tokens[record.token_id]
        self.assertEqual(stored.name, "deploy")
        self.assertEqual(stored.scope, "upload")
        self.assertNotEqual(stored.token_hash, token)
        self.assertEqual(stored.expires_at, self.clock.now + timedelta(days=365))

    def test_issue_rejects_bad_name_or_lifetime(self):
        with self.assertRaises(ValidationError):
            self.dev_tokens.issue(self.user.user_id, "", "upload")
        with self.assertRaises(ValidationError):
            self.dev_tokens.issue(self.user.user_id, "x" * 256, "upload")
        with self.assertRaises(ValidationError):
            self.dev_tokens.issue(
                self.user.user_id, "ci", "upload", ttl=timedelta(0)
            )
        self.assertEqual(self.db.dev_tokens, {})

    def test_revoke_unknown_token(self):
        self.assertFalse(self.dev_tokens.revoke(uuid.uuid4()))


if __name__ == "__main__":
    unittest.main()
