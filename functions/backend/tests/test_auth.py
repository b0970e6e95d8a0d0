import unittest
from unittest.mock import MagicMock, patch

from firebase_admin import auth

from backend.auth import (
    FirebaseActorVerifier,
    InMemoryActorVerifier,
    InvalidTokenError,
    VerifiedActor,
    bearer_token,
)
from backend.errors import BackendUnavailableError


class BearerTokenTests(unittest.TestCase):
    def test_extracts_token(self):
        self.assertEqual(bearer_token("Bearer abc"), "abc")
        self.assertEqual(bearer_token("  bearer   abc  "), "abc")

    def test_rejects_other_schemes(self):
        self.assertIsNone(bearer_token(None))
        self.assertIsNone(bearer_token(""))
        self.assertIsNone(bearer_token("Basic abc"))
        self.assertIsNone(bearer_token("Bearer"))


class InMemoryActorVerifierTests(unittest.TestCase):
    def test_known_and_unknown_tokens(self):
        actor = VerifiedActor(uid="u1", email="a@b.c")
        verifier = InMemoryActorVerifier({"tok": actor})
        self.assertEqual(verifier.verify("tok"), actor)
        with self.assertRaises(InvalidTokenError):
            verifier.verify("other")


class FirebaseActorVerifierTests(unittest.TestCase):
    def setUp(self):
        self.app = MagicMock()
        self.verifier = FirebaseActorVerifier(lambda: self.app)

    @patch("backend.auth.auth.verify_id_token")
    def test_verified_token(self, verify_mock):
        verify_mock.return_value = {"uid": "u1", "email": "a@b.c"}

        actor = self.verifier.verify("tok")

        self.assertEqual(actor, VerifiedActor(uid="u1", email="a@b.c"))
        verify_mock.assert_called_once_with("tok", app=self.app)

    @patch("backend.auth.auth.verify_id_token")
    def test_non_string_email_is_dropped(self, verify_mock):
        verify_mock.return_value = {"uid": "u1", "email": None}
        self.assertIsNone(self.verifier.verify("tok").email)

    @patch("backend.auth.auth.verify_id_token")
    def test_invalid_token(self, verify_mock):
        verify_mock.side_effect = ValueError("malformed")
        with self.assertRaises(InvalidTokenError):
            self.verifier.verify("tok")

    @patch("backend.auth.auth.verify_id_token")
    def test_expired_token(self, verify_mock):
        verify_mock.side_effect = auth.ExpiredIdTokenError("expired", None)
        with self.assertRaises(InvalidTokenError):
            self.verifier.verify("tok")

    @patch("backend.auth.auth.verify_id_token")
    def test_certificate_outage_is_unavailable(self, verify_mock):
        verify_mock.side_effect = auth.CertificateFetchError("down", None)
        with self.assertRaises(BackendUnavailableError):
            self.verifier.verify("tok")


if __name__ == "__main__":
    unittest.main()
