from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

import jwt

from authgate.auth import CredentialVerifier, TokenError, TokenIssuer
from authgate.models import Account


class CredentialVerifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.verifier = CredentialVerifier()
        self.account = Account(
            uid="u1",
            email="user@example.com",
            username="user",
            password_hash=self.verifier.hash_password("StrongPass123"),
            role="CUSTOMER",
            disabled=False,
        )

    def test_hash_is_salted_and_verifies(self) -> None:
        other = self.verifier.hash_password("StrongPass123")
        self.assertNotEqual(other, self.account.password_hash)
        self.assertTrue(self.verifier.verify_password(self.account, "StrongPass123"))

    def test_wrong_password_rejected(self) -> None:
        self.assertFalse(self.verifier.verify_password(self.account, "wrong"))

    def test_malformed_or_missing_hash_rejected(self) -> None:
        self.account.password_hash = "plaintext"
        self.assertFalse(self.verifier.verify_password(self.account, "plaintext"))
        self.account.password_hash = ""
        self.assertFalse(self.verifier.verify_password(self.account, ""))

    def test_disabled_account_is_not_usable(self) -> None:
        self.assertTrue(self.verifier.check_account_usable(self.account))
        self.account.disabled = True
        self.assertFalse(self.verifier.check_account_usable(self.account))


class TokenIssuerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.issuer = TokenIssuer("secret", session_ttl_seconds=60)

    def test_issue_and_verify(self) -> None:
        token = self.issuer.issue_token("user", "ADMIN", "u1")
        payload = self.issuer.verify_token(token)
        self.assertEqual(payload["sub"], "user")
        self.assertEqual(payload["role"], "ADMIN")
        self.assertEqual(payload["uid"], "u1")

    def test_expired_token(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(seconds=120)
        token = self.issuer.issue_token("user", "CUSTOMER", "u1", past)
        with self.assertRaises(TokenError) as ctx:
            self.issuer.verify_token(token)
        self.assertEqual(str(ctx.exception), "token_expired")

    def test_foreign_signature_rejected(self) -> None:
        token = jwt.encode({"sub": "user", "uid": "u1"}, "other-secret", algorithm="HS256")
        with self.assertRaises(TokenError) as ctx:
            self.issuer.verify_token(token)
        self.assertEqual(str(ctx.exception), "invalid_token")


if __name__ == "__main__":
    unittest.main()
