from __future__ import annotations

from passlib.exc import UnknownHashError
from passlib.hash import argon2

from authgate.models import Account


class CredentialVerifier:
    def verify_password(self, account: Account, password: str) -> bool:
        stored = account.password_hash
        if not stored or not isinstance(password, str):
            return False
        try:
            return argon2.verify(password, stored)
        except (UnknownHashError, ValueError):
            return False

    def check_account_usable(self, account: Account) -> bool:
        return not bool(account.disabled)

    def hash_password(self, password: str) -> str:
        return argon2.hash(password)
