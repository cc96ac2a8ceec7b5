from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from authgate.models import Account


class RejectionReason(Enum):
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    BIOMETRIC_NOT_ENABLED = "BIOMETRIC_NOT_ENABLED"
    INVALID_TOTP = "INVALID_TOTP"
    INVALID_PENDING_SESSION = "INVALID_PENDING_SESSION"


REJECTION_MESSAGES = {
    RejectionReason.USER_NOT_FOUND: "Invalid email or password",
    RejectionReason.ACCOUNT_DISABLED: "User account is disabled",
    RejectionReason.INVALID_PASSWORD: "Invalid email or password",
    RejectionReason.BIOMETRIC_NOT_ENABLED: "Biometric login is not enabled",
    RejectionReason.INVALID_TOTP: "Invalid TOTP code",
    RejectionReason.INVALID_PENDING_SESSION: "Second factor session is invalid or expired",
}


@dataclass(frozen=True)
class TokenIssued:
    token: str
    account: Account


@dataclass(frozen=True)
class SecondFactorRequired:
    pending_uid: str
    pending_token: str
    account: Account


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self.reason]


AuthenticationOutcome = Union[TokenIssued, SecondFactorRequired, Rejected]


class AuthError(Exception):
    pass


class LoginRejected(AuthError):
    def __init__(self, reason: RejectionReason) -> None:
        super().__init__(REJECTION_MESSAGES[reason])
        self.reason = reason


class AccountNotFoundError(AuthError):
    pass


class TotpNotEnabledError(AuthError):
    pass


class TotpAlreadyEnabledError(AuthError):
    pass


class TotpSetupMissingError(AuthError):
    pass


class ConcurrentUpdateError(AuthError):
    pass


class AuthSystemError(AuthError):
    pass


class TokenError(AuthError):
    pass
