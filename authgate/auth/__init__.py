from .credentials import CredentialVerifier
from .locks import KeyedLock
from .outcomes import (
    AccountNotFoundError,
    AuthenticationOutcome,
    AuthError,
    AuthSystemError,
    ConcurrentUpdateError,
    LoginRejected,
    Rejected,
    RejectionReason,
    SecondFactorRequired,
    TokenError,
    TokenIssued,
    TotpAlreadyEnabledError,
    TotpNotEnabledError,
    TotpSetupMissingError,
)
from .preferences import AccountSecurityService, build_account_security_service
from .service import AuthOrchestrator, build_auth_orchestrator
from .sessions import PendingSession, PendingSessionStore
from .tokens import TokenIssuer
from .totp import ProvisioningData, TotpEngine

__all__ = [
    "AccountNotFoundError",
    "AccountSecurityService",
    "AuthError",
    "AuthOrchestrator",
    "AuthSystemError",
    "AuthenticationOutcome",
    "ConcurrentUpdateError",
    "CredentialVerifier",
    "KeyedLock",
    "LoginRejected",
    "PendingSession",
    "PendingSessionStore",
    "ProvisioningData",
    "Rejected",
    "RejectionReason",
    "SecondFactorRequired",
    "TokenError",
    "TokenIssued",
    "TokenIssuer",
    "TotpAlreadyEnabledError",
    "TotpEngine",
    "TotpNotEnabledError",
    "TotpSetupMissingError",
    "build_account_security_service",
    "build_auth_orchestrator",
]
