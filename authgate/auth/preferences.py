from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from authgate.config import Settings
from authgate.directory import AccountDirectory
from authgate.logging import AuditAction, AuditEmitter, AuditEvent, FailurePolicy, RequestContext, get_logger
from authgate.models import Account

from .locks import KeyedLock
from .outcomes import (
    AccountNotFoundError,
    ConcurrentUpdateError,
    TotpAlreadyEnabledError,
    TotpNotEnabledError,
    TotpSetupMissingError,
)
from .totp import ProvisioningData, TotpEngine

logger = get_logger("preferences")


class AccountSecurityService:
    """TOTP enrollment and biometric preference toggles.

    Mutations for one uid run under that uid's lock and are written with a
    version check, so enable/verify/disable sequences cannot interleave.
    Disabling TOTP clears the flag and the secret in the same update.
    """

    def __init__(
        self,
        directory: AccountDirectory,
        totp_engine: TotpEngine,
        audit_emitter: AuditEmitter,
        locks: KeyedLock | None = None,
        totp_window: int = 1,
    ) -> None:
        self.directory = directory
        self.totp_engine = totp_engine
        self.audit_emitter = audit_emitter
        self.locks = locks or KeyedLock()
        self.totp_window = totp_window

    def setup_totp(self, uid: str, context: RequestContext | None = None) -> ProvisioningData:
        with self.locks.hold(uid):
            account = self._require(uid)
            if account.totp_enabled:
                raise TotpAlreadyEnabledError("totp_already_enabled")
            secret = self.totp_engine.generate_secret()
            self._write(account, {"totp_secret": secret, "totp_enabled": False})
            logger.info("TOTP setup initiated for uid=%s", uid)
        self._audit(uid, "totp_setup_initiated", context)
        return self.totp_engine.provisioning_data(secret, account.email)

    def verify_and_enable_totp(
        self,
        uid: str,
        code: str,
        context: RequestContext | None = None,
        now: datetime | None = None,
    ) -> bool:
        with self.locks.hold(uid):
            account = self._require(uid)
            if account.totp_enabled:
                raise TotpAlreadyEnabledError("totp_already_enabled")
            if not account.totp_secret:
                raise TotpSetupMissingError("totp_setup_missing")
            if not self.totp_engine.verify_code(account.totp_secret, code, self.totp_window, for_time=now):
                logger.warning("TOTP enable rejected for uid=%s: invalid code", uid)
                return False
            self._write(account, {"totp_enabled": True})
            logger.info("TOTP enabled for uid=%s", uid)
        self._audit(uid, "totp_enabled", context)
        return True

    def disable_totp(
        self,
        uid: str,
        code: str,
        context: RequestContext | None = None,
        now: datetime | None = None,
    ) -> bool:
        with self.locks.hold(uid):
            account = self._require(uid)
            if not account.totp_enabled:
                raise TotpNotEnabledError("totp_not_enabled")
            if not self.totp_engine.verify_code(account.totp_secret, code, self.totp_window, for_time=now):
                logger.warning("TOTP disable rejected for uid=%s: invalid code", uid)
                return False
            self._write(account, {"totp_enabled": False, "totp_secret": None})
            logger.info("TOTP disabled for uid=%s", uid)
        self._audit(uid, "totp_disabled", context)
        return True

    def totp_status(self, uid: str) -> bool:
        return bool(self._require(uid).totp_enabled)

    def set_biometric_preference(self, uid: str, enabled: bool) -> None:
        with self.locks.hold(uid):
            account = self._require(uid)
            self._write(account, {"biometric_enabled": bool(enabled)})
        logger.info("Biometric preference for uid=%s set to %s", uid, bool(enabled))

    def biometric_preference(self, uid: str) -> bool:
        return bool(self._require(uid).biometric_enabled)

    def biometric_status_all(self) -> list[dict[str, Any]]:
        return [
            {
                "uid": account.uid,
                "email": account.email,
                "username": account.username,
                "biometricEnabled": bool(account.biometric_enabled),
            }
            for account in self.directory.list_all()
        ]

    def _require(self, uid: str) -> Account:
        account = self.directory.find_by_uid(uid)
        if account is None:
            raise AccountNotFoundError("user_not_found")
        return account

    def _write(self, account: Account, fields: dict[str, Any]) -> None:
        if not self.directory.update(account.uid, fields, expected_version=account.version):
            raise ConcurrentUpdateError("concurrent_update")

    def _audit(self, uid: str, action: str, context: RequestContext | None) -> None:
        event = AuditEvent.for_request(
            AuditAction.CREDENTIALS_UPDATED,
            context,
            uid=uid,
            actor_uid=uid,
            metadata={"action": action},
        )
        try:
            self.audit_emitter.emit(event, FailurePolicy.ISOLATE)
        except Exception:
            logger.exception("Audit emission raised for %s", action)


def build_account_security_service(
    settings: Settings,
    session: Session,
    audit_emitter: AuditEmitter,
    locks: KeyedLock | None = None,
) -> AccountSecurityService:
    return AccountSecurityService(
        directory=AccountDirectory(session),
        totp_engine=TotpEngine(settings.otp_issuer_name),
        audit_emitter=audit_emitter,
        locks=locks,
        totp_window=settings.totp_valid_window,
    )
