from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from authgate.config import Settings
from authgate.directory import AccountDirectory
from authgate.logging import (
    AuditAction,
    AuditEmitter,
    AuditEvent,
    EmitResult,
    FailurePolicy,
    RequestContext,
    get_logger,
    log_auth_event,
)
from authgate.models import Account

from .credentials import CredentialVerifier
from .outcomes import (
    AuthenticationOutcome,
    AuthError,
    AuthSystemError,
    Rejected,
    RejectionReason,
    SecondFactorRequired,
    TokenIssued,
    TotpNotEnabledError,
)
from .sessions import PendingSessionStore
from .tokens import TokenIssuer
from .totp import TotpEngine

logger = get_logger("auth")

SYSTEM_ERROR = "SYSTEM_ERROR"


class AuthOrchestrator:
    """Drives password, biometric and TOTP-gated logins to a single outcome.

    A first factor either issues a token straight away or, for accounts with
    TOTP enabled, parks the login behind a pending-session token. Each terminal
    outcome (token or rejection) is audited exactly once; audit delivery
    failures are isolated from the outcome returned to the caller.
    """

    def __init__(
        self,
        directory: AccountDirectory,
        credentials: CredentialVerifier,
        totp_engine: TotpEngine,
        token_issuer: TokenIssuer,
        audit_emitter: AuditEmitter,
        pending_sessions: PendingSessionStore,
        totp_window: int = 1,
    ) -> None:
        self.directory = directory
        self.credentials = credentials
        self.totp_engine = totp_engine
        self.token_issuer = token_issuer
        self.audit_emitter = audit_emitter
        self.pending_sessions = pending_sessions
        self.totp_window = totp_window

    def login_with_password(
        self,
        email: str,
        password: str,
        context: RequestContext | None = None,
        now: datetime | None = None,
    ) -> AuthenticationOutcome:
        moment = now or datetime.now(timezone.utc)
        base_meta = {"email": email, "method": "password"}

        def flow() -> AuthenticationOutcome:
            account = self.directory.find_by_email(email)
            if account is None:
                return self._reject(RejectionReason.USER_NOT_FOUND, "password", None, base_meta, context)
            if not self.credentials.check_account_usable(account):
                return self._reject(RejectionReason.ACCOUNT_DISABLED, "password", account.uid, base_meta, context)
            if not self.credentials.verify_password(account, password):
                return self._reject(RejectionReason.INVALID_PASSWORD, "password", account.uid, base_meta, context)
            return self._after_first_factor(account, "password", context, moment)

        return self._guarded("password", None, base_meta, context, flow)

    def login_with_biometric(
        self,
        uid: str,
        context: RequestContext | None = None,
        now: datetime | None = None,
    ) -> AuthenticationOutcome:
        moment = now or datetime.now(timezone.utc)
        base_meta = {"uid": uid, "method": "biometric"}

        def flow() -> AuthenticationOutcome:
            account = self.directory.find_by_uid(uid)
            if account is None:
                return self._reject(RejectionReason.USER_NOT_FOUND, "biometric", uid, base_meta, context)
            if not self.credentials.check_account_usable(account):
                return self._reject(RejectionReason.ACCOUNT_DISABLED, "biometric", uid, base_meta, context)
            if not account.biometric_enabled:
                return self._reject(RejectionReason.BIOMETRIC_NOT_ENABLED, "biometric", uid, base_meta, context)
            return self._after_first_factor(account, "biometric", context, moment)

        return self._guarded("biometric", uid, base_meta, context, flow)

    def complete_totp_login(
        self,
        pending_token: str,
        code: str,
        context: RequestContext | None = None,
        now: datetime | None = None,
    ) -> AuthenticationOutcome:
        moment = now or datetime.now(timezone.utc)
        base_meta: dict[str, Any] = {"method": "totp"}

        def flow() -> AuthenticationOutcome:
            pending = self.pending_sessions.consume(pending_token, moment)
            if pending is None:
                return self._reject(RejectionReason.INVALID_PENDING_SESSION, "totp", None, base_meta, context)
            base_meta["uid"] = pending.uid
            base_meta["first_factor"] = pending.method
            account = self.directory.find_by_uid(pending.uid)
            if account is None:
                return self._reject(RejectionReason.USER_NOT_FOUND, "totp", pending.uid, base_meta, context)
            if not account.totp_enabled:
                logger.error("TOTP completion requested for uid=%s without TOTP enabled", account.uid)
                raise TotpNotEnabledError("totp_not_enabled")
            if not self.totp_engine.verify_code(account.totp_secret, code, self.totp_window, for_time=moment):
                return self._reject(RejectionReason.INVALID_TOTP, "totp", account.uid, base_meta, context)
            return self._issue(account, "totp", context, moment)

        return self._guarded("totp", None, base_meta, context, flow)

    def record_logout(self, uid: str, context: RequestContext | None = None) -> EmitResult:
        event = AuditEvent.for_request(AuditAction.LOGOUT, context, uid=uid, actor_uid=uid)
        log_auth_event("logout", "recorded", uid=uid)
        return self.audit_emitter.emit(event, FailurePolicy.PROPAGATE)

    def record_login_failed(self, email: str, reason: str, context: RequestContext | None = None) -> EmitResult:
        event = AuditEvent.for_request(
            AuditAction.LOGIN_FAILED,
            context,
            metadata={"email": email, "reason": reason},
        )
        log_auth_event("manual", "rejected", reason=reason, metadata={"email": email})
        return self.audit_emitter.emit(event, FailurePolicy.PROPAGATE)

    def _after_first_factor(
        self,
        account: Account,
        method: str,
        context: RequestContext | None,
        moment: datetime,
    ) -> AuthenticationOutcome:
        if account.totp_enabled:
            token = self.pending_sessions.mint(account.uid, method, moment)
            log_auth_event(method, "second_factor_required", uid=account.uid)
            return SecondFactorRequired(pending_uid=account.uid, pending_token=token, account=account)
        return self._issue(account, method, context, moment)

    def _issue(
        self,
        account: Account,
        method: str,
        context: RequestContext | None,
        moment: datetime,
    ) -> TokenIssued:
        token = self.token_issuer.issue_token(account.username, account.role, account.uid, moment)
        log_auth_event(method, "token_issued", uid=account.uid)
        self._audit(
            AuditEvent.for_request(
                AuditAction.LOGIN,
                context,
                uid=account.uid,
                actor_uid=account.uid,
                metadata={"method": method},
            )
        )
        return TokenIssued(token=token, account=account)

    def _reject(
        self,
        reason: RejectionReason,
        flow: str,
        uid: str | None,
        metadata: Mapping[str, Any],
        context: RequestContext | None,
    ) -> Rejected:
        rejected = Rejected(reason)
        meta = dict(metadata)
        meta["reason"] = reason.value
        meta["message"] = rejected.message
        log_auth_event(flow, "rejected", uid=uid, reason=reason.value)
        self._audit(AuditEvent.for_request(AuditAction.LOGIN_FAILED, context, uid=uid, actor_uid=uid, metadata=meta))
        return rejected

    def _guarded(
        self,
        flow: str,
        uid: str | None,
        metadata: Mapping[str, Any],
        context: RequestContext | None,
        body: Callable[[], AuthenticationOutcome],
    ) -> AuthenticationOutcome:
        try:
            return body()
        except AuthError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error during %s login", flow)
            meta = dict(metadata)
            meta["reason"] = SYSTEM_ERROR
            meta["error"] = type(exc).__name__
            subject = uid if uid is not None else meta.get("uid")
            self._audit(
                AuditEvent.for_request(AuditAction.LOGIN_FAILED, context, uid=subject, actor_uid=subject, metadata=meta)
            )
            raise AuthSystemError("system_error") from exc

    def _audit(self, event: AuditEvent) -> None:
        try:
            self.audit_emitter.emit(event, FailurePolicy.ISOLATE)
        except Exception:
            logger.exception("Audit emission raised for action=%s", event.action.value)


def build_auth_orchestrator(
    settings: Settings,
    session: Session,
    audit_emitter: AuditEmitter | None = None,
    pending_sessions: PendingSessionStore | None = None,
) -> AuthOrchestrator:
    emitter = audit_emitter or AuditEmitter(
        settings.audit_service_url,
        connect_timeout_seconds=settings.audit_connect_timeout_seconds,
        read_timeout_seconds=settings.audit_read_timeout_seconds,
    )
    return AuthOrchestrator(
        directory=AccountDirectory(session),
        credentials=CredentialVerifier(),
        totp_engine=TotpEngine(settings.otp_issuer_name),
        token_issuer=TokenIssuer(settings.jwt_secret, settings.session_ttl_seconds),
        audit_emitter=emitter,
        pending_sessions=pending_sessions or PendingSessionStore(settings.pending_session_ttl_seconds),
        totp_window=settings.totp_valid_window,
    )
