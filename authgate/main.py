from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from authgate.auth import (
    AccountNotFoundError,
    AccountSecurityService,
    AuthenticationOutcome,
    AuthOrchestrator,
    AuthSystemError,
    ConcurrentUpdateError,
    KeyedLock,
    LoginRejected,
    PendingSessionStore,
    Rejected,
    SecondFactorRequired,
    TokenError,
    TokenIssuer,
    TotpAlreadyEnabledError,
    TotpNotEnabledError,
    TotpSetupMissingError,
    build_account_security_service,
    build_auth_orchestrator,
)
from authgate.config import Settings, load_settings
from authgate.logging import AuditDeliveryError, AuditEmitter, RequestContext, get_logger
from authgate.models import Account, Base

logger = get_logger("api")


class LoginRequest(BaseModel):
    email: str
    password: str


class TotpCodeRequest(BaseModel):
    code: str


class TotpLoginRequest(BaseModel):
    pending_token: str
    code: str


class BiometricPreference(BaseModel):
    enabled: bool


def _account_payload(account: Account) -> dict[str, Any]:
    return {
        "uid": account.uid,
        "email": account.email,
        "username": account.username,
        "role": account.role,
        "biometricEnabled": bool(account.biometric_enabled),
        "totpEnabled": bool(account.totp_enabled),
    }


def _login_payload(outcome: AuthenticationOutcome) -> dict[str, Any]:
    if isinstance(outcome, Rejected):
        raise LoginRejected(outcome.reason)
    if isinstance(outcome, SecondFactorRequired):
        return {
            "token": None,
            "totpRequired": True,
            "pendingUid": outcome.pending_uid,
            "pendingToken": outcome.pending_token,
            "user": _account_payload(outcome.account),
        }
    return {"token": outcome.token, "totpRequired": False, "user": _account_payload(outcome.account)}


def _request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and forwarded.strip():
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None
    return RequestContext(ip=ip, user_agent=request.headers.get("user-agent"))


def create_app(
    settings: Settings | None = None,
    engine: Engine | None = None,
    audit_emitter: AuditEmitter | None = None,
) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            app.state.audit_emitter.close()
            logger.info("Audit emitter closed")

    app = FastAPI(title="Authgate API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine or create_engine(settings.database_url, future=True, pool_pre_ping=True)
    Base.metadata.create_all(app.state.engine)
    app.state.session_factory = sessionmaker(bind=app.state.engine, expire_on_commit=False, future=True)
    app.state.audit_emitter = audit_emitter or AuditEmitter(
        settings.audit_service_url,
        connect_timeout_seconds=settings.audit_connect_timeout_seconds,
        read_timeout_seconds=settings.audit_read_timeout_seconds,
    )
    app.state.pending_sessions = PendingSessionStore(settings.pending_session_ttl_seconds)
    app.state.locks = KeyedLock()
    app.state.token_issuer = TokenIssuer(settings.jwt_secret, settings.session_ttl_seconds)

    def get_session() -> Iterator[Session]:
        session = app.state.session_factory()
        try:
            yield session
        finally:
            session.close()

    def get_orchestrator(session: Session = Depends(get_session)) -> AuthOrchestrator:
        return build_auth_orchestrator(
            settings,
            session,
            audit_emitter=app.state.audit_emitter,
            pending_sessions=app.state.pending_sessions,
        )

    def get_security(session: Session = Depends(get_session)) -> AccountSecurityService:
        return build_account_security_service(settings, session, app.state.audit_emitter, locks=app.state.locks)

    def current_uid(request: Request) -> str:
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise HTTPException(status_code=401, detail="missing_token")
        try:
            payload = app.state.token_issuer.verify_token(token.strip())
        except TokenError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        uid = payload.get("uid")
        if not uid:
            raise HTTPException(status_code=401, detail="invalid_token")
        return str(uid)

    @app.exception_handler(LoginRejected)
    def handle_login_rejected(_: Request, exc: LoginRejected):
        return JSONResponse(status_code=401, content={"message": str(exc), "reason": exc.reason.value})

    @app.exception_handler(AuthSystemError)
    def handle_system_error(_: Request, exc: AuthSystemError):
        return JSONResponse(
            status_code=500,
            content={"message": "An unexpected error occurred. Please try again later."},
        )

    @app.exception_handler(AccountNotFoundError)
    def handle_not_found(_: Request, exc: AccountNotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc)})

    @app.exception_handler(TotpNotEnabledError)
    @app.exception_handler(TotpAlreadyEnabledError)
    @app.exception_handler(TotpSetupMissingError)
    def handle_totp_state(_: Request, exc: Exception):
        return JSONResponse(status_code=409, content={"message": str(exc)})

    @app.exception_handler(ConcurrentUpdateError)
    def handle_conflict(_: Request, exc: ConcurrentUpdateError):
        return JSONResponse(status_code=409, content={"message": str(exc)})

    @app.exception_handler(AuditDeliveryError)
    def handle_audit_failure(_: Request, exc: AuditDeliveryError):
        logger.error("Audit-only request failed: %s", exc)
        return JSONResponse(status_code=502, content={"message": "Audit service unavailable", "details": str(exc)})

    @app.get("/health")
    def health():
        try:
            with app.state.engine.connect() as connection:
                connection.execute(text("select 1"))
        except Exception as exc:
            raise HTTPException(status_code=503, detail="database_unavailable") from exc
        return {"status": "ok"}

    @app.post("/users/login")
    def login(body: LoginRequest, request: Request, orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
        outcome = orchestrator.login_with_password(body.email, body.password, _request_context(request))
        return _login_payload(outcome)

    @app.post("/users/login/biometric")
    def login_biometric(uid: str, request: Request, orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
        outcome = orchestrator.login_with_biometric(uid, _request_context(request))
        return _login_payload(outcome)

    @app.post("/users/login/totp")
    def login_totp(body: TotpLoginRequest, request: Request, orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
        outcome = orchestrator.complete_totp_login(body.pending_token, body.code, _request_context(request))
        return _login_payload(outcome)

    @app.post("/users/totp/setup")
    def totp_setup(
        request: Request,
        uid: str = Depends(current_uid),
        security: AccountSecurityService = Depends(get_security),
    ):
        data = security.setup_totp(uid, _request_context(request))
        return {
            "secret": data.secret,
            "uri": data.uri,
            "issuer": data.issuer,
            "label": data.label,
            "algorithm": data.algorithm,
            "digits": data.digits,
            "period": data.period,
        }

    @app.post("/users/totp/verify")
    def totp_verify(
        body: TotpCodeRequest,
        request: Request,
        uid: str = Depends(current_uid),
        security: AccountSecurityService = Depends(get_security),
    ):
        if security.verify_and_enable_totp(uid, body.code, _request_context(request)):
            return {"success": True, "message": "TOTP enabled successfully"}
        return JSONResponse(status_code=400, content={"success": False, "message": "Invalid TOTP code"})

    @app.post("/users/totp/disable")
    def totp_disable(
        body: TotpCodeRequest,
        request: Request,
        uid: str = Depends(current_uid),
        security: AccountSecurityService = Depends(get_security),
    ):
        if security.disable_totp(uid, body.code, _request_context(request)):
            return {"success": True, "message": "TOTP disabled successfully"}
        return JSONResponse(status_code=400, content={"success": False, "message": "Invalid TOTP code"})

    @app.get("/users/totp/status")
    def totp_status(uid: str = Depends(current_uid), security: AccountSecurityService = Depends(get_security)):
        return {"totpEnabled": security.totp_status(uid)}

    @app.put("/users/biometric")
    def update_biometric(
        body: BiometricPreference,
        uid: str = Depends(current_uid),
        security: AccountSecurityService = Depends(get_security),
    ):
        security.set_biometric_preference(uid, body.enabled)
        return {"enabled": body.enabled}

    @app.get("/users/biometric")
    def get_biometric(uid: str = Depends(current_uid), security: AccountSecurityService = Depends(get_security)):
        return {"enabled": security.biometric_preference(uid)}

    @app.get("/users/biometric-status")
    def biometric_status(_: str = Depends(current_uid), security: AccountSecurityService = Depends(get_security)):
        return security.biometric_status_all()

    @app.post("/users/audit/logout")
    def audit_logout(
        request: Request,
        uid: str = Depends(current_uid),
        orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    ):
        orchestrator.record_logout(uid, _request_context(request))
        return {"message": "Logout successful"}

    @app.post("/users/audit/login-failed")
    def audit_login_failed(
        email: str,
        reason: str,
        request: Request,
        orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    ):
        orchestrator.record_login_failed(email, reason, _request_context(request))
        return {"message": "Audit logged"}

    return app
