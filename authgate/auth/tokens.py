from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from .outcomes import TokenError


class TokenIssuer:
    def __init__(self, jwt_secret: str, session_ttl_seconds: int = 3600) -> None:
        self.jwt_secret = jwt_secret
        self.session_ttl_seconds = session_ttl_seconds

    def issue_token(self, subject: str, role: str, uid: str, now: datetime | None = None) -> str:
        moment = now or datetime.now(timezone.utc)
        exp = moment + timedelta(seconds=self.session_ttl_seconds)
        payload = {"sub": subject, "role": role, "uid": uid, "exp": exp, "iat": moment}
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_token(self, token: str) -> dict:
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
        except jwt.ExpiredSignatureError as exc:
            raise TokenError("token_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenError("invalid_token") from exc
        return payload
