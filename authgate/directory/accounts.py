from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authgate.logging import get_logger
from authgate.models import Account

logger = get_logger("directory")

UPDATABLE_FIELDS = frozenset(
    {
        "email",
        "username",
        "password_hash",
        "role",
        "disabled",
        "biometric_enabled",
        "totp_enabled",
        "totp_secret",
    }
)


class DirectoryError(Exception):
    pass


class AccountDirectory:
    """Account lookups and conditional updates on top of a SQLAlchemy session.

    Every update bumps ``Account.version``. Passing ``expected_version`` turns
    the update into a compare-and-swap: it only applies when nobody else has
    written the row since it was read.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_email(self, email: str) -> Account | None:
        normalized = email.strip().lower()
        return self.session.scalars(select(Account).where(Account.email == normalized)).first()

    def find_by_username(self, username: str) -> Account | None:
        return self.session.scalars(select(Account).where(Account.username == username.strip())).first()

    def find_by_uid(self, uid: str) -> Account | None:
        return self.session.get(Account, uid)

    def list_all(self) -> list[Account]:
        return list(self.session.scalars(select(Account).order_by(Account.email)).all())

    def create(
        self,
        email: str,
        username: str,
        password_hash: str,
        role: str = "CUSTOMER",
        biometric_enabled: bool = False,
    ) -> str:
        normalized_email = email.strip().lower()
        normalized_username = username.strip()
        stmt = select(Account).where(
            or_(Account.email == normalized_email, Account.username == normalized_username)
        )
        existing = self.session.scalars(stmt).first()
        if existing is not None:
            if existing.email == normalized_email:
                raise DirectoryError("email_exists")
            raise DirectoryError("username_exists")
        account = Account(
            email=normalized_email,
            username=normalized_username,
            password_hash=password_hash,
            role=role,
            biometric_enabled=biometric_enabled,
        )
        self.session.add(account)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DirectoryError("account_exists") from exc
        self.session.refresh(account)
        logger.info("Created account uid=%s", account.uid)
        return account.uid

    def update(self, uid: str, fields: Mapping[str, Any], expected_version: int | None = None) -> bool:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise DirectoryError(f"unknown_fields: {', '.join(sorted(unknown))}")
        if fields.get("totp_enabled") is True and not fields.get("totp_secret", True):
            raise DirectoryError("totp_secret_required")

        stmt = update(Account).where(Account.uid == uid)
        if expected_version is not None:
            stmt = stmt.where(Account.version == expected_version)
        stmt = stmt.values(**dict(fields), version=Account.version + 1)
        try:
            result = self.session.execute(stmt.execution_options(synchronize_session=False))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.expire_all()
        return result.rowcount == 1
