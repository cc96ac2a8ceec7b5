from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint, func

from .db import Base


def _new_uid() -> str:
    return uuid.uuid4().hex


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("email", name="uq_accounts_email"),
        UniqueConstraint("username", name="uq_accounts_username"),
    )

    uid = Column(String(64), primary_key=True, default=_new_uid)
    email = Column(String(255), nullable=False)
    username = Column(String(64), nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String(16), nullable=False, default="CUSTOMER")
    disabled = Column(Boolean, nullable=False, default=False)
    biometric_enabled = Column(Boolean, nullable=False, default=False)
    totp_enabled = Column(Boolean, nullable=False, default=False)
    totp_secret = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
