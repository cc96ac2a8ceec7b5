"""TOTP secret provisioning and code verification.

Parameters are fixed for authenticator-app compatibility: SHA-1, six digits,
thirty second steps. Verification accepts the current step plus ``window``
steps either side. Used codes are not tracked, so a code stays valid for the
whole window it falls in.
"""

from __future__ import annotations

import binascii
import re
from dataclasses import dataclass
from datetime import datetime, timezone

import pyotp

from authgate.logging import get_logger

ALGORITHM = "SHA1"
DIGITS = 6
PERIOD_SECONDS = 30
CODE_PATTERN = re.compile(r"[0-9]{6}")

logger = get_logger("totp")


@dataclass(frozen=True)
class ProvisioningData:
    issuer: str
    label: str
    secret: str
    algorithm: str
    digits: int
    period: int
    uri: str


class TotpEngine:
    def __init__(self, issuer: str) -> None:
        if not issuer or not issuer.strip():
            raise ValueError("Issuer must be a non-empty string")
        self.issuer = issuer.strip()

    def generate_secret(self) -> str:
        secret = pyotp.random_base32()
        logger.debug("Generated new TOTP secret")
        return secret

    def provisioning_data(self, secret: str, label: str) -> ProvisioningData:
        if not secret:
            raise ValueError("Secret must be a non-empty string")
        uri = self._totp(secret).provisioning_uri(name=label, issuer_name=self.issuer)
        return ProvisioningData(
            issuer=self.issuer,
            label=label,
            secret=secret,
            algorithm=ALGORITHM,
            digits=DIGITS,
            period=PERIOD_SECONDS,
            uri=uri,
        )

    def verify_code(
        self,
        secret: str | None,
        code: str | None,
        window: int = 1,
        for_time: datetime | int | None = None,
    ) -> bool:
        if not secret or not isinstance(secret, str):
            return False
        if not isinstance(code, str) or not CODE_PATTERN.fullmatch(code):
            return False
        if window < 0:
            raise ValueError("Window must be non-negative")
        moment = for_time if for_time is not None else datetime.now(timezone.utc)
        try:
            valid = self._totp(secret).verify(code, for_time=moment, valid_window=window)
        except (binascii.Error, ValueError, TypeError):
            logger.warning("TOTP verification attempted with a malformed secret")
            return False
        logger.debug("TOTP code verification result: %s", valid)
        return valid

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=DIGITS, interval=PERIOD_SECONDS, issuer=self.issuer)
