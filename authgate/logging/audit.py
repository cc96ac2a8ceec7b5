from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Union

import httpx

AUDIT_PATH = "/api/audits"
PRIMITIVE_TYPES = (str, int, float, bool, type(None))


class AuditAction(Enum):
    REGISTER = "REGISTER"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    PASSWORD_RESET_LINK_SENT = "PASSWORD_RESET_LINK_SENT"
    CREDENTIALS_UPDATED = "CREDENTIALS_UPDATED"
    USER_BLOCKED = "USER_BLOCKED"
    USER_UNBLOCKED = "USER_UNBLOCKED"
    ROLE_CHANGED = "ROLE_CHANGED"


class FailurePolicy(Enum):
    """What an emit call does when the audit service does not accept the event.

    ISOLATE logs the failure and hands it back as a ``Failed`` result so the
    caller's own flow carries on. PROPAGATE raises ``AuditDeliveryError``; use
    it where recording the event is the whole point of the call.
    """

    ISOLATE = "isolate"
    PROPAGATE = "propagate"


@dataclass(frozen=True)
class RequestContext:
    ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditEvent:
    action: AuditAction
    uid: str | None = None
    actor_uid: str | None = None
    timestamp: datetime | None = None
    ip: str | None = None
    user_agent: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.action, AuditAction):
            raise ValueError("action must be an AuditAction")
        bag = dict(self.metadata) if self.metadata else {}
        for key, value in bag.items():
            if not isinstance(key, str):
                raise ValueError("metadata keys must be strings")
            if not isinstance(value, PRIMITIVE_TYPES):
                raise ValueError(f"metadata value for {key} must be a primitive")
        object.__setattr__(self, "metadata", MappingProxyType(bag))

    @classmethod
    def for_request(
        cls,
        action: AuditAction,
        context: RequestContext | None,
        uid: str | None = None,
        actor_uid: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> "AuditEvent":
        ctx = context or RequestContext()
        return cls(
            action=action,
            uid=uid,
            actor_uid=actor_uid,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            metadata=metadata or {},
        )

    def to_payload(self) -> dict[str, Any]:
        timestamp = self.timestamp.astimezone(timezone.utc).isoformat() if self.timestamp else None
        return {
            "uid": self.uid,
            "actorUid": self.actor_uid,
            "action": self.action.value,
            "timestamp": timestamp,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class Delivered:
    status_code: int


@dataclass(frozen=True)
class Failed:
    cause: str
    status_code: int | None = None


EmitResult = Union[Delivered, Failed]


class AuditDeliveryError(Exception):
    def __init__(self, result: Failed) -> None:
        super().__init__(result.cause)
        self.result = result


class AuditEmitter:
    def __init__(
        self,
        base_url: str,
        connect_timeout_seconds: float = 3.0,
        read_timeout_seconds: float = 5.0,
        http_client: httpx.Client | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = logger or logging.getLogger("authgate.audit")
        self._owns_client = http_client is None
        timeout = httpx.Timeout(read_timeout_seconds, connect=connect_timeout_seconds)
        self.client = http_client or httpx.Client(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def emit(self, event: AuditEvent, policy: FailurePolicy = FailurePolicy.ISOLATE) -> EmitResult:
        if event.timestamp is None:
            event = replace(event, timestamp=datetime.now(timezone.utc))
        result = self._send(event)
        self._log_entry(event, result)
        if isinstance(result, Failed):
            if policy is FailurePolicy.PROPAGATE:
                raise AuditDeliveryError(result)
            self.logger.error(
                "Audit delivery failed for action=%s uid=%s: %s",
                event.action.value,
                event.uid,
                result.cause,
            )
        return result

    def _send(self, event: AuditEvent) -> EmitResult:
        try:
            response = self.client.post(AUDIT_PATH, json=event.to_payload())
        except httpx.TimeoutException as exc:
            return Failed(f"timeout: {exc}")
        except httpx.HTTPError as exc:
            return Failed(f"network_error: {exc}")
        if 200 <= response.status_code < 300:
            return Delivered(response.status_code)
        return Failed(f"http_error {response.status_code}", response.status_code)

    def _log_entry(self, event: AuditEvent, result: EmitResult) -> None:
        payload = {"category": "audit", "delivered": isinstance(result, Delivered)}
        payload.update(event.to_payload())
        level = logging.WARNING if event.action is AuditAction.LOGIN_FAILED else logging.INFO
        self.logger.log(level, json.dumps(payload, default=str))
