from .audit import (
    AuditAction,
    AuditDeliveryError,
    AuditEmitter,
    AuditEvent,
    Delivered,
    EmitResult,
    Failed,
    FailurePolicy,
    RequestContext,
)
from .logger import get_logger, log_auth_event

__all__ = [
    "AuditAction",
    "AuditDeliveryError",
    "AuditEmitter",
    "AuditEvent",
    "Delivered",
    "EmitResult",
    "Failed",
    "FailurePolicy",
    "RequestContext",
    "get_logger",
    "log_auth_event",
]
