from __future__ import annotations

import dataclasses
import json
import unittest
from datetime import datetime, timezone

import httpx

from authgate.logging import (
    AuditAction,
    AuditDeliveryError,
    AuditEmitter,
    AuditEvent,
    Delivered,
    Failed,
    FailurePolicy,
    RequestContext,
)

BASE_URL = "http://audit.test"


class AuditEmitterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []

    def _emitter(self, handler) -> AuditEmitter:
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(recording), base_url=BASE_URL)
        return AuditEmitter(BASE_URL, http_client=client)

    def test_delivers_event_with_wire_fields(self) -> None:
        emitter = self._emitter(lambda _: httpx.Response(201, json={"id": 1}))
        event = AuditEvent.for_request(
            AuditAction.LOGIN,
            RequestContext(ip="10.0.0.1", user_agent="pytest"),
            uid="u1",
            actor_uid="u1",
            metadata={"method": "password"},
        )

        result = emitter.emit(event)

        self.assertEqual(result, Delivered(201))
        self.assertEqual(len(self.requests), 1)
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(request.url.path, "/api/audits")
        body = json.loads(request.content.decode())
        self.assertEqual(
            set(body),
            {"uid", "actorUid", "action", "timestamp", "ip", "userAgent", "metadata"},
        )
        self.assertEqual(body["action"], "LOGIN")
        self.assertEqual(body["uid"], "u1")
        self.assertEqual(body["actorUid"], "u1")
        self.assertEqual(body["ip"], "10.0.0.1")
        self.assertEqual(body["userAgent"], "pytest")
        self.assertEqual(body["metadata"], {"method": "password"})
        stamped = datetime.fromisoformat(body["timestamp"])
        self.assertIsNotNone(stamped.tzinfo)

    def test_keeps_supplied_timestamp(self) -> None:
        emitter = self._emitter(lambda _: httpx.Response(200))
        moment = datetime(2026, 1, 2, 10, 0, tzinfo=timezone.utc)
        emitter.emit(AuditEvent(AuditAction.LOGOUT, uid="u1", timestamp=moment))
        body = json.loads(self.requests[0].content.decode())
        self.assertEqual(body["timestamp"], moment.isoformat())

    def test_non_2xx_is_failure_under_isolation(self) -> None:
        emitter = self._emitter(lambda _: httpx.Response(503))
        with self.assertLogs("authgate.audit", level="ERROR"):
            result = emitter.emit(AuditEvent(AuditAction.LOGIN, uid="u1"))
        self.assertIsInstance(result, Failed)
        self.assertEqual(result.status_code, 503)

    def test_transport_error_is_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        emitter = self._emitter(handler)
        result = emitter.emit(AuditEvent(AuditAction.LOGIN, uid="u1"))
        self.assertIsInstance(result, Failed)
        self.assertTrue(result.cause.startswith("network_error"))

    def test_timeout_is_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        emitter = self._emitter(handler)
        result = emitter.emit(AuditEvent(AuditAction.LOGIN, uid="u1"))
        self.assertIsInstance(result, Failed)
        self.assertTrue(result.cause.startswith("timeout"))

    def test_propagate_policy_raises(self) -> None:
        emitter = self._emitter(lambda _: httpx.Response(500))
        with self.assertRaises(AuditDeliveryError) as ctx:
            emitter.emit(AuditEvent(AuditAction.LOGOUT, uid="u1"), FailurePolicy.PROPAGATE)
        self.assertEqual(ctx.exception.result.status_code, 500)

    def test_single_attempt_per_call(self) -> None:
        emitter = self._emitter(lambda _: httpx.Response(500))
        emitter.emit(AuditEvent(AuditAction.LOGIN, uid="u1"))
        self.assertEqual(len(self.requests), 1)

    def test_local_log_line_written_regardless_of_outcome(self) -> None:
        for status in (201, 500):
            emitter = self._emitter(lambda _, status=status: httpx.Response(status))
            with self.assertLogs("authgate.audit", level="INFO") as logs:
                emitter.emit(
                    AuditEvent(AuditAction.LOGIN_FAILED, metadata={"reason": "INVALID_PASSWORD"})
                )
            entries = [json.loads(record.getMessage()) for record in logs.records if record.getMessage().startswith("{")]
            self.assertEqual(len(entries), 1)
            self.assertEqual(entries[0]["action"], "LOGIN_FAILED")
            self.assertEqual(entries[0]["delivered"], status == 201)


class AuditEventTests(unittest.TestCase):
    def test_rejects_non_primitive_metadata(self) -> None:
        with self.assertRaises(ValueError):
            AuditEvent(AuditAction.LOGIN, metadata={"codes": [1, 2]})

    def test_event_is_immutable(self) -> None:
        source = {"reason": "x"}
        event = AuditEvent(AuditAction.LOGIN_FAILED, metadata=source)
        source["reason"] = "changed"
        self.assertEqual(event.metadata["reason"], "x")
        with self.assertRaises(TypeError):
            event.metadata["reason"] = "y"  # type: ignore[index]
        with self.assertRaises(dataclasses.FrozenInstanceError):
            event.uid = "other"  # type: ignore[misc]

    def test_action_must_be_enum(self) -> None:
        with self.assertRaises(ValueError):
            AuditEvent("LOGIN")  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
