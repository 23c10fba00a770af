from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import httpx
import pytest

from studio_client.app.api_client import QuotaApiClient
from studio_client.app.config import ClientConfig
from studio_client.app.exceptions import InsufficientQuotaError, QuotaApiError
from studio_client.app.quota_cache import ClientQuotaCache
from studio_client.app.reservation import QuotaReservation
from studio_client.app.storage import InMemoryStorage


NOW = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)
USER = "user-001"


class FakeQuotaServer:
    """quota-service 의 /api/v1/quota 응답을 흉내내는 MockTransport 핸들러."""

    def __init__(self, available: int = 10) -> None:
        self.available = available
        self.used = 0
        self.reserved: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.fail_refunds = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/v1/quota" and request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "totalQuota": self.available + self.used,
                    "usedCount": self.used,
                    "remainingQuota": self.available,
                    "credits": {"available": self.available, "signup": self.available},
                },
            )
        if path != "/api/v1/quota/reserve":
            return httpx.Response(404, json={"detail": "Not Found"})

        if request.method == "POST":
            body = json.loads(request.content)
            count = body["imageCount"]
            if count > self.available:
                return httpx.Response(
                    403,
                    json={
                        "error": "Insufficient quota",
                        "credits": {"available": self.available, "required": count},
                    },
                )
            self.available -= count
            self.used += count
            self.reserved[body["taskId"]] = count
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "reservationId": f"res-{body['taskId']}",
                    "imageCount": count,
                    "credits": {"available": self.available},
                },
            )

        if self.fail_refunds:
            return httpx.Response(500, json={"error": "Database error"})

        if request.method == "DELETE":
            task_id = request.url.params.get("taskId")
            refunded = self.reserved.pop(task_id, 0)
        else:
            body = json.loads(request.content)
            held = self.reserved.get(body["taskId"], 0)
            refunded = max(0, held - body["actualImageCount"])
            self.reserved[body["taskId"]] = held - refunded
        self.available += refunded
        self.used -= refunded
        return httpx.Response(200, json={"success": True, "refundedCount": refunded})


def _build(server: FakeQuotaServer):
    api = QuotaApiClient(
        ClientConfig(base_url="http://quota.test"),
        transport=httpx.MockTransport(server),
        clock=lambda: NOW,
    )
    executor = ThreadPoolExecutor(max_workers=1)
    cache = ClientQuotaCache(
        api, InMemoryStorage(), clock=lambda: NOW, executor=executor
    )
    return QuotaReservation(api, cache), cache, api, executor


def test_api_client_sends_caller_identity() -> None:
    server = FakeQuotaServer(available=4)
    _, _, api, executor = _build(server)

    snapshot = api.get_quota(USER)

    assert snapshot.remaining_quota == 4
    assert snapshot.credits is not None
    assert snapshot.credits.signup == 4
    assert server.requests[0].headers["X-User-Id"] == USER
    executor.shutdown(wait=True)


def test_reserve_updates_cache_and_partial_refund_resyncs() -> None:
    server = FakeQuotaServer(available=13)
    reservation, cache, _, executor = _build(server)
    cache.refresh(USER)

    result = reservation.reserve(USER, "task-1", 5, "model_studio")
    assert result.reservation_id == "res-task-1"
    assert result.available == 8
    # 단일 워커이므로 앞선 백그라운드 갱신이 끝날 때까지 기다린다
    executor.submit(lambda: None).result(timeout=5)
    assert cache.get(USER).remaining_quota == 8

    refunded = reservation.partial_refund(USER, "task-1", 2)
    executor.shutdown(wait=True)

    assert refunded == 3
    assert cache.get(USER).remaining_quota == 11


def test_reserve_raises_on_insufficient_quota() -> None:
    server = FakeQuotaServer(available=2)
    reservation, _, _, executor = _build(server)

    with pytest.raises(InsufficientQuotaError) as exc_info:
        reservation.reserve(USER, "task-1", 4, "model_studio")
    executor.shutdown(wait=True)

    assert exc_info.value.available == 2
    assert exc_info.value.required == 4


def test_refund_returns_reserved_credits() -> None:
    server = FakeQuotaServer(available=10)
    reservation, cache, _, executor = _build(server)
    reservation.reserve(USER, "task-1", 3, "model_studio")

    assert reservation.refund(USER, "task-1") == 3
    assert reservation.refund(USER, "task-1") == 0
    executor.shutdown(wait=True)

    deletes = [r for r in server.requests if r.method == "DELETE"]
    assert [r.url.params["taskId"] for r in deletes] == ["task-1", "task-1"]
    assert server.available == 10


def test_refund_failures_do_not_raise() -> None:
    server = FakeQuotaServer(available=10)
    reservation, _, _, executor = _build(server)
    reservation.reserve(USER, "task-1", 3, "model_studio")
    server.fail_refunds = True

    assert reservation.refund(USER, "task-1") == 0
    assert reservation.partial_refund(USER, "task-1", 1) == 0
    executor.shutdown(wait=True)


def test_server_errors_are_wrapped() -> None:
    server = FakeQuotaServer()
    server.fail_refunds = True
    _, _, api, executor = _build(server)

    with pytest.raises(QuotaApiError) as exc_info:
        api.release(USER, task_id="task-1")
    executor.shutdown(wait=True)

    assert exc_info.value.status_code == 500


def test_unreachable_server_is_wrapped() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    api = QuotaApiClient(
        ClientConfig(base_url="http://quota.test"),
        transport=httpx.MockTransport(refuse),
    )

    with pytest.raises(QuotaApiError):
        api.get_quota(USER)
