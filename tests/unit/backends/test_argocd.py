"""Unit tests for the Argo CD deployment controller backend."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from budgetguard.backends.argocd import ArgoCDClient
from budgetguard.deadline import Deadline
from budgetguard.errors import (
    ApplicationNotFoundError,
    AuthenticationError,
    BackendUnavailableError,
    RollbackTimeoutError,
    SyncTimeoutError,
)

SERVER = "https://argocd.example.com"
APP_PATH = "/api/v1/applications/app-production"


def _application(
    health: str = "Degraded",
    sync: str = "Synced",
    history: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    if history is None:
        history = [
            {"id": 1, "revision": "aaa111", "deployedAt": "2026-10-12T09:00:00Z"},
            {
                "id": 3,
                "revision": "ccc333",
                "deployedAt": "2026-10-14T10:00:00Z",
            },
            {
                "id": 2,
                "revision": "bbb222",
                "deployedAt": "2026-10-13T09:00:00Z",
                "healthStatus": "Healthy",
            },
        ]
    return {
        "metadata": {"name": "app-production"},
        "status": {
            "health": {"status": health},
            "sync": {"status": sync, "revision": "ccc333"},
            "history": history,
        },
    }


class FakeClock:
    """Monotonic clock advanced by sleeping."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    **kwargs: Any,
) -> ArgoCDClient:
    kwargs.setdefault("token", "t0k3n")
    return ArgoCDClient(
        SERVER,
        "app-production",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


class TestStatus:
    """Tests for status and history queries."""

    def test_status(self) -> None:
        """Status combines health, sync and the newest history entry."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_application())

        status = _client(handler).status()

        assert status.health_status == "Degraded"
        assert status.sync_status == "Synced"
        assert status.revision == "ccc333"
        assert status.history_id == 3
        assert status.deployed_at is not None
        assert status.converged is False
        assert seen[0].url.path == APP_PATH
        assert seen[0].headers["Authorization"] == "Bearer t0k3n"

    def test_age_minutes(self) -> None:
        """Age is measured from the newest deployment and unknown without history."""
        client = _client(lambda request: httpx.Response(200, json=_application()))
        now = datetime(2026, 10, 14, 10, 45, tzinfo=timezone.utc)
        assert client.status().age_minutes(now) == pytest.approx(45.0)

        empty = _client(lambda request: httpx.Response(200, json=_application(history=[])))
        assert empty.status().age_minutes(now) is None

    def test_history_newest_first(self) -> None:
        client = _client(lambda request: httpx.Response(200, json=_application()))
        assert [entry.id for entry in client.history()] == [3, 2, 1]

    @pytest.mark.requirement("controller-target-selection")
    def test_select_prefers_healthy_entry(self) -> None:
        """The newest earlier entry recorded as Healthy wins."""
        history = [
            {"id": 5, "revision": "e"},
            {"id": 4, "revision": "d"},
            {"id": 3, "revision": "c", "healthStatus": "Healthy"},
        ]
        client = _client(
            lambda request: httpx.Response(200, json=_application(history=history))
        )
        selected = client.select_rollback_revision()
        assert selected is not None
        assert selected.id == 3

    def test_select_falls_back_to_previous(self) -> None:
        history = [{"id": 5, "revision": "e"}, {"id": 4, "revision": "d"}]
        client = _client(
            lambda request: httpx.Response(200, json=_application(history=history))
        )
        selected = client.select_rollback_revision()
        assert selected is not None
        assert selected.id == 4

    def test_select_without_previous(self) -> None:
        history = [{"id": 5, "revision": "e"}]
        client = _client(
            lambda request: httpx.Response(200, json=_application(history=history))
        )
        assert client.select_rollback_revision() is None


class TestErrors:
    """HTTP failures map onto the error hierarchy."""

    @pytest.mark.parametrize(
        ("status_code", "error"),
        [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, ApplicationNotFoundError),
            (500, BackendUnavailableError),
        ],
    )
    def test_status_codes(self, status_code: int, error: type[Exception]) -> None:
        client = _client(lambda request: httpx.Response(status_code, json={"message": "nope"}))
        with pytest.raises(error):
            client.status()

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendUnavailableError, match="connection refused"):
            _client(handler).status()

    def test_no_credentials(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={}), token=None)
        with pytest.raises(AuthenticationError, match="no token or password"):
            client.status()


class TestSession:
    """Username/password login."""

    def test_login_once(self) -> None:
        """The session token is requested once and reused."""
        logins: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v1/session":
                logins.append(json.loads(request.content))
                return httpx.Response(200, json={"token": "s3ss10n"})
            assert request.headers["Authorization"] == "Bearer s3ss10n"
            return httpx.Response(200, json=_application())

        client = _client(handler, token=None, username="admin", password="hunter2")
        client.status()
        client.status()

        assert logins == [{"username": "admin", "password": "hunter2"}]

    def test_rejected_login(self) -> None:
        client = _client(
            lambda request: httpx.Response(401, json={}),
            token=None,
            username="admin",
            password="wrong",
        )
        with pytest.raises(AuthenticationError, match="invalid username or password"):
            client.status()


class TestActions:
    """Rollback, sync and waiting."""

    @pytest.mark.requirement("controller-rollback")
    def test_rollback_posts_history_id(self) -> None:
        bodies: list[tuple[str, dict[str, Any]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json=_application())

        _client(handler).rollback(2)

        assert bodies == [(f"{APP_PATH}/rollback", {"id": 2, "prune": False})]

    def test_sync_with_revision(self) -> None:
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        _client(handler).sync("ccc333")
        assert bodies == [{"prune": False, "revision": "ccc333"}]

    def test_wait_until_converged(self) -> None:
        """Polling continues until the application is Synced and Healthy."""
        responses = iter(
            [_application("Progressing", "OutOfSync"), _application("Healthy", "Synced")]
        )
        clock = FakeClock()
        client = _client(
            lambda request: httpx.Response(200, json=next(responses)), poll_interval=5.0
        )

        status = client.wait_for_healthy(Deadline(60, clock=clock, sleep=clock.sleep))

        assert status.converged is True
        assert clock.sleeps == [5.0]

    @pytest.mark.requirement("controller-wait-deadline")
    def test_wait_times_out(self) -> None:
        """The deadline bounds the wait and the final sleep is clamped."""
        clock = FakeClock()
        client = _client(
            lambda request: httpx.Response(200, json=_application()), poll_interval=4.0
        )

        with pytest.raises(RollbackTimeoutError) as excinfo:
            client.wait_for_healthy(Deadline(10, clock=clock, sleep=clock.sleep))

        assert not isinstance(excinfo.value, SyncTimeoutError)
        assert clock.sleeps == [4.0, 4.0, 2.0]

    def test_sync_wait_times_out(self) -> None:
        clock = FakeClock()
        client = _client(lambda request: httpx.Response(200, json=_application()))

        with pytest.raises(SyncTimeoutError):
            client.wait_for_healthy(
                Deadline(1, clock=clock, sleep=clock.sleep), after_sync=True
            )

    def test_server_without_scheme(self) -> None:
        client = ArgoCDClient("argocd.example.com/", "app-production", token="t")
        assert client.server == "https://argocd.example.com"
