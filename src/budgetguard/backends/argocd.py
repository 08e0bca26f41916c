"""Argo CD deployment controller backend (REST API over httpx).

Covers what the rollback executor and the promotion orchestrator need from
the controller: application status, deployment history, rollback to a
history id, sync, and waiting for Synced/Healthy within a deadline.

Example:
    >>> client = ArgoCDClient("https://argocd.example.com", "app-production", token="...")
    >>> status = client.status()
    >>> target = client.select_rollback_revision()
    >>> client.rollback(target.id)
    >>> client.wait_for_healthy(Deadline(300))
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from budgetguard.deadline import Deadline
from budgetguard.errors import (
    ApplicationNotFoundError,
    AuthenticationError,
    BackendUnavailableError,
    RollbackTimeoutError,
    SyncTimeoutError,
)
from budgetguard.schemas.config import ControllerConfig
from budgetguard.telemetry import create_span

logger = structlog.get_logger(__name__)

BACKEND_NAME = "deployment_controller"
HEALTHY = "Healthy"
SYNCED = "Synced"


class AppStatus(BaseModel):
    """Snapshot of an application's controller state."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    app_name: str
    health_status: str = "Unknown"
    sync_status: str = "Unknown"
    revision: str | None = None
    history_id: int | None = None
    deployed_at: datetime | None = None

    @property
    def converged(self) -> bool:
        """Whether the application is both Synced and Healthy."""
        return self.sync_status == SYNCED and self.health_status == HEALTHY

    def age_minutes(self, now: datetime) -> float | None:
        """Minutes since the current deployment, None when unknown."""
        if self.deployed_at is None:
            return None
        return max(0.0, (now - self.deployed_at).total_seconds() / 60)


class HistoryEntry(BaseModel):
    """One deployment in the application history."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    revision: str = ""
    deployed_at: datetime | None = None
    health_status: str | None = None


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class ArgoCDClient:
    """Client for one Argo CD application.

    Authenticates with a bearer token, or exchanges username/password for a
    session token on first use.

    Args:
        server: Argo CD server URL (``https://`` is assumed when missing).
        app_name: Application name.
        token: API token.
        username: Session login user (when no token is given).
        password: Session login password.
        verify_tls: Verify the server certificate.
        timeout: Per-request timeout in seconds.
        poll_interval: Seconds between status polls while waiting.
        client: Optional preconfigured httpx.Client (tests inject a
            MockTransport here).
    """

    def __init__(
        self,
        server: str,
        app_name: str,
        *,
        token: str | None = None,
        username: str | None = None,
        password: str | None = None,
        verify_tls: bool = True,
        timeout: float = 30.0,
        poll_interval: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        if "://" not in server:
            server = f"https://{server}"
        self.server = server.rstrip("/")
        self.app_name = app_name
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._token = token
        self._username = username
        self._password = password
        self._client = client or httpx.Client(timeout=timeout, verify=verify_tls)
        self._log = logger.bind(backend=BACKEND_NAME, app=app_name)

    @classmethod
    def from_config(cls, config: ControllerConfig, environment: str) -> ArgoCDClient:
        return cls(
            config.server,
            config.app_name(environment),
            token=config.token.get_secret_value() if config.token else None,
            username=config.username,
            password=config.password.get_secret_value() if config.password else None,
            verify_tls=config.verify_tls,
            timeout=config.timeout_seconds,
            poll_interval=config.poll_interval_seconds,
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        headers = {}
        if authenticated:
            headers["Authorization"] = f"Bearer {self._session_token()}"
        try:
            return self._client.request(
                method, f"{self.server}{path}", json=json, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(
                BACKEND_NAME, f"request timed out after {self.timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise BackendUnavailableError(BACKEND_NAME, str(e)) from e

    def _session_token(self) -> str:
        if self._token:
            return self._token
        if not self._password:
            raise AuthenticationError(BACKEND_NAME, "no token or password configured")

        response = self._send(
            "POST",
            "/api/v1/session",
            json={"username": self._username, "password": self._password},
            authenticated=False,
        )
        if response.status_code in (401, 403):
            raise AuthenticationError(BACKEND_NAME, "invalid username or password")
        if response.status_code >= 400:
            raise BackendUnavailableError(
                BACKEND_NAME, f"login failed: HTTP {response.status_code}"
            )
        token = response.json().get("token")
        if not token:
            raise AuthenticationError(BACKEND_NAME, "session response carried no token")
        self._token = token
        self._log.debug("argocd_session_created")
        return token

    def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        response = self._send(method, path, json=json)
        if response.status_code in (401, 403):
            raise AuthenticationError(BACKEND_NAME, f"HTTP {response.status_code}")
        if response.status_code == 404:
            raise ApplicationNotFoundError(self.app_name)
        if response.status_code >= 400:
            detail = f"HTTP {response.status_code} {_message(response)}".strip()
            raise BackendUnavailableError(BACKEND_NAME, f"{method} {path} failed: {detail}")
        try:
            return response.json() or {}
        except ValueError as e:
            raise BackendUnavailableError(BACKEND_NAME, "invalid JSON response") from e

    def _application(self) -> dict[str, Any]:
        return self._request("GET", f"/api/v1/applications/{self.app_name}")

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def status(self) -> AppStatus:
        """Current health, sync state and deployed revision.

        Raises:
            ApplicationNotFoundError: If the application does not exist.
            AuthenticationError: If the credentials are rejected.
            BackendUnavailableError: If the server cannot be reached.
        """
        return self._status_from(self._application())

    def _status_from(self, app: dict[str, Any]) -> AppStatus:
        status = app.get("status") or {}
        sync = status.get("sync") or {}
        history = self._history_from(app)
        current = history[0] if history else None
        return AppStatus(
            app_name=self.app_name,
            health_status=(status.get("health") or {}).get("status") or "Unknown",
            sync_status=sync.get("status") or "Unknown",
            revision=sync.get("revision") or (current.revision if current else None),
            history_id=current.id if current else None,
            deployed_at=current.deployed_at if current else None,
        )

    def _history_from(self, app: dict[str, Any]) -> list[HistoryEntry]:
        entries = []
        for item in (app.get("status") or {}).get("history") or []:
            if item.get("id") is None:
                continue
            entries.append(
                HistoryEntry(
                    id=int(item["id"]),
                    revision=str(item.get("revision") or ""),
                    deployed_at=_parse_time(item.get("deployedAt")),
                    health_status=item.get("healthStatus"),
                )
            )
        return sorted(entries, key=lambda e: e.id, reverse=True)

    def history(self) -> list[HistoryEntry]:
        """Deployment history, newest first (the first entry is current)."""
        return self._history_from(self._application())

    def select_rollback_revision(self) -> HistoryEntry | None:
        """Pick the history entry to roll back to.

        The newest non-current entry recorded as Healthy, else the entry
        immediately preceding the current one. None when there is no
        earlier deployment.
        """
        previous = self.history()[1:]
        if not previous:
            self._log.warning("argocd_no_previous_revision")
            return None
        for entry in previous:
            if entry.health_status == HEALTHY:
                self._log.info("argocd_healthy_revision_found", history_id=entry.id)
                return entry
        self._log.warning("argocd_no_healthy_revision", history_id=previous[0].id)
        return previous[0]

    # ------------------------------------------------------------------
    # actions
    # ------------------------------------------------------------------

    def rollback(self, history_id: int) -> None:
        """Roll the application back to a history id (no pruning)."""
        with create_span(
            "budgetguard.argocd.rollback",
            attributes={"app": self.app_name, "history_id": history_id},
        ):
            self._request(
                "POST",
                f"/api/v1/applications/{self.app_name}/rollback",
                json={"id": history_id, "prune": False},
            )
        self._log.info("argocd_rollback_initiated", history_id=history_id)

    def sync(self, revision: str | None = None) -> None:
        """Trigger a sync of the application."""
        body: dict[str, Any] = {"prune": False}
        if revision:
            body["revision"] = revision
        with create_span("budgetguard.argocd.sync", attributes={"app": self.app_name}):
            self._request("POST", f"/api/v1/applications/{self.app_name}/sync", json=body)
        self._log.info("argocd_sync_triggered", revision=revision)

    def wait_for_healthy(self, deadline: Deadline, *, after_sync: bool = False) -> AppStatus:
        """Poll until the application is Synced and Healthy.

        Args:
            deadline: Bound on the total wait.
            after_sync: Raise SyncTimeoutError rather than RollbackTimeoutError.

        Raises:
            RollbackTimeoutError: If the deadline expires first.
            SyncTimeoutError: Same, when waiting after a sync.
        """
        while True:
            status = self.status()
            if status.converged:
                self._log.info("argocd_app_converged", revision=status.revision)
                return status
            if deadline.expired:
                self._log.warning(
                    "argocd_wait_timeout",
                    health=status.health_status,
                    sync=status.sync_status,
                )
                error = SyncTimeoutError if after_sync else RollbackTimeoutError
                raise error(self.app_name, deadline.seconds)
            self._log.debug(
                "argocd_waiting",
                health=status.health_status,
                sync=status.sync_status,
                remaining=round(deadline.remaining(), 1),
            )
            deadline.sleep(self.poll_interval)


def _message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message") or "")
    except ValueError:
        return ""


__all__ = ["AppStatus", "ArgoCDClient", "HistoryEntry"]
