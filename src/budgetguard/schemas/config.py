"""Configuration schemas and loader.

A single YAML file describes the service, its backends and the safety
policy. Secrets may be left out of the file and supplied through the
environment instead.

Key Components:
    ServiceConfig: Service identity, windows and objectives
    MetricsConfig: Prometheus endpoint
    GitOpsConfig: Config repository (git) backend
    ControllerConfig: Argo CD backend
    WebhookConfig / NotificationConfig: Notification channels
    RollbackPolicy: Safety gate parameters
    PromotionSettings: Promotion gate parameters
    GuardConfig: Top-level configuration
    load_config: Load and validate a YAML configuration file

Environment Overrides:
    BUDGETGUARD_GITOPS_TOKEN: Config repository token
    BUDGETGUARD_ARGOCD_TOKEN: Argo CD API token
    BUDGETGUARD_ARGOCD_PASSWORD: Argo CD password
    BUDGETGUARD_SLACK_WEBHOOK: Adds a Slack webhook channel
    BUDGETGUARD_PAGERDUTY_KEY: Adds a PagerDuty channel

Example:
    >>> config = load_config("budgetguard.yaml")
    >>> config.service.name
    'checkout'
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from budgetguard.errors import ConfigurationError, InvalidEdgeError
from budgetguard.schemas.promotion import (
    CanaryRequirement,
    GateRuleSet,
    PromotionEdge,
    default_rule_set,
)
from budgetguard.schemas.rollback import BlackoutWindow
from budgetguard.schemas.slo import SLOTargets

PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"

SEVERITY_ORDER = ("info", "warning", "critical")
"""Notification severities, lowest first."""

_DURATION_PATTERN = r"^[0-9]+[smhdw]$"


class ServiceConfig(BaseModel):
    """Service identity and evaluation parameters.

    Attributes:
        name: Value of the ``service`` label in metrics.
        namespace: Namespace label the rollback monitor scopes queries to.
        environment: Environment the rollback monitor guards.
        slo_window: Error budget window (Prometheus duration).
        burn_windows: Short windows used for burn-rate estimates.
        error_budget: Allowed unavailability fraction.
        budget_window_hours: Length of the budget window in hours.
        targets: Per-indicator objectives.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="app", min_length=1)
    namespace: str | None = Field(default="production")
    environment: str = Field(default="production", min_length=1)
    slo_window: str = Field(default="30d", pattern=_DURATION_PATTERN)
    burn_windows: list[str] = Field(default_factory=lambda: ["1h", "6h"], min_length=1)
    error_budget: float = Field(default=0.001, gt=0.0, le=1.0)
    budget_window_hours: float = Field(default=720.0, gt=0.0)
    targets: SLOTargets = Field(default_factory=SLOTargets)


class MetricsConfig(BaseModel):
    """Prometheus HTTP API endpoint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(
        default="http://prometheus.monitoring.svc.cluster.local:9090",
        min_length=1,
    )
    timeout_seconds: float = Field(default=10.0, gt=0.0, le=300.0)


class GitOpsConfig(BaseModel):
    """Config repository backend.

    Attributes:
        repo_url: Clone URL of the config repository.
        work_dir: Local working copy.
        branch: Tracked branch.
        path_template: Environment path inside the repository.
        token: Token injected into HTTPS clone URLs.
        push_mode: "direct" pushes to the tracked branch, "branch" pushes a
            new rollback branch for review.
        author_name: Commit author name.
        author_email: Commit author email.
        timeout_seconds: Timeout for each git command.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    repo_url: str = Field(..., min_length=1)
    work_dir: Path = Field(default=Path("/tmp/budgetguard-gitops"))
    branch: str = Field(default="main", min_length=1)
    path_template: str = Field(default="k8s/overlays/{environment}")
    token: SecretStr | None = None
    push_mode: Literal["direct", "branch"] = "direct"
    author_name: str = "Error Budget Monitor"
    author_email: str = "budgetguard@localhost"
    timeout_seconds: float = Field(default=60.0, gt=0.0, le=600.0)

    def environment_path(self, environment: str) -> str:
        """Repository path holding an environment's manifests."""
        return self.path_template.format(environment=environment)


class ControllerConfig(BaseModel):
    """Argo CD backend.

    Either ``token`` or ``username``/``password`` authenticates requests.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    server: str = Field(..., min_length=1)
    app_name_template: str = Field(default="app-{environment}")
    token: SecretStr | None = None
    username: str = "admin"
    password: SecretStr | None = None
    verify_tls: bool = True
    timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)
    wait_timeout_seconds: float = Field(default=300.0, gt=0.0)
    poll_interval_seconds: float = Field(default=5.0, gt=0.0)

    def app_name(self, environment: str) -> str:
        """Application name for an environment."""
        return self.app_name_template.format(environment=environment)


class WebhookConfig(BaseModel):
    """A notification channel.

    Attributes:
        kind: "slack" (incoming webhook) or "pagerduty" (Events API v2).
        url: Webhook URL (defaults to the PagerDuty events endpoint).
        routing_key: PagerDuty integration key.
        min_severity: Lowest severity delivered to this channel.
        timeout_seconds: Request timeout.
        retry_count: Retries on server errors and timeouts.

    Examples:
        >>> channel = WebhookConfig(kind="pagerduty", routing_key="R0UT1NG")
        >>> channel.endpoint
        'https://events.pagerduty.com/v2/enqueue'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["slack", "pagerduty"]
    url: str | None = None
    routing_key: SecretStr | None = None
    min_severity: Literal["info", "warning", "critical"] = "info"
    timeout_seconds: int = Field(default=10, ge=1, le=300)
    retry_count: int = Field(default=2, ge=0, le=10)

    @property
    def endpoint(self) -> str:
        """URL the channel posts to."""
        if self.url:
            return self.url
        if self.kind == "pagerduty":
            return PAGERDUTY_EVENTS_URL
        raise ConfigurationError("Slack channel requires a webhook url")

    def accepts(self, severity: str) -> bool:
        """Whether a message of ``severity`` is delivered to this channel."""
        if severity not in SEVERITY_ORDER:
            return True
        return SEVERITY_ORDER.index(severity) >= SEVERITY_ORDER.index(self.min_severity)


class NotificationConfig(BaseModel):
    """Notification channels."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    webhooks: list[WebhookConfig] = Field(default_factory=list)
    source: str = "Error Budget Monitor"


class RollbackPolicy(BaseModel):
    """Safety gate and executor parameters.

    Attributes:
        enabled: Global switch for automated rollback.
        auto_rollback_critical: Roll back automatically at Critical tier.
        auto_rollback_emergency: Roll back automatically at Emergency tier.
        cooldown_minutes: Minimum time since the last successful rollback.
        max_per_day: Maximum successful rollbacks in the trailing 24 hours.
        max_per_hour: Maximum successful rollbacks in the trailing hour.
        blackout_windows: Periods during which rollback is blocked.
        require_approval: Require a human to execute the rollback.
        dry_run: Resolve targets without changing anything.
        deadline_seconds: Overall bound for one rollback execution.
        retention_days: Attempt log retention.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    auto_rollback_critical: bool = True
    auto_rollback_emergency: bool = True
    cooldown_minutes: int = Field(default=60, ge=0)
    max_per_day: int = Field(default=3, ge=0)
    max_per_hour: int = Field(default=1, ge=0)
    blackout_windows: list[BlackoutWindow] = Field(default_factory=list)
    require_approval: bool = False
    dry_run: bool = False
    deadline_seconds: float = Field(default=900.0, gt=0.0)
    retention_days: int = Field(default=7, ge=1)


class PromotionSettings(BaseModel):
    """Promotion gate parameters.

    Attributes:
        artifacts_dir: Directory holding published pipeline artifacts.
        rules: Per-edge overrides merged over the built-in rule sets.
        slo_window: Window used by the SLO checks.
        settle_seconds: Delay before post-promotion verification.
        deadline_seconds: Overall bound for one promotion run.
        canary_namespace: Namespace the canary release runs in.
        production_namespace: Namespace of the stable release.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    artifacts_dir: Path = Field(default=Path("artifacts"))
    rules: dict[str, dict[str, Any]] = Field(default_factory=dict)
    slo_window: str = Field(default="5m", pattern=_DURATION_PATTERN)
    settle_seconds: float = Field(default=30.0, ge=0.0)
    deadline_seconds: float = Field(default=1800.0, gt=0.0)
    canary_namespace: str = "canary"
    production_namespace: str = "production"

    @field_validator("rules")
    @classmethod
    def validate_rules(cls, v: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        """Validate rule override keys are edges and values are rule fields."""
        for key, overrides in v.items():
            parts = key.split("->")
            if len(parts) != 2:
                raise ValueError(f"Invalid edge key {key!r}, expected 'from->to'")
            try:
                PromotionEdge.resolve(parts[0].strip(), parts[1].strip())
            except InvalidEdgeError as e:
                raise ValueError(str(e)) from e
            unknown = set(overrides) - set(GateRuleSet.model_fields)
            if unknown:
                raise ValueError(f"Unknown rule fields for {key}: {sorted(unknown)}")
        return v

    def rule_set(self, edge: PromotionEdge) -> GateRuleSet:
        """Effective rule set for an edge (built-in defaults plus overrides)."""
        base = default_rule_set(edge)
        overrides = dict(self.rules.get(edge.key, {}))
        if not overrides:
            return base
        canary = overrides.pop("canary_requirement", None)
        if canary is not None:
            overrides["canary_requirement"] = CanaryRequirement.model_validate(canary)
        return GateRuleSet.model_validate({**base.model_dump(), **overrides})


class GuardConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        service: Service identity and objectives.
        metrics: Prometheus endpoint.
        gitops: Config repository backend (optional).
        controller: Argo CD backend (optional).
        notifications: Notification channels.
        rollback: Safety gate parameters.
        promotion: Promotion gate parameters.
        state_dir: Directory for the attempt log, locks and approvals.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    gitops: GitOpsConfig | None = None
    controller: ControllerConfig | None = None
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    rollback: RollbackPolicy = Field(default_factory=RollbackPolicy)
    promotion: PromotionSettings = Field(default_factory=PromotionSettings)
    state_dir: Path = Field(default=Path("/var/lib/budgetguard"))


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Merge secret overrides from the environment into raw config data."""
    data = dict(data)

    gitops_token = environ.get("BUDGETGUARD_GITOPS_TOKEN")
    if gitops_token and data.get("gitops") is not None:
        data["gitops"] = {**data["gitops"], "token": gitops_token}

    controller = data.get("controller")
    if controller is not None:
        argocd_token = environ.get("BUDGETGUARD_ARGOCD_TOKEN")
        argocd_password = environ.get("BUDGETGUARD_ARGOCD_PASSWORD")
        if argocd_token:
            controller = {**controller, "token": argocd_token}
        if argocd_password:
            controller = {**controller, "password": argocd_password}
        data["controller"] = controller

    notifications = dict(data.get("notifications") or {})
    webhooks = list(notifications.get("webhooks") or [])
    slack_url = environ.get("BUDGETGUARD_SLACK_WEBHOOK")
    if slack_url and not any(w.get("kind") == "slack" for w in webhooks):
        webhooks.append({"kind": "slack", "url": slack_url})
    pagerduty_key = environ.get("BUDGETGUARD_PAGERDUTY_KEY")
    if pagerduty_key:
        existing = [w for w in webhooks if w.get("kind") == "pagerduty"]
        if existing:
            webhooks = [
                {"routing_key": pagerduty_key, **w} if w.get("kind") == "pagerduty" else w
                for w in webhooks
            ]
        else:
            webhooks.append(
                {"kind": "pagerduty", "routing_key": pagerduty_key, "min_severity": "warning"}
            )
    if webhooks:
        notifications["webhooks"] = webhooks
        data["notifications"] = notifications

    return data


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> GuardConfig:
    """Load configuration from YAML and apply environment overrides.

    Args:
        path: YAML file. None builds the default configuration.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated GuardConfig.

    Raises:
        ConfigurationError: If the file is missing, is not valid YAML, or
            fails validation.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        try:
            with config_path.open() as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse configuration YAML: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration must be a mapping: {config_path}")
        data = loaded

    data = _apply_env_overrides(data, env)

    try:
        return GuardConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


__all__ = [
    "PAGERDUTY_EVENTS_URL",
    "SEVERITY_ORDER",
    "ControllerConfig",
    "GitOpsConfig",
    "GuardConfig",
    "MetricsConfig",
    "NotificationConfig",
    "PromotionSettings",
    "RollbackPolicy",
    "ServiceConfig",
    "WebhookConfig",
    "load_config",
]
