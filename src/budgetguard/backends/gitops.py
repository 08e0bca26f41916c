"""GitOps config repository backend (git over subprocess).

The config repository is the source of truth for what runs in each
environment (``k8s/overlays/<env>``). A rollback restores the environment
path from an earlier commit as a new commit, never by rewriting history; a
promotion copies the release reference (kustomization ``newTag``) from one
environment to the next.

Every git invocation runs with a timeout and with terminal prompts
disabled, so a missing credential fails fast instead of hanging.

Example:
    >>> repo = GitOpsRepository(Path("/tmp/gitops"), "https://github.com/acme/deploy.git")
    >>> repo.sync()
    >>> target = repo.select_revert_target("k8s/overlays/production")
    >>> repo.revert_path(target.sha, "k8s/overlays/production", "Emergency: ...")
"""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog
import yaml
from pydantic import BaseModel, ConfigDict

from budgetguard.errors import (
    AuthenticationError,
    BackendUnavailableError,
    NoRevertTargetError,
    PushRejectedError,
)
from budgetguard.schemas.config import GitOpsConfig
from budgetguard.telemetry import create_span, sanitize_error_message

logger = structlog.get_logger(__name__)

BACKEND_NAME = "config_repository"
TRIGGER = "Error Budget Monitor"
PRIMARY_LOOKBACK = timedelta(hours=24)
FALLBACK_LOOKBACK = timedelta(days=7)
ROLLBACK_BRANCH_FORMAT = "rollback/error-budget-%Y%m%d-%H%M%S"

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "access denied",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)
_REJECT_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "failed to push some refs")
_NEW_TAG_RE = re.compile(r"^(?P<prefix>\s*-?\s*newTag:\s*)(?P<value>\S.*?)\s*$", re.MULTILINE)


class GitCommit(BaseModel):
    """A commit touching an environment path."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sha: str
    committed_at: datetime
    subject: str = ""


class RevertResult(BaseModel):
    """Outcome of restoring an environment path.

    Attributes:
        target_sha: Commit the path was restored from.
        commit_sha: New commit created (None when nothing changed).
        pushed_ref: Branch the commit was pushed to.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target_sha: str
    commit_sha: str | None = None
    pushed_ref: str | None = None

    @property
    def no_op(self) -> bool:
        return self.commit_sha is None


class PromotionCommit(BaseModel):
    """Outcome of copying a release reference between environments."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    release_reference: str
    commit_sha: str | None = None
    pushed_ref: str | None = None


def _with_token(url: str, token: str | None) -> str:
    """Embed a token into an HTTPS clone URL."""
    if not token:
        return url
    parts = urlsplit(url)
    if parts.scheme != "https" or "@" in parts.netloc:
        return url
    return urlunsplit(parts._replace(netloc=f"{token}@{parts.netloc}"))


def _is_auth_failure(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _AUTH_MARKERS)


class GitOpsRepository:
    """Working copy of the config repository.

    Args:
        work_dir: Local working copy (cloned on first sync).
        repo_url: Clone URL.
        branch: Tracked branch.
        token: Token embedded into HTTPS clone URLs.
        push_mode: "direct" pushes to ``branch``; "branch" pushes a new
            rollback branch for review.
        author_name: Commit author name.
        author_email: Commit author email.
        timeout: Timeout in seconds for each git command.
        clock: Returns the current UTC time (injected in tests).
    """

    def __init__(
        self,
        work_dir: Path,
        repo_url: str,
        branch: str = "main",
        *,
        token: str | None = None,
        push_mode: str = "direct",
        author_name: str = TRIGGER,
        author_email: str = "budgetguard@localhost",
        timeout: float = 60.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.repo_url = repo_url
        self.branch = branch
        self.push_mode = push_mode
        self.author_name = author_name
        self.author_email = author_email
        self.timeout = timeout
        self._token = token
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = logger.bind(backend=BACKEND_NAME, branch=branch)

    @classmethod
    def from_config(cls, config: GitOpsConfig) -> GitOpsRepository:
        return cls(
            config.work_dir,
            config.repo_url,
            config.branch,
            token=config.token.get_secret_value() if config.token else None,
            push_mode=config.push_mode,
            author_name=config.author_name,
            author_email=config.author_email,
            timeout=config.timeout_seconds,
        )

    # ------------------------------------------------------------------
    # git plumbing
    # ------------------------------------------------------------------

    def _git(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [
            "git",
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            *args,
        ]
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            result = subprocess.run(
                command,
                cwd=str(cwd or self.work_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise BackendUnavailableError(
                BACKEND_NAME, f"git {args[0]} timed out after {self.timeout:.0f}s"
            ) from e
        except OSError as e:
            raise BackendUnavailableError(BACKEND_NAME, f"cannot run git: {e}") from e

        if check and result.returncode != 0:
            output = sanitize_error_message((result.stderr or result.stdout).strip())
            if _is_auth_failure(output):
                raise AuthenticationError(BACKEND_NAME, output)
            raise BackendUnavailableError(BACKEND_NAME, f"git {args[0]} failed: {output}")
        return result

    def sync(self) -> str:
        """Clone or update the working copy to the tip of the tracked branch.

        Returns:
            The HEAD commit after syncing.
        """
        with create_span("budgetguard.gitops.sync", attributes={"branch": self.branch}):
            remote = _with_token(self.repo_url, self._token)
            if not (self.work_dir / ".git").exists():
                self.work_dir.parent.mkdir(parents=True, exist_ok=True)
                self._log.info("gitops_clone", work_dir=str(self.work_dir))
                self._git(
                    "clone", "--branch", self.branch, remote, str(self.work_dir),
                    cwd=self.work_dir.parent,
                )
            else:
                self._git("remote", "set-url", "origin", remote)
                self._git("fetch", "origin", self.branch)
                self._git("checkout", "-B", self.branch, f"origin/{self.branch}")
                self._git("reset", "--hard", f"origin/{self.branch}")
            return self.head()

    def head(self) -> str:
        return self._git("rev-parse", "HEAD").stdout.strip()

    def commit_exists(self, sha: str) -> bool:
        """Verify a commit object exists in the working copy."""
        return self._git("cat-file", "-e", f"{sha}^{{commit}}", check=False).returncode == 0

    def resolve(self, ref: str) -> str:
        return self._git("rev-parse", "--verify", f"{ref}^{{commit}}").stdout.strip()

    def path_history(self, path: str, since: datetime | None = None) -> list[GitCommit]:
        """Commits touching ``path`` on the tracked branch, newest first."""
        args = ["log", "--format=%H%x09%cI%x09%s"]
        if since is not None:
            args.append(f"--since={since.astimezone(timezone.utc):%Y-%m-%d %H:%M:%S} +0000")
        args.extend(["HEAD", "--", path])
        output = self._git(*args).stdout

        commits = []
        for line in output.splitlines():
            if not line.strip():
                continue
            sha, committed_at, subject = (line.split("\t", 2) + [""])[:3]
            commits.append(
                GitCommit(
                    sha=sha,
                    committed_at=datetime.fromisoformat(committed_at),
                    subject=subject,
                )
            )
        return commits

    def path_matches(self, sha: str, path: str) -> bool:
        """Whether ``path`` at HEAD has the same contents as at ``sha``."""
        return self._git("diff", "--quiet", sha, "HEAD", "--", path, check=False).returncode == 0

    # ------------------------------------------------------------------
    # rollback
    # ------------------------------------------------------------------

    def select_revert_target(self, path: str, now: datetime | None = None) -> GitCommit:
        """Pick the commit to restore ``path`` from.

        Prefers the most recent commit touching the path within the last
        24 hours, then within 7 days, then the most recent one ever. Commits
        whose path contents equal the current ones are never candidates: they
        produced the state being rolled back, even when HEAD itself only
        touched another environment.

        Raises:
            NoRevertTargetError: If the path has no earlier commit.
        """
        now = now or self._clock()
        current = self.head()

        for lookback in (PRIMARY_LOOKBACK, FALLBACK_LOOKBACK, None):
            since = now - lookback if lookback is not None else None
            candidate = next(
                (
                    c
                    for c in self.path_history(path, since=since)
                    if c.sha != current and not self.path_matches(c.sha, path)
                ),
                None,
            )
            if candidate is not None:
                self._log.info(
                    "gitops_revert_target_selected",
                    path=path,
                    sha=candidate.sha,
                    lookback_hours=lookback.total_seconds() / 3600 if lookback else None,
                )
                return candidate
            self._log.warning(
                "gitops_no_candidate_in_lookback",
                path=path,
                lookback_hours=lookback.total_seconds() / 3600 if lookback else None,
            )

        raise NoRevertTargetError(path, "history has no commit with different contents")

    def _checkout_path(self, sha: str, path: str) -> None:
        self._git("rm", "-r", "-q", "--ignore-unmatch", "--", path)
        result = self._git("checkout", sha, "--", path, check=False)
        if result.returncode != 0:
            self._git("reset", "-q", "--hard", "HEAD")
            raise NoRevertTargetError(path, f"path does not exist at {sha[:12]}")

    def _has_staged_changes(self) -> bool:
        return self._git("diff", "--cached", "--quiet", check=False).returncode != 0

    def _push(self, ref: str) -> str:
        result = self._git("push", "origin", f"HEAD:refs/heads/{ref}", check=False)
        if result.returncode != 0:
            output = sanitize_error_message((result.stderr or result.stdout).strip())
            lowered = output.lower()
            if any(marker in lowered for marker in _REJECT_MARKERS):
                raise PushRejectedError(ref, output)
            if _is_auth_failure(output):
                raise AuthenticationError(BACKEND_NAME, output)
            raise BackendUnavailableError(BACKEND_NAME, f"git push failed: {output}")
        return ref

    def revert_path(
        self,
        target_sha: str,
        path: str,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> RevertResult:
        """Restore ``path`` from ``target_sha`` as a new commit and push it.

        Args:
            target_sha: Commit to take the path contents from.
            path: Environment path inside the repository.
            reason: Cause recorded in the commit message.
            now: Rollback time recorded in the commit message.

        Returns:
            RevertResult (no commit when the path already matched).

        Raises:
            NoRevertTargetError: If the commit or path does not exist.
            PushRejectedError: If the remote rejects the push.
        """
        now = now or self._clock()
        if not self.commit_exists(target_sha):
            raise NoRevertTargetError(path, f"commit {target_sha} does not exist")
        target_sha = self.resolve(target_sha)

        with create_span(
            "budgetguard.gitops.revert",
            attributes={"path": path, "target": target_sha},
        ):
            self._checkout_path(target_sha, path)

            if not self._has_staged_changes():
                self._log.info("gitops_already_at_target", path=path, target=target_sha)
                return RevertResult(target_sha=target_sha)

            message = (
                f"Rollback: {reason}\n\n"
                f"Target commit: {target_sha}\n"
                f"Rollback time: {now.strftime('%Y-%m-%dT%H:%M:%SZ')}\n"
                f"Triggered by: {TRIGGER}\n\n"
                "This is an automated rollback due to error budget threshold breach."
            )
            self._git("commit", "-q", "-m", message)
            commit_sha = self.head()
            ref = self.branch
            if self.push_mode == "branch":
                ref = now.strftime(ROLLBACK_BRANCH_FORMAT)
            pushed = self._push(ref)

        self._log.info(
            "gitops_rollback_pushed",
            path=path,
            target=target_sha,
            commit=commit_sha,
            pushed_ref=pushed,
        )
        return RevertResult(target_sha=target_sha, commit_sha=commit_sha, pushed_ref=pushed)

    # ------------------------------------------------------------------
    # promotion
    # ------------------------------------------------------------------

    def release_reference(self, path: str) -> str:
        """Image tag (``newTag``) of an environment's kustomization.

        Raises:
            BackendUnavailableError: If the kustomization is missing or has no
                image tag.
        """
        kustomization = self.work_dir / path / "kustomization.yaml"
        if not kustomization.exists():
            raise BackendUnavailableError(BACKEND_NAME, f"kustomization not found: {path}")
        try:
            data: dict[str, Any] = yaml.safe_load(kustomization.read_text()) or {}
        except yaml.YAMLError as e:
            raise BackendUnavailableError(
                BACKEND_NAME, f"invalid kustomization in {path}: {e}"
            ) from e
        for image in data.get("images") or []:
            tag = image.get("newTag") if isinstance(image, dict) else None
            if tag is not None:
                return str(tag)
        raise BackendUnavailableError(BACKEND_NAME, f"no image newTag in {path}")

    def promote_release(
        self,
        from_path: str,
        to_path: str,
        from_env: str,
        to_env: str,
        *,
        release_reference: str | None = None,
        now: datetime | None = None,
    ) -> PromotionCommit:
        """Set the target environment's image tag to the source one.

        Returns:
            PromotionCommit (no commit when the tag was already current).
        """
        now = now or self._clock()
        tag = release_reference or self.release_reference(from_path)
        kustomization = self.work_dir / to_path / "kustomization.yaml"
        if not kustomization.exists():
            raise BackendUnavailableError(
                BACKEND_NAME, f"target environment path not found: {to_path}"
            )

        original = kustomization.read_text()
        updated = _NEW_TAG_RE.sub(lambda m: f"{m.group('prefix')}{tag}", original)
        if updated == original:
            self._log.info("gitops_release_already_current", to_env=to_env, tag=tag)
            return PromotionCommit(release_reference=tag)

        kustomization.write_text(updated)
        self._git("add", "--", str(Path(to_path) / "kustomization.yaml"))
        message = (
            f"Promote: {from_env} -> {to_env} (image: {tag})\n\n"
            f"Promoted from: {from_env}\n"
            f"Promoted to: {to_env}\n"
            f"Image tag: {tag}\n"
            f"Promotion time: {now.strftime('%Y-%m-%dT%H:%M:%SZ')}\n"
            "Triggered by: Automated Promotion"
        )
        self._git("commit", "-q", "-m", message)
        commit_sha = self.head()
        self._push(self.branch)

        self._log.info("gitops_release_promoted", from_env=from_env, to_env=to_env, tag=tag)
        return PromotionCommit(
            release_reference=tag, commit_sha=commit_sha, pushed_ref=self.branch
        )


__all__ = [
    "GitCommit",
    "GitOpsRepository",
    "PromotionCommit",
    "RevertResult",
]
