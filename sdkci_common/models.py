"""
Data models for SDK builds and their per-language outcomes.

These models represent the domain objects used throughout the application,
independent of the build API's wire format. Each model can be created from
the JSON returned by the API (``from_dict``) and converted back into plain
dictionaries for CI outputs (``to_dict``).
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

TargetStatus = Literal["not_started", "in_progress", "completed"]
DiagnosticLevel = Literal["fatal", "error", "warning", "note"]

DIAGNOSTIC_LEVELS: tuple[str, ...] = ("fatal", "error", "warning", "note")
CHECK_TYPES: tuple[str, ...] = ("build", "lint", "test")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO timestamp as returned by the API (``Z`` suffix allowed)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Naive timestamps from the API are UTC.
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_timestamp(value: datetime | None) -> str | None:
    """Format a timestamp for JSON output."""
    return value.isoformat() if value else None


@dataclass
class CheckStep:
    """
    A single post-generation CI check (build, lint or test) for one language.

    Checks progress through: not_started -> queued -> in_progress -> completed
    """

    status: str
    conclusion: str | None = None  # Only set once status is "completed"
    url: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_failing(self) -> bool:
        """True if the check completed with a failing conclusion."""
        return self.is_completed and self.conclusion in ("failure", "timed_out")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status}
        if self.is_completed:
            result["completed"] = {"conclusion": self.conclusion, "url": self.url}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckStep":
        completed = data.get("completed") or {}
        return cls(
            status=data["status"],
            conclusion=completed.get("conclusion", data.get("conclusion")),
            url=completed.get("url", data.get("url")),
        )


@dataclass
class CommitRef:
    """A commit pushed to one of the generated SDK repositories."""

    sha: str
    owner: str | None = None
    name: str | None = None
    branch: str | None = None

    @property
    def repo(self) -> str | None:
        if self.owner and self.name:
            return f"{self.owner}/{self.name}"
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "sha": self.sha,
            "repo": {"owner": self.owner, "name": self.name, "branch": self.branch},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommitRef":
        repo = data.get("repo") or {}
        return cls(
            sha=data["sha"],
            owner=repo.get("owner"),
            name=repo.get("name"),
            branch=repo.get("branch", data.get("branch")),
        )


@dataclass
class CommitResult:
    """
    The code-generation step of a build target.

    Once completed, ``conclusion`` is one of: success, warning, error, fatal,
    note, noop, cancelled, timed_out, merge_conflict, upstream_merge_conflict.
    Unknown conclusions are kept verbatim so the classifier can flag them.
    """

    status: str
    conclusion: str | None = None
    commit: CommitRef | None = None
    merge_conflict_pr: dict[str, Any] | None = None
    completed_at: datetime | None = None
    url: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status}
        if self.is_completed:
            result["completed"] = {
                "conclusion": self.conclusion,
                "commit": self.commit.to_dict() if self.commit else None,
                "merge_conflict_pr": self.merge_conflict_pr,
                "url": self.url,
            }
            result["completed_at"] = format_timestamp(self.completed_at)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommitResult":
        completed = data.get("completed") or {}
        commit = completed.get("commit")
        return cls(
            status=data["status"],
            conclusion=completed.get("conclusion", data.get("conclusion")),
            commit=CommitRef.from_dict(commit) if commit else None,
            merge_conflict_pr=completed.get("merge_conflict_pr"),
            completed_at=parse_timestamp(data.get("completed_at")),
            url=completed.get("url"),
        )


@dataclass(frozen=True)
class Diagnostic:
    """A diagnostic reported by the generator about the spec or config."""

    level: str  # "fatal", "error", "warning" or "note"
    code: str
    message: str
    config_ref: str | None = None
    oas_ref: str | None = None

    @property
    def identity(self) -> tuple[str, str, str | None, str | None]:
        """Key used to decide whether two diagnostics are the same."""
        return (self.code, self.message, self.config_ref, self.oas_ref)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "message": self.message,
            "config_ref": self.config_ref,
            "oas_ref": self.oas_ref,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Diagnostic":
        return cls(
            level=data["level"],
            code=data["code"],
            message=data.get("message", ""),
            config_ref=data.get("config_ref"),
            oas_ref=data.get("oas_ref"),
        )


@dataclass
class BuildTarget:
    """
    Build state for a single language.

    Used both for the raw server view of a target and for the locally
    reconciled outcome. In an outcome, ``commit`` stays None until the
    commit step completes and is never reassigned afterwards, and
    ``diagnostics`` is filled exactly once at that moment.
    """

    status: str
    commit: CommitResult | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)
    build: CheckStep | None = None
    lint: CheckStep | None = None
    test: CheckStep | None = None
    install_url: str | None = None

    def check(self, check_type: str) -> CheckStep | None:
        """Return the build, lint or test check by name."""
        return getattr(self, check_type)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status,
            "commit": self.commit.to_dict() if self.commit else None,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
        for check_type in CHECK_TYPES:
            check = self.check(check_type)
            if check is not None:
                result[check_type] = check.to_dict()
        if self.install_url is not None:
            result["install_url"] = self.install_url
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildTarget":
        checks = {
            check_type: CheckStep.from_dict(data[check_type])
            if data.get(check_type)
            else None
            for check_type in CHECK_TYPES
        }
        return cls(
            status=data["status"],
            commit=CommitResult.from_dict(data["commit"]) if data.get("commit") else None,
            diagnostics=[Diagnostic.from_dict(d) for d in data.get("diagnostics", [])],
            install_url=data.get("install_url"),
            **checks,
        )


# Per-language outcomes of a build, keyed by language name.
Outcomes = dict[str, BuildTarget]


def outcomes_to_dict(outcomes: Outcomes | None) -> dict[str, Any] | None:
    """Convert outcomes to a JSON-serializable dictionary."""
    if outcomes is None:
        return None
    return {language: target.to_dict() for language, target in outcomes.items()}


@dataclass
class Build:
    """
    A server-side build job covering one or more languages.

    ``documented_spec`` is a file reference, either
    ``{"type": "content", "content": ...}`` or ``{"type": "url", "url": ...}``.
    """

    id: str
    targets: dict[str, BuildTarget] = field(default_factory=dict)
    project: str | None = None
    documented_spec: dict[str, Any] | None = None
    config_commit: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Build":
        return cls(
            id=data.get("id") or "",
            targets={
                language: BuildTarget.from_dict(target)
                for language, target in (data.get("targets") or {}).items()
                if target is not None
            },
            project=data.get("project"),
            documented_spec=data.get("documented_spec"),
            config_commit=data.get("config_commit"),
            created_at=parse_timestamp(data.get("created_at")),
        )


@dataclass
class BuildCreation:
    """
    Result of asking the API to create a build.

    ``kind`` is "created" (``build`` is set) or "no_changes" when the API
    reported that there was nothing to commit (``message`` is set).
    """

    kind: Literal["created", "no_changes"]
    build: Build | None = None
    message: str | None = None

    @classmethod
    def created(cls, build: Build) -> "BuildCreation":
        return cls(kind="created", build=build)

    @classmethod
    def no_changes(cls, message: str) -> "BuildCreation":
        return cls(kind="no_changes", message=message)


@dataclass
class BuildComparison:
    """Result of creating a base/head build pair, tagged like BuildCreation."""

    kind: Literal["created", "no_changes"]
    base: Build | None = None
    head: Build | None = None
    message: str | None = None

    @classmethod
    def created(cls, base: Build, head: Build) -> "BuildComparison":
        return cls(kind="created", base=base, head=head)

    @classmethod
    def no_changes(cls, message: str) -> "BuildComparison":
        return cls(kind="no_changes", message=message)


@dataclass
class RunResult:
    """One update from the build orchestrator."""

    outcomes: Outcomes
    base_outcomes: Outcomes | None = None
    documented_spec: str | None = None
    no_changes: bool = False
    build_ids: list[str] = field(default_factory=list)
