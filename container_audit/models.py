"""Data models for audit targets, facts, check results and reports."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import datetime
import json


class TargetKind(Enum):
    CONTAINER = "container"
    IMAGE = "image"
    DOCKERFILE = "dockerfile"
    COMPOSE = "compose"
    ENV_FILE = "env_file"
    ENDPOINT = "endpoint"


class Outcome(Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


class Tier(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    NO_TARGETS = "no-targets"


# Exit status per tier for a single category run
TIER_EXIT_CODES = {
    Tier.HEALTHY: 0,
    Tier.DEGRADED: 1,
    Tier.CRITICAL: 2,
    Tier.NO_TARGETS: 3,
}


@dataclass(frozen=True)
class Target:
    kind: TargetKind
    name: str
    location: str
    label: str = ""

    def to_dict(self):
        return {"kind": self.kind.value, "name": self.name, "location": self.location, "label": self.label}


# ── Fact bundles ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ContainerFacts:
    name: str
    pid1_user: Optional[str]
    entry_user: Optional[str]
    uid: Optional[int]
    configured_user: str = ""
    cap_add: tuple = ()
    cap_drop: tuple = ()
    security_opt: tuple = ()
    privileged: bool = False
    userns_mode: str = ""
    memory_limit: int = 0
    cpu_cores: float = 0.0
    readonly_rootfs: bool = False
    env: tuple = ()


@dataclass(frozen=True)
class ImageFacts:
    tag: str
    base_image: str
    layer_count: int
    size_bytes: int

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


@dataclass(frozen=True)
class DockerfileFacts:
    path: str
    service: str
    from_images: tuple
    users: tuple = ()
    env_keys: tuple = ()
    arg_keys: tuple = ()
    secret_hits: tuple = ()

    @property
    def final_base(self) -> str:
        return self.from_images[-1] if self.from_images else ""


@dataclass(frozen=True)
class ComposeFacts:
    path: str
    services: tuple
    has_networks: bool
    has_volumes: bool
    depends_on_count: int
    healthcheck_count: int
    restart_policies: dict = field(default_factory=dict)


@dataclass(frozen=True)
class EnvFileFacts:
    path: str
    entries: tuple  # (key, value) pairs in file order


@dataclass(frozen=True)
class HttpFacts:
    url: str
    status: int
    content_type: str
    body: str
    elapsed_ms: float

    def json(self):
        return json.loads(self.body)


@dataclass(frozen=True)
class VulnFacts:
    image: str
    critical: int
    high: int
    sample_ids: tuple = ()


# ── Results and reports ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckResult:
    rule_id: str
    rule_name: str
    target: Target
    outcome: Outcome
    reason: str = ""
    credit: float = 0.0
    details: dict = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASS

    def to_dict(self):
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "target": self.target.name,
            "target_kind": self.target.kind.value,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "credit": self.credit,
            "details": self.details,
        }


@dataclass
class CategoryReport:
    category: str
    results: list = field(default_factory=list)
    threshold: float = 70.0
    warning_threshold: float = 60.0
    error: Optional[str] = None
    recommendations: list = field(default_factory=list)
    scan_time: str = field(
        default_factory=lambda: datetime.datetime.now().isoformat()
    )

    def add_result(self, result: CheckResult):
        self.results.append(result)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.outcome is Outcome.PASS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome is Outcome.FAIL)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome is Outcome.SKIP)

    @property
    def total(self) -> int:
        return self.passed + self.failed

    @property
    def points(self) -> float:
        return sum(r.credit for r in self.results if r.outcome is not Outcome.SKIP)

    @property
    def score(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.points / self.total * 100, 1)

    @property
    def tier(self) -> Tier:
        if self.error is not None or self.total == 0:
            return Tier.NO_TARGETS
        if self.score >= self.threshold:
            return Tier.HEALTHY
        if self.score >= self.warning_threshold:
            return Tier.DEGRADED
        return Tier.CRITICAL

    @property
    def exit_code(self) -> int:
        return TIER_EXIT_CODES[self.tier]

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self):
        return {
            "category": self.category,
            "scan_time": self.scan_time,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "points": self.points,
            "score": self.score,
            "threshold": self.threshold,
            "tier": self.tier.value,
            "exit_code": self.exit_code,
            "error": self.error,
            "results": [r.to_dict() for r in self.results],
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class CategoryOutcome:
    """What the suite learned from running one category."""
    category: str
    exit_code: int
    status: str
    score: Optional[float] = None
    report: Optional[CategoryReport] = None

    @property
    def passed(self) -> bool:
        return self.exit_code == 0

    def to_dict(self):
        return {
            "category": self.category,
            "exit_code": self.exit_code,
            "status": self.status,
            "passed": self.passed,
            "score": self.score,
            "report": self.report.to_dict() if self.report else None,
        }


@dataclass
class SuiteReport:
    outcomes: list = field(default_factory=list)
    stopped_early: bool = False
    scan_time: str = field(
        default_factory=lambda: datetime.datetime.now().isoformat()
    )

    def add_outcome(self, outcome: CategoryOutcome):
        self.outcomes.append(outcome)

    @property
    def total_categories(self) -> int:
        return len(self.outcomes)

    @property
    def passed_categories(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def passed(self) -> bool:
        return self.total_categories > 0 and self.passed_categories == self.total_categories

    @property
    def score(self) -> float:
        if self.passed:
            return 100.0
        if self.total_categories == 0:
            return 0.0
        return round(self.passed_categories / self.total_categories * 100, 1)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self):
        return {
            "scan_time": self.scan_time,
            "passed": self.passed,
            "score": self.score,
            "passed_categories": self.passed_categories,
            "total_categories": self.total_categories,
            "stopped_early": self.stopped_early,
            "categories": [o.to_dict() for o in self.outcomes],
        }
