"""Audit runner - resolve targets, evaluate rules and score one category."""
import concurrent.futures
import logging
from enum import Enum
from typing import Optional

from .categories import Adapters, Category
from .config import AuditConfig
from .errors import AuditError, NoTargetsResolved
from .evaluator import evaluate, fetch_facts
from .models import CategoryReport

logger = logging.getLogger(__name__)


class RunnerState(Enum):
    IDLE = "idle"
    RESOLVING_TARGETS = "resolving_targets"
    EVALUATING = "evaluating"
    SCORED = "scored"
    REPORTED = "reported"


class AuditRunner:
    """Runs one category from target resolution to a scored report.

    Fact bundles may be fetched on a thread pool; check results are always
    appended in target order, then rule order, so the report and score are
    reproducible regardless of fetch timing.
    """

    def __init__(self, category: Category, config: AuditConfig,
                 adapters: Optional[Adapters] = None, workers: Optional[int] = None):
        self.category = category
        self.config = config
        self.adapters = adapters or Adapters.from_config(config)
        self.workers = workers if workers is not None else config.workers
        self.state = RunnerState.IDLE
        self.targets = []

    def resolve_targets(self, explicit: Optional[list] = None) -> list:
        self.state = RunnerState.RESOLVING_TARGETS
        try:
            targets = self.category.resolve(self.config, self.adapters, explicit or None)
        except AuditError as exc:
            raise NoTargetsResolved(self.category.name, str(exc))
        if not targets:
            raise NoTargetsResolved(self.category.name)
        logger.info("%s: %d target(s)", self.category.name, len(targets))
        self.targets = list(targets)
        return self.targets

    def _fetch_all(self, fetch) -> list:
        if self.workers <= 1 or len(self.targets) <= 1:
            return [fetch_facts(t, fetch) for t in self.targets]
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(fetch_facts, t, fetch) for t in self.targets]
            return [f.result() for f in futures]

    def run(self, explicit: Optional[list] = None) -> CategoryReport:
        """Run the category. Raises NoTargetsResolved when nothing can be audited."""
        healthy, degraded = self.config.threshold_for(self.category.name)
        report = CategoryReport(
            category=self.category.name, threshold=healthy, warning_threshold=degraded,
        )
        self.resolve_targets(explicit)

        self.state = RunnerState.EVALUATING
        ctx = self.config.rule_context()
        fetched = self._fetch_all(self.category.fetcher(self.adapters))
        for target, (facts, error) in zip(self.targets, fetched):
            for result in evaluate(self.category.rules, target, facts, error, ctx):
                report.add_result(result)

        self.state = RunnerState.SCORED
        report.recommendations = self.category.recommendations_for(report.tier)
        self.state = RunnerState.REPORTED
        return report


def run_category(category: Category, config: AuditConfig, explicit: Optional[list] = None,
                 adapters: Optional[Adapters] = None) -> CategoryReport:
    """Run a category, folding a resolution failure into a no-targets report."""
    healthy, degraded = config.threshold_for(category.name)
    runner = AuditRunner(category, config, adapters)
    try:
        return runner.run(explicit)
    except NoTargetsResolved as exc:
        logger.error("%s", exc)
        return CategoryReport(
            category=category.name, threshold=healthy, warning_threshold=degraded,
            error=str(exc),
        )
