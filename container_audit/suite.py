"""Suite aggregator - run every category and derive one global verdict."""
import concurrent.futures
import json
import logging
import subprocess
import sys
from typing import Callable, Optional

from .categories import Adapters, get_category
from .config import AuditConfig
from .models import CategoryOutcome, CategoryReport, SuiteReport, Tier
from .runner import run_category

logger = logging.getLogger(__name__)

# Exit status recorded for a category that does not exist
NOT_FOUND_EXIT = 127

STATUS_BY_TIER = {
    Tier.HEALTHY: "PASSED",
    Tier.DEGRADED: "DEGRADED",
    Tier.CRITICAL: "CRITICAL",
    Tier.NO_TARGETS: "NO TARGETS",
}

STATUS_BY_EXIT = {0: "PASSED", 1: "DEGRADED", 2: "CRITICAL", 3: "NO TARGETS", NOT_FOUND_EXIT: "FILE NOT FOUND"}


def outcome_from_report(report: CategoryReport) -> CategoryOutcome:
    return CategoryOutcome(
        category=report.category,
        exit_code=report.exit_code,
        status=STATUS_BY_TIER[report.tier],
        score=report.score if report.total else None,
        report=report,
    )


class SuiteAggregator:
    """Runs the configured categories in order and collects their exit status.

    Categories run in-process by default. With isolated=True each one is a
    separate `python -m container_audit <category> --json` process and only
    its exit status and JSON summary are used.
    """

    def __init__(self, config: AuditConfig, categories: Optional[list] = None,
                 stop_on_failure: Optional[bool] = None, isolated: bool = False,
                 parallel: bool = False, config_path: Optional[str] = None,
                 adapters: Optional[Adapters] = None,
                 on_outcome: Optional[Callable] = None):
        self.config = config
        self.categories = list(categories or config.suite_categories)
        self.stop_on_failure = config.stop_on_failure if stop_on_failure is None else stop_on_failure
        self.isolated = isolated
        self.parallel = parallel and not self.stop_on_failure
        self.config_path = config_path
        self.adapters = adapters
        self.on_outcome = on_outcome

    def run_one(self, name: str) -> CategoryOutcome:
        category = get_category(name)
        if category is None:
            logger.error("category '%s' not found", name)
            return CategoryOutcome(name, NOT_FOUND_EXIT, "FILE NOT FOUND")
        if self.isolated:
            return self._run_isolated(name)
        report = run_category(category, self.config, adapters=self.adapters)
        return outcome_from_report(report)

    def _run_isolated(self, name: str) -> CategoryOutcome:
        cmd = [sys.executable, "-m", "container_audit", name, "--json"]
        if self.config_path:
            cmd += ["--config", self.config_path]
        logger.debug("exec: %s", " ".join(cmd))
        proc = subprocess.run(cmd, capture_output=True, text=True)
        score = None
        try:
            data = json.loads(proc.stdout)
            score = data.get("score")
        except (json.JSONDecodeError, AttributeError):
            logger.warning("%s produced no JSON summary: %s", name, proc.stderr.strip()[:300])
        status = STATUS_BY_EXIT.get(proc.returncode, f"EXIT {proc.returncode}")
        return CategoryOutcome(name, proc.returncode, status, score)

    def run(self) -> SuiteReport:
        suite = SuiteReport()
        if self.parallel:
            with concurrent.futures.ThreadPoolExecutor(max_workers=len(self.categories) or 1) as executor:
                outcomes = list(executor.map(self.run_one, self.categories))
            for outcome in outcomes:
                self._record(suite, outcome)
            return suite

        for index, name in enumerate(self.categories):
            outcome = self.run_one(name)
            self._record(suite, outcome)
            if self.stop_on_failure and not outcome.passed:
                remaining = self.categories[index + 1:]
                if remaining:
                    logger.warning("stopping after %s failed; skipped: %s", name, ", ".join(remaining))
                    suite.stopped_early = True
                break
        return suite

    def _record(self, suite: SuiteReport, outcome: CategoryOutcome):
        suite.add_outcome(outcome)
        if self.on_outcome:
            self.on_outcome(outcome)
