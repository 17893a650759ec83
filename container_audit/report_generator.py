"""Report generator - console, JSON and Markdown output for audit reports."""
import json
import os
import sys
import datetime

from .models import CategoryReport, Outcome, SuiteReport, Tier


class Palette:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[96m"
    GREY = "\033[90m"


TIER_STYLE = {
    Tier.HEALTHY: (Palette.GREEN, Palette.BOLD),
    Tier.DEGRADED: (Palette.YELLOW, Palette.BOLD),
    Tier.CRITICAL: (Palette.RED, Palette.BOLD),
    Tier.NO_TARGETS: (Palette.RED, Palette.BOLD),
}

OUTCOME_ICON = {
    Outcome.PASS: "✅",
    Outcome.FAIL: "❌",
    Outcome.SKIP: "⏭️ ",
}


def should_color(mode: str = "auto", stream=None) -> bool:
    if mode == "always":
        return True
    if mode == "never":
        return False
    if os.environ.get("NO_COLOR"):
        return False
    stream = stream or sys.stdout
    return hasattr(stream, "isatty") and stream.isatty()


class ConsoleRenderer:
    """Human-readable rendering; every line goes through `emit`."""

    def __init__(self, color: bool = False, verbose: bool = False, stream=None):
        self.color = color
        self.verbose = verbose
        self.stream = stream or sys.stdout

    def _c(self, text: str, *styles) -> str:
        if not self.color or not styles:
            return text
        return "".join(styles) + text + Palette.RESET

    def emit(self, line: str = ""):
        print(line, file=self.stream)

    def category(self, report: CategoryReport, title: str = ""):
        self.emit(self._c(f"=== {title or report.category} ===", Palette.CYAN, Palette.BOLD))
        if report.error:
            self.emit(self._c(f"❌ {report.error}", Palette.RED, Palette.BOLD))
            self.emit()
            return

        current = None
        for r in report.results:
            if r.target != current:
                current = r.target
                self.emit(self._c(f"[{r.target.kind.value}] {r.target.name}", Palette.BOLD))
            credit = f" ({r.credit:g} pt)" if r.outcome is Outcome.FAIL and r.credit else ""
            line = f"  {OUTCOME_ICON[r.outcome]} {r.rule_name}{credit}"
            if r.reason:
                line += self._c(f" - {r.reason}", Palette.GREY)
            self.emit(line)
            if self.verbose and r.details:
                for key, value in r.details.items():
                    self.emit(self._c(f"      {key}: {value}", Palette.GREY))

        self.emit()
        tier_text = f"Score: {report.score:.1f}% ({report.points:g}/{report.total}) - {report.tier.value.upper()}"
        self.emit(self._c(tier_text, *TIER_STYLE[report.tier]))
        self.emit(f"Passed: {report.passed}  Failed: {report.failed}  Skipped: {report.skipped}")
        if report.recommendations:
            self.emit()
            self.emit(self._c("Recommendations:", Palette.CYAN))
            for rec in report.recommendations:
                self.emit(f"  - {rec}")
        self.emit()

    def suite(self, suite: SuiteReport):
        self.emit(self._c("=== Test Suite Summary ===", Palette.CYAN, Palette.BOLD))
        width = max([len(o.category) for o in suite.outcomes] + [8])
        self.emit(f"{'Category'.ljust(width)}  {'Status':<16} Score")
        self.emit(f"{'-' * width}  {'-' * 16} -----")
        for o in suite.outcomes:
            icon = "✅" if o.passed else "❌"
            style = (Palette.GREEN,) if o.passed else (Palette.RED, Palette.BOLD)
            score = f"{o.score:.1f}%" if o.score is not None else "-"
            status = self._c(f"{icon} {o.status}".ljust(16), *style)
            self.emit(f"{o.category.ljust(width)}  {status} {score}")
        self.emit()
        if suite.stopped_early:
            self.emit(self._c("Stopped early after a failing category.", Palette.YELLOW))
        verdict_style = (Palette.GREEN, Palette.BOLD) if suite.passed else (Palette.RED, Palette.BOLD)
        self.emit(self._c(
            f"Global score: {suite.score:.1f}% "
            f"({suite.passed_categories}/{suite.total_categories} categories passed)",
            *verdict_style,
        ))


class ReportGenerator:
    def __init__(self, reports: list, suite: SuiteReport = None, label: str = ""):
        self.reports = reports
        self.suite = suite
        self.label = label

    def as_dict(self) -> dict:
        data = {
            "report_metadata": {
                "project": self.label,
                "scan_date": datetime.datetime.now().isoformat(),
                "categories_run": [r.category for r in self.reports],
            },
            "categories": [r.to_dict() for r in self.reports],
        }
        if self.suite is not None:
            data["suite"] = self.suite.to_dict()
        return data

    def generate_json(self, output_path: str):
        with open(output_path, "w") as f:
            json.dump(self.as_dict(), f, indent=2)

    def generate_markdown(self, output_path: str):
        now = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        icon = {Outcome.PASS: "✅ PASS", Outcome.FAIL: "❌ FAIL", Outcome.SKIP: "⏭️ SKIP"}

        lines = [
            "# Container Compliance Audit Report",
            "",
            "| Field | Value |",
            "|-------|-------|",
            f"| **Project** | `{self.label}` |",
            f"| **Scan Date** | {now} |",
            f"| **Categories Run** | {', '.join(r.category for r in self.reports)} |",
            "",
        ]
        if self.suite is not None:
            lines.extend([
                "## Summary",
                "",
                "| Category | Status | Score |",
                "|----------|--------|-------|",
            ])
            for o in self.suite.outcomes:
                score = f"{o.score:.1f}%" if o.score is not None else "-"
                lines.append(f"| {o.category} | {o.status} | {score} |")
            lines.extend(["", f"**Global score: {self.suite.score:.1f}%**", "", "---", ""])

        for report in self.reports:
            lines.extend([f"## {report.category}", ""])
            if report.error:
                lines.extend([f"**{report.error}**", ""])
                continue
            lines.extend([
                f"Score: **{report.score:.1f}%** ({report.tier.value})",
                "",
                "| Target | Check | Result | Reason |",
                "|--------|-------|--------|--------|",
            ])
            for r in report.results:
                reason = r.reason.replace("|", "\\|")
                lines.append(f"| `{r.target.name}` | {r.rule_name} | {icon[r.outcome]} | {reason} |")
            if report.recommendations:
                lines.extend(["", "**Recommendations**", ""])
                lines.extend(f"- {rec}" for rec in report.recommendations)
            lines.append("")

        with open(output_path, "w") as f:
            f.write("\n".join(lines))
