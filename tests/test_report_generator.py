import io
import json

from container_audit.models import (
    CategoryOutcome, CategoryReport, CheckResult, Outcome, SuiteReport, Target, TargetKind,
)
from container_audit.report_generator import ConsoleRenderer, ReportGenerator, should_color


def _report():
    report = CategoryReport("capabilities", threshold=80.0)
    target = Target(TargetKind.CONTAINER, "myapp-api-1", "myapp-api-1")
    report.add_result(CheckResult("cap-drop", "Drops ALL capabilities", target, Outcome.PASS, credit=1.0))
    report.add_result(CheckResult("cap-add", "Only justified capabilities added", target, Outcome.FAIL,
                                  "Capabilities not justified for api-backend: CAP_SYS_ADMIN", credit=0.5,
                                  details={"unjustified": ["CAP_SYS_ADMIN"]}))
    return report


def test_console_category_shows_partial_credit():
    out = io.StringIO()
    ConsoleRenderer(color=False, verbose=True, stream=out).category(_report(), "Linux Capabilities")
    text = out.getvalue()
    assert "=== Linux Capabilities ===" in text
    assert "(0.5 pt)" in text
    assert "unjustified: ['CAP_SYS_ADMIN']" in text
    assert "Score: 75.0% (1.5/2) - DEGRADED" in text
    assert "\033[" not in text


def test_console_suite_summary():
    suite = SuiteReport()
    suite.add_outcome(CategoryOutcome("security", 0, "PASSED", 100.0))
    suite.add_outcome(CategoryOutcome("bogus", 127, "FILE NOT FOUND"))
    out = io.StringIO()
    ConsoleRenderer(stream=out).suite(suite)
    text = out.getvalue()
    assert "FILE NOT FOUND" in text
    assert "Global score: 50.0% (1/2 categories passed)" in text


def test_should_color(monkeypatch):
    assert should_color("always")
    assert not should_color("never")
    monkeypatch.setenv("NO_COLOR", "1")
    assert not should_color("auto")
    monkeypatch.delenv("NO_COLOR")
    assert not should_color("auto", io.StringIO())


def test_json_and_markdown(tmp_path):
    suite = SuiteReport()
    report = _report()
    suite.add_outcome(CategoryOutcome("capabilities", report.exit_code, "DEGRADED", report.score, report))
    gen = ReportGenerator([report], suite, label="myapp")
    gen.generate_json(str(tmp_path / "r.json"))
    gen.generate_markdown(str(tmp_path / "r.md"))

    data = json.loads((tmp_path / "r.json").read_text())
    assert data["report_metadata"]["project"] == "myapp"
    assert data["categories"][0]["points"] == 1.5
    assert data["suite"]["score"] == 0.0

    md = (tmp_path / "r.md").read_text(encoding="utf-8")
    assert "| capabilities | DEGRADED | 75.0% |" in md
    assert "`myapp-api-1`" in md
