import pytest

from container_audit.errors import ToolUnavailable
from container_audit.vuln_scanner import TrivyScanner, summarize_trivy_report

TRIVY_REPORT = {
    "Results": [
        {"Target": "myapp-api:latest (alpine 3.20)", "Vulnerabilities": [
            {"VulnerabilityID": "CVE-2024-0001", "Severity": "CRITICAL"},
            {"VulnerabilityID": "CVE-2024-0002", "Severity": "HIGH"},
            {"VulnerabilityID": "CVE-2024-0003", "Severity": "MEDIUM"},
        ]},
        {"Target": "app/package-lock.json", "Vulnerabilities": None},
        {"Target": "node_modules", "Vulnerabilities": [
            {"VulnerabilityID": "GHSA-xxxx", "Severity": "HIGH"},
        ]},
    ]
}


def test_summarize_trivy_report():
    facts = summarize_trivy_report("myapp-api:latest", TRIVY_REPORT)
    assert facts.critical == 1
    assert facts.high == 2
    assert facts.sample_ids == ("CVE-2024-0001", "CVE-2024-0002", "GHSA-xxxx")


def test_summarize_empty_report():
    facts = summarize_trivy_report("x", {})
    assert (facts.critical, facts.high, facts.sample_ids) == (0, 0, ())


def test_missing_scanner():
    scanner = TrivyScanner(trivy_bin="trivy-not-installed-for-tests")
    assert not scanner.available()
    with pytest.raises(ToolUnavailable):
        scanner.scan("myapp-api:latest")


def test_vulnerability_category_without_scanner(config, make_adapters, image_facts):
    from container_audit.categories import CATEGORIES
    from container_audit.runner import run_category

    config.image_prefix = "myapp-"
    adapters = make_adapters(images={"myapp-api:latest": image_facts("myapp-api:latest")})
    report = run_category(CATEGORIES["vulnerabilities"], config, adapters=adapters)
    assert report.total == 1
    assert report.results[0].reason.startswith("Tool unavailable")
    assert report.exit_code == 2
