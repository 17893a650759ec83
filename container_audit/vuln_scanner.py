"""CVE scanning via Trivy.

Trivy is an external tool: this module only runs it and summarizes its JSON
into per-image CRITICAL/HIGH counts.
"""
import json
import logging
import shutil
import subprocess

from .errors import InspectionFailed, ParseError, ToolUnavailable
from .models import VulnFacts

logger = logging.getLogger(__name__)


def summarize_trivy_report(image: str, report: dict, max_samples: int = 5) -> VulnFacts:
    critical_count = 0
    high_count = 0
    sample_cves = []

    for res in report.get("Results", []) or []:
        for vuln in res.get("Vulnerabilities", []) or []:
            sev = vuln.get("Severity", "")
            vid = vuln.get("VulnerabilityID", "")
            if sev == "CRITICAL":
                critical_count += 1
            elif sev == "HIGH":
                high_count += 1
            else:
                continue
            if len(sample_cves) < max_samples:
                sample_cves.append(vid)

    return VulnFacts(image=image, critical=critical_count, high=high_count,
                     sample_ids=tuple(sample_cves))


class TrivyScanner:
    def __init__(self, trivy_bin: str = "trivy", severity: str = "HIGH,CRITICAL",
                 timeout: int = 300):
        self.trivy_bin = trivy_bin
        self.severity = severity
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.trivy_bin) is not None

    def scan(self, image: str) -> VulnFacts:
        if not self.available():
            raise ToolUnavailable(self.trivy_bin, "install it from https://aquasecurity.github.io/trivy/")

        cmd = [self.trivy_bin, "image", "--format", "json",
               "--severity", self.severity, "--quiet", image]
        logger.debug("exec: %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise InspectionFailed(f"trivy timed out after {self.timeout}s on {image}")
        except FileNotFoundError:
            raise ToolUnavailable(self.trivy_bin)

        scan_out = proc.stdout or ""
        if proc.returncode != 0 or not scan_out.strip():
            raise InspectionFailed((proc.stderr or "").strip()[:300] or f"trivy returned no output for {image}")

        try:
            report = json.loads(scan_out)
        except json.JSONDecodeError as exc:
            raise ParseError(f"trivy JSON for {image}: {exc}")
        return summarize_trivy_report(image, report)
