"""Audit configuration - YAML file with ${ENV} substitution plus defaults."""
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .roles import parse_role
from .rules import RuleContext

DEFAULT_CONFIG_NAME = "audit.yaml"

DEFAULT_SUITE = ["security", "capabilities", "multistage", "environment", "orchestration", "api"]

# (healthy threshold, degraded threshold) per category
DEFAULT_THRESHOLDS = {
    "capabilities": (80.0, 60.0),
}
DEFAULT_THRESHOLD = (70.0, 60.0)

DEFAULT_BASE_IMAGES = ["postgres:16-alpine", "nginx:1-alpine", "node:22-alpine"]


class ConfigError(ValueError):
    pass


@dataclass
class AuditConfig:
    project_root: str = "."
    base_url: str = "http://localhost:3000"
    image_prefix: str = ""
    base_images: list = field(default_factory=lambda: list(DEFAULT_BASE_IMAGES))
    timeout: float = 5.0
    workers: int = 4
    roles: dict = field(default_factory=dict)
    thresholds: dict = field(default_factory=dict)
    suite_categories: list = field(default_factory=lambda: list(DEFAULT_SUITE))
    stop_on_failure: bool = False
    scanner_severity: str = "HIGH,CRITICAL"
    max_image_mb: float = 500.0
    response_ceilings_ms: dict = field(default_factory=lambda: {
        "status": 1000.0, "ready": 2000.0, "items": 2000.0,
    })

    def threshold_for(self, category: str) -> tuple:
        if category in self.thresholds:
            return self.thresholds[category]
        return DEFAULT_THRESHOLDS.get(category, DEFAULT_THRESHOLD)

    def rule_context(self) -> RuleContext:
        return RuleContext(
            roles=dict(self.roles),
            max_image_mb=self.max_image_mb,
            response_ceilings_ms=dict(self.response_ceilings_ms),
        )

    @property
    def project_name(self) -> str:
        return Path(self.project_root).resolve().name

    @property
    def compose_project(self) -> str:
        """Project name as docker compose normalizes it for image names."""
        return re.sub(r"[^a-z0-9_-]", "", self.project_name.lower())


def substitute_env(raw: str) -> str:
    for key, val in os.environ.items():
        raw = raw.replace(f"${{{key}}}", val)
    return raw


def load_config(config_path: str) -> dict:
    with open(config_path) as f:
        raw = f.read()
    try:
        return yaml.safe_load(substitute_env(raw)) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{config_path}: {exc}")


def _thresholds(raw: dict) -> dict:
    out = {}
    for category, value in (raw or {}).items():
        if isinstance(value, dict):
            healthy = float(value.get("healthy", DEFAULT_THRESHOLD[0]))
            degraded = float(value.get("degraded", DEFAULT_THRESHOLD[1]))
        else:
            healthy, degraded = float(value), DEFAULT_THRESHOLD[1]
        if degraded > healthy:
            raise ConfigError(f"thresholds.{category}: degraded ({degraded}) above healthy ({healthy})")
        out[category] = (healthy, degraded)
    return out


def from_dict(data: dict) -> AuditConfig:
    cfg = AuditConfig()
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    for key in ("project_root", "base_url", "image_prefix"):
        if data.get(key) is not None:
            setattr(cfg, key, str(data[key]))
    if data.get("base_images") is not None:
        cfg.base_images = [str(i) for i in data["base_images"]]
    if data.get("timeout") is not None:
        cfg.timeout = float(data["timeout"])
    if data.get("workers") is not None:
        cfg.workers = max(1, int(data["workers"]))
    if data.get("max_image_mb") is not None:
        cfg.max_image_mb = float(data["max_image_mb"])
    if data.get("response_ceilings_ms"):
        cfg.response_ceilings_ms.update(
            {k: float(v) for k, v in data["response_ceilings_ms"].items()}
        )

    try:
        cfg.roles = {name: parse_role(role) for name, role in (data.get("roles") or {}).items()}
    except ValueError as exc:
        raise ConfigError(f"roles: {exc}")
    cfg.thresholds = _thresholds(data.get("thresholds"))

    suite = data.get("suite") or {}
    if suite.get("categories"):
        cfg.suite_categories = [str(c) for c in suite["categories"]]
    cfg.stop_on_failure = bool(suite.get("stop_on_failure", False))

    scanner = data.get("scanner") or {}
    if scanner.get("severity"):
        cfg.scanner_severity = str(scanner["severity"])
    return cfg


def resolve_config(config_path: Optional[str] = None) -> AuditConfig:
    """Config from --config, else ./audit.yaml if present, else defaults.

    AUDIT_BASE_URL and AUDIT_PROJECT_ROOT override the file.
    """
    data = {}
    if config_path:
        data = load_config(config_path)
    elif Path(DEFAULT_CONFIG_NAME).is_file():
        data = load_config(DEFAULT_CONFIG_NAME)
    cfg = from_dict(data)
    if os.environ.get("AUDIT_BASE_URL"):
        cfg.base_url = os.environ["AUDIT_BASE_URL"]
    if os.environ.get("AUDIT_PROJECT_ROOT"):
        cfg.project_root = os.environ["AUDIT_PROJECT_ROOT"]
    return cfg
