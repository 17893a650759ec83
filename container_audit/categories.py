"""Audit categories - which targets each one resolves and which rules it runs."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from . import rules as R
from .config import AuditConfig
from .errors import AuditError
from .http_probe import HttpProbe
from .inspector import DockerInspector
from .models import Target, TargetKind, Tier
from .scanners import (
    find_compose_files, find_dockerfiles, find_env_files, is_dockerfile, read_text,
    scan_compose, scan_dockerfile, scan_env_file,
)
from .vuln_scanner import TrivyScanner

logger = logging.getLogger(__name__)


@dataclass
class Adapters:
    """The inspection adapters one run uses."""
    inspector: DockerInspector
    probe: HttpProbe
    trivy: TrivyScanner

    @classmethod
    def from_config(cls, cfg: AuditConfig) -> "Adapters":
        return cls(
            inspector=DockerInspector(),
            probe=HttpProbe(timeout=cfg.timeout),
            trivy=TrivyScanner(severity=cfg.scanner_severity),
        )


@dataclass
class Category:
    name: str
    title: str
    rules: list
    resolve: Callable  # (cfg, adapters, explicit) -> list[Target]
    image_fetch: str = "inspect"  # or "vulns"
    recommendations: dict = field(default_factory=dict)

    def fetcher(self, adapters: Adapters) -> Callable:
        def fetch(target: Target):
            kind = target.kind
            if kind is TargetKind.CONTAINER:
                return adapters.inspector.inspect_container(target.location)
            if kind is TargetKind.IMAGE:
                if self.image_fetch == "vulns":
                    return adapters.trivy.scan(target.location)
                return adapters.inspector.inspect_image(target.location)
            if kind is TargetKind.DOCKERFILE:
                return scan_dockerfile(target.name, read_text(target.location, "Dockerfile"))
            if kind is TargetKind.COMPOSE:
                return scan_compose(target.name, read_text(target.location, "Compose file"))
            if kind is TargetKind.ENV_FILE:
                return scan_env_file(target.name, read_text(target.location, "Env file"))
            if kind is TargetKind.ENDPOINT:
                return adapters.probe.get(target.location)
            raise AuditError(f"no fetcher for {kind.value}")
        return fetch

    def recommendations_for(self, tier: Tier) -> list:
        return list(self.recommendations.get(tier, []))


# ── Target resolution ───────────────────────────────────────────────────────


def _rel(path: str, root: str) -> str:
    try:
        return os.path.relpath(path, root)
    except ValueError:
        return path


def _file_target(kind: TargetKind, path: str, root: str) -> Target:
    full = path if os.path.isabs(path) else os.path.join(root, path)
    return Target(kind, _rel(full, root), full)


def container_targets(cfg: AuditConfig, adapters: Adapters, explicit: Optional[list] = None) -> list:
    names = explicit if explicit else adapters.inspector.list_containers()
    return [Target(TargetKind.CONTAINER, n, n) for n in names]


def dockerfile_targets(cfg: AuditConfig, explicit: Optional[list] = None) -> list:
    paths = explicit if explicit else find_dockerfiles(cfg.project_root)
    return [_file_target(TargetKind.DOCKERFILE, p, cfg.project_root) for p in paths]


def project_images(cfg: AuditConfig, adapters: Adapters) -> list:
    """Local images following the compose naming convention, then known bases."""
    prefix = cfg.image_prefix or f"{cfg.compose_project}-"
    local = adapters.inspector.list_images()
    project = [ref for ref in local if ref.rsplit("/", 1)[-1].startswith(prefix)]
    bases = [ref for ref in cfg.base_images if ref in local and ref not in project]
    return project + bases


def image_targets(cfg: AuditConfig, adapters: Adapters, explicit: Optional[list] = None) -> list:
    refs = explicit if explicit else project_images(cfg, adapters)
    return [Target(TargetKind.IMAGE, ref, ref) for ref in refs]


def resolve_multistage(cfg, adapters, explicit=None) -> list:
    if explicit:
        files = [e for e in explicit if is_dockerfile(Path(e).name)]
        images = [e for e in explicit if e not in files]
        return (dockerfile_targets(cfg, files) if files else []) + \
            (image_targets(cfg, adapters, images) if images else [])
    targets = dockerfile_targets(cfg)
    try:
        targets += image_targets(cfg, adapters)
    except AuditError as exc:
        logger.warning("image discovery failed, auditing Dockerfiles only: %s", exc)
    return targets


def resolve_environment(cfg, adapters, explicit=None) -> list:
    if explicit:
        targets = []
        for item in explicit:
            name = Path(item).name
            if is_dockerfile(name):
                targets.append(_file_target(TargetKind.DOCKERFILE, item, cfg.project_root))
            elif name == ".env" or name.startswith(".env."):
                targets.append(_file_target(TargetKind.ENV_FILE, item, cfg.project_root))
            else:
                targets.append(Target(TargetKind.CONTAINER, item, item))
        return targets
    targets = dockerfile_targets(cfg)
    targets += [_file_target(TargetKind.ENV_FILE, p, cfg.project_root)
                for p in find_env_files(cfg.project_root)]
    try:
        targets += container_targets(cfg, adapters)
    except AuditError as exc:
        logger.warning("container discovery failed, auditing files only: %s", exc)
    return targets


def resolve_compose(cfg, adapters, explicit=None) -> list:
    paths = explicit if explicit else find_compose_files(cfg.project_root)
    return [_file_target(TargetKind.COMPOSE, p, cfg.project_root) for p in paths]


def first_item_id(cfg: AuditConfig, adapters: Adapters) -> int:
    """Id of the first item served by /items, or 1 when it cannot be read."""
    try:
        facts = adapters.probe.get(cfg.base_url.rstrip("/") + "/items")
        items = facts.json()
        if isinstance(items, list) and items and isinstance(items[0], dict) and "id" in items[0]:
            return int(items[0]["id"])
    except (AuditError, ValueError, TypeError) as exc:
        logger.debug("could not read first item id: %s", exc)
    return 1


def resolve_endpoints(cfg, adapters, explicit=None) -> list:
    base = cfg.base_url.rstrip("/")
    if explicit:
        paths = ["/" + p.strip("/") for p in explicit]
        return [Target(TargetKind.ENDPOINT, p, base + p, label=_endpoint_label(p)) for p in paths]
    item_id = first_item_id(cfg, adapters)
    paths = [
        ("/status", "status"),
        ("/ready", "ready"),
        ("/items", "items"),
        (f"/items/{item_id}", "item"),
        (f"/items/{R.MISSING_ITEM_ID}", "missing-item"),
        ("/nonexistent-route", "missing-route"),
    ]
    return [Target(TargetKind.ENDPOINT, path, base + path, label=label) for path, label in paths]


def _endpoint_label(path: str) -> str:
    path = "/" + path.strip("/")
    if path in ("/status", "/ready", "/items"):
        return path[1:]
    if path.startswith("/items/"):
        tail = path[len("/items/"):]
        if tail == str(R.MISSING_ITEM_ID):
            return "missing-item"
        return "item"
    return "missing-route"


def resolve_vuln_images(cfg, adapters, explicit=None) -> list:
    return image_targets(cfg, adapters, explicit)


# ── Recommendations ─────────────────────────────────────────────────────────


def _recs(healthy, degraded, critical) -> dict:
    return {Tier.HEALTHY: healthy, Tier.DEGRADED: degraded, Tier.CRITICAL: critical}


SECURITY_RECS = _recs(
    ["Container hardening is in good shape; keep these settings in compose."],
    ["Add `user:` or a Dockerfile USER for services still running as root.",
     "Set `security_opt: [no-new-privileges:true]` and `cap_drop: [ALL]`."],
    ["Most containers run with default privileges.",
     "Run as non-root, drop ALL capabilities, enable no-new-privileges,",
     "and set `deploy.resources.limits` (memory and cpus) for every service."],
)

CAPABILITY_RECS = _recs(
    ["Capability sets follow least privilege."],
    ["Review added capabilities and keep only the ones the service role needs."],
    ["Add `cap_drop: [ALL]` to every service, then `cap_add` only justified capabilities.",
     "Never run containers with `privileged: true`."],
)

MULTISTAGE_RECS = _recs(
    ["Images are lean and multi-stage."],
    ["Move build tooling into a separate builder stage and use an -alpine final base."],
    ["Convert Dockerfiles to multi-stage builds on Alpine bases,",
     "add a non-root USER, and combine RUN steps to cut layer count."],
)

ENVIRONMENT_RECS = _recs(
    ["No hardcoded secrets found."],
    ["Move remaining literal credentials out of Dockerfiles into env files or secrets."],
    ["Secrets are committed to the repository or baked into images.",
     "Rotate them and inject values at runtime via env_file or docker secrets."],
)

ORCHESTRATION_RECS = _recs(
    ["Compose wiring is complete."],
    ["Declare healthchecks and depends_on conditions for every service."],
    ["Define services, named networks and volumes, healthchecks and depends_on in compose."],
)

API_RECS = _recs(
    ["API responds correctly and within time budgets."],
    ["Some endpoints are slow or return unexpected payloads; check service logs."],
    ["API is not serving expected responses; check the api and db containers are up and ready."],
)

VULN_RECS = _recs(
    ["No HIGH or CRITICAL vulnerabilities in project images."],
    ["Rebuild images on patched base tags to clear HIGH findings."],
    ["Images carry CRITICAL vulnerabilities; update base images and dependencies before deploy."],
)


CATEGORIES = {
    "security": Category(
        "security", "Container Security",
        [R.NON_ROOT, R.CAP_DROP, R.NO_NEW_PRIVILEGES, R.PRIVILEGED, R.RESOURCE_LIMITS, R.READONLY_ROOTFS],
        container_targets, recommendations=SECURITY_RECS,
    ),
    "capabilities": Category(
        "capabilities", "Linux Capabilities",
        [R.CAP_DROP, R.CAP_ADD, R.NO_NEW_PRIVILEGES, R.PRIVILEGED],
        container_targets, recommendations=CAPABILITY_RECS,
    ),
    "multistage": Category(
        "multistage", "Multi-stage Builds & Images",
        [R.MULTI_STAGE, R.ALPINE_BASE, R.DOCKERFILE_USER, R.IMAGE_SIZE, R.LAYER_COUNT],
        resolve_multistage, recommendations=MULTISTAGE_RECS,
    ),
    "environment": Category(
        "environment", "Environment & Secrets",
        [R.DOCKERFILE_SECRETS, R.DOCKERFILE_CONFIG, R.ENV_FILE_SECRETS, R.CONTAINER_ENV],
        resolve_environment, recommendations=ENVIRONMENT_RECS,
    ),
    "orchestration": Category(
        "orchestration", "Orchestration",
        [R.COMPOSE_SERVICES, R.COMPOSE_NETWORKS, R.COMPOSE_VOLUMES, R.COMPOSE_DEPENDS_ON,
         R.COMPOSE_HEALTHCHECK, R.COMPOSE_RESTART],
        resolve_compose, recommendations=ORCHESTRATION_RECS,
    ),
    "api": Category(
        "api", "API Functional",
        [R.STATUS_ENDPOINT, R.READY_ENDPOINT, R.ITEMS_ENDPOINT, R.ITEM_BY_ID,
         R.ITEM_NOT_FOUND, R.ROUTE_NOT_FOUND, R.RESPONSE_TIME],
        resolve_endpoints, recommendations=API_RECS,
    ),
    "vulnerabilities": Category(
        "vulnerabilities", "Image Vulnerabilities",
        [R.VULN_SCAN],
        resolve_vuln_images, image_fetch="vulns", recommendations=VULN_RECS,
    ),
}


def get_category(name: str) -> Optional[Category]:
    return CATEGORIES.get(name)
