"""Policy catalog - every audit rule as a pure function over one fact bundle.

A rule never looks at another rule's outcome and never touches the
container engine; it only reads the facts it is handed plus the static
RuleContext built from configuration.
"""
import datetime
import json
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from .models import (
    ComposeFacts, ContainerFacts, DockerfileFacts, EnvFileFacts, HttpFacts,
    ImageFacts, Outcome, Target, TargetKind, VulnFacts,
)
from .roles import JUSTIFIED_CAPS, is_database_like, resolve_role
from .scanners import SECRET_KEYS

NO_NEW_PRIVILEGES_OPTS = {"no-new-privileges", "no-new-privileges:true", "no-new-privileges=true"}

ROOT_USERS = {"root", "0"}

ALLOWED_RESTART_POLICIES = {"no", "always", "on-failure", "unless-stopped"}

# Base images that legitimately ship many layers
LARGE_BASE_IMAGES = (
    "postgres", "mysql", "mariadb", "mongo", "nginx", "httpd",
    "node", "python", "openjdk", "eclipse-temurin",
)

REAL_SECRET_PREFIX_RE = re.compile(
    r"^(sk-|sk_live_|ghp_|gho_|github_pat_|xox[bap]-|AKIA|AIza|glpat-|-----BEGIN)"
)
REAL_SECRET_TOKEN_RE = re.compile(r"^[A-Za-z0-9+/=_\-]{32,}$")

MISSING_ITEM_ID = 999999

ITEM_FIELDS = ("id", "title", "body", "createdAt")


@dataclass(frozen=True)
class RuleContext:
    """Static parameters the rules read. Built once from configuration."""
    roles: dict = field(default_factory=dict)
    max_image_mb: float = 500.0
    max_layers: int = 15
    max_layers_large_base: int = 25
    response_ceilings_ms: dict = field(default_factory=lambda: {
        "status": 1000.0, "ready": 2000.0, "items": 2000.0,
    })


@dataclass(frozen=True)
class Verdict:
    outcome: Outcome
    reason: str = ""
    credit: float = 0.0
    details: dict = field(default_factory=dict)


def passed(reason: str = "", **details) -> Verdict:
    return Verdict(Outcome.PASS, reason, 1.0, details)


def failed(reason: str, credit: float = 0.0, **details) -> Verdict:
    return Verdict(Outcome.FAIL, reason, credit, details)


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    kind: TargetKind
    check: Callable
    labels: Optional[frozenset] = None  # restrict to targets with these labels

    def applies_to(self, target: Target) -> bool:
        if target.kind is not self.kind:
            return False
        return self.labels is None or target.label in self.labels


def _secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(word in lowered for word in SECRET_KEYS)


def looks_like_real_secret(value: str) -> bool:
    """True for values shaped like generated credentials, not demo placeholders."""
    value = value.strip()
    if not value or value.startswith("$"):
        return False
    if REAL_SECRET_PREFIX_RE.match(value):
        return True
    return bool(REAL_SECRET_TOKEN_RE.match(value)) and any(c.isdigit() for c in value)


# ── Container rules ─────────────────────────────────────────────────────────


def check_non_root(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    details = {
        "pid1_user": f.pid1_user,
        "entry_user": f.entry_user,
        "uid": f.uid,
        "configured_user": f.configured_user,
    }
    if f.pid1_user is None and f.uid is None and f.entry_user is None:
        return failed("Inspection failed: could not determine the running user", **details)
    details["consistent"] = f.pid1_user == f.entry_user
    problems = []
    if (f.pid1_user or "").lower() in ROOT_USERS or f.uid == 0:
        problems.append(f"PID 1 runs as root (user={f.pid1_user}, uid={f.uid})")
    if (f.entry_user or "").lower() in ROOT_USERS:
        problems.append("default user resolves to root")
    if problems:
        return failed("; ".join(problems), **details)
    return passed(**details)


def check_cap_drop(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    drop = list(f.cap_drop)
    if "ALL" in drop:
        return passed(cap_drop=drop)
    if drop:
        return failed(
            f"Warning: only {len(drop)} capabilities dropped ({', '.join(drop)}); drop ALL",
            credit=0.5, cap_drop=drop,
        )
    return failed("No capabilities dropped", cap_drop=drop)


def check_cap_add(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    add = list(f.cap_add)
    if not add:
        return passed(cap_add=add)
    role = resolve_role(f.name, ctx.roles)
    justified = JUSTIFIED_CAPS[role]
    unjustified = [c for c in add if c not in justified]
    details = {"cap_add": add, "role": role.value, "unjustified": unjustified}
    if not unjustified:
        return passed(**details)
    return failed(
        f"Capabilities not justified for {role.value}: {', '.join(unjustified)}",
        credit=0.5, **details,
    )


def check_no_new_privileges(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    opts = list(f.security_opt)
    if any(opt in NO_NEW_PRIVILEGES_OPTS for opt in opts):
        return passed(security_opt=opts)
    return failed("no-new-privileges is not set", security_opt=opts)


def check_privileged(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    if f.privileged:
        return failed("Container runs in privileged mode", userns_mode=f.userns_mode)
    return passed(userns_mode=f.userns_mode)


def check_resource_limits(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    details = {"memory_bytes": f.memory_limit, "cpu_cores": f.cpu_cores}
    missing = []
    if f.memory_limit <= 0:
        missing.append("memory limit")
    if f.cpu_cores <= 0:
        missing.append("CPU limit")
    if missing:
        return failed("Missing " + " and ".join(missing), **details)
    return passed(**details)


def check_readonly_rootfs(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    if f.readonly_rootfs:
        return passed()
    return failed("Root filesystem is writable")


def check_container_env(f: ContainerFacts, ctx: RuleContext) -> Verdict:
    leaked = []
    for entry in f.env:
        key, _, value = entry.partition("=")
        if _secret_key(key) and looks_like_real_secret(value):
            leaked.append(key)
    if leaked:
        return failed(f"Secret-looking values in environment: {', '.join(leaked)}", keys=leaked)
    return passed(env_count=len(f.env))


# ── Dockerfile rules ────────────────────────────────────────────────────────


def check_multi_stage(f: DockerfileFacts, ctx: RuleContext) -> Verdict:
    stages = len(f.from_images)
    if stages >= 2:
        return passed(stages=stages)
    if is_database_like(f.service):
        return passed(
            f"Single stage; multi-stage build is optional for database image ({f.service})",
            stages=stages,
        )
    return failed(f"Single-stage build ({stages} FROM)", stages=stages)


def check_alpine_base(f: DockerfileFacts, ctx: RuleContext) -> Verdict:
    base = f.final_base
    if "alpine" in base.lower():
        return passed(final_base=base)
    return failed(f"Final stage is not Alpine-based ({base})", final_base=base)


def check_dockerfile_user(f: DockerfileFacts, ctx: RuleContext) -> Verdict:
    if not f.users:
        return failed("No USER instruction")
    last = f.users[-1]
    if last.split(":")[0].lower() in ROOT_USERS:
        return failed(f"Final USER is root ({last})", user=last)
    return passed(user=last)


def check_dockerfile_secrets(f: DockerfileFacts, ctx: RuleContext) -> Verdict:
    if f.secret_hits:
        where = ", ".join(f"line {ln} ({key})" for ln, key in f.secret_hits)
        return failed(f"Hardcoded secret-like values: {where}",
                      hits=[{"line": ln, "key": key} for ln, key in f.secret_hits])
    return passed()


def check_dockerfile_config(f: DockerfileFacts, ctx: RuleContext) -> Verdict:
    if f.env_keys or f.arg_keys:
        return passed(env=list(f.env_keys), args=list(f.arg_keys))
    return failed("No ENV or ARG instructions; image is not configurable")


# ── Image rules ─────────────────────────────────────────────────────────────


def check_image_size(f: ImageFacts, ctx: RuleContext) -> Verdict:
    size_mb = round(f.size_mb, 1)
    if size_mb <= ctx.max_image_mb:
        return passed(size_mb=size_mb)
    return failed(f"Image is {size_mb} MB (limit {ctx.max_image_mb:g} MB)", size_mb=size_mb)


def layer_limit(base_image: str, ctx: RuleContext) -> int:
    name = base_image.lower().rsplit("/", 1)[-1].split(":", 1)[0]
    if any(name.startswith(b) for b in LARGE_BASE_IMAGES):
        return ctx.max_layers_large_base
    return ctx.max_layers


def check_layer_count(f: ImageFacts, ctx: RuleContext) -> Verdict:
    limit = layer_limit(f.base_image, ctx)
    details = {"layers": f.layer_count, "limit": limit, "base_image": f.base_image}
    if f.layer_count <= limit:
        return passed(**details)
    return failed(f"{f.layer_count} layers (limit {limit})", **details)


# ── Env file rules ──────────────────────────────────────────────────────────


def check_env_file_secrets(f: EnvFileFacts, ctx: RuleContext) -> Verdict:
    leaked = [key for key, value in f.entries if _secret_key(key) and looks_like_real_secret(value)]
    if leaked:
        return failed(f"Real-looking secrets committed: {', '.join(leaked)}", keys=leaked)
    return passed(entries=len(f.entries))


# ── Compose rules ───────────────────────────────────────────────────────────


def check_compose_services(f: ComposeFacts, ctx: RuleContext) -> Verdict:
    if f.services:
        return passed(services=list(f.services))
    return failed("No services defined")


def check_compose_networks(f: ComposeFacts, ctx: RuleContext) -> Verdict:
    return passed() if f.has_networks else failed("No top-level networks: section")


def check_compose_volumes(f: ComposeFacts, ctx: RuleContext) -> Verdict:
    return passed() if f.has_volumes else failed("No top-level volumes: section")


def check_compose_depends_on(f: ComposeFacts, ctx: RuleContext) -> Verdict:
    if f.depends_on_count > 0:
        return passed(count=f.depends_on_count)
    return failed("No depends_on declared")


def check_compose_healthcheck(f: ComposeFacts, ctx: RuleContext) -> Verdict:
    if f.healthcheck_count > 0:
        return passed(count=f.healthcheck_count)
    return failed("No healthcheck declared")


def check_compose_restart(f: ComposeFacts, ctx: RuleContext) -> Verdict:
    policies = dict(f.restart_policies)
    if not policies:
        return passed(note="no restart policies declared (acceptable for development)")
    invalid = {
        svc: policy for svc, policy in policies.items()
        if policy.split(":", 1)[0] not in ALLOWED_RESTART_POLICIES
    }
    if invalid:
        listed = ", ".join(f"{svc}={policy}" for svc, policy in invalid.items())
        return failed(f"Invalid restart policies: {listed}", policies=policies)
    return passed(policies=policies)


# ── HTTP rules ──────────────────────────────────────────────────────────────


def _json_response(f: HttpFacts, expected_status: int):
    """Common status/content-type/body validation; returns (problems, body)."""
    problems = []
    if f.status != expected_status:
        problems.append(f"expected HTTP {expected_status}, got {f.status}")
    if "application/json" not in f.content_type.lower():
        problems.append(f"content-type is '{f.content_type}'")
    body = None
    try:
        body = json.loads(f.body)
    except (json.JSONDecodeError, ValueError):
        problems.append("body is not valid JSON")
    return problems, body


def check_status_endpoint(f: HttpFacts, ctx: RuleContext) -> Verdict:
    problems, body = _json_response(f, 200)
    if body is not None and (not isinstance(body, dict) or body.get("status") != "OK"):
        problems.append('body is not {"status": "OK"}')
    if problems:
        return failed("; ".join(problems), status=f.status)
    return passed(status=f.status)


def check_ready_endpoint(f: HttpFacts, ctx: RuleContext) -> Verdict:
    problems, body = _json_response(f, 200)
    database = body.get("database") if isinstance(body, dict) else None
    if body is not None:
        if not isinstance(body, dict):
            problems.append("body is not an object")
        else:
            if body.get("ready") is not True:
                problems.append("ready is not true")
            if database != "healthy":
                problems.append(f"database is '{database}'")
            if not is_iso8601(body.get("timestamp")):
                problems.append("timestamp is not ISO 8601")
    if problems:
        return failed("; ".join(problems), status=f.status, database=database)
    return passed(status=f.status, database=database)


def is_iso8601(value) -> bool:
    if not isinstance(value, str) or "T" not in value:
        return False
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        datetime.datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def item_problems(item) -> list:
    """Shape problems of one item: {id: int, title: str, body: str, createdAt: ISO8601}."""
    if not isinstance(item, dict):
        return ["not an object"]
    problems = [f"missing {k}" for k in ITEM_FIELDS if k not in item]
    if "id" in item and (not isinstance(item["id"], int) or isinstance(item["id"], bool)):
        problems.append("id is not an integer")
    for key in ("title", "body"):
        if key in item and not isinstance(item[key], str):
            problems.append(f"{key} is not a string")
    if "createdAt" in item and not is_iso8601(item["createdAt"]):
        problems.append("createdAt is not ISO 8601")
    return problems


def check_items_endpoint(f: HttpFacts, ctx: RuleContext) -> Verdict:
    problems, body = _json_response(f, 200)
    count = None
    if body is not None:
        if not isinstance(body, list):
            problems.append("body is not an array")
        else:
            count = len(body)
            bad = {}
            for index, item in enumerate(body):
                item_issues = item_problems(item)
                if item_issues:
                    bad[index] = item_issues
            if bad:
                first = min(bad)
                problems.append(f"{len(bad)} malformed item(s), item {first}: {', '.join(bad[first])}")
            else:
                ids = [item["id"] for item in body]
                if any(a >= b for a, b in zip(ids, ids[1:])):
                    problems.append("items are not ordered by ascending id")
    if problems:
        return failed("; ".join(problems), status=f.status)
    return passed(status=f.status, count=count)


def check_item_by_id(f: HttpFacts, ctx: RuleContext) -> Verdict:
    problems, body = _json_response(f, 200)
    if body is not None:
        issues = item_problems(body)
        if issues:
            problems.append("body is not an item: " + ", ".join(issues))
    if problems:
        return failed("; ".join(problems), status=f.status)
    return passed(status=f.status, id=body.get("id"))


def check_not_found(f: HttpFacts, ctx: RuleContext) -> Verdict:
    if f.status == 404:
        return passed(status=f.status)
    return failed(f"expected HTTP 404, got {f.status}", status=f.status)


def check_response_time(f: HttpFacts, ctx: RuleContext) -> Verdict:
    endpoint = f.url.rstrip("/").rsplit("/", 1)[-1]
    ceiling = ctx.response_ceilings_ms.get(endpoint, 2000.0)
    elapsed = round(f.elapsed_ms, 1)
    if f.elapsed_ms <= ceiling:
        return passed(elapsed_ms=elapsed, ceiling_ms=ceiling)
    return failed(f"{elapsed} ms exceeds {ceiling:g} ms", elapsed_ms=elapsed, ceiling_ms=ceiling)


# ── Vulnerability rule ──────────────────────────────────────────────────────


def check_vulnerabilities(f: VulnFacts, ctx: RuleContext) -> Verdict:
    details = {"critical": f.critical, "high": f.high, "sample": list(f.sample_ids)}
    if f.critical:
        return failed(f"{f.critical} CRITICAL and {f.high} HIGH vulnerabilities", **details)
    if f.high:
        return failed(f"Warning: {f.high} HIGH vulnerabilities", credit=0.5, **details)
    return passed(**details)


# ── Catalog ─────────────────────────────────────────────────────────────────

NON_ROOT = Rule("non-root", "Runs as non-root user", TargetKind.CONTAINER, check_non_root)
CAP_DROP = Rule("cap-drop", "Drops ALL capabilities", TargetKind.CONTAINER, check_cap_drop)
CAP_ADD = Rule("cap-add", "Only justified capabilities added", TargetKind.CONTAINER, check_cap_add)
NO_NEW_PRIVILEGES = Rule("no-new-privileges", "no-new-privileges enabled", TargetKind.CONTAINER, check_no_new_privileges)
PRIVILEGED = Rule("privileged", "Not privileged", TargetKind.CONTAINER, check_privileged)
RESOURCE_LIMITS = Rule("resource-limits", "Memory and CPU limits set", TargetKind.CONTAINER, check_resource_limits)
READONLY_ROOTFS = Rule("readonly-rootfs", "Read-only root filesystem", TargetKind.CONTAINER, check_readonly_rootfs)
CONTAINER_ENV = Rule("container-env-secrets", "No secrets in container environment", TargetKind.CONTAINER, check_container_env)

MULTI_STAGE = Rule("multi-stage", "Multi-stage build", TargetKind.DOCKERFILE, check_multi_stage)
ALPINE_BASE = Rule("alpine-base", "Alpine final base image", TargetKind.DOCKERFILE, check_alpine_base)
DOCKERFILE_USER = Rule("dockerfile-user", "Dockerfile sets non-root USER", TargetKind.DOCKERFILE, check_dockerfile_user)
DOCKERFILE_SECRETS = Rule("dockerfile-secrets", "No secrets in Dockerfile", TargetKind.DOCKERFILE, check_dockerfile_secrets)
DOCKERFILE_CONFIG = Rule("dockerfile-config", "Configurable via ENV/ARG", TargetKind.DOCKERFILE, check_dockerfile_config)

IMAGE_SIZE = Rule("image-size", "Image size within limit", TargetKind.IMAGE, check_image_size)
LAYER_COUNT = Rule("layer-count", "Layer count within limit", TargetKind.IMAGE, check_layer_count)
VULN_SCAN = Rule("vuln-scan", "No HIGH/CRITICAL vulnerabilities", TargetKind.IMAGE, check_vulnerabilities)

ENV_FILE_SECRETS = Rule("env-file-secrets", "No real secrets in env file", TargetKind.ENV_FILE, check_env_file_secrets)

COMPOSE_SERVICES = Rule("compose-services", "Services defined", TargetKind.COMPOSE, check_compose_services)
COMPOSE_NETWORKS = Rule("compose-networks", "Networks defined", TargetKind.COMPOSE, check_compose_networks)
COMPOSE_VOLUMES = Rule("compose-volumes", "Volumes defined", TargetKind.COMPOSE, check_compose_volumes)
COMPOSE_DEPENDS_ON = Rule("compose-depends-on", "Service dependencies declared", TargetKind.COMPOSE, check_compose_depends_on)
COMPOSE_HEALTHCHECK = Rule("compose-healthcheck", "Health checks declared", TargetKind.COMPOSE, check_compose_healthcheck)
COMPOSE_RESTART = Rule("compose-restart", "Valid restart policies", TargetKind.COMPOSE, check_compose_restart)

STATUS_ENDPOINT = Rule("status-endpoint", "GET /status returns OK", TargetKind.ENDPOINT, check_status_endpoint,
                       frozenset({"status"}))
READY_ENDPOINT = Rule("ready-endpoint", "GET /ready reports healthy", TargetKind.ENDPOINT, check_ready_endpoint,
                      frozenset({"ready"}))
ITEMS_ENDPOINT = Rule("items-endpoint", "GET /items returns item list", TargetKind.ENDPOINT, check_items_endpoint,
                      frozenset({"items"}))
ITEM_BY_ID = Rule("item-by-id", "GET /items/:id returns an item", TargetKind.ENDPOINT, check_item_by_id,
                  frozenset({"item"}))
ITEM_NOT_FOUND = Rule("item-not-found", "Unknown item id returns 404", TargetKind.ENDPOINT, check_not_found,
                      frozenset({"missing-item"}))
ROUTE_NOT_FOUND = Rule("route-not-found", "Unknown route returns 404", TargetKind.ENDPOINT, check_not_found,
                       frozenset({"missing-route"}))
RESPONSE_TIME = Rule("response-time", "Response time within ceiling", TargetKind.ENDPOINT, check_response_time,
                     frozenset({"status", "ready", "items"}))
