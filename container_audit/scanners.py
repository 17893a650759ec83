"""Narrow text scanners for Dockerfiles, compose files and .env files.

These are not general parsers. Each one extracts only the handful of fields
the policy catalog looks at.
"""
import os
import re
from pathlib import Path

from .errors import ParseError, TargetNotFound
from .models import ComposeFacts, DockerfileFacts, EnvFileFacts

# Directories never searched for Dockerfiles or env files
SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", "dist", "build"}

COMPOSE_FILE_NAMES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

SECRET_KEYS = ("password", "secret", "api_key", "token", "private_key")

FROM_RE = re.compile(
    r"^\s*FROM\s+(?:--platform=\S+\s+)?(\S+)(?:\s+AS\s+(\S+))?\s*$",
    re.IGNORECASE | re.MULTILINE,
)
USER_RE = re.compile(r"^\s*USER\s+(\S+)", re.IGNORECASE | re.MULTILINE)
ENV_LINE_RE = re.compile(r"^\s*ENV\s+(.+)$", re.IGNORECASE | re.MULTILINE)
ARG_RE = re.compile(r"^\s*ARG\s+([A-Za-z_][A-Za-z0-9_]*)", re.IGNORECASE | re.MULTILINE)

# KEY=value / KEY: value where KEY contains one of the secret words and the
# value is a literal, not a ${VAR} reference
SECRET_ASSIGN_RE = re.compile(
    r"\b(\w*(?:" + "|".join(SECRET_KEYS) + r")\w*)\s*[=:]\s*[\"']?(?!\$)([^\s\"']+)",
    re.IGNORECASE,
)
# Legacy `ENV KEY value` form
SECRET_ENV_LEGACY_RE = re.compile(
    r"^\s*ENV\s+(\w*(?:" + "|".join(SECRET_KEYS) + r")\w*)\s+[\"']?(?!\$)([^\s\"'=]+)",
    re.IGNORECASE,
)

TOP_LEVEL_KEY_RE = re.compile(r"^([A-Za-z_][\w-]*):")
SERVICE_KEY_RE = re.compile(r"^(\s+)([\w.-]+):\s*(?:#.*)?$")
RESTART_RE = re.compile(r"^\s+restart:\s*[\"']?([^\"'#\s]+)")


def read_text(path: str, label: str = "File") -> str:
    p = Path(path)
    if not p.is_file():
        raise TargetNotFound(f"{label} {path}")
    return p.read_text(encoding="utf-8", errors="replace")


def _walk(root: str):
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def is_dockerfile(name: str) -> bool:
    return name == "Dockerfile" or name.startswith("Dockerfile.") or name.endswith(".Dockerfile")


def find_dockerfiles(root: str) -> list:
    """All Dockerfiles under root, in sorted walk order."""
    return [str(p) for p in _walk(root) if is_dockerfile(p.name)]


def find_env_files(root: str) -> list:
    return [str(p) for p in _walk(root) if p.name == ".env" or p.name.startswith(".env.")]


def find_compose_files(root: str) -> list:
    found = []
    for name in COMPOSE_FILE_NAMES:
        candidate = Path(root) / name
        if candidate.is_file():
            found.append(str(candidate))
    return found


# ── Dockerfile ──────────────────────────────────────────────────────────────


def _join_continuations(text: str) -> str:
    return re.sub(r"\\\r?\n", " ", text)


def scan_dockerfile(path: str, text: str) -> DockerfileFacts:
    """Extract FROM/USER/ENV/ARG and secret-looking literals from a Dockerfile."""
    joined = _join_continuations(text)
    froms = [m.group(1) for m in FROM_RE.finditer(joined)]
    if not froms:
        raise ParseError(f"no FROM instruction in {path}")

    env_keys = []
    for m in ENV_LINE_RE.finditer(joined):
        body = m.group(1).strip()
        if "=" in body:
            env_keys.extend(re.findall(r"([A-Za-z_][A-Za-z0-9_]*)=", body))
        else:
            env_keys.append(body.split()[0])

    # line numbers refer to the file as written
    secret_hits = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if line.lstrip().startswith("#"):
            continue
        m = SECRET_ENV_LEGACY_RE.search(line) or SECRET_ASSIGN_RE.search(line)
        if m:
            secret_hits.append((lineno, m.group(1)))

    return DockerfileFacts(
        path=path,
        service=Path(path).parent.name,
        from_images=tuple(froms),
        users=tuple(USER_RE.findall(joined)),
        env_keys=tuple(env_keys),
        arg_keys=tuple(ARG_RE.findall(joined)),
        secret_hits=tuple(secret_hits),
    )


# ── Compose ─────────────────────────────────────────────────────────────────


def scan_compose(path: str, text: str) -> ComposeFacts:
    """Line-based scan of a compose file for the structural keys we audit."""
    top_keys = []
    services = []
    restart = {}
    section = None
    service_indent = None
    current = None
    depends_on = 0
    healthchecks = 0

    for raw in text.splitlines():
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue
        top = TOP_LEVEL_KEY_RE.match(raw)
        if top:
            section = top.group(1)
            top_keys.append(section)
            current = None
            continue

        stripped = raw.strip()
        if stripped.startswith("depends_on:"):
            depends_on += 1
        elif stripped.startswith("healthcheck:"):
            healthchecks += 1

        if section != "services":
            continue
        indent = len(raw) - len(raw.lstrip())
        if service_indent is None:
            service_indent = indent
        svc = SERVICE_KEY_RE.match(raw)
        if svc and indent == service_indent:
            current = svc.group(2)
            services.append(current)
            continue
        m = RESTART_RE.match(raw)
        if m and current is not None:
            restart[current] = m.group(1)

    if not top_keys:
        raise ParseError(f"no top-level keys in {path}")

    return ComposeFacts(
        path=path,
        services=tuple(services),
        has_networks="networks" in top_keys,
        has_volumes="volumes" in top_keys,
        depends_on_count=depends_on,
        healthcheck_count=healthchecks,
        restart_policies=restart,
    )


# ── .env ────────────────────────────────────────────────────────────────────


def scan_env_file(path: str, text: str) -> EnvFileFacts:
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        entries.append((key.strip(), value))
    return EnvFileFacts(path=path, entries=tuple(entries))
