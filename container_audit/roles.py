"""Service roles and the capabilities each role may add."""
import logging
import re
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class Role(Enum):
    DATABASE = "database"
    WEB_FRONTEND = "web-frontend"
    API_BACKEND = "api-backend"
    UNKNOWN = "unknown"


# Linux capabilities a role may add back after dropping ALL
JUSTIFIED_CAPS = {
    Role.DATABASE: frozenset({
        "CAP_CHOWN", "CAP_DAC_OVERRIDE", "CAP_FOWNER", "CAP_SETUID", "CAP_SETGID",
    }),
    Role.WEB_FRONTEND: frozenset({
        "CAP_CHOWN", "CAP_SETUID", "CAP_SETGID", "CAP_NET_BIND_SERVICE",
    }),
    Role.API_BACKEND: frozenset(),
    Role.UNKNOWN: frozenset(),
}

# Name fragments used when no explicit role is configured
ROLE_KEYWORDS = (
    (Role.DATABASE, ("postgres", "db")),
    (Role.WEB_FRONTEND, ("nginx", "frontend")),
    (Role.API_BACKEND, ("api", "node")),
)

# Folder names for which a single-stage build is acceptable
DATABASE_NAME_PATTERNS = ("db", "database", "postgres", "mysql", "mariadb", "mongo", "redis")

NAME_SEPARATOR_RE = re.compile(r"[-_./]+")


def parse_role(value: str) -> Role:
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise ValueError(
            f"unknown role '{value}', expected one of "
            + ", ".join(r.value for r in Role)
        )


def name_segments(name: str) -> set:
    """Lower-cased name parts split on - _ . / with trailing digits removed."""
    parts = NAME_SEPARATOR_RE.split(name.lower())
    return {re.sub(r"\d+$", "", p) for p in parts if p}


def infer_roles(name: str) -> list:
    segments = name_segments(name)
    return [role for role, words in ROLE_KEYWORDS if any(w in segments for w in words)]


def resolve_role(name: str, explicit: Optional[dict] = None) -> Role:
    """Role for a service: explicit mapping first, then name inference.

    Names that match several roles (e.g. "api-db-sync") get the role with
    the smallest justified capability set.
    """
    if explicit:
        if name in explicit:
            return explicit[name]
        for service, role in explicit.items():
            # compose container names: <project>-<service>-<n>
            if re.fullmatch(rf"(?:.+[-_])?{re.escape(service)}(?:[-_]\d+)?", name):
                return role
    matches = infer_roles(name)
    if not matches:
        return Role.UNKNOWN
    if len(matches) > 1:
        chosen = min(matches, key=lambda r: len(JUSTIFIED_CAPS[r]))
        logger.warning(
            "service '%s' matches roles %s; using %s. Set an explicit role in the config.",
            name, ", ".join(r.value for r in matches), chosen.value,
        )
        return chosen
    return matches[0]


def is_database_like(name: str) -> bool:
    segments = name_segments(name)
    return any(p in segments for p in DATABASE_NAME_PATTERNS)
