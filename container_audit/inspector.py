"""Docker inspection adapter - runtime and image facts via the local docker CLI."""
import json
import logging
import subprocess
from typing import Optional, Tuple

from .errors import InspectionFailed, ParseError, TargetNotFound, ToolUnavailable
from .models import ContainerFacts, ImageFacts

logger = logging.getLogger(__name__)

# Environment variables that official base images set, used to recover the
# base of an image when no OCI base-name label is present
BASE_IMAGE_MARKERS = {
    "PG_MAJOR": "postgres",
    "MYSQL_MAJOR": "mysql",
    "MARIADB_MAJOR": "mariadb",
    "MONGO_MAJOR": "mongo",
    "NGINX_VERSION": "nginx",
    "HTTPD_VERSION": "httpd",
    "NODE_VERSION": "node",
    "PYTHON_VERSION": "python",
    "JAVA_VERSION": "openjdk",
}

BASE_NAME_LABEL = "org.opencontainers.image.base.name"


def normalize_capability(cap: str) -> str:
    """Return the canonical CAP_* spelling of a capability name."""
    cap = cap.strip().upper()
    if cap == "ALL" or cap.startswith("CAP_"):
        return cap
    return f"CAP_{cap}"


def cpu_cores(host_config: dict) -> float:
    """CPU limit in cores from either NanoCpus or CpuQuota/CpuPeriod."""
    nano = host_config.get("NanoCpus") or 0
    if nano > 0:
        return nano / 1e9
    quota = host_config.get("CpuQuota") or 0
    if quota > 0:
        period = host_config.get("CpuPeriod") or 100000
        return quota / period
    return 0.0


def parse_pid1_user(ps_output: str) -> Optional[str]:
    """Find the user owning PID 1 in `ps -o pid,user` output."""
    for line in ps_output.strip().splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "1":
            return parts[1]
    return None


def parse_status_uid(status_output: str) -> Optional[int]:
    """Effective UID from the Uid line of /proc/<pid>/status."""
    for line in status_output.splitlines():
        if line.startswith("Uid:"):
            fields = line.split()
            if len(fields) >= 3:
                try:
                    return int(fields[2])
                except ValueError:
                    return None
    return None


class DockerInspector:
    """Read-only queries against the local container engine.

    Every method fetches fresh data; nothing is cached between calls.
    """

    def __init__(self, docker_bin: str = "docker", timeout: int = 30):
        self.docker_bin = docker_bin
        self.timeout = timeout

    # ----------------------------------------------------------------- helpers

    def _run(self, args: list, timeout: Optional[int] = None) -> Tuple[str, str, int]:
        """Run a docker subcommand; returns (stdout, stderr, returncode)."""
        cmd = [self.docker_bin] + list(args)
        logger.debug("exec: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=timeout or self.timeout
            )
            return proc.stdout or "", proc.stderr or "", proc.returncode
        except subprocess.TimeoutExpired:
            return "", "Command timed out", -1
        except FileNotFoundError:
            raise ToolUnavailable(self.docker_bin, "binary not found in PATH")

    def _inspect(self, kind: str, ref: str, label: str) -> dict:
        stdout, stderr, rc = self._run(["inspect", "--type", kind, ref])
        if rc != 0:
            if "no such" in stderr.lower():
                raise TargetNotFound(f"{label} {ref}")
            raise InspectionFailed(stderr.strip()[:300] or f"docker inspect exited {rc}")
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise ParseError(f"docker inspect output for {ref}: {exc}")
        if not data:
            raise TargetNotFound(f"{label} {ref}")
        return data[0]

    def exec(self, container: str, command: list) -> Optional[str]:
        """Run a probe inside the container. Returns None if the probe failed."""
        stdout, stderr, rc = self._run(["exec", container] + list(command))
        if rc != 0:
            logger.debug("probe %s in %s failed: %s", command, container, stderr.strip())
            return None
        return stdout

    # ------------------------------------------------------------- discovery

    def list_containers(self) -> list:
        """Names of all running containers, in `docker ps` order."""
        stdout, stderr, rc = self._run(["ps", "--format", "{{.Names}}"])
        if rc != 0:
            raise InspectionFailed(stderr.strip()[:300] or "docker ps failed")
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    def list_images(self) -> list:
        """All local image references as repository:tag, skipping dangling ones."""
        stdout, stderr, rc = self._run(["images", "--format", "{{.Repository}}:{{.Tag}}"])
        if rc != 0:
            raise InspectionFailed(stderr.strip()[:300] or "docker images failed")
        refs = []
        for line in stdout.splitlines():
            ref = line.strip()
            if ref and "<none>" not in ref:
                refs.append(ref)
        return refs

    # ------------------------------------------------------------ inspection

    def inspect_container(self, name: str) -> ContainerFacts:
        data = self._inspect("container", name, "Container")
        config = data.get("Config") or {}
        host = data.get("HostConfig") or {}

        pid1_user = None
        ps_out = self.exec(name, ["ps", "-o", "pid,user"])
        if ps_out:
            pid1_user = parse_pid1_user(ps_out)

        uid = None
        status_out = self.exec(name, ["cat", "/proc/1/status"])
        if status_out:
            uid = parse_status_uid(status_out)
        if pid1_user is None and uid is not None:
            pid1_user = str(uid)

        # Default exec user is the image's entry user, independent of PID 1
        whoami = self.exec(name, ["whoami"])
        entry_user = whoami.strip() if whoami and whoami.strip() else None

        return ContainerFacts(
            name=data.get("Name", name).lstrip("/"),
            pid1_user=pid1_user,
            entry_user=entry_user,
            uid=uid,
            configured_user=config.get("User") or "",
            cap_add=tuple(normalize_capability(c) for c in host.get("CapAdd") or []),
            cap_drop=tuple(normalize_capability(c) for c in host.get("CapDrop") or []),
            security_opt=tuple(host.get("SecurityOpt") or []),
            privileged=bool(host.get("Privileged")),
            userns_mode=host.get("UsernsMode") or "",
            memory_limit=host.get("Memory") or 0,
            cpu_cores=cpu_cores(host),
            readonly_rootfs=bool(host.get("ReadonlyRootfs")),
            env=tuple(config.get("Env") or []),
        )

    def inspect_image(self, tag: str) -> ImageFacts:
        data = self._inspect("image", tag, "Image")
        config = data.get("Config") or {}

        stdout, stderr, rc = self._run(["history", "-q", "--no-trunc", tag])
        if rc != 0:
            raise InspectionFailed(stderr.strip()[:300] or f"docker history {tag} failed")
        layers = [line for line in stdout.splitlines() if line.strip()]

        return ImageFacts(
            tag=tag,
            base_image=self._base_image(tag, config),
            layer_count=len(layers),
            size_bytes=data.get("Size") or 0,
        )

    def _base_image(self, tag: str, config: dict) -> str:
        labels = config.get("Labels") or {}
        if labels.get(BASE_NAME_LABEL):
            return labels[BASE_NAME_LABEL]
        env_keys = {e.split("=", 1)[0] for e in config.get("Env") or []}
        for marker, base in BASE_IMAGE_MARKERS.items():
            if marker in env_keys:
                return base
        return tag.rsplit(":", 1)[0].rsplit("/", 1)[-1]
