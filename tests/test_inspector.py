from __future__ import annotations

import json
import subprocess

import pytest

from container_audit import inspector as insp
from container_audit.errors import InspectionFailed, TargetNotFound, ToolUnavailable
from container_audit.inspector import DockerInspector, cpu_cores, normalize_capability

CONTAINER_INSPECT = [{
    "Name": "/myapp-api-1",
    "Config": {"User": "node", "Env": ["NODE_ENV=production", "PORT=3000"]},
    "HostConfig": {
        "CapAdd": ["NET_BIND_SERVICE"],
        "CapDrop": ["ALL"],
        "SecurityOpt": ["no-new-privileges:true"],
        "Privileged": False,
        "UsernsMode": "",
        "Memory": 268435456,
        "NanoCpus": 0,
        "CpuQuota": 50000,
        "CpuPeriod": 100000,
        "ReadonlyRootfs": True,
    },
}]

PS_OUTPUT = "PID   USER     TIME  COMMAND\n    1 node      0:00 node src/app.js\n   20 node      0:00 ps\n"
STATUS_OUTPUT = "Name:\tnode\nUid:\t1000\t1000\t1000\t1000\nGid:\t1000\t1000\t1000\t1000\n"


class FakeDocker:
    """Stand-in for subprocess.run keyed on the docker subcommand."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, cmd, capture_output=True, text=True, timeout=None):
        self.calls.append(cmd)
        key = tuple(cmd[1:])
        for prefix, (rc, out, err) in self.responses.items():
            if key[:len(prefix)] == prefix:
                return subprocess.CompletedProcess(cmd, rc, out, err)
        return subprocess.CompletedProcess(cmd, 1, "", "unknown command")


@pytest.fixture
def fake_docker(monkeypatch):
    def _install(responses):
        fake = FakeDocker(responses)
        monkeypatch.setattr(insp.subprocess, "run", fake)
        return fake
    return _install


@pytest.mark.parametrize("raw,expected", [
    ("chown", "CAP_CHOWN"),
    ("NET_BIND_SERVICE", "CAP_NET_BIND_SERVICE"),
    ("CAP_SETUID", "CAP_SETUID"),
    ("all", "ALL"),
])
def test_normalize_capability(raw, expected):
    assert normalize_capability(raw) == expected


def test_cpu_cores_from_both_representations():
    assert cpu_cores({"NanoCpus": 1500000000}) == 1.5
    assert cpu_cores({"NanoCpus": 0, "CpuQuota": 50000, "CpuPeriod": 100000}) == 0.5
    assert cpu_cores({"CpuQuota": 200000, "CpuPeriod": 0}) == 2.0
    assert cpu_cores({}) == 0.0


def test_inspect_container(fake_docker):
    fake = fake_docker({
        ("inspect",): (0, json.dumps(CONTAINER_INSPECT), ""),
        ("exec", "myapp-api-1", "ps"): (0, PS_OUTPUT, ""),
        ("exec", "myapp-api-1", "cat"): (0, STATUS_OUTPUT, ""),
        ("exec", "myapp-api-1", "whoami"): (0, "node\n", ""),
    })
    facts = DockerInspector().inspect_container("myapp-api-1")
    assert facts.name == "myapp-api-1"
    assert facts.pid1_user == "node"
    assert facts.entry_user == "node"
    assert facts.uid == 1000
    assert facts.cap_add == ("CAP_NET_BIND_SERVICE",)
    assert facts.cap_drop == ("ALL",)
    assert facts.security_opt == ("no-new-privileges:true",)
    assert facts.memory_limit == 268435456
    assert facts.cpu_cores == 0.5
    assert facts.readonly_rootfs is True
    assert facts.env == ("NODE_ENV=production", "PORT=3000")
    assert fake.calls[0][:3] == ["docker", "inspect", "--type"]


def test_pid1_user_falls_back_to_proc_status(fake_docker):
    fake_docker({
        ("inspect",): (0, json.dumps(CONTAINER_INSPECT), ""),
        ("exec", "myapp-api-1", "ps"): (126, "", "executable file not found"),
        ("exec", "myapp-api-1", "cat"): (0, "Uid:\t0\t0\t0\t0\n", ""),
        ("exec", "myapp-api-1", "whoami"): (0, "root\n", ""),
    })
    facts = DockerInspector().inspect_container("myapp-api-1")
    assert facts.pid1_user == "0"
    assert facts.uid == 0
    assert facts.entry_user == "root"


def test_missing_container_raises_target_not_found(fake_docker):
    fake_docker({("inspect",): (1, "", "Error: No such container: ghost")})
    with pytest.raises(TargetNotFound) as exc:
        DockerInspector().inspect_container("ghost")
    assert str(exc.value) == "Container ghost not found"


def test_daemon_error_raises_inspection_failed(fake_docker):
    fake_docker({("inspect",): (1, "", "Cannot connect to the Docker daemon")})
    with pytest.raises(InspectionFailed):
        DockerInspector().inspect_container("api")


def test_missing_docker_binary(monkeypatch):
    def boom(*args, **kwargs):
        raise FileNotFoundError("docker")
    monkeypatch.setattr(insp.subprocess, "run", boom)
    with pytest.raises(ToolUnavailable):
        DockerInspector().list_containers()


def test_list_containers_and_images(fake_docker):
    fake_docker({
        ("ps",): (0, "myapp-db-1\nmyapp-api-1\n\n", ""),
        ("images",): (0, "myapp-api:latest\n<none>:<none>\npostgres:16-alpine\n", ""),
    })
    inspector = DockerInspector()
    assert inspector.list_containers() == ["myapp-db-1", "myapp-api-1"]
    assert inspector.list_images() == ["myapp-api:latest", "postgres:16-alpine"]


def test_inspect_image_recovers_base_from_env(fake_docker):
    image = [{"Size": 150 * 1024 * 1024,
              "Config": {"Env": ["PATH=/usr/bin", "NODE_VERSION=22.1.0"], "Labels": None}}]
    fake_docker({
        ("inspect",): (0, json.dumps(image), ""),
        ("history",): (0, "sha256:a\nsha256:b\n<missing>\n", ""),
    })
    facts = DockerInspector().inspect_image("myapp-api:latest")
    assert facts.base_image == "node"
    assert facts.layer_count == 3
    assert facts.size_mb == 150


def test_inspect_image_prefers_oci_label(fake_docker):
    image = [{"Size": 1, "Config": {"Labels": {insp.BASE_NAME_LABEL: "docker.io/library/nginx:1-alpine"}}}]
    fake_docker({
        ("inspect",): (0, json.dumps(image), ""),
        ("history",): (0, "a\n", ""),
    })
    assert DockerInspector().inspect_image("x").base_image == "docker.io/library/nginx:1-alpine"


def test_parse_helpers():
    assert insp.parse_pid1_user(PS_OUTPUT) == "node"
    assert insp.parse_pid1_user("PID USER\n") is None
    assert insp.parse_status_uid(STATUS_OUTPUT) == 1000
