# tests/conftest.py
from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from container_audit.categories import Adapters
from container_audit.config import AuditConfig
from container_audit.errors import TargetNotFound
from container_audit.http_probe import HttpProbe
from container_audit.models import ContainerFacts, ImageFacts
from container_audit.vuln_scanner import TrivyScanner

ITEMS = [
    {"id": 1, "title": "First", "body": "Hello", "createdAt": "2024-01-01T00:00:00.000Z"},
    {"id": 2, "title": "Second", "body": "World", "createdAt": "2024-01-02T00:00:00.000Z"},
]


def hardened(name: str, **overrides) -> ContainerFacts:
    """A container that passes every container rule."""
    values = dict(
        name=name,
        pid1_user="app",
        entry_user="app",
        uid=1000,
        configured_user="app",
        cap_add=(),
        cap_drop=("ALL",),
        security_opt=("no-new-privileges:true",),
        privileged=False,
        memory_limit=512 * 1024 * 1024,
        cpu_cores=0.5,
        readonly_rootfs=True,
        env=("NODE_ENV=production",),
    )
    values.update(overrides)
    return ContainerFacts(**values)


@pytest.fixture
def container_facts():
    return hardened


class FakeInspector:
    def __init__(self, containers=None, images=None, failing=()):
        self.containers = dict(containers or {})
        self.images = dict(images or {})
        self.failing = set(failing)

    def list_containers(self):
        return list(self.containers)

    def list_images(self):
        return list(self.images)

    def inspect_container(self, name):
        if name in self.failing or name not in self.containers:
            raise TargetNotFound(f"Container {name}")
        return self.containers[name]

    def inspect_image(self, tag):
        if tag not in self.images:
            raise TargetNotFound(f"Image {tag}")
        return self.images[tag]


@pytest.fixture
def make_adapters():
    def _make(containers=None, images=None, failing=(), timeout=2.0):
        return Adapters(
            inspector=FakeInspector(containers, images, failing),
            probe=HttpProbe(timeout=timeout),
            trivy=TrivyScanner(trivy_bin="trivy-not-installed-for-tests"),
        )
    return _make


@pytest.fixture
def image_facts():
    def _make(tag, base="node", layers=10, size_mb=120):
        return ImageFacts(tag=tag, base_image=base, layer_count=layers,
                          size_bytes=int(size_mb * 1024 * 1024))
    return _make


@pytest.fixture
def config(tmp_path):
    return AuditConfig(project_root=str(tmp_path), workers=1)


class _ApiHandler(BaseHTTPRequestHandler):
    database_healthy = True

    def log_message(self, *args):
        pass

    def _send(self, status, payload):
        body = json.dumps(payload).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        path = self.path.rstrip("/")
        if path == "/status":
            self._send(200, {"status": "OK"})
        elif path == "/ready":
            healthy = type(self).database_healthy
            self._send(200 if healthy else 503, {
                "ready": healthy,
                "database": "healthy" if healthy else "unhealthy",
                "timestamp": "2024-01-01T00:00:00.000Z",
            })
        elif path == "/items":
            self._send(200, ITEMS)
        elif path.startswith("/items/"):
            try:
                item_id = int(path.rsplit("/", 1)[-1])
            except ValueError:
                item_id = -1
            match = [i for i in ITEMS if i["id"] == item_id]
            if match:
                self._send(200, match[0])
            else:
                self._send(404, {"success": False, "error": {"message": "Item not found", "statusCode": 404}})
        else:
            self._send(404, {"success": False, "error": {"message": f"Route GET {path} not found", "statusCode": 404}})


@pytest.fixture
def api_server():
    """Local stand-in for the REST API; yields (base_url, handler class)."""
    handler = type("ApiHandler", (_ApiHandler,), {"database_healthy": True})
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}", handler
    finally:
        server.shutdown()
        server.server_close()
