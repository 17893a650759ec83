from __future__ import annotations

import pytest

from container_audit.errors import ParseError, TargetNotFound
from container_audit.scanners import (
    find_compose_files, find_dockerfiles, find_env_files, read_text, scan_compose,
    scan_dockerfile, scan_env_file,
)

COMPOSE = """\
version: "3.9"

services:
  db:
    build: ./db
    restart: unless-stopped
    volumes:
      - db-data:/var/lib/postgresql/data
    healthcheck:
      test: ["CMD-SHELL", "pg_isready -U postgres"]
      interval: 5s
    networks:
      - backend

  api:
    build: ./api
    restart: "on-failure"
    depends_on:
      db:
        condition: service_healthy
    healthcheck:
      test: ["CMD", "wget", "-qO-", "http://localhost:3000/status"]
    networks:
      - backend

  frontend:
    build: ./frontend
    depends_on:
      - api

networks:
  backend:

volumes:
  db-data:
"""


def test_scan_compose_extracts_structure():
    facts = scan_compose("docker-compose.yml", COMPOSE)
    assert facts.services == ("db", "api", "frontend")
    assert facts.has_networks and facts.has_volumes
    assert facts.depends_on_count == 2
    assert facts.healthcheck_count == 2
    assert facts.restart_policies == {"db": "unless-stopped", "api": "on-failure"}


def test_service_level_networks_are_not_top_level():
    text = "services:\n  api:\n    image: x\n    networks:\n      - a\n    volumes:\n      - ./x:/x\n"
    facts = scan_compose("compose.yml", text)
    assert facts.services == ("api",)
    assert not facts.has_networks
    assert not facts.has_volumes
    assert facts.restart_policies == {}


def test_scan_compose_rejects_non_yaml_text():
    with pytest.raises(ParseError):
        scan_compose("compose.yml", "   just some indented text\n")


def test_scan_dockerfile():
    text = """\
# syntax=docker/dockerfile:1
FROM --platform=linux/amd64 node:22-alpine AS deps
WORKDIR /app
COPY package*.json ./
RUN npm ci --omit=dev

FROM node:22-alpine
ARG APP_VERSION
ENV NODE_ENV=production \\
    PORT=3000
ENV LOG_LEVEL info
COPY --from=deps /app/node_modules ./node_modules
USER node
CMD ["node", "src/app.js"]
"""
    facts = scan_dockerfile("api/Dockerfile", text)
    assert facts.service == "api"
    assert facts.from_images == ("node:22-alpine", "node:22-alpine")
    assert facts.final_base == "node:22-alpine"
    assert facts.users == ("node",)
    assert facts.env_keys == ("NODE_ENV", "PORT", "LOG_LEVEL")
    assert facts.arg_keys == ("APP_VERSION",)
    assert facts.secret_hits == ()


def test_scan_dockerfile_legacy_env_secret():
    facts = scan_dockerfile("db/Dockerfile", "FROM postgres:16\nENV POSTGRES_PASSWORD supersecret\n")
    assert facts.secret_hits == ((2, "POSTGRES_PASSWORD"),)


def test_scan_dockerfile_without_from_is_parse_error():
    with pytest.raises(ParseError):
        scan_dockerfile("x/Dockerfile", "RUN echo hi\n")


def test_scan_env_file():
    text = "# comment\nexport PORT=3000\nDB_PASSWORD='postgres'\nEMPTY=\nnot a pair\n"
    facts = scan_env_file(".env", text)
    assert facts.entries == (("PORT", "3000"), ("DB_PASSWORD", "postgres"), ("EMPTY", ""))


def test_read_text_missing_file(tmp_path):
    with pytest.raises(TargetNotFound) as exc:
        read_text(str(tmp_path / "nope"), "Dockerfile")
    assert str(exc.value).endswith("not found")


def test_discovery(tmp_path):
    for rel in ("api/Dockerfile", "frontend/Dockerfile", "db/Dockerfile.dev",
                "node_modules/pkg/Dockerfile", ".env", "api/.env.example", "docker-compose.yml"):
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("FROM scratch\n")

    dockerfiles = [p.replace(str(tmp_path), "").lstrip("/\\") for p in find_dockerfiles(str(tmp_path))]
    assert sorted(dockerfiles) == sorted(["api/Dockerfile", "db/Dockerfile.dev", "frontend/Dockerfile"])
    env_files = [p.replace(str(tmp_path), "").lstrip("/\\") for p in find_env_files(str(tmp_path))]
    assert sorted(env_files) == [".env", "api/.env.example"]
    assert find_compose_files(str(tmp_path)) == [str(tmp_path / "docker-compose.yml")]
