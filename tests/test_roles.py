import logging

import pytest

from container_audit.roles import Role, is_database_like, parse_role, resolve_role


@pytest.mark.parametrize("name,role", [
    ("myapp-db-1", Role.DATABASE),
    ("postgres", Role.DATABASE),
    ("myapp-frontend-1", Role.WEB_FRONTEND),
    ("nginx-proxy", Role.WEB_FRONTEND),
    ("myapp-api-1", Role.API_BACKEND),
    ("worker", Role.UNKNOWN),
])
def test_inferred_roles(name, role):
    assert resolve_role(name) is role


def test_ambiguous_name_gets_least_privileged_role(caplog):
    with caplog.at_level(logging.WARNING, logger="container_audit.roles"):
        assert resolve_role("api-db-sync") is Role.API_BACKEND
    assert "api-db-sync" in caplog.text


def test_explicit_role_wins():
    explicit = {"cache": Role.DATABASE, "api-db-sync": Role.DATABASE}
    assert resolve_role("api-db-sync", explicit) is Role.DATABASE
    assert resolve_role("myapp-cache-1", explicit) is Role.DATABASE
    assert resolve_role("cachet", explicit) is Role.UNKNOWN


def test_parse_role():
    assert parse_role(" Database ") is Role.DATABASE
    with pytest.raises(ValueError):
        parse_role("cache")


def test_is_database_like():
    assert is_database_like("db")
    assert is_database_like("mongo-primary")
    assert not is_database_like("api")
    assert is_database_like("myapp_redis_1")


@pytest.mark.parametrize("name", ["sandbox", "feedback", "dbt-docs", "apiary"])
def test_substrings_inside_a_word_do_not_match(name):
    assert not is_database_like(name)
    assert resolve_role(name) is Role.UNKNOWN
