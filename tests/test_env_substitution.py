"""Tests for environment variable substitution in configs."""

import pytest

from filegen.config.env_substitution import (
    apply_env_substitution,
    find_env_references,
    substitute_env_vars,
)


def test_simple_substitution(monkeypatch):
    monkeypatch.setenv("FG_TEST_VAR", "hello")
    assert substitute_env_vars("${FG_TEST_VAR} world") == "hello world"


def test_default_used_only_when_unset(monkeypatch):
    monkeypatch.delenv("FG_UNSET", raising=False)
    assert substitute_env_vars("${FG_UNSET:fallback}") == "fallback"
    assert substitute_env_vars("${FG_UNSET:}") == ""

    monkeypatch.setenv("FG_UNSET", "actual")
    assert substitute_env_vars("${FG_UNSET:fallback}") == "actual"


def test_missing_var_raises():
    with pytest.raises(ValueError, match="Environment variable 'FG_MISSING' is not set"):
        substitute_env_vars("${FG_MISSING}", environ={})


def test_escaped_reference_is_literal():
    """``$${VAR}`` survives as ``${VAR}`` so SQL templates can carry the syntax."""
    assert substitute_env_vars("WHERE x = '$${LITERAL}'", environ={}) == "WHERE x = '${LITERAL}'"


def test_nested_structures():
    env = {"DB_HOST": "localhost", "DB_PORT": "5432"}
    config = {
        "database": {"conn_str": "host=${DB_HOST};port=${DB_PORT}", "timeout_seconds": 30},
        "interfaces": [{"query": "SELECT 1"}, "${DB_HOST}"],
        "enabled": True,
    }
    result = substitute_env_vars(config, environ=env)
    assert result == {
        "database": {"conn_str": "host=localhost;port=5432", "timeout_seconds": 30},
        "interfaces": [{"query": "SELECT 1"}, "localhost"],
        "enabled": True,
    }


def test_apply_env_substitution_reads_process_environment(monkeypatch):
    monkeypatch.setenv("FG_OUT", "/srv/out")
    assert apply_env_substitution({"settings": {"output_directory": "${FG_OUT}"}}) == {
        "settings": {"output_directory": "/srv/out"}
    }


def test_find_env_references():
    config = {
        "a": "${ONE} and ${TWO:x}",
        "b": ["${ONE}", {"c": "$${ESCAPED}"}],
        "d": 5,
    }
    assert find_env_references(config) == ["ONE", "TWO"]
