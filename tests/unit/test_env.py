"""Tests for environment variable expansion and .env loading."""

import os

import pytest

from cdacopy.lib.env import expand_config, expand_env_vars, load_env_file
from cdacopy.lib.errors import ConfigurationError


class TestExpandEnvVars:
    def test_braced_and_bare_syntax(self, monkeypatch):
        """Both ${VAR} and $VAR are expanded."""
        monkeypatch.setenv("CDA_BUCKET", "prod-cda")
        assert expand_env_vars("${CDA_BUCKET}") == "prod-cda"
        assert expand_env_vars("s3://$CDA_BUCKET/") == "s3://prod-cda/"

    def test_missing_variable_left_in_place(self, monkeypatch):
        """Unset variables stay as written and are collected."""
        monkeypatch.delenv("CDA_MISSING", raising=False)
        missing = []
        assert expand_env_vars("${CDA_MISSING}/out", missing) == "${CDA_MISSING}/out"
        assert missing == ["CDA_MISSING"]


class TestExpandConfig:
    def test_nested_structures(self, monkeypatch):
        """Dicts, lists and dicts inside lists are expanded."""
        monkeypatch.setenv("KEY", "value")
        config = {
            "path": "${KEY}",
            "nested": {"inner": "$KEY"},
            "list": ["${KEY}", {"deep": "${KEY}"}, 3],
            "count": 5,
        }
        resolved, issues = expand_config(config)
        assert issues == []
        assert resolved["path"] == "value"
        assert resolved["nested"]["inner"] == "value"
        assert resolved["list"] == ["value", {"deep": "value"}, 3]
        assert resolved["count"] == 5

    def test_original_not_mutated(self, monkeypatch):
        """A new mapping is returned."""
        monkeypatch.setenv("KEY", "value")
        config = {"output": {"path": "${KEY}"}}
        expand_config(config)
        assert config["output"]["path"] == "${KEY}"

    def test_unset_variables_named_by_field(self, monkeypatch):
        """Each unset reference is reported with the dotted field path."""
        monkeypatch.delenv("CDA_BUCKET", raising=False)
        monkeypatch.delenv("CDA_TABLE", raising=False)
        config = {
            "source": {"bucket_name": "${CDA_BUCKET}"},
            "output": {"tables_to_include": ["policy", "$CDA_TABLE"]},
        }
        _, issues = expand_config(config)
        assert issues == [
            "source.bucket_name references unset environment variable CDA_BUCKET",
            "output.tables_to_include[1] references unset environment variable CDA_TABLE",
        ]


class TestLoadEnvFile:
    def test_loads_variables(self, tmp_path, monkeypatch):
        """Variables in the .env file become visible in os.environ."""
        monkeypatch.delenv("CDA_FROM_DOTENV", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("CDA_FROM_DOTENV=loaded\n", encoding="utf-8")

        assert load_env_file(env_file) is True
        assert os.environ["CDA_FROM_DOTENV"] == "loaded"
        monkeypatch.delenv("CDA_FROM_DOTENV")

    def test_does_not_override_by_default(self, tmp_path, monkeypatch):
        """Existing variables win unless override is requested."""
        monkeypatch.setenv("CDA_FROM_DOTENV", "existing")
        env_file = tmp_path / ".env"
        env_file.write_text("CDA_FROM_DOTENV=loaded\n", encoding="utf-8")

        load_env_file(env_file)
        assert os.environ["CDA_FROM_DOTENV"] == "existing"

    def test_missing_explicit_file(self, tmp_path):
        """A named .env file that does not exist is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_env_file(tmp_path / "absent.env")
        assert exc_info.value.field == "--env-file"
