"""
Tests for stagefix.config — stack.toml loading, stage mapping and the
rendered remote stage file.
"""

import tomllib
from pathlib import Path

import pytest

from stagefix.config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_VAULT_PASSWORD_FILE,
    EnvironmentConfig,
    load_config,
    parse_config,
    render_stage_config,
    stage_for_environment,
)
from stagefix.errors import ConfigError


class TestLoadConfig:
    def test_missing_file_returns_empty_config(self, tmp_path):
        config = load_config(tmp_path)
        assert config.exists is False
        assert config.environments == {}
        assert config.path == tmp_path / "stack.toml"

    def test_valid_file_is_parsed(self, tmp_path):
        (tmp_path / "stack.toml").write_text(
            'name = "shop"\n'
            'github_repo = "acme/shop"\n'
            "\n"
            "[staging]\n"
            'host = "staging.example.com"\n'
        )
        config = load_config(tmp_path)
        assert config.exists is True
        assert config.name == "shop"
        assert config.github_repo == "acme/shop"
        assert config.environments["staging"].host == "staging.example.com"

    def test_malformed_toml_raises_config_error(self, tmp_path):
        (tmp_path / "stack.toml").write_text("name = [not valid\n")
        with pytest.raises(ConfigError) as exc:
            load_config(tmp_path)
        assert "stack.toml" in exc.value.message
        assert str(tmp_path / "stack.toml") in exc.value.hint

    def test_explicit_path_overrides_workspace(self, tmp_path):
        other = tmp_path / "elsewhere.toml"
        other.write_text('name = "other"\n')
        assert load_config(tmp_path, path=other).name == "other"


class TestParseConfig:
    def test_reserved_keys_are_not_environments(self):
        config = parse_config({
            "name": "shop",
            "ansible": {"vault_path": "v.yml"},
            "ci": {"workflow": "deploy.yml"},
            "prod": {"host": "example.com"},
        })
        assert list(config.environments) == ["prod"]

    def test_unknown_tables_are_ignored(self):
        config = parse_config({"database": {"url": "x"}})
        assert config.environments == {}

    def test_domain_is_host_fallback(self):
        config = parse_config({"staging": {"domain": "s.example.com"}})
        assert config.environments["staging"].host == "s.example.com"

    def test_ssh_user_defaults_to_ubuntu(self):
        config = parse_config({"prod": {"host": "p"}})
        assert config.environments["prod"].ssh_user == "ubuntu"

    def test_environments_for_stage_keeps_file_order(self):
        config = parse_config({
            "staging2": {"host": "b"},
            "prod": {"host": "p"},
            "staging": {"host": "a"},
        })
        assert [e.name for e in config.environments_for_stage("staging")] == ["staging2", "staging"]

    def test_defaults(self):
        config = parse_config({})
        assert config.vault_password_file == DEFAULT_VAULT_PASSWORD_FILE
        assert config.poll_interval == DEFAULT_POLL_INTERVAL
        assert config.ci_ref == "main"

    def test_ci_settings(self):
        config = parse_config({"ci": {"workflow": "x.yml", "ref": "release", "poll_interval": 3, "timeout": "60"}})
        assert config.workflow == "x.yml"
        assert config.ci_ref == "release"
        assert config.poll_interval == 3.0
        assert config.poll_timeout == 60.0

    def test_vault_file_is_relative_to_workspace(self, tmp_path):
        config = parse_config({"ansible": {"vault_path": "group_vars/all/vault.yml"}})
        assert config.vault_file(tmp_path) == tmp_path / "group_vars" / "all" / "vault.yml"

    def test_project_name_falls_back_to_directory(self, tmp_path):
        ws = tmp_path / "my-app"
        ws.mkdir()
        assert parse_config({}).project_name(ws) == "my-app"


class TestStageForEnvironment:
    @pytest.mark.parametrize("name, stage", [
        ("dev", "dev"),
        ("secrets", "secrets"),
        ("staging", "staging"),
        ("staging-eu", "staging"),
        ("stage-2", "staging"),
        ("prod", "prod"),
        ("prod-us", "prod"),
        ("production", "prod"),
        ("qa", None),
    ])
    def test_mapping(self, name, stage):
        assert stage_for_environment(name) == stage


class TestRenderStageConfig:
    def test_rendered_file_parses_back(self):
        env = EnvironmentConfig(
            name="staging", stage="staging", host="s.example.com", ssh_user="deploy",
            deploy_command='docker compose up -d --build "web"',
        )
        text = render_stage_config("shop", "staging", env, github_repo="acme/shop")
        config = parse_config(tomllib.loads(text))
        assert config.name == "shop"
        assert config.github_repo == "acme/shop"
        parsed = config.environments["staging"]
        assert parsed.host == "s.example.com"
        assert parsed.ssh_user == "deploy"
        assert parsed.deploy_command == 'docker compose up -d --build "web"'

    def test_rendering_is_stable(self):
        env = EnvironmentConfig(name="prod", stage="prod", host="p")
        assert render_stage_config("shop", "prod", env) == render_stage_config("shop", "prod", env)
