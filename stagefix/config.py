"""
Config file loading for stagefix.

Reads <workspace>/stack.toml and returns a StackConfig. A missing file is
not an error — it yields an empty config so the dev-stage fixes can report
(and create) it. A file that exists but cannot be parsed raises ConfigError.

Layout:
    name = "my-app"
    github_repo = "acme/my-app"

    [ansible]
    vault_path = "group_vars/all/vault.yml"
    vault_password_file = "~/.vault_pass"

    [ci]
    workflow = "stagefix.yml"

    [staging]              # any non-reserved table is an environment
    host = "staging.example.com"
    ssh_user = "ubuntu"
    pipeline = "stack"     # provider that owns this environment
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from stagefix.errors import ConfigError
from stagefix.fixes.base import Stage


CONFIG_FILENAME = "stack.toml"

# Top-level keys that are never environments.
RESERVED_KEYS = frozenset((
    "name",
    "github_repo",
    "pipeline",
    "ansible",
    "ci",
    "ssl_email",
))

DEFAULT_SSH_USER = "ubuntu"
DEFAULT_VAULT_PATH = "group_vars/all/vault.yml"
DEFAULT_VAULT_PASSWORD_FILE = "~/.vault_pass"
DEFAULT_WORKFLOW = "stagefix.yml"
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_POLL_TIMEOUT = 15 * 60.0


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass
class EnvironmentConfig:
    name: str                       # "staging", "staging2", "prod"
    stage: Stage
    host: Optional[str] = None
    ssh_user: str = DEFAULT_SSH_USER
    pipeline: Optional[str] = None  # ownership tag; None → config default
    deploy_command: Optional[str] = None
    workflow: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class StackConfig:
    name: Optional[str] = None
    github_repo: Optional[str] = None
    pipeline: Optional[str] = None
    ansible: dict[str, Any] = field(default_factory=dict)
    ci: dict[str, Any] = field(default_factory=dict)
    environments: dict[str, EnvironmentConfig] = field(default_factory=dict)
    path: Optional[Path] = None
    exists: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    # ── Environments ──────────────────────────────────────────────────────────

    def environments_for_stage(self, stage: Stage) -> list[EnvironmentConfig]:
        """Return this stage's environments in file order."""
        return [env for env in self.environments.values() if env.stage == stage]

    def project_name(self, workspace: Path) -> str:
        return self.name or workspace.resolve().name

    # ── Ansible vault ─────────────────────────────────────────────────────────

    @property
    def vault_path(self) -> str:
        return str(self.ansible.get("vault_path") or DEFAULT_VAULT_PATH)

    @property
    def vault_password_file(self) -> str:
        return str(self.ansible.get("vault_password_file") or DEFAULT_VAULT_PASSWORD_FILE)

    def vault_file(self, workspace: Path) -> Path:
        path = Path(os.path.expanduser(self.vault_path))
        return path if path.is_absolute() else workspace / path

    # ── CI ────────────────────────────────────────────────────────────────────

    @property
    def workflow(self) -> str:
        return str(self.ci.get("workflow") or DEFAULT_WORKFLOW)

    @property
    def ci_ref(self) -> str:
        return str(self.ci.get("ref") or "main")

    @property
    def poll_interval(self) -> float:
        return _as_float(self.ci.get("poll_interval"), DEFAULT_POLL_INTERVAL)

    @property
    def poll_timeout(self) -> float:
        return _as_float(self.ci.get("timeout"), DEFAULT_POLL_TIMEOUT)


# ── Public API ────────────────────────────────────────────────────────────────

def load_config(workspace: Path, path: Path | None = None) -> StackConfig:
    """
    Load <workspace>/stack.toml (or `path`) into a StackConfig.

    Raises ConfigError if the file exists but is unreadable or malformed.
    """
    config_path = path or workspace / CONFIG_FILENAME

    if not config_path.is_file():
        return StackConfig(path=config_path, exists=False)

    try:
        raw = config_path.read_bytes()
    except OSError as e:
        raise ConfigError(
            f"Cannot read {config_path}: {e.strerror or e}",
            f"Check permissions: ls -l {config_path}",
        ) from e

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(
            f"Error parsing {config_path.name}: {e}",
            f"Fix the syntax in {config_path}",
        ) from e

    return parse_config(data, path=config_path)


def parse_config(data: dict[str, Any], path: Path | None = None) -> StackConfig:
    """Build a StackConfig from an already-parsed TOML document."""
    environments: dict[str, EnvironmentConfig] = {}
    for key, value in data.items():
        if key in RESERVED_KEYS or not isinstance(value, dict):
            continue
        stage = stage_for_environment(key)
        if stage is None:
            continue
        environments[key] = EnvironmentConfig(
            name=key,
            stage=stage,
            host=_opt_str(value.get("host") or value.get("domain")),
            ssh_user=str(value.get("ssh_user") or DEFAULT_SSH_USER),
            pipeline=_opt_str(value.get("pipeline")),
            deploy_command=_opt_str(value.get("deploy_command")),
            workflow=_opt_str(value.get("workflow")),
            raw=dict(value),
        )

    return StackConfig(
        name=_opt_str(data.get("name")),
        github_repo=_opt_str(data.get("github_repo")),
        pipeline=_opt_str(data.get("pipeline")),
        ansible=dict(data.get("ansible") or {}),
        ci=dict(data.get("ci") or {}),
        environments=environments,
        path=path,
        exists=path is not None,
        raw=data,
    )


def stage_for_environment(name: str) -> Stage | None:
    """
    Map an environment name to its stage.

      dev                       → dev
      secrets                   → secrets
      staging*, stage-*         → staging
      prod*, production         → prod

    Returns None for names that match no stage.
    """
    if name == "dev":
        return "dev"
    if name == "secrets":
        return "secrets"
    if name.startswith("staging") or name.startswith("stage-"):
        return "staging"
    if name.startswith("prod") or name == "production":
        return "prod"
    return None


def render_stage_config(
    project: str,
    stage: Stage,
    env: EnvironmentConfig,
    github_repo: str | None = None,
) -> str:
    """
    Render the minimal stack.toml a remote host needs to know its own
    identity and target stage.
    """
    lines = [
        "# Managed by stagefix bootstrap. Local edits are overwritten.",
        f"name = {_toml_str(project)}",
    ]
    if github_repo:
        lines.append(f"github_repo = {_toml_str(github_repo)}")
    lines += [
        "",
        f"[{env.name}]",
        f"stage = {_toml_str(stage)}",
    ]
    if env.host:
        lines.append(f"host = {_toml_str(env.host)}")
    lines.append(f"ssh_user = {_toml_str(env.ssh_user)}")
    if env.pipeline:
        lines.append(f"pipeline = {_toml_str(env.pipeline)}")
    if env.deploy_command:
        lines.append(f"deploy_command = {_toml_str(env.deploy_command)}")
    return "\n".join(lines) + "\n"


# ── Internal ──────────────────────────────────────────────────────────────────

def _toml_str(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default
