"""
Stack provider — the default pipeline.

Owns every environment not tagged for another provider. Reaches staging
and prod over SSH with a stage-specific deploy key, falling back to a CI
workflow when only a CI token is available.

Fixes:
  dev
    - missing-stack-config        stack.toml not found (writes a starter file)
    - example-values-in-config    EXAMPLE- placeholders left in stack.toml
    - gitignore-env-files         .env files not ignored by git
    - missing-env-example         .env.example not found
  secrets
    - vault-password-file-missing vault password file not found
    - group-vars-missing          group_vars/all/ directory not found
    - vault-file-missing          encrypted vault not found
    - <stage>-deploy-key-missing  ~/.ssh/<stage>_deploy_key not on disk
  staging / prod (evaluated on the target host)
    - <stage>-env-file-missing    .env.<stage> not in the project directory
    - <stage>-docker-missing      docker not installed
    - <stage>-git-missing         git not installed
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import yaml

from stagefix.config import CONFIG_FILENAME, StackConfig
from stagefix.errors import CorrectionFailure
from stagefix.fixes.base import Fix, FixContext, ScanFinding, Stage
from stagefix.providers.base import Provider, tag_fixes
from stagefix.remote import CommandResult
from stagefix.resolver import vault_password_available, vault_password_file


_ENV_FILES = (".env", ".env.staging", ".env.prod")

_STARTER_CONFIG = """\
# stagefix project configuration.
# Replace every EXAMPLE- value before running `stagefix fix`.

name = "{name}"
github_repo = "EXAMPLE-owner/{name}"

[ansible]
vault_path = "group_vars/all/vault.yml"
vault_password_file = "~/.vault_pass"

[ci]
workflow = "stagefix.yml"

[staging]
host = "EXAMPLE-staging.example.com"
ssh_user = "ubuntu"

[prod]
host = "EXAMPLE-prod.example.com"
ssh_user = "ubuntu"
"""


# ── Helpers ───────────────────────────────────────────────────────────────────

def _config_path(workspace: Path) -> Path:
    return workspace / CONFIG_FILENAME


@contextmanager
def _vault_args(config: StackConfig, context: FixContext) -> Iterator[list[str]]:
    """
    ansible-vault password arguments, in the order the resolver checks them.

    A password from the environment is written to a private temporary file
    for the duration of the command and removed afterwards.
    """
    signals = context.signals
    if signals.vault_password:
        fd, name = tempfile.mkstemp(prefix="stagefix-vault-")
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w") as handle:
                handle.write(signals.vault_password)
            yield ["--vault-password-file", name]
        finally:
            os.unlink(name)
        return

    path = vault_password_file(config, context.signals)
    yield ["--vault-password-file", str(path)] if path is not None else []


def _run_vault(
    action: str, config: StackConfig, workspace: Path, context: FixContext,
) -> CommandResult:
    vault = config.vault_file(workspace)
    with _vault_args(config, context) as args:
        return context.runner.run(["ansible-vault", action, *args, str(vault)], cwd=workspace)


def _has_environments(config: StackConfig, stage: Stage) -> bool:
    return bool(config.environments_for_stage(stage))


# ── dev ───────────────────────────────────────────────────────────────────────

def _scan_missing_config(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    return not _config_path(workspace).is_file()


def _write_starter_config(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    path = _config_path(workspace)
    if path.exists():
        return True
    path.write_text(_STARTER_CONFIG.format(name=workspace.resolve().name))
    return True


def _scan_example_values(config: StackConfig, workspace: Path, context: FixContext) -> ScanFinding:
    path = _config_path(workspace)
    if not path.is_file():
        return ScanFinding(False)
    lines = [
        str(n) for n, line in enumerate(path.read_text().splitlines(), 1)
        if "EXAMPLE-" in line
    ]
    return ScanFinding(bool(lines), f"line {', '.join(lines)}" if lines else "")


def _missing_gitignore_entries(workspace: Path) -> list[str]:
    path = workspace / ".gitignore"
    present = set()
    if path.is_file():
        present = {line.strip() for line in path.read_text().splitlines()}
    return [entry for entry in _ENV_FILES if entry not in present]


def _scan_gitignore(config: StackConfig, workspace: Path, context: FixContext) -> ScanFinding:
    missing = _missing_gitignore_entries(workspace)
    return ScanFinding(bool(missing), ", ".join(missing))


def _fix_gitignore(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    missing = _missing_gitignore_entries(workspace)
    if not missing:
        return True
    path = workspace / ".gitignore"
    existing = path.read_text() if path.is_file() else ""
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    path.write_text(existing + prefix + "\n".join(missing) + "\n")
    return True


def _scan_env_example(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    return not (workspace / ".env.example").is_file()


def _write_env_example(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    """Copy key names (never values) from .env into .env.example."""
    target = workspace / ".env.example"
    if target.exists():
        return True
    keys: list[str] = []
    source = workspace / ".env"
    if source.is_file():
        for line in source.read_text().splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith("#") and "=" in stripped:
                keys.append(stripped.split("=", 1)[0].strip())
    body = "# Copy to .env and fill in values.\n" + "".join(f"{k}=\n" for k in keys)
    target.write_text(body)
    return True


# ── secrets ───────────────────────────────────────────────────────────────────

def _scan_password_file(config: StackConfig, workspace: Path, context: FixContext) -> ScanFinding:
    path = context.signals.expand(config.vault_password_file)
    return ScanFinding(not vault_password_available(config, context.signals), str(path))


def _scan_group_vars(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    return not (workspace / "group_vars" / "all").is_dir()


def _fix_group_vars(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    (workspace / "group_vars" / "all").mkdir(parents=True, exist_ok=True)
    return True


def _scan_vault_file(config: StackConfig, workspace: Path, context: FixContext) -> ScanFinding:
    # Can't create a vault without a password; the password fix covers that.
    if not vault_password_available(config, context.signals):
        return ScanFinding(False)
    vault = config.vault_file(workspace)
    return ScanFinding(not vault.is_file(), str(vault))


def _fix_vault_file(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    vault = config.vault_file(workspace)
    if vault.is_file():
        return True
    vault.parent.mkdir(parents=True, exist_ok=True)
    vault.write_text("_initialized: 'true'\n")
    result = _run_vault("encrypt", config, workspace, context)
    if not result.ok:
        vault.unlink(missing_ok=True)
        raise CorrectionFailure(
            f"ansible-vault encrypt failed: {result.stderr.strip() or f'exit {result.returncode}'}",
            "Install Ansible (pip install ansible-core) and re-run: stagefix fix --secrets",
        )
    return True


def _read_vault(config: StackConfig, workspace: Path, context: FixContext) -> dict:
    vault = config.vault_file(workspace)
    result = _run_vault("view", config, workspace, context)
    if not result.ok:
        raise CorrectionFailure(
            f"cannot decrypt {vault}: {result.stderr.strip() or f'exit {result.returncode}'}",
            f"Check the password: ansible-vault view {vault}",
        )
    data = yaml.safe_load(result.stdout) or {}
    if not isinstance(data, dict):
        raise CorrectionFailure(f"{vault} does not contain a mapping")
    return data


def _deploy_key_fix(stage: Stage) -> Fix:
    label = f"{stage.upper()}_SSH"

    def scan(config: StackConfig, workspace: Path, context: FixContext) -> ScanFinding:
        if not _has_environments(config, stage):
            return ScanFinding(False)
        key = context.signals.deploy_key(stage)
        return ScanFinding(not key.is_file(), str(key))

    def correct(config: StackConfig, workspace: Path, context: FixContext) -> bool:
        key = context.signals.deploy_key(stage)
        if key.is_file():
            return True
        secrets = _read_vault(config, workspace, context)
        material = secrets.get(label)
        if not material:
            raise CorrectionFailure(
                f"{label} is not stored in {config.vault_path}",
                f"Add it: ansible-vault edit {config.vault_path}  ({label}: |  <private key>)",
            )
        key.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        key.write_text(str(material).rstrip("\n") + "\n")
        key.chmod(0o600)
        return True

    return Fix(
        id=f"{stage}-deploy-key-missing",
        stage="secrets",
        severity="critical",
        description=f"{label} deploy key not found at ~/.ssh/{stage}_deploy_key",
        scan=scan,
        correct=correct,
        manual_instructions=(
            f"Store the key: ansible-vault edit <vault>  ({label}: |  <private key>), "
            f"then run: stagefix fix --secrets"
        ),
    )


# ── staging / prod ────────────────────────────────────────────────────────────

def _host_fixes(stage: Stage) -> list[Fix]:
    env_file = f".env.{stage}"

    def scan_env_file(config: StackConfig, workspace: Path, context: FixContext) -> bool:
        return _has_environments(config, stage) and not (workspace / env_file).is_file()

    def scan_docker(config: StackConfig, workspace: Path, context: FixContext) -> bool:
        return _has_environments(config, stage) and shutil.which("docker") is None

    def install_docker(config: StackConfig, workspace: Path, context: FixContext) -> bool:
        result = context.runner.run("curl -fsSL https://get.docker.com | sudo -n sh", timeout=900)
        if not result.ok:
            raise CorrectionFailure(
                f"docker install failed: {result.stderr.strip()[-200:] or f'exit {result.returncode}'}",
                "Install manually: https://docs.docker.com/engine/install/",
            )
        return True

    def scan_git(config: StackConfig, workspace: Path, context: FixContext) -> bool:
        return _has_environments(config, stage) and shutil.which("git") is None

    return [
        Fix(
            id=f"{stage}-env-file-missing",
            stage=stage,
            severity="critical",
            description=f"{env_file} not found in the project directory",
            scan=scan_env_file,
            target=True,
            manual_instructions=f"Copy {env_file} to the host: scp {env_file} <user>@<host>:~/.stagefix/<project>/",
        ),
        Fix(
            id=f"{stage}-docker-missing",
            stage=stage,
            severity="critical",
            description="Docker is not installed",
            scan=scan_docker,
            target=True,
            correct=install_docker,
            manual_instructions="Run: curl -fsSL https://get.docker.com | sudo sh",
        ),
        Fix(
            id=f"{stage}-git-missing",
            stage=stage,
            severity="warning",
            description="git is not installed",
            scan=scan_git,
            target=True,
            manual_instructions="Run: sudo apt-get install -y git",
        ),
    ]


# ── Provider ──────────────────────────────────────────────────────────────────

class StackProvider(Provider):
    id = "stack"
    name = "Stack Pipeline"

    fixes = tag_fixes("stack", [
        Fix(
            id="missing-stack-config",
            stage="dev",
            severity="critical",
            description=f"{CONFIG_FILENAME} configuration file not found",
            scan=_scan_missing_config,
            correct=_write_starter_config,
            manual_instructions=f"Run: stagefix fix --dev  (creates a starter {CONFIG_FILENAME})",
        ),
        Fix(
            id="example-values-in-config",
            stage="dev",
            severity="critical",
            description=f"{CONFIG_FILENAME} contains EXAMPLE- placeholder values",
            scan=_scan_example_values,
            manual_instructions=(
                f"Replace every EXAMPLE- value in {CONFIG_FILENAME} "
                "(github_repo, staging.host, prod.host) with real values."
            ),
        ),
        Fix(
            id="gitignore-env-files",
            stage="dev",
            severity="warning",
            description=".env files are not listed in .gitignore",
            scan=_scan_gitignore,
            correct=_fix_gitignore,
            manual_instructions="Add .env, .env.staging and .env.prod to .gitignore",
        ),
        Fix(
            id="missing-env-example",
            stage="dev",
            severity="info",
            description=".env.example not found",
            scan=_scan_env_example,
            correct=_write_env_example,
            manual_instructions="Create .env.example listing every variable name without values.",
        ),
        Fix(
            id="vault-password-file-missing",
            stage="secrets",
            severity="critical",
            description="Vault password file not found",
            scan=_scan_password_file,
            manual_instructions=(
                "Run: openssl rand -base64 32 > ~/.vault_pass && chmod 600 ~/.vault_pass  "
                "(or set ansible.vault_password_file in stack.toml)"
            ),
        ),
        Fix(
            id="group-vars-missing",
            stage="secrets",
            severity="critical",
            description="group_vars/all/ directory not found",
            scan=_scan_group_vars,
            correct=_fix_group_vars,
            manual_instructions="Run: mkdir -p group_vars/all",
        ),
        Fix(
            id="vault-file-missing",
            stage="secrets",
            severity="critical",
            description="Encrypted vault file not found",
            scan=_scan_vault_file,
            correct=_fix_vault_file,
            manual_instructions="Run: stagefix fix --secrets",
        ),
        _deploy_key_fix("staging"),
        _deploy_key_fix("prod"),
        *_host_fixes("staging"),
        *_host_fixes("prod"),
    ])
