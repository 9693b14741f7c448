"""
Stage reachability — decide where a stage's corrective actions execute.

resolve() is pure given (stage, config, signals): the only other input
is file existence under signals.home, which is checked on every call
because the secrets stage writes deploy keys mid-run. Results are never
cached.

Rules, in priority order:

  dev       always local
  secrets   local iff a vault password is obtainable
  staging   1. on-target execution mode          → local
  prod      2. no environments for the stage     → unreachable (reported as
                                                   "no route" when there is
                                                   neither key nor token)
            3. environments owned elsewhere      → unreachable
            4. ~/.ssh/<stage>_deploy_key exists  → ssh
            5. CI trigger token available        → workflow
            6. otherwise                         → unreachable, with the
                                                   exact key path and the
                                                   command that provisions it
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, Union

from stagefix.config import EnvironmentConfig, StackConfig
from stagefix.errors import UnreachableStage
from stagefix.fixes.base import Stage
from stagefix.signals import Signals


DEFAULT_PROVIDER = "stack"

Via = Literal["local", "ssh", "workflow", "api"]

REASON_NO_VAULT = "no vault password"
REASON_NO_ENVIRONMENTS = "no environments configured"
REASON_OTHER_PROVIDER = "owned by another provider"
REASON_NO_ROUTE = "no SSH key and no CI token"


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Reachable:
    via: Via
    reachable: Literal[True] = True

    def require(self, stage: Stage) -> "Reachable":
        return self


@dataclass(frozen=True)
class Unreachable:
    reason: str
    hint: str = ""
    reachable: Literal[False] = False

    def require(self, stage: Stage) -> Reachable:
        raise UnreachableStage(stage, self.reason, self.hint)


Reachability = Union[Reachable, Unreachable]


# ── Ownership ─────────────────────────────────────────────────────────────────

def owner_of(env: EnvironmentConfig, config: StackConfig) -> str:
    """The provider id that owns `env`: its tag, else the config default."""
    return env.pipeline or config.pipeline or DEFAULT_PROVIDER


def owned_environments(
    stage: Stage, config: StackConfig, provider_id: str
) -> list[EnvironmentConfig]:
    return [
        env for env in config.environments_for_stage(stage)
        if owner_of(env, config) == provider_id
    ]


# ── Public API ────────────────────────────────────────────────────────────────

def resolve(
    stage: Stage,
    config: StackConfig,
    signals: Signals,
    provider_id: str = DEFAULT_PROVIDER,
) -> Reachability:
    """Return how `stage` can be reached from this process."""
    if stage == "dev":
        return Reachable("local")

    if stage == "secrets":
        return resolve_secrets(config, signals)

    if stage in ("staging", "prod"):
        return resolve_remote(stage, config, signals, provider_id)

    return Unreachable(f"unknown stage: {stage}")


def resolve_secrets(config: StackConfig, signals: Signals) -> Reachability:
    if vault_password_available(config, signals):
        return Reachable("local")

    path = signals.expand(config.vault_password_file)
    return Unreachable(
        REASON_NO_VAULT,
        f"Create {path} (chmod 600) or export VAULT_PASSWORD / ANSIBLE_VAULT_PASSWORD_FILE.\n"
        f"Run: openssl rand -base64 32 > {path} && chmod 600 {path}",
    )


def resolve_remote(
    stage: Stage,
    config: StackConfig,
    signals: Signals,
    provider_id: str = DEFAULT_PROVIDER,
) -> Reachability:
    # Already on the target host: never hop again.
    if signals.on_target:
        return Reachable("local")

    key = signals.deploy_key(stage)
    envs = config.environments_for_stage(stage)
    if not envs:
        # Nothing to route to, but a machine with no route at all is told
        # how to get one first.
        if not key.is_file() and not signals.ci_token:
            return _no_route(stage, key, missing_table=True)
        return Unreachable(
            REASON_NO_ENVIRONMENTS,
            f"Add a [{stage}] table with host and ssh_user to stack.toml.",
        )

    if not owned_environments(stage, config, provider_id):
        owners = sorted({owner_of(env, config) for env in envs})
        return Unreachable(
            REASON_OTHER_PROVIDER,
            f"{stage} environments are tagged pipeline = {', '.join(owners)}; "
            f"this provider is '{provider_id}'.",
        )

    if key.is_file():
        return Reachable("ssh")

    if signals.ci_token:
        return Reachable("workflow")

    return _no_route(stage, key)


def _no_route(stage: Stage, key: Path, missing_table: bool = False) -> Unreachable:
    label = f"{stage.upper()}_SSH"
    hint = (
        f"Expected key at {key}.\n"
        f"Run: stagefix fix --secrets   (writes {label} from the vault to {key})\n"
        f"Or export STAGEFIX_CI_TOKEN to route {stage} through CI."
    )
    if missing_table:
        hint += f"\nThen add a [{stage}] table with host and ssh_user to stack.toml."
    return Unreachable(REASON_NO_ROUTE, hint)


def vault_password_file(config: StackConfig, signals: Signals) -> Optional[Path]:
    """The existing password file to hand ansible-vault: ANSIBLE_VAULT_PASSWORD_FILE, else the configured one."""
    if signals.vault_password_file is not None and signals.vault_password_file.is_file():
        return signals.vault_password_file
    path = signals.expand(config.vault_password_file)
    return path if path.is_file() else None


def vault_password_available(config: StackConfig, signals: Signals) -> bool:
    """True if the vault can be unlocked: env password, env file, or config file."""
    if signals.vault_password:
        return True
    return vault_password_file(config, signals) is not None
