"""
Provider interface.

A provider contributes Fix descriptors and, for the environments it owns,
decides how a stage is reached. Ownership is explicit: an environment's
`pipeline` tag in stack.toml names its provider (untagged environments
belong to the config-level `pipeline`, default "stack").

Subclasses must:
  1. Set `id` and `name`
  2. Provide `fixes` (a tuple, built once at import time)
  3. Optionally override resolve() for stages they own
"""

from __future__ import annotations

import dataclasses
from abc import ABC
from typing import Iterable

from stagefix.config import EnvironmentConfig, StackConfig
from stagefix.fixes.base import Fix, Stage
from stagefix.resolver import Reachability, owned_environments, resolve
from stagefix.signals import Signals


class Provider(ABC):
    id: str = "base"
    name: str = "Base Provider"

    # Immutable tuple prevents accidental mutation of the shared class attribute.
    fixes: tuple[Fix, ...] = ()

    # ── Ownership ─────────────────────────────────────────────────────────────

    def environments(self, stage: Stage, config: StackConfig) -> list[EnvironmentConfig]:
        """This provider's environments for `stage`, in file order."""
        return owned_environments(stage, config, self.id)

    # ── Reachability ──────────────────────────────────────────────────────────

    def resolve(self, stage: Stage, config: StackConfig, signals: Signals) -> Reachability:
        return resolve(stage, config, signals, provider_id=self.id)

    # ── CI ────────────────────────────────────────────────────────────────────

    def workflow_for(self, stage: Stage, config: StackConfig) -> str:
        """Workflow file to dispatch for `stage`: per-environment, else [ci].workflow."""
        for env in self.environments(stage, config):
            if env.workflow:
                return env.workflow
        return config.workflow

    def __repr__(self) -> str:
        return f"<Provider {self.id}>"


def tag_fixes(provider_id: str, fixes: Iterable[Fix]) -> tuple[Fix, ...]:
    """Stamp each fix with the id of the provider that contributes it."""
    return tuple(dataclasses.replace(f, provider=provider_id) for f in fixes)
