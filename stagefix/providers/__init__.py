"""
Provider registry.

An explicit, ordered table built at import time. Fix registration order
(provider order, then each provider's own order) is the order fixes are
scanned and corrected within a stage.
"""

from __future__ import annotations

from stagefix.config import EnvironmentConfig, StackConfig
from stagefix.fixes.base import Fix, Stage
from stagefix.providers.aws import AwsProvider
from stagefix.providers.base import Provider
from stagefix.providers.stack import StackProvider
from stagefix.resolver import DEFAULT_PROVIDER, owner_of


PROVIDERS: tuple[Provider, ...] = (
    StackProvider(),
    AwsProvider(),
)


def _check_unique(providers: tuple[Provider, ...]) -> None:
    seen: set[str] = set()
    for provider in providers:
        if provider.id in seen:
            raise ValueError(f"duplicate provider id: {provider.id}")
        seen.add(provider.id)
    fix_ids: set[str] = set()
    for provider in providers:
        for fix in provider.fixes:
            if fix.id in fix_ids:
                raise ValueError(f"duplicate fix id: {fix.id} ({provider.id})")
            fix_ids.add(fix.id)


_check_unique(PROVIDERS)


def get_provider(provider_id: str) -> Provider | None:
    for provider in PROVIDERS:
        if provider.id == provider_id:
            return provider
    return None


def all_fixes(providers: tuple[Provider, ...] = PROVIDERS) -> list[Fix]:
    """Every registered fix, in registration order."""
    return [fix for provider in providers for fix in provider.fixes]


Route = tuple[Provider, list[EnvironmentConfig]]


def _provider_or_default(provider_id: str) -> Provider:
    provider = get_provider(provider_id)
    if provider is None:
        provider = get_provider(DEFAULT_PROVIDER)
    assert provider is not None
    return provider


def routes_for_stage(stage: Stage, config: StackConfig) -> list[Route]:
    """
    The providers that decide reachability for `stage`, each with its
    environments.

    dev and secrets have one route, owned by the config-level pipeline.
    staging and prod have one route per distinct owner of the stage's
    environments, in the order owners first appear in stack.toml; a stage
    with no environments has a single route for the config-level pipeline.
    Unknown ids fall back to the default provider.
    """
    envs = config.environments_for_stage(stage)
    default = config.pipeline or DEFAULT_PROVIDER
    if stage in ("dev", "secrets") or not envs:
        return [(_provider_or_default(default), envs)]

    routes: dict[str, Route] = {}
    for env in envs:
        provider = _provider_or_default(owner_of(env, config))
        routes.setdefault(provider.id, (provider, []))[1].append(env)
    return list(routes.values())

