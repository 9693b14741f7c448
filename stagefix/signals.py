"""
Environment signals — gathered once, passed explicitly.

Nothing below the CLI reads os.environ. The CLI calls gather_signals()
at startup and threads the resulting Signals value (including the
explicit execution mode) through the resolver, remediator and fixes.

File-based signals (deploy keys, vault password file) are NOT frozen
here: keys are written mid-run by the secrets stage, so the resolver
checks the filesystem under `home` on every call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Mapping, Optional


ExecutionMode = Literal["operator", "on_target"]

# Env vars that mark "this process already runs on the target host".
ON_TARGET_MARKERS = ("STAGEFIX_ON_SERVER", "GITHUB_ACTIONS")


@dataclass(frozen=True)
class Signals:
    mode: ExecutionMode = "operator"
    home: Path = Path("~")
    vault_password: Optional[str] = None
    vault_password_file: Optional[Path] = None   # from ANSIBLE_VAULT_PASSWORD_FILE
    ci_token: Optional[str] = None
    aws_credentials: bool = False

    @property
    def on_target(self) -> bool:
        return self.mode == "on_target"

    def expand(self, path: str) -> Path:
        """Expand a leading ~ against this signal set's home directory."""
        if path == "~" or path.startswith("~/"):
            return self.home / path[2:]
        return Path(path)

    def deploy_key(self, stage: str) -> Path:
        """Stage-specific key: ~/.ssh/<stage>_deploy_key. Nothing else counts."""
        return self.home / ".ssh" / f"{stage}_deploy_key"


def gather_signals(
    mode: ExecutionMode | None = None,
    environ: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> Signals:
    """
    Snapshot the process environment into a Signals value.

    Args:
        mode:    Explicit execution mode. When None, an on-target marker
                 variable set to "true" selects "on_target".
        environ: Defaults to os.environ.
        home:    Defaults to Path.home().
    """
    env = os.environ if environ is None else environ

    if mode is None:
        on_target = any(env.get(name, "").lower() == "true" for name in ON_TARGET_MARKERS)
        mode = "on_target" if on_target else "operator"

    password_file = env.get("ANSIBLE_VAULT_PASSWORD_FILE") or None

    return Signals(
        mode=mode,
        home=home or Path.home(),
        vault_password=env.get("VAULT_PASSWORD") or env.get("ANSIBLE_VAULT_PASSWORD") or None,
        vault_password_file=Path(os.path.expanduser(password_file)) if password_file else None,
        ci_token=env.get("STAGEFIX_CI_TOKEN") or env.get("GITHUB_TOKEN") or None,
        aws_credentials=bool(env.get("AWS_ACCESS_KEY_ID") and env.get("AWS_SECRET_ACCESS_KEY")),
    )
