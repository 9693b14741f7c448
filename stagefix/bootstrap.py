"""
Remote bootstrap — prepare a stage's host to run stagefix on itself.

Four steps, in order, each checking before acting so a second run on a
prepared host changes nothing:

  runtime   python3 >= 3.11 present, else installed with apt-get / brew
  cli       `stagefix --version` matches ours, else pip install --user
  workdir   ~/.stagefix/<project> exists
  config    ~/.stagefix/<project>/stack.toml holds the rendered stage config

The first failing step stops the run; the report names it.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Callable, Optional

from stagefix.config import EnvironmentConfig, render_stage_config
from stagefix.errors import BootstrapFailure
from stagefix.fixes.base import Stage
from stagefix.remote import REMOTE_PATH_PREFIX, SSHSession


log = logging.getLogger(__name__)

MIN_PYTHON = (3, 11)
PACKAGE_NAME = "stagefix"
INSTALL_TIMEOUT = 15 * 60


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StepResult:
    name: str
    changed: bool          # True if the step had to act
    detail: str = ""


@dataclass
class BootstrapReport:
    stage: Stage
    host: str
    steps: list[StepResult] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    hint: str = ""

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    @property
    def changed(self) -> bool:
        return any(step.changed for step in self.steps)

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class _Context:
    session: SSHSession
    stage: Stage
    env: EnvironmentConfig
    project: str
    version: str
    github_repo: Optional[str]

    @property
    def workdir(self) -> str:
        return f"~/.stagefix/{shlex.quote(self.project)}"


# ── Public API ────────────────────────────────────────────────────────────────

def bootstrap(
    stage: Stage,
    env: EnvironmentConfig,
    session: SSHSession,
    project: str,
    version: str,
    github_repo: str | None = None,
) -> BootstrapReport:
    """
    Run every bootstrap step against `session`'s host.

    Never raises BootstrapFailure; the failure is recorded on the report,
    which is falsy when any step failed.
    """
    ctx = _Context(session, stage, env, project, version, github_repo)
    report = BootstrapReport(stage=stage, host=session.target)

    for name, step in _STEP_FUNCS:
        try:
            result = step(ctx)
        except BootstrapFailure as e:
            log.warning("%s: %s", session.target, e)
            report.failed_step = e.step
            report.error = e.message
            report.hint = e.hint
            return report
        log.debug("bootstrap %s on %s: %s", name, session.target, result.detail or "ok")
        report.steps.append(result)

    return report


# ── Steps ─────────────────────────────────────────────────────────────────────

def _python_version(ctx: _Context) -> tuple[int, int] | None:
    result = ctx.session.run(
        "python3 -c 'import sys; print(\"%d.%d\" % sys.version_info[:2])'"
    )
    if not result.ok:
        return None
    match = re.search(r"(\d+)\.(\d+)", result.stdout)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def _step_runtime(ctx: _Context) -> StepResult:
    wanted = ".".join(str(n) for n in MIN_PYTHON)
    current = _python_version(ctx)
    if current is not None and current >= MIN_PYTHON:
        return StepResult("runtime", changed=False, detail=f"python {current[0]}.{current[1]}")

    if ctx.session.run("command -v apt-get >/dev/null 2>&1").ok:
        install = (
            "sudo -n env DEBIAN_FRONTEND=noninteractive apt-get update -qq && "
            "sudo -n env DEBIAN_FRONTEND=noninteractive apt-get install -y -qq python3 python3-pip"
        )
    elif ctx.session.run("command -v brew >/dev/null 2>&1").ok:
        install = "brew install python@3.12"
    else:
        raise BootstrapFailure(
            "runtime",
            f"python3 >= {wanted} not found and no supported package manager (apt-get, brew)",
            f"Install Python {wanted}+ on {ctx.session.target} manually",
        )

    result = ctx.session.run(install, timeout=INSTALL_TIMEOUT)
    if not result.ok:
        raise BootstrapFailure(
            "runtime",
            f"python install failed: {_tail(result.stderr) or f'exit {result.returncode}'}",
            f"Check passwordless sudo for {ctx.env.ssh_user} on {ctx.session.target}",
        )

    current = _python_version(ctx)
    if current is None or current < MIN_PYTHON:
        found = "none" if current is None else f"{current[0]}.{current[1]}"
        raise BootstrapFailure(
            "runtime",
            f"python3 >= {wanted} still unavailable after install (found {found})",
            f"Install Python {wanted}+ on {ctx.session.target} manually",
        )
    return StepResult("runtime", changed=True, detail=f"installed python {current[0]}.{current[1]}")


def _installed_version(ctx: _Context) -> str | None:
    result = ctx.session.run(f"{REMOTE_PATH_PREFIX} stagefix --version")
    if not result.ok or not result.stdout.strip():
        return None
    return result.stdout.strip().split()[-1]


def _step_cli(ctx: _Context) -> StepResult:
    installed = _installed_version(ctx)
    # A development checkout has no published version to pin to.
    pinned = ctx.version != "dev"
    if installed is not None and (installed == ctx.version or not pinned):
        return StepResult("cli", changed=False, detail=f"stagefix {installed}")

    requirement = f"{PACKAGE_NAME}=={ctx.version}" if pinned else PACKAGE_NAME
    install = f"python3 -m pip install --user --quiet {shlex.quote(requirement)}"
    result = ctx.session.run(install, timeout=INSTALL_TIMEOUT)
    if not result.ok and "externally-managed" in result.stderr:
        result = ctx.session.run(f"{install} --break-system-packages", timeout=INSTALL_TIMEOUT)
    if not result.ok:
        raise BootstrapFailure(
            "cli",
            f"pip install {requirement} failed: {_tail(result.stderr) or f'exit {result.returncode}'}",
            f"Run on the host: python3 -m pip install --user {requirement}",
        )

    installed = _installed_version(ctx)
    if installed is None or (pinned and installed != ctx.version):
        raise BootstrapFailure(
            "cli",
            f"stagefix {ctx.version} not runnable after install (found {installed or 'none'})",
            "Check that ~/.local/bin is writable on the host",
        )
    return StepResult("cli", changed=True, detail=f"installed stagefix {installed}")


def _step_workdir(ctx: _Context) -> StepResult:
    if ctx.session.run(f"test -d {ctx.workdir}").ok:
        return StepResult("workdir", changed=False, detail=ctx.workdir)

    result = ctx.session.run(f"mkdir -p {ctx.workdir}")
    if not result.ok:
        raise BootstrapFailure(
            "workdir",
            f"cannot create {ctx.workdir}: {_tail(result.stderr) or f'exit {result.returncode}'}",
            f"Check that {ctx.env.ssh_user} owns its home directory on {ctx.session.target}",
        )
    return StepResult("workdir", changed=True, detail=ctx.workdir)


def _step_config(ctx: _Context) -> StepResult:
    path = f"{ctx.workdir}/stack.toml"
    wanted = render_stage_config(ctx.project, ctx.stage, ctx.env, ctx.github_repo)

    current = ctx.session.run(f"cat {path} 2>/dev/null")
    if current.ok and current.stdout == wanted:
        return StepResult("config", changed=False, detail=path)

    result = ctx.session.run(f"umask 077 && cat > {path}", input=wanted)
    if not result.ok:
        raise BootstrapFailure(
            "config",
            f"cannot write {path}: {_tail(result.stderr) or f'exit {result.returncode}'}",
            f"Check disk space and permissions under {ctx.workdir}",
        )
    return StepResult("config", changed=True, detail=path)


_STEP_FUNCS: tuple[tuple[str, Callable[[_Context], StepResult]], ...] = (
    ("runtime", _step_runtime),
    ("cli", _step_cli),
    ("workdir", _step_workdir),
    ("config", _step_config),
)


def _tail(text: str, limit: int = 200) -> str:
    text = text.strip()
    return text if len(text) <= limit else "…" + text[-limit:]
