"""
Process execution and SSH helpers.

CommandRunner — the process-exec capability. Every local or remote
                command goes through one, so tests can substitute a fake.
SSHSession    — one multiplexed OpenSSH connection to a stage's host.
                All commands for a stage (bootstrap checks and the
                delegated remediation run) share a single master
                connection via ControlMaster/ControlPath.

stagefix implements no transport of its own: it shells out to `ssh`.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from stagefix.config import EnvironmentConfig


log = logging.getLogger(__name__)

# Keep-alive tolerates slow remote installs without dropping the session.
SSH_OPTIONS: tuple[str, ...] = (
    "-o", "BatchMode=yes",
    "-o", "StrictHostKeyChecking=accept-new",
    "-o", "ConnectTimeout=10",
    "-o", "ServerAliveInterval=30",
    "-o", "ServerAliveCountMax=10",
)

LOCAL_TIMEOUT = 120
REMOTE_TIMEOUT = 30 * 60

# Prepended to every remote command: `pip install --user` lands here and
# non-interactive SSH shells do not source profile files.
REMOTE_PATH_PREFIX = 'PATH="$HOME/.local/bin:$PATH"'


# ── Process execution ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


OutputSink = Callable[[str], None]


class CommandRunner:
    """
    Run subprocesses and return their output. Never raises.

    On timeout or missing binary, returncode is -1 and stderr holds a
    human-readable description.
    """

    def run(
        self,
        cmd: Union[list[str], str],
        timeout: int = LOCAL_TIMEOUT,
        input: Optional[str] = None,
        cwd: Optional[Path] = None,
        on_line: Optional[OutputSink] = None,
    ) -> CommandResult:
        """
        Run `cmd` (argv list, or a string passed to the shell).

        With `on_line`, stdout is streamed line-by-line to the callback as
        it arrives (and still returned in the result).
        """
        shell = isinstance(cmd, str)
        display = cmd if shell else shlex.join(cmd)
        log.debug("exec: %s", display)

        if on_line is not None and input is None:
            return self._stream(cmd, shell, timeout, cwd, on_line, display)

        try:
            proc = subprocess.run(
                cmd,
                shell=shell,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
                cwd=cwd,
                check=False,
            )
            return CommandResult(proc.returncode, proc.stdout, proc.stderr)
        except subprocess.TimeoutExpired:
            return CommandResult(-1, "", f"Command timed out after {timeout}s: {display}")
        except FileNotFoundError:
            return CommandResult(-1, "", f"Command not found: {display.split()[0]}")
        except OSError as e:
            return CommandResult(-1, "", str(e))

    def _stream(
        self,
        cmd: Union[list[str], str],
        shell: bool,
        timeout: int,
        cwd: Optional[Path],
        on_line: OutputSink,
        display: str,
    ) -> CommandResult:
        # stderr goes to a temp file so a chatty stderr cannot block the pipe.
        with tempfile.TemporaryFile(mode="w+") as err:
            try:
                proc = subprocess.Popen(
                    cmd,
                    shell=shell,
                    stdout=subprocess.PIPE,
                    stderr=err,
                    text=True,
                    bufsize=1,
                    cwd=cwd,
                )
            except FileNotFoundError:
                return CommandResult(-1, "", f"Command not found: {display.split()[0]}")
            except OSError as e:
                return CommandResult(-1, "", str(e))

            lines: list[str] = []
            if proc.stdout is not None:
                for line in proc.stdout:
                    lines.append(line)
                    on_line(line.rstrip("\n"))

            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                return CommandResult(-1, "".join(lines), f"Command timed out after {timeout}s: {display}")

            err.seek(0)
            return CommandResult(proc.returncode, "".join(lines), err.read())


# ── SSH ───────────────────────────────────────────────────────────────────────

def control_path(user: str, host: str) -> str:
    """Short, per-target socket path (sun_path is limited to ~100 bytes)."""
    digest = hashlib.sha1(f"{user}@{host}".encode()).hexdigest()[:12]
    return os.path.join(tempfile.gettempdir(), f"stagefix-{digest}.sock")


def remote_stagefix_command(project: str, subcommand: str, stage: str, as_json: bool = True) -> str:
    """
    The command a remote host runs on our behalf.

    Always pins the stage AND the on-target execution mode, so the remote
    resolver answers "local" and never attempts a second hop.
    """
    workdir = f"~/.stagefix/{shlex.quote(project)}"
    parts = [
        f"cd {workdir}",
        "&&",
        REMOTE_PATH_PREFIX,
        "STAGEFIX_ON_SERVER=true",
        "stagefix",
        subcommand,
        "--stage", shlex.quote(stage),
        "--on-target",
    ]
    if as_json:
        parts.append("--json")
    return " ".join(parts)


class SSHSession:
    """
    A single multiplexed SSH connection to one environment's host.

    Usage:
        with SSHSession(env, key, runner) as session:
            session.run("uname -a")
    """

    def __init__(
        self,
        env: EnvironmentConfig,
        key_path: Path,
        runner: CommandRunner,
    ) -> None:
        if not env.host:
            raise ValueError(f"environment '{env.name}' has no host configured")
        self.env = env
        self.key_path = key_path
        self.runner = runner
        self.target = f"{env.ssh_user}@{env.host}"
        self._control_path = control_path(env.ssh_user, env.host)
        self.opened = False

    # ── Context manager ───────────────────────────────────────────────────────

    def __enter__(self) -> "SSHSession":
        self.open()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def open(self) -> None:
        if self.opened:
            return
        log.info("opening SSH session to %s", self.target)
        self.opened = True

    def close(self) -> None:
        if not self.opened:
            return
        self.runner.run(
            ["ssh", "-o", f"ControlPath={self._control_path}", "-O", "exit", self.target],
            timeout=10,
        )
        self.opened = False

    # ── Commands ──────────────────────────────────────────────────────────────

    def argv(self, command: str) -> list[str]:
        return [
            "ssh",
            "-i", str(self.key_path),
            *SSH_OPTIONS,
            "-o", "ControlMaster=auto",
            "-o", f"ControlPath={self._control_path}",
            "-o", "ControlPersist=120",
            self.target,
            command,
        ]

    def run(
        self,
        command: str,
        timeout: int = LOCAL_TIMEOUT,
        input: Optional[str] = None,
        on_line: Optional[OutputSink] = None,
    ) -> CommandResult:
        """Run a shell command on the remote host."""
        if not self.opened:
            self.open()
        return self.runner.run(self.argv(command), timeout=timeout, input=input, on_line=on_line)
