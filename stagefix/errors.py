"""
Error taxonomy for stagefix.

Every error carries a literal, actionable hint (an exact path or command)
next to its message. None of these is allowed to unwind a whole run:
the remediator catches them at per-fix or per-stage scope and records
the outcome instead.
"""


class StagefixError(Exception):
    """Base class. `hint` is shown under the message in reports."""

    def __init__(self, message: str, hint: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        return self.message


class ConfigError(StagefixError):
    """stack.toml exists but could not be read or parsed."""


class UnreachableStage(StagefixError):
    """No viable route to a stage. Reported, never run-fatal."""

    def __init__(self, stage: str, reason: str, hint: str = "") -> None:
        super().__init__(f"Cannot reach {stage}: {reason}", hint)
        self.stage = stage
        self.reason = reason


class ScanFault(StagefixError):
    """A scan predicate raised. The fix is treated as problem-present."""

    def __init__(self, fix_id: str, cause: BaseException) -> None:
        super().__init__(f"scan for {fix_id} raised {type(cause).__name__}: {cause}")
        self.fix_id = fix_id
        self.cause = cause


class CorrectionFailure(StagefixError):
    """A corrective action raised or reported failure."""


class BootstrapFailure(StagefixError):
    """Remote host preparation failed at a named step."""

    def __init__(self, step: str, message: str, hint: str = "") -> None:
        super().__init__(f"bootstrap step '{step}' failed: {message}", hint)
        self.step = step


class PollTimeout(StagefixError):
    """An external CI run did not reach a terminal state within the bound."""

    def __init__(self, run_id: int, timeout: float, url: str = "") -> None:
        super().__init__(
            f"inconclusive — check external system (run {run_id} still running after {int(timeout)}s)",
            url,
        )
        self.run_id = run_id
        self.url = url


class WorkflowError(StagefixError):
    """The CI API rejected a trigger or status request."""
