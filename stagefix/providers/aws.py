"""
AWS provider.

Owns environments tagged `pipeline = "aws"`. These hosts are not reached
over SSH from the operator machine: staging and prod go through a CI
workflow (or run locally once on the target), and secrets live behind
the AWS API.

Fixes:
  - aws-cli-missing          (dev)      aws CLI not installed
  - aws-credentials-missing  (secrets)  no AWS_* variables and no ~/.aws/credentials
"""

from __future__ import annotations

import shutil
from pathlib import Path

from stagefix.config import StackConfig
from stagefix.fixes.base import Fix, FixContext, Stage
from stagefix.providers.base import Provider, tag_fixes
from stagefix.resolver import (
    REASON_NO_ENVIRONMENTS,
    REASON_OTHER_PROVIDER,
    Reachability,
    Reachable,
    Unreachable,
)
from stagefix.signals import Signals


def _uses_aws(config: StackConfig) -> bool:
    return config.pipeline == "aws" or any(
        env.pipeline == "aws" for env in config.environments.values()
    )


def _scan_cli(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    return _uses_aws(config) and shutil.which("aws") is None


def _scan_credentials(config: StackConfig, workspace: Path, context: FixContext) -> bool:
    if not _uses_aws(config) or context.signals.aws_credentials:
        return False
    return not (context.signals.home / ".aws" / "credentials").is_file()


class AwsProvider(Provider):
    id = "aws"
    name = "AWS Pipeline"

    fixes = tag_fixes("aws", [
        Fix(
            id="aws-cli-missing",
            stage="dev",
            severity="warning",
            description="AWS CLI is not installed",
            scan=_scan_cli,
            manual_instructions="Install it: https://docs.aws.amazon.com/cli/latest/userguide/getting-started-install.html",
        ),
        Fix(
            id="aws-credentials-missing",
            stage="secrets",
            severity="critical",
            description="AWS credentials not configured",
            scan=_scan_credentials,
            manual_instructions="Run: aws configure  (or export AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY)",
        ),
    ])

    def resolve(self, stage: Stage, config: StackConfig, signals: Signals) -> Reachability:
        if stage == "dev":
            return Reachable("local")

        if stage == "secrets":
            if signals.aws_credentials:
                return Reachable("api")
            return Unreachable(
                "missing AWS credentials",
                "Export AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY, or run: aws configure",
            )

        if signals.on_target:
            return Reachable("local")

        envs = config.environments_for_stage(stage)
        if not envs:
            return Unreachable(REASON_NO_ENVIRONMENTS, f"Add a [{stage}] table with pipeline = \"aws\".")
        if not self.environments(stage, config):
            return Unreachable(REASON_OTHER_PROVIDER, f"No {stage} environment is tagged pipeline = \"aws\".")

        if signals.ci_token:
            return Reachable("workflow")
        return Unreachable(
            "no CI token",
            f"Export STAGEFIX_CI_TOKEN (a token allowed to dispatch {config.workflow}).",
        )
