# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Prerequisite Validator

Checks that the repository, tooling and AWS credentials are ready before any
mutating operation runs.
"""

import logging
import shutil
import subprocess
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict

from .aws import CLIENT_CONFIG
from .exceptions import PreconditionError

logger = logging.getLogger(__name__)


class PrerequisiteFailure(str, Enum):
    GIT_MISSING = "git is not installed"
    NOT_A_REPOSITORY = "not inside a git repository"
    UNCOMMITTED_CHANGES = "uncommitted changes"
    UNTRACKED_FILES = "untracked files"
    DETACHED_HEAD = "HEAD is detached"
    NO_UPSTREAM = "branch has no upstream"
    UNPUSHED_COMMITS = "unpushed commits"
    AWS_CREDENTIALS = "AWS credentials are not valid"
    PERMISSION_DENIED = "missing read permission"
    TEMPLATE_MISSING = "template file not found"


class PrerequisiteIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: PrerequisiteFailure
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}" if self.detail else self.reason.value


class PrerequisiteReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    failures: Tuple[PrerequisiteIssue, ...] = ()

    @property
    def ready(self) -> bool:
        return not self.failures

    @property
    def reasons(self) -> List[PrerequisiteFailure]:
        return [f.reason for f in self.failures]


# (service, operation, kwargs, IAM action shown on failure)
READ_PROBES = (
    ("cloudformation", "list_stacks", {}, "cloudformation:ListStacks"),
    ("iam", "list_open_id_connect_providers", {}, "iam:ListOpenIDConnectProviders"),
    ("s3", "list_buckets", {}, "s3:ListAllMyBuckets"),
    ("dynamodb", "list_tables", {"Limit": 1}, "dynamodb:ListTables"),
    ("ssm", "describe_parameters", {"MaxResults": 1}, "ssm:DescribeParameters"),
)


class PrerequisiteValidator:
    """Runs every prerequisite check and reports all failures at once"""

    def __init__(
        self,
        session,
        region: str,
        template_file: str,
        cwd: Optional[str] = None,
        run: Callable = subprocess.run,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.session = session
        self.region = region
        self.template_file = template_file
        self.cwd = cwd
        self._run = run
        self._which = which

    def run(self) -> PrerequisiteReport:
        failures: List[PrerequisiteIssue] = []
        failures.extend(self._check_git())
        failures.extend(self._check_aws())
        if not Path(self.template_file).exists():
            failures.append(
                PrerequisiteIssue(
                    reason=PrerequisiteFailure.TEMPLATE_MISSING, detail=str(self.template_file)
                )
            )
        for failure in failures:
            logger.info(f"Prerequisite not met: {failure}")
        return PrerequisiteReport(failures=tuple(failures))

    def _git(self, *args) -> subprocess.CompletedProcess:
        return self._run(["git", *args], capture_output=True, text=True, cwd=self.cwd)

    def _check_git(self) -> List[PrerequisiteIssue]:
        if not self._which("git"):
            return [PrerequisiteIssue(reason=PrerequisiteFailure.GIT_MISSING)]

        if self._git("rev-parse", "--is-inside-work-tree").returncode != 0:
            return [PrerequisiteIssue(reason=PrerequisiteFailure.NOT_A_REPOSITORY)]

        failures = []
        status = self._git("status", "--porcelain").stdout.splitlines()
        untracked = [line[3:] for line in status if line.startswith("??")]
        changed = [line[3:] for line in status if line and not line.startswith("??")]
        if changed:
            failures.append(
                PrerequisiteIssue(
                    reason=PrerequisiteFailure.UNCOMMITTED_CHANGES, detail=", ".join(changed)
                )
            )
        if untracked:
            failures.append(
                PrerequisiteIssue(
                    reason=PrerequisiteFailure.UNTRACKED_FILES, detail=", ".join(untracked)
                )
            )

        if self._git("symbolic-ref", "-q", "HEAD").returncode != 0:
            failures.append(PrerequisiteIssue(reason=PrerequisiteFailure.DETACHED_HEAD))
            return failures

        upstream = self._git("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")
        if upstream.returncode != 0:
            failures.append(PrerequisiteIssue(reason=PrerequisiteFailure.NO_UPSTREAM))
            return failures

        ahead = self._git("rev-list", "--count", "@{u}..HEAD").stdout.strip()
        if ahead.isdigit() and int(ahead) > 0:
            failures.append(
                PrerequisiteIssue(
                    reason=PrerequisiteFailure.UNPUSHED_COMMITS,
                    detail=f"{ahead} commit(s) ahead of {upstream.stdout.strip()}",
                )
            )
        return failures

    def _check_aws(self) -> List[PrerequisiteIssue]:
        try:
            sts = self.session.client("sts", region_name=self.region, config=CLIENT_CONFIG)
            sts.get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            return [PrerequisiteIssue(reason=PrerequisiteFailure.AWS_CREDENTIALS, detail=str(e))]

        failures = []
        for service, operation, kwargs, action in READ_PROBES:
            client = self.session.client(service, region_name=self.region, config=CLIENT_CONFIG)
            try:
                getattr(client, operation)(**kwargs)
            except (ClientError, BotoCoreError) as e:
                logger.debug(f"Probe {action} failed: {e}")
                failures.append(
                    PrerequisiteIssue(reason=PrerequisiteFailure.PERMISSION_DENIED, detail=action)
                )
        return failures


def require_ready(report: PrerequisiteReport) -> None:
    """Raise PreconditionError listing every unmet prerequisite"""
    if not report.ready:
        raise PreconditionError(
            "Prerequisites not met: " + "; ".join(str(f) for f in report.failures)
        )
