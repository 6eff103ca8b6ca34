# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Tests for prerequisite validation
"""

import subprocess
from unittest.mock import MagicMock

import pytest

from foundation_cli.exceptions import PreconditionError
from foundation_cli.prerequisites import (
    PrerequisiteFailure,
    PrerequisiteValidator,
    require_ready,
)
from foundation_fakes import REGION, client_error


class FakeGit:
    """Answers git commands from a table of (args prefix) -> (returncode, stdout)"""

    def __init__(self, **overrides):
        self.answers = {
            "rev-parse --is-inside-work-tree": (0, "true\n"),
            "status --porcelain": (0, ""),
            "symbolic-ref -q HEAD": (0, "refs/heads/main\n"),
            "rev-parse --abbrev-ref --symbolic-full-name @{u}": (0, "origin/main\n"),
            "rev-list --count @{u}..HEAD": (0, "0\n"),
        }
        self.answers.update(overrides)
        self.commands = []

    def __call__(self, args, capture_output=True, text=True, cwd=None):
        command = " ".join(args[1:])
        self.commands.append(command)
        returncode, stdout = self.answers[command]
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr="")


@pytest.fixture
def template_file(tmp_path):
    path = tmp_path / "bootstrap.yaml"
    path.write_text("Resources: {}\n")
    return str(path)


@pytest.fixture
def aws_session():
    return MagicMock()


def validator(session, template_file, git=None, which=lambda name: "/usr/bin/git"):
    return PrerequisiteValidator(
        session, REGION, template_file, run=git or FakeGit(), which=which
    )


class TestPrerequisiteValidator:
    def test_all_met(self, aws_session, template_file):
        report = validator(aws_session, template_file).run()

        assert report.ready
        assert report.reasons == []

    def test_git_missing(self, aws_session, template_file):
        git = FakeGit()
        report = validator(aws_session, template_file, git=git, which=lambda name: None).run()

        assert report.reasons == [PrerequisiteFailure.GIT_MISSING]
        assert git.commands == []

    def test_not_a_repository(self, aws_session, template_file):
        git = FakeGit(**{"rev-parse --is-inside-work-tree": (128, "")})

        report = validator(aws_session, template_file, git=git).run()

        assert report.reasons == [PrerequisiteFailure.NOT_A_REPOSITORY]

    def test_dirty_tree_reports_changes_and_untracked(self, aws_session, template_file):
        git = FakeGit(**{"status --porcelain": (0, " M main.tf\n?? notes.txt\n")})

        report = validator(aws_session, template_file, git=git).run()

        assert report.reasons == [
            PrerequisiteFailure.UNCOMMITTED_CHANGES,
            PrerequisiteFailure.UNTRACKED_FILES,
        ]
        assert report.failures[0].detail == "main.tf"
        assert report.failures[1].detail == "notes.txt"

    def test_detached_head(self, aws_session, template_file):
        git = FakeGit(**{"symbolic-ref -q HEAD": (1, "")})

        report = validator(aws_session, template_file, git=git).run()

        assert report.reasons == [PrerequisiteFailure.DETACHED_HEAD]
        assert "rev-list --count @{u}..HEAD" not in git.commands

    def test_no_upstream(self, aws_session, template_file):
        git = FakeGit(**{"rev-parse --abbrev-ref --symbolic-full-name @{u}": (128, "")})

        report = validator(aws_session, template_file, git=git).run()

        assert report.reasons == [PrerequisiteFailure.NO_UPSTREAM]

    def test_unpushed_commits(self, aws_session, template_file):
        git = FakeGit(**{"rev-list --count @{u}..HEAD": (0, "2\n")})

        report = validator(aws_session, template_file, git=git).run()

        assert report.reasons == [PrerequisiteFailure.UNPUSHED_COMMITS]
        assert "origin/main" in report.failures[0].detail

    def test_invalid_credentials_skip_probes(self, template_file):
        sts = MagicMock()
        sts.get_caller_identity.side_effect = client_error("ExpiredToken", "expired")
        session = MagicMock()
        session.client.return_value = sts

        report = validator(session, template_file).run()

        assert report.reasons == [PrerequisiteFailure.AWS_CREDENTIALS]
        assert session.client.call_count == 1

    def test_missing_read_permission(self, template_file):
        denied = MagicMock()
        denied.list_buckets.side_effect = client_error("AccessDenied", "denied", status=403)
        session = MagicMock()
        session.client.side_effect = lambda service, **kwargs: (
            denied if service == "s3" else MagicMock()
        )

        report = validator(session, template_file).run()

        assert report.reasons == [PrerequisiteFailure.PERMISSION_DENIED]
        assert report.failures[0].detail == "s3:ListAllMyBuckets"

    def test_template_missing(self, aws_session, tmp_path):
        report = validator(aws_session, str(tmp_path / "missing.yaml")).run()

        assert report.reasons == [PrerequisiteFailure.TEMPLATE_MISSING]

    def test_failures_are_collected_together(self, tmp_path):
        sts = MagicMock()
        sts.get_caller_identity.side_effect = client_error("ExpiredToken", "expired")
        session = MagicMock()
        session.client.return_value = sts
        git = FakeGit(**{"status --porcelain": (0, "?? notes.txt\n")})

        report = validator(session, str(tmp_path / "missing.yaml"), git=git).run()

        assert report.reasons == [
            PrerequisiteFailure.UNTRACKED_FILES,
            PrerequisiteFailure.AWS_CREDENTIALS,
            PrerequisiteFailure.TEMPLATE_MISSING,
        ]


class TestRequireReady:
    def test_raises_with_every_reason(self, tmp_path):
        session = MagicMock()
        git = FakeGit(**{"status --porcelain": (0, " M a.tf\n?? b.txt\n")})
        report = validator(session, str(tmp_path / "missing.yaml"), git=git).run()

        with pytest.raises(PreconditionError) as exc_info:
            require_ready(report)

        assert "uncommitted changes" in exc_info.value.message
        assert "untracked files" in exc_info.value.message
        assert "template file not found" in exc_info.value.message

    def test_ready_report_passes(self, aws_session, template_file):
        require_ready(validator(aws_session, template_file).run())
