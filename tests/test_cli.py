# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Tests for the command line interface
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import EndpointConnectionError
from click.testing import CliRunner

from foundation_cli.cli import EXIT_INTERRUPTED, cli
from foundation_cli.exceptions import (
    OperationInterruptedError,
    PartialFailureError,
    StateConflictError,
)
from foundation_cli.models import (
    DeploymentResult,
    DestructionResult,
    ResourceFailure,
    StackSnapshot,
    StackState,
    Transition,
)
from foundation_cli.prerequisites import (
    PrerequisiteFailure,
    PrerequisiteIssue,
    PrerequisiteReport,
)
from foundation_fakes import (
    ACCOUNT_ID,
    ALL_OUTPUTS,
    PROJECT,
    client_error,
    make_parameters,
)

REMOTE_URL = f"git@github.com:acme/{PROJECT}.git"

NOT_READY = PrerequisiteReport(
    failures=(
        PrerequisiteIssue(reason=PrerequisiteFailure.UNCOMMITTED_CHANGES, detail="main.tf"),
    )
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def environment():
    """Patch every collaborator the commands construct"""
    with patch("foundation_cli.cli.create_session") as create_session, patch(
        "foundation_cli.cli.PrerequisiteValidator"
    ) as validator, patch(
        "foundation_cli.cli.get_remote_url", return_value=REMOTE_URL
    ), patch(
        "foundation_cli.cli.build_parameters", return_value=make_parameters()
    ), patch(
        "foundation_cli.cli.caller_account", return_value=ACCOUNT_ID
    ), patch(
        "foundation_cli.cli.FoundationTemplate"
    ), patch(
        "foundation_cli.cli.BucketReclaimer"
    ), patch(
        "foundation_cli.cli.StackDeployer"
    ) as deployer, patch(
        "foundation_cli.cli.StackDestroyer"
    ) as destroyer, patch(
        "foundation_cli.cli.StackInventory"
    ) as inventory:
        create_session.return_value = MagicMock(region_name="us-east-1")
        validator.return_value.run.return_value = PrerequisiteReport()
        yield {
            "validator": validator,
            "deployer": deployer.return_value,
            "destroyer": destroyer.return_value,
            "inventory": inventory.return_value,
        }


class TestDeployCommand:
    def test_deploy_success(self, runner, environment):
        """Test deploy exits 0 and prints the outcome"""
        environment["deployer"].deploy.return_value = DeploymentResult(
            stack_name=PROJECT,
            transition=Transition.CREATE,
            status="CREATE_COMPLETE",
            outputs=ALL_OUTPUTS,
            published=("/terraform/foundation/s3-state-bucket",),
        )

        result = runner.invoke(cli, ["--region", "us-east-1", "deploy"])

        assert result.exit_code == 0
        assert "completed successfully" in result.output
        environment["deployer"].deploy.assert_called_once()

    def test_deploy_state_conflict(self, runner, environment):
        """Test a busy stack exits 1"""
        environment["deployer"].deploy.side_effect = StateConflictError(
            "Stack my-repo is UPDATE_IN_PROGRESS"
        )

        result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == 1

    def test_deploy_partial_failure(self, runner, environment):
        environment["deployer"].deploy.side_effect = PartialFailureError(
            "UPDATE of my-repo ended in UPDATE_ROLLBACK_COMPLETE",
            failures=[ResourceFailure(logical_id="DeploymentRolesRole", reason="denied")],
            status="UPDATE_ROLLBACK_COMPLETE",
        )

        result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == 1

    def test_deploy_interrupted(self, runner, environment):
        """Test an interrupted wait exits 130"""
        environment["deployer"].deploy.side_effect = OperationInterruptedError(
            "Interrupted", last_status="CREATE_IN_PROGRESS"
        )

        result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == EXIT_INTERRUPTED

    def test_keyboard_interrupt(self, runner, environment):
        environment["deployer"].deploy.side_effect = KeyboardInterrupt

        result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == EXIT_INTERRUPTED

    def test_aws_error_is_categorized(self, runner, environment):
        """Test an AWS error no component translated exits 1 as a partial failure"""
        environment["deployer"].deploy.side_effect = client_error(
            "AlreadyExistsException", "Stack [my-repo] already exists", "CreateStack"
        )

        with patch("foundation_cli.cli.display.show_error") as show_error:
            result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        error = show_error.call_args.args[0]
        assert isinstance(error, PartialFailureError)
        assert error.category == "PARTIAL_FAILURE"
        assert "AlreadyExistsException" in error.message

    def test_prerequisites_block_deploy(self, runner, environment):
        """Test unmet prerequisites stop before any deployment"""
        environment["validator"].return_value.run.return_value = NOT_READY

        result = runner.invoke(cli, ["deploy"])

        assert result.exit_code == 1
        environment["deployer"].deploy.assert_not_called()


class TestDestroyCommand:
    def test_declined_destroy_is_success(self, runner, environment):
        environment["destroyer"].destroy.return_value = DestructionResult(
            stack_name=PROJECT, declined=True
        )

        result = runner.invoke(cli, ["destroy"])

        assert result.exit_code == 0
        assert "cancelled" in result.output
        args = environment["destroyer"].destroy.call_args.args
        assert args[:3] == (PROJECT, ACCOUNT_ID, PROJECT)

    def test_destroy_with_retained_buckets(self, runner, environment):
        environment["destroyer"].destroy.return_value = DestructionResult(
            stack_name=PROJECT,
            stack_deleted=True,
            retained_buckets=("terraform-state-123456789012-us-east-1",),
        )

        result = runner.invoke(cli, ["destroy"])

        assert result.exit_code == 0
        assert "terraform-state-123456789012-us-east-1" in result.output


    def test_connection_error_is_categorized(self, runner, environment):
        environment["destroyer"].destroy.side_effect = EndpointConnectionError(
            endpoint_url="https://cloudformation.us-east-1.amazonaws.com"
        )

        with patch("foundation_cli.cli.display.show_error") as show_error:
            result = runner.invoke(cli, ["destroy"])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert isinstance(show_error.call_args.args[0], PartialFailureError)


class TestReadOnlyCommands:
    def test_check_ready(self, runner, environment):
        result = runner.invoke(cli, ["check"])

        assert result.exit_code == 0
        assert "All prerequisites met" in result.output

    def test_check_not_ready(self, runner, environment):
        environment["validator"].return_value.run.return_value = NOT_READY

        result = runner.invoke(cli, ["check"])

        assert result.exit_code == 1
        assert "uncommitted changes" in result.output

    def test_status(self, runner, environment):
        """Test status shows the classified state"""
        environment["inventory"].collect.return_value = {
            "snapshot": StackSnapshot(stack_name=PROJECT, state=StackState.ABSENT),
            "parameters": {"/terraform/foundation/s3-state-bucket": None},
            "buckets": [],
            "tables": [],
        }

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "ABSENT" in result.output
        environment["inventory"].collect.assert_called_once_with(PROJECT, ACCOUNT_ID, PROJECT)

    def test_status_aws_error(self, runner, environment):
        environment["inventory"].collect.side_effect = client_error(
            "AccessDenied", "not authorized", "DescribeStacks", 403
        )

        with patch("foundation_cli.cli.display.show_error") as show_error:
            result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert isinstance(show_error.call_args.args[0], PartialFailureError)
