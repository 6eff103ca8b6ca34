# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Tests for settings and deployment parameter construction
"""

from unittest.mock import MagicMock

import boto3
import pytest
from pydantic import ValidationError

from foundation_cli.config import build_parameters, load_settings, resolve_region
from foundation_cli.exceptions import PreconditionError
from foundation_cli.identity_provider import IdentityProviderResolver
from foundation_fakes import ACCOUNT_ID, REGION, FakeSession, client_error

REPOSITORY_URL = "git@github.com:acme/my-repo.git"


def no_network(host):
    raise AssertionError(f"unexpected certificate fetch for {host}")


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})

        assert settings.region is None
        assert settings.cost_center == "default"
        assert settings.environment == "prod"
        assert settings.owner == "unassigned"
        assert settings.template_file == "bootstrap.yaml"
        assert settings.reclaim_workers == 8

    def test_environment_values(self):
        settings = load_settings(
            environ={
                "AWS_REGION": "eu-west-1",
                "TAG_COST_CENTER": "platform",
                "TAG_OWNER": "infra-team",
                "TARGET_DEPLOYMENT_ROLES_REPOSITORY": "roles",
                "FOUNDATION_POLL_INTERVAL": "2",
                "TAG_ENVIRONMENT": "",
            }
        )

        assert settings.region == "eu-west-1"
        assert settings.cost_center == "platform"
        assert settings.owner == "infra-team"
        assert settings.environment == "prod"
        assert settings.target_repository_name == "roles"
        assert settings.poll_interval == 2.0

    def test_overrides_win_and_none_is_ignored(self):
        settings = load_settings(
            environ={"AWS_REGION": "eu-west-1", "AWS_PROFILE": "dev"},
            region="us-west-2",
            profile=None,
        )

        assert settings.region == "us-west-2"
        assert settings.profile == "dev"

    def test_omitted_options_keep_environment(self):
        """Test options the command line leaves unset do not mask AWS_REGION or AWS_PROFILE"""
        settings = load_settings(
            environ={
                "AWS_REGION": "eu-west-1",
                "AWS_PROFILE": "dev",
                "FOUNDATION_TEMPLATE": "infra/bootstrap.yaml",
            },
            region=None,
            profile=None,
            template_file=None,
        )

        assert settings.region == "eu-west-1"
        assert settings.profile == "dev"
        assert settings.template_file == "infra/bootstrap.yaml"

    def test_settings_are_frozen(self):
        settings = load_settings(environ={})
        with pytest.raises(ValidationError):
            settings.region = "us-west-2"

    def test_invalid_worker_count(self):
        with pytest.raises(ValidationError):
            load_settings(environ={"FOUNDATION_RECLAIM_WORKERS": "0"})


class TestResolveRegion:
    def test_precedence(self):
        session = MagicMock(region_name="eu-central-1")

        assert resolve_region(load_settings(environ={"AWS_REGION": "us-west-2"}), session) == "us-west-2"
        assert resolve_region(load_settings(environ={}), session) == "eu-central-1"
        assert resolve_region(load_settings(environ={}), MagicMock(region_name=None)) == "us-east-1"


class TestBuildParameters:
    def test_parameters_from_identity(self, aws):
        boto3.client("iam").create_account_alias(AccountAlias="acme-prod")
        settings = load_settings(environ={"AWS_REGION": REGION, "TAG_OWNER": "infra-team"})

        parameters = build_parameters(
            settings,
            FakeSession(),
            REPOSITORY_URL,
            resolver=IdentityProviderResolver(fetch_certificate=no_network),
        )

        assert parameters.account_id == ACCOUNT_ID
        assert parameters.account_alias == "acme-prod"
        assert parameters.project == "my-repo"
        assert parameters.stack_name == "my-repo"
        assert parameters.repository == "https://github.com/acme/my-repo.git"
        assert parameters.target_repository == "acme/terraform-aws-deployment-roles"
        assert parameters.deployment_role.startswith("arn:aws:")

        template_parameters = parameters.template_parameters()
        assert len(template_parameters) == 14
        assert template_parameters["OidcProvider"] == "github"
        assert template_parameters["ManagedBy"] == "CloudFormation"

        tags = parameters.tags()
        assert len(tags) == 10
        assert tags["Owner"] == "infra-team"
        assert tags["AccountId"] == ACCOUNT_ID

    def test_no_alias(self, aws):
        parameters = build_parameters(
            load_settings(environ={"AWS_REGION": REGION}),
            FakeSession(),
            REPOSITORY_URL,
            resolver=IdentityProviderResolver(fetch_certificate=no_network),
        )

        assert parameters.account_alias == ""

    def test_invalid_credentials(self):
        sts = MagicMock()
        sts.get_caller_identity.side_effect = client_error("InvalidClientTokenId", "bad token")
        session = FakeSession(overrides={"sts": sts, "iam": MagicMock()})

        with pytest.raises(PreconditionError):
            build_parameters(load_settings(environ={}), session, REPOSITORY_URL)
