# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Tests for publishing stack outputs to Parameter Store
"""

import boto3
import pytest

from foundation_cli.exceptions import PartialFailureError
from foundation_cli.naming import PARAMETER_PATHS
from foundation_cli.publisher import ConfigurationPublisher
from foundation_fakes import ALL_OUTPUTS, REGION, STATE_BUCKET, FakeSession


@pytest.fixture
def ssm(aws):
    return boto3.client("ssm", region_name=REGION)


@pytest.fixture
def publisher(aws):
    return ConfigurationPublisher(FakeSession(), REGION)


class TestPublish:
    def test_publish_writes_every_parameter(self, publisher, ssm):
        written = publisher.publish(ALL_OUTPUTS, {"Project": "my-repo", "AccountAlias": ""})

        assert sorted(written) == sorted(PARAMETER_PATHS.values())
        value = ssm.get_parameter(Name="/terraform/foundation/s3-state-bucket")
        assert value["Parameter"]["Value"] == STATE_BUCKET
        tags = ssm.list_tags_for_resource(
            ResourceType="Parameter", ResourceId="/terraform/foundation/s3-state-bucket"
        )["TagList"]
        assert tags == [{"Key": "Project", "Value": "my-repo"}]

    def test_publish_overwrites(self, publisher, ssm):
        ssm.put_parameter(
            Name="/terraform/foundation/dynamodb-lock-table", Value="old", Type="String"
        )

        publisher.publish(ALL_OUTPUTS)

        value = ssm.get_parameter(Name="/terraform/foundation/dynamodb-lock-table")
        assert value["Parameter"]["Value"] == ALL_OUTPUTS["TerraformLockTable"]

    def test_missing_output_still_publishes_the_rest(self, publisher, ssm):
        outputs = dict(ALL_OUTPUTS)
        del outputs["OidcProviderArn"]

        with pytest.raises(PartialFailureError) as exc_info:
            publisher.publish(outputs)

        assert exc_info.value.failures[0].logical_id == "/terraform/foundation/oidc-provider"
        assert publisher.read()["/terraform/foundation/s3-state-bucket"] == STATE_BUCKET


class TestUnpublish:
    def test_unpublish_removes_parameters(self, publisher):
        publisher.publish(ALL_OUTPUTS)

        deleted = publisher.unpublish()

        assert sorted(deleted) == sorted(PARAMETER_PATHS.values())
        assert all(value is None for value in publisher.read().values())

    def test_unpublish_without_parameters(self, publisher):
        assert publisher.unpublish() == []
