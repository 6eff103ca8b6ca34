# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Pytest configuration for the Foundation CLI tests.
"""

import os
from pathlib import Path
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws
from rich.console import Console

from foundation_cli.stack_monitor import StackMonitor
from foundation_cli.template import FoundationTemplate
from foundation_fakes import REGION, FakeSession, make_parameters

# Set before any boto3 client is created
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", REGION)

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(scope="session", autouse=True)
def aws_credentials():
    """Set up AWS credentials and region for testing."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = REGION


@pytest.fixture
def aws():
    with mock_aws():
        yield


@pytest.fixture
def cfn():
    """CloudFormation client double; moto does not run real stack operations"""
    client = MagicMock()
    client.describe_stack_events.return_value = {"StackEvents": []}
    client.describe_stack_resources.return_value = {"StackResources": []}
    client.get_paginator.return_value.paginate.return_value = [
        {"StackResourceSummaries": []}
    ]
    return client


@pytest.fixture
def iam():
    client = MagicMock()
    client.list_open_id_connect_providers.return_value = {"OpenIDConnectProviderList": []}
    return client


@pytest.fixture
def session(aws, cfn, iam):
    return FakeSession(overrides={"cloudformation": cfn, "iam": iam})


@pytest.fixture
def s3(aws):
    return boto3.client("s3", region_name=REGION)


@pytest.fixture
def monitor(cfn):
    return StackMonitor(cfn, poll_interval=1, timeout=60, sleep=lambda _: None, console=Console(quiet=True))


@pytest.fixture
def template():
    return FoundationTemplate.load(FIXTURES / "bootstrap.yaml")


@pytest.fixture
def parameters():
    return make_parameters()
