# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Resource naming conventions.

Orphan detection relies on these names being bit-exact, so every component
derives names from here.
"""

from typing import Dict, NamedTuple, Tuple

STATE_BUCKET_PURPOSE = "terraform-state"
LOG_BUCKET_PURPOSE = "terraform-state-logs"

# Template logical ids
STATE_BUCKET_LOGICAL_ID = "TerraformStateBucket"
LOG_BUCKET_LOGICAL_ID = "TerraformStateLogBucket"
LOCK_TABLE_LOGICAL_ID = "TerraformLockTable"
OIDC_PROVIDER_LOGICAL_ID = "OidcIdentityProvider"
DEPLOYMENT_ROLE_LOGICAL_ID = "DeploymentRolesRole"

# Template output keys
STATE_BUCKET_OUTPUT = "TerraformStateBucket"
LOG_BUCKET_OUTPUT = "TerraformStateLogBucket"
LOCK_TABLE_OUTPUT = "TerraformLockTable"
OIDC_PROVIDER_OUTPUT = "OidcProviderArn"
DEPLOYMENT_ROLE_OUTPUT = "DeploymentRolesRoleArn"

REQUIRED_OUTPUTS: Tuple[str, ...] = (
    STATE_BUCKET_OUTPUT,
    LOG_BUCKET_OUTPUT,
    LOCK_TABLE_OUTPUT,
    OIDC_PROVIDER_OUTPUT,
    DEPLOYMENT_ROLE_OUTPUT,
)

# Parameter Store entries read by downstream projects, keyed by output
PARAMETER_PATHS: Dict[str, str] = {
    STATE_BUCKET_OUTPUT: "/terraform/foundation/s3-state-bucket",
    LOCK_TABLE_OUTPUT: "/terraform/foundation/dynamodb-lock-table",
    OIDC_PROVIDER_OUTPUT: "/terraform/foundation/oidc-provider",
    DEPLOYMENT_ROLE_OUTPUT: "/terraform/foundation/deployment-roles-role-arn",
}

MANAGED_BY = "CloudFormation"


class ManagedBucket(NamedTuple):
    purpose: str
    logical_id: str
    output_key: str


MANAGED_BUCKETS: Tuple[ManagedBucket, ...] = (
    ManagedBucket(STATE_BUCKET_PURPOSE, STATE_BUCKET_LOGICAL_ID, STATE_BUCKET_OUTPUT),
    ManagedBucket(LOG_BUCKET_PURPOSE, LOG_BUCKET_LOGICAL_ID, LOG_BUCKET_OUTPUT),
)


def regional_bucket_name(purpose: str, account_id: str, region: str) -> str:
    """Build a regional bucket name: {purpose}-{accountId}-{region}"""
    return f"{purpose}-{account_id}-{region}"


def expected_bucket_names(account_id: str, region: str) -> Dict[str, str]:
    """
    Map template logical id to the expected physical bucket name

    Args:
        account_id: AWS account id
        region: AWS region

    Returns:
        Dictionary of logical id -> bucket name, state bucket first
    """
    return {
        bucket.logical_id: regional_bucket_name(bucket.purpose, account_id, region)
        for bucket in MANAGED_BUCKETS
    }
