# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Stack State Module

Reads the live stack, classifies its status and detects orphaned buckets
left behind by earlier runs.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .aws import CLIENT_CONFIG, call_with_retries, error_code
from .bucket_reclaimer import probe_bucket
from .models import (
    Confidence,
    OrphanCandidate,
    ResourceKind,
    ResourceRecord,
    StackRecord,
    StackSnapshot,
    StackState,
)
from .naming import expected_bucket_names

logger = logging.getLogger(__name__)

STATUS_STATES: Dict[str, StackState] = {
    "DELETE_COMPLETE": StackState.ABSENT,
    "CREATE_COMPLETE": StackState.HEALTHY,
    "UPDATE_COMPLETE": StackState.HEALTHY,
    "IMPORT_COMPLETE": StackState.HEALTHY,
    "ROLLBACK_COMPLETE": StackState.FAILED_INITIAL,
    "UPDATE_ROLLBACK_COMPLETE": StackState.FAILED_UPDATE,
    "IMPORT_ROLLBACK_COMPLETE": StackState.FAILED_UPDATE,
    "DELETE_FAILED": StackState.STUCK,
}

# Resource statuses meaning the physical resource is no longer owned
RELEASED_STATUSES = {"DELETE_COMPLETE", "DELETE_SKIPPED"}

# Tag reads that mean "no project tag" rather than a failed probe; buckets
# homed in another region answer with a redirect
UNTAGGED_CODES = {
    "NoSuchTagSet",
    "NoSuchBucket",
    "PermanentRedirect",
    "AuthorizationHeaderMalformed",
}


def classify_status(status: Optional[str]) -> StackState:
    """
    Classify a raw CloudFormation stack status

    Args:
        status: Stack status, or None when the stack does not exist

    Returns:
        StackState
    """
    if status is None:
        return StackState.ABSENT
    if status in STATUS_STATES:
        return STATUS_STATES[status]
    if status.endswith("_IN_PROGRESS"):
        return StackState.BUSY
    return StackState.DEGRADED


class StackStateResolver:
    """Builds a classified snapshot of the stack and its orphaned resources"""

    def __init__(self, session, region: str):
        self.region = region
        self.cfn = session.client("cloudformation", region_name=region, config=CLIENT_CONFIG)
        self.s3 = session.client("s3", region_name=region, config=CLIENT_CONFIG)

    def resolve(self, stack_name: str, account_id: str, project: str) -> StackSnapshot:
        """
        Resolve the current state of a stack

        Args:
            stack_name: CloudFormation stack name
            account_id: AWS account id (for expected bucket names)
            project: Project name (for tag matching)

        Returns:
            StackSnapshot read fresh from the control plane
        """
        record = self.read_stack(stack_name)
        state = classify_status(record.status if record else None)
        resources: Tuple[ResourceRecord, ...] = ()
        if record is not None:
            resources = self.list_resources(stack_name)

        owned = {
            r.physical_id
            for r in resources
            if r.physical_id and r.status not in RELEASED_STATUSES
        }
        orphans = self.find_orphans(account_id, project, owned)

        logger.info(
            f"Stack {stack_name}: status={record.status if record else None} "
            f"state={state.value} orphans={len(orphans)}"
        )
        return StackSnapshot(
            stack_name=stack_name,
            state=state,
            record=record,
            resources=resources,
            orphans=orphans,
        )

    def read_stack(self, stack_name: str) -> Optional[StackRecord]:
        """Read the stack, or None if it does not exist"""
        try:
            response = call_with_retries(self.cfn.describe_stacks, StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                return None
            raise

        stacks = response.get("Stacks", [])
        if not stacks:
            return None
        stack = stacks[0]
        return StackRecord(
            stack_name=stack.get("StackName", stack_name),
            stack_id=stack.get("StackId", ""),
            status=stack.get("StackStatus", ""),
            outputs={
                o.get("OutputKey", ""): o.get("OutputValue", "")
                for o in stack.get("Outputs", [])
            },
            termination_protection=bool(stack.get("EnableTerminationProtection")),
            creation_time=stack.get("CreationTime"),
        )

    def list_resources(self, stack_name: str) -> Tuple[ResourceRecord, ...]:
        resources: List[ResourceRecord] = []
        try:
            paginator = self.cfn.get_paginator("list_stack_resources")
            for page in paginator.paginate(StackName=stack_name):
                for summary in page.get("StackResourceSummaries", []):
                    resources.append(ResourceRecord.from_summary(summary))
        except ClientError as e:
            if "does not exist" in str(e):
                return ()
            raise
        return tuple(resources)

    def find_orphans(
        self, account_id: str, project: str, owned: Optional[Set[str]] = None
    ) -> Tuple[OrphanCandidate, ...]:
        """
        Detect buckets that match the naming or tagging conventions but are
        not owned by the live stack. Tag matching covers every listed bucket,
        whatever its name, so incidental buckets tagged with the project are
        found too.

        Every probe is independent; an unexpected error on one probe is
        logged and treated as not found.
        """
        owned = owned or set()
        expected = expected_bucket_names(account_id, self.region)
        candidates: Dict[str, OrphanCandidate] = {}

        for logical_id, bucket in expected.items():
            if bucket in owned:
                continue
            if probe_bucket(self.s3, bucket):
                confidence = Confidence.NAME_MATCH
                if self._project_tag(bucket) == project:
                    confidence = Confidence.BOTH
                candidates[bucket] = OrphanCandidate(
                    physical_id=bucket,
                    kind=ResourceKind.BUCKET,
                    confidence=confidence,
                    logical_id=logical_id,
                )

        for bucket in self._list_bucket_names():
            if bucket in owned or bucket in expected.values():
                continue
            if self._project_tag(bucket) == project:
                candidates[bucket] = OrphanCandidate(
                    physical_id=bucket,
                    kind=ResourceKind.BUCKET,
                    confidence=Confidence.TAG_MATCH,
                )

        return tuple(candidates.values())

    def _list_bucket_names(self) -> List[str]:
        try:
            response = self.s3.list_buckets()
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not list buckets, skipping tag match: {e}")
            return []
        return [b["Name"] for b in response.get("Buckets", [])]

    def _project_tag(self, bucket: str) -> Optional[str]:
        try:
            response = self.s3.get_bucket_tagging(Bucket=bucket)
        except ClientError as e:
            if error_code(e) in UNTAGGED_CODES:
                logger.debug(f"No readable tags on bucket {bucket}: {error_code(e)}")
            else:
                logger.warning(f"Could not read tags of bucket {bucket}: {e}")
            return None
        except BotoCoreError as e:
            logger.warning(f"Could not read tags of bucket {bucket}: {e}")
            return None
        for tag in response.get("TagSet", []):
            if tag.get("Key") == "Project":
                return tag.get("Value")
        return None
