# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Stack Inventory Module

Read-only listing of the foundation stack, its resources, published
parameters and any orphaned buckets.
"""

import logging
from typing import Dict, List

from botocore.exceptions import ClientError

from .aws import CLIENT_CONFIG, call_with_retries, is_not_found
from .models import ResourceKind, StackSnapshot
from .publisher import ConfigurationPublisher
from .stack_state import StackStateResolver

logger = logging.getLogger(__name__)


class StackInventory:
    """Collects everything the status command shows"""

    def __init__(self, session, region: str):
        self.region = region
        self.s3 = session.client("s3", region_name=region, config=CLIENT_CONFIG)
        self.dynamodb = session.client("dynamodb", region_name=region, config=CLIENT_CONFIG)
        self.resolver = StackStateResolver(session, region)
        self.publisher = ConfigurationPublisher(session, region)

    def collect(self, stack_name: str, account_id: str, project: str) -> Dict:
        """
        Collect stack status and resource details

        Args:
            stack_name: CloudFormation stack name
            account_id: AWS account id
            project: Project name

        Returns:
            Dictionary with snapshot, parameters, buckets and tables
        """
        snapshot = self.resolver.resolve(stack_name, account_id, project)
        return {
            "snapshot": snapshot,
            "parameters": self._parameters(),
            "buckets": self.get_bucket_info(snapshot),
            "tables": self.get_table_info(snapshot),
        }

    def _parameters(self) -> Dict:
        try:
            return self.publisher.read()
        except ClientError as e:
            logger.warning(f"Could not read published parameters: {e}")
            return {}

    def get_bucket_info(self, snapshot: StackSnapshot) -> List[Dict]:
        """Versioning state of stack-owned and orphaned buckets"""
        names = [
            (r.logical_id, r.physical_id)
            for r in snapshot.resources
            if r.kind == ResourceKind.BUCKET and r.physical_id
        ] + [(f"orphan ({o.confidence.value})", o.physical_id) for o in snapshot.orphans]

        buckets = []
        for logical_id, bucket in names:
            info = {"logical_id": logical_id, "bucket_name": bucket, "versioning": "N/A"}
            try:
                response = call_with_retries(self.s3.get_bucket_versioning, Bucket=bucket)
                info["versioning"] = response.get("Status", "Disabled")
            except ClientError as e:
                info["versioning"] = "missing" if is_not_found(e) else "unknown"
            buckets.append(info)
        return buckets

    def get_table_info(self, snapshot: StackSnapshot) -> List[Dict]:
        tables = []
        for resource in snapshot.resources:
            if resource.kind != ResourceKind.TABLE or not resource.physical_id:
                continue
            info = {
                "logical_id": resource.logical_id,
                "table_name": resource.physical_id,
                "status": "missing",
                "deletion_protection": None,
            }
            try:
                table = call_with_retries(
                    self.dynamodb.describe_table, TableName=resource.physical_id
                )["Table"]
                info["status"] = table.get("TableStatus", "")
                info["deletion_protection"] = table.get("DeletionProtectionEnabled", False)
            except ClientError as e:
                if not is_not_found(e):
                    raise
            tables.append(info)
        return tables
