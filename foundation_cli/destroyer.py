# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Destroyer Module

Tears down the foundation stack and, when the operator explicitly authorizes
it, the versioned buckets holding Terraform state.
"""

import logging
from typing import List, Optional

from botocore.exceptions import ClientError

from .aws import CLIENT_CONFIG, is_not_found
from .bucket_reclaimer import BucketReclaimer, ensure_reclaimed
from .confirmations import ConfirmationProvider
from .exceptions import StateConflictError
from .models import DestructionResult, ResourceKind, StackSnapshot, StackState
from .naming import expected_bucket_names
from .publisher import ConfigurationPublisher
from .stack_monitor import StackMonitor
from .stack_state import RELEASED_STATUSES, StackStateResolver

logger = logging.getLogger(__name__)


class StackDestroyer:
    """Deletes the foundation stack and its retained leftovers"""

    def __init__(
        self,
        session,
        region: str,
        monitor: Optional[StackMonitor] = None,
        resolver: Optional[StackStateResolver] = None,
        reclaimer: Optional[BucketReclaimer] = None,
        publisher: Optional[ConfigurationPublisher] = None,
    ):
        self.region = region
        self.cfn = session.client("cloudformation", region_name=region, config=CLIENT_CONFIG)
        self.dynamodb = session.client("dynamodb", region_name=region, config=CLIENT_CONFIG)
        self.monitor = monitor or StackMonitor(self.cfn)
        self.resolver = resolver or StackStateResolver(session, region)
        self.reclaimer = reclaimer or BucketReclaimer(session, region)
        self.publisher = publisher or ConfigurationPublisher(session, region)

    def destroy(
        self,
        stack_name: str,
        account_id: str,
        project: str,
        confirmations: ConfirmationProvider,
    ) -> DestructionResult:
        """
        Destroy the foundation stack

        Args:
            stack_name: CloudFormation stack name
            account_id: AWS account id
            project: Project name
            confirmations: Provider for the two typed confirmations

        Returns:
            DestructionResult; declined and no-op runs are successes

        Raises:
            StateConflictError: Another stack operation is in progress
            IrrecoverableError: Stack deletion ended in DELETE_FAILED
        """
        snapshot = self.resolver.resolve(stack_name, account_id, project)
        orphan_buckets = [o.physical_id for o in snapshot.orphans if o.importable]

        if snapshot.state == StackState.ABSENT and not orphan_buckets:
            logger.info(f"Stack {stack_name} does not exist and nothing is left behind")
            return DestructionResult(stack_name=stack_name, noop=True)

        if snapshot.state == StackState.BUSY:
            raise StateConflictError(
                f"Stack {stack_name} is {snapshot.record.status}: operation in progress"
            )

        if not confirmations.confirm_destroy(stack_name):
            logger.info("Destroy declined by operator")
            return DestructionResult(stack_name=stack_name, declined=True)

        buckets = self._stack_buckets(snapshot) + orphan_buckets
        authorized = bool(buckets) and confirmations.confirm_bucket_deletion(buckets)

        if snapshot.state == StackState.ABSENT:
            return self._destroy_leftovers(stack_name, orphan_buckets, authorized)

        return self._destroy_stack(snapshot, account_id, buckets, authorized)

    def _destroy_leftovers(
        self, stack_name: str, buckets: List[str], authorized: bool
    ) -> DestructionResult:
        reclaimed = ()
        if authorized:
            reclaimed = tuple(self.reclaimer.reclaim(b) for b in buckets)
            ensure_reclaimed(reclaimed)
        unpublished = self.publisher.unpublish()
        return DestructionResult(
            stack_name=stack_name,
            buckets_authorized=authorized,
            reclaimed=reclaimed,
            retained_buckets=() if authorized else tuple(buckets),
            unpublished=tuple(unpublished),
        )

    def _destroy_stack(
        self,
        snapshot: StackSnapshot,
        account_id: str,
        buckets: List[str],
        authorized: bool,
    ) -> DestructionResult:
        stack_name = snapshot.stack_name
        record = snapshot.record
        stack_id = record.stack_id or stack_name

        if record.termination_protection:
            logger.info(f"Disabling termination protection on {stack_name}")
            self.cfn.update_termination_protection(
                EnableTerminationProtection=False, StackName=stack_name
            )

        for resource in snapshot.resources:
            if resource.kind == ResourceKind.TABLE and resource.physical_id:
                self._disable_table_protection(resource.physical_id)

        reclaimed = ()
        if authorized:
            reclaimed = tuple(self.reclaimer.reclaim(b) for b in buckets)
            ensure_reclaimed(reclaimed)

        logger.info(f"Deleting stack {stack_name}")
        self.cfn.delete_stack(StackName=stack_id)
        self.monitor.wait(stack_id, "DELETE")

        unpublished = self.publisher.unpublish()

        retained = ()
        expected = list(expected_bucket_names(account_id, self.region).values())
        if authorized:
            # Retained by deletion policy or recreated while the stack was deleting
            leftovers = tuple(
                self.reclaimer.reclaim(b) for b in expected if self.reclaimer.bucket_exists(b)
            )
            ensure_reclaimed(leftovers)
            reclaimed += leftovers
        else:
            retained = tuple(b for b in buckets if self.reclaimer.bucket_exists(b))

        return DestructionResult(
            stack_name=stack_name,
            stack_deleted=True,
            buckets_authorized=authorized,
            reclaimed=reclaimed,
            retained_buckets=retained,
            unpublished=tuple(unpublished),
        )

    def _stack_buckets(self, snapshot: StackSnapshot) -> List[str]:
        return [
            r.physical_id
            for r in snapshot.resources
            if r.kind == ResourceKind.BUCKET
            and r.physical_id
            and r.status not in RELEASED_STATUSES
        ]

    def _disable_table_protection(self, table_name: str) -> None:
        try:
            self.dynamodb.update_table(TableName=table_name, DeletionProtectionEnabled=False)
            logger.info(f"Disabled deletion protection on table {table_name}")
        except ClientError as e:
            if not is_not_found(e):
                raise
            logger.info(f"Table {table_name} no longer exists")
