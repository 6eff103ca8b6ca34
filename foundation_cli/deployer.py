# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Deployer Module

Converges the foundation stack: resolves its state, picks the corrective
transition and executes it, then verifies outputs and publishes them.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from botocore.exceptions import ClientError, WaiterError

from .aws import CLIENT_CONFIG
from .bucket_reclaimer import BucketReclaimer, ensure_reclaimed
from .confirmations import ConfirmationProvider
from .exceptions import IrrecoverableError, PartialFailureError, StateConflictError
from .models import (
    DeploymentParameters,
    DeploymentResult,
    OrphanCandidate,
    ReclaimResult,
    ResourceFailure,
    StackSnapshot,
    StackState,
    Transition,
    TransitionPlan,
)
from .naming import REQUIRED_OUTPUTS, expected_bucket_names
from .planner import plan_transition, requires_confirmation
from .publisher import ConfigurationPublisher
from .stack_monitor import StackMonitor
from .stack_state import StackStateResolver
from .template import FoundationTemplate

logger = logging.getLogger(__name__)

CAPABILITIES = ["CAPABILITY_NAMED_IAM"]
NO_UPDATES_MESSAGE = "No updates are to be performed"


def to_cfn_parameters(values: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"ParameterKey": k, "ParameterValue": v} for k, v in values.items()]


def to_cfn_tags(values: Dict[str, str]) -> List[Dict[str, str]]:
    # CloudFormation rejects empty tag values
    return [{"Key": k, "Value": v} for k, v in values.items() if v]


class StackDeployer:
    """Manages the foundation CloudFormation stack lifecycle for deploy"""

    def __init__(
        self,
        session,
        region: str,
        template: FoundationTemplate,
        monitor: Optional[StackMonitor] = None,
        resolver: Optional[StackStateResolver] = None,
        reclaimer: Optional[BucketReclaimer] = None,
        publisher: Optional[ConfigurationPublisher] = None,
    ):
        """
        Initialize stack deployer

        Args:
            session: boto3 session
            region: AWS region
            template: Foundation template
            monitor: Stack waiter (defaults to a StackMonitor on this session)
            resolver: Stack state resolver
            reclaimer: Bucket reclaimer
            publisher: Configuration publisher
        """
        self.region = region
        self.template = template
        self.cfn = session.client("cloudformation", region_name=region, config=CLIENT_CONFIG)
        self.iam = session.client("iam", config=CLIENT_CONFIG)
        self.monitor = monitor or StackMonitor(self.cfn)
        self.resolver = resolver or StackStateResolver(session, region)
        self.reclaimer = reclaimer or BucketReclaimer(session, region)
        self.publisher = publisher or ConfigurationPublisher(session, region)

    def deploy(
        self, parameters: DeploymentParameters, confirmations: ConfirmationProvider
    ) -> DeploymentResult:
        """
        Deploy the foundation stack

        Args:
            parameters: Immutable parameter set for this run
            confirmations: Provider for the import-or-discard decision

        Returns:
            DeploymentResult
        """
        self.template.validate_parameters(parameters.template_parameters().keys())

        snapshot = self.resolver.resolve(
            parameters.stack_name, parameters.account_id, parameters.project
        )
        choice = None
        if requires_confirmation(snapshot.state, snapshot.orphans):
            choice = confirmations.choose_orphan_action(snapshot.orphans)

        plan = plan_transition(snapshot.state, snapshot.orphans, choice)
        logger.info(
            f"Stack {parameters.stack_name}: {snapshot.state.value} -> "
            f"{plan.transition.value} ({plan.reason})"
        )
        return self.execute(plan, parameters, snapshot)

    def execute(
        self,
        plan: TransitionPlan,
        parameters: DeploymentParameters,
        snapshot: StackSnapshot,
    ) -> DeploymentResult:
        """Execute a planned transition and publish the resulting outputs"""
        stack_name = parameters.stack_name
        transition = plan.transition
        no_changes = False
        imported: Tuple[str, ...] = ()
        skipped: Tuple[str, ...] = ()
        reclaimed: Tuple[ReclaimResult, ...] = ()

        if transition == Transition.FAIL:
            self._fail(plan, snapshot)

        if transition == Transition.IMPORT:
            importable = [o for o in plan.orphans if o.importable]
            skipped = tuple(o.physical_id for o in plan.orphans if not o.importable)
            if skipped:
                logger.warning(f"Tag-only matches are not imported: {', '.join(skipped)}")
            if importable:
                self._import(parameters, importable)
                imported = tuple(o.physical_id for o in importable)
                self._update(parameters)
            else:
                logger.info("Nothing importable, creating stack instead")
                self._create(parameters)

        elif transition == Transition.DISCARD_THEN_CREATE:
            reclaimed = tuple(self.reclaimer.reclaim(o.physical_id) for o in plan.orphans)
            ensure_reclaimed(reclaimed)
            self._create(parameters)

        elif transition == Transition.TEARDOWN_THEN_CREATE:
            reclaimed = self._teardown(parameters, snapshot)
            self._create(parameters)

        elif transition == Transition.CREATE:
            self._create(parameters)

        elif transition == Transition.UPDATE:
            status = snapshot.record.status if snapshot.record else None
            no_changes = self._update(parameters, status)

        outputs, status = self._verify_outputs(stack_name)
        published = self.publisher.publish(outputs, parameters.tags())

        return DeploymentResult(
            stack_name=stack_name,
            transition=transition,
            status=status,
            no_changes=no_changes,
            outputs=outputs,
            imported=imported,
            skipped_orphans=skipped,
            reclaimed=reclaimed,
            published=tuple(published),
        )

    def _fail(self, plan: TransitionPlan, snapshot: StackSnapshot) -> None:
        status = snapshot.record.status if snapshot.record else None
        if plan.state == StackState.BUSY:
            raise StateConflictError(
                f"Stack {snapshot.stack_name} is {status}: {plan.reason}"
            )
        failures = [
            ResourceFailure(
                logical_id=r.logical_id,
                resource_type=r.resource_type,
                status=r.status,
                reason=r.status_reason,
            )
            for r in snapshot.resources
            if r.status == "DELETE_FAILED"
        ]
        if not failures and snapshot.record is not None:
            failures = self.monitor.failure_details(snapshot.record.stack_id or snapshot.stack_name)
        raise IrrecoverableError(
            f"Stack {snapshot.stack_name} is {status}: {plan.reason}",
            failures=failures,
            status=status,
        )

    def _create(self, parameters: DeploymentParameters) -> Dict:
        stack_name = parameters.stack_name
        logger.info(f"Creating new stack: {stack_name}")
        response = self.cfn.create_stack(
            StackName=stack_name,
            TemplateBody=self.template.body,
            Parameters=to_cfn_parameters(parameters.template_parameters()),
            Tags=to_cfn_tags(parameters.tags()),
            Capabilities=CAPABILITIES,
            EnableTerminationProtection=True,
            OnFailure="ROLLBACK",
        )
        return self.monitor.wait(response.get("StackId", stack_name), "CREATE")

    def _update(self, parameters: DeploymentParameters, status: Optional[str] = None) -> bool:
        """
        Update the stack with the full template

        Returns:
            True when CloudFormation reported there was nothing to update
        """
        stack_name = parameters.stack_name
        logger.info(f"Stack {stack_name} exists - updating")
        try:
            self.cfn.update_stack(
                StackName=stack_name,
                TemplateBody=self.template.body,
                Parameters=to_cfn_parameters(parameters.template_parameters()),
                Tags=to_cfn_tags(parameters.tags()),
                Capabilities=CAPABILITIES,
            )
        except ClientError as e:
            if NO_UPDATES_MESSAGE in str(e):
                logger.info(f"Stack {stack_name} is up to date")
                return True
            raise PartialFailureError(
                f"Update of {stack_name} was rejected: {e}",
                failures=self.monitor.failure_details(stack_name),
                status=status,
            ) from e

        self.monitor.wait(stack_name, "UPDATE")
        return False

    def _import(
        self, parameters: DeploymentParameters, candidates: Sequence[OrphanCandidate]
    ) -> None:
        stack_name = parameters.stack_name
        change_set_name = f"{stack_name}-import-{datetime.now().strftime('%Y%m%d%H%M%S')}"
        logical_ids = [c.logical_id for c in candidates]
        logger.info(f"Importing {', '.join(c.physical_id for c in candidates)} into {stack_name}")

        self.cfn.create_change_set(
            StackName=stack_name,
            ChangeSetName=change_set_name,
            ChangeSetType="IMPORT",
            TemplateBody=self.template.import_template(logical_ids),
            Parameters=to_cfn_parameters(parameters.template_parameters()),
            Tags=to_cfn_tags(parameters.tags()),
            Capabilities=CAPABILITIES,
            ResourcesToImport=[
                {
                    "ResourceType": "AWS::S3::Bucket",
                    "LogicalResourceId": c.logical_id,
                    "ResourceIdentifier": {"BucketName": c.physical_id},
                }
                for c in candidates
            ],
        )

        try:
            self.cfn.get_waiter("change_set_create_complete").wait(
                StackName=stack_name,
                ChangeSetName=change_set_name,
                WaiterConfig={
                    "Delay": max(1, int(self.monitor.poll_interval)),
                    "MaxAttempts": max(
                        1, int(self.monitor.timeout // max(1, self.monitor.poll_interval))
                    ),
                },
            )
        except WaiterError as e:
            reason = e.last_response.get("StatusReason", str(e)) if e.last_response else str(e)
            self._discard_change_set(stack_name, change_set_name)
            raise PartialFailureError(
                f"Import change set for {stack_name} failed: {reason}",
                failures=[
                    ResourceFailure(
                        logical_id=c.logical_id,
                        resource_type="AWS::S3::Bucket",
                        status="IMPORT_FAILED",
                        reason=reason,
                    )
                    for c in candidates
                ],
            ) from e

        self.cfn.execute_change_set(ChangeSetName=change_set_name, StackName=stack_name)
        self.monitor.wait(stack_name, "IMPORT")
        self.cfn.update_termination_protection(
            EnableTerminationProtection=True, StackName=stack_name
        )

    def _discard_change_set(self, stack_name: str, change_set_name: str) -> None:
        """Remove a failed import change set and its empty review-stage stack"""
        try:
            self.cfn.delete_change_set(ChangeSetName=change_set_name, StackName=stack_name)
            self.cfn.delete_stack(StackName=stack_name)
            logger.info(f"Removed failed change set {change_set_name}")
        except ClientError as e:
            logger.warning(f"Could not remove change set {change_set_name}: {e}")

    def _teardown(
        self, parameters: DeploymentParameters, snapshot: StackSnapshot
    ) -> Tuple[ReclaimResult, ...]:
        """Remove a stack whose first creation rolled back, and its leftovers"""
        stack_name = parameters.stack_name
        record = snapshot.record
        stack_id = record.stack_id if record and record.stack_id else stack_name

        if record and record.termination_protection:
            logger.info(f"Disabling termination protection on {stack_name}")
            self.cfn.update_termination_protection(
                EnableTerminationProtection=False, StackName=stack_name
            )

        buckets = expected_bucket_names(parameters.account_id, parameters.region)
        reclaimed = tuple(self.reclaimer.reclaim(b) for b in buckets.values())
        ensure_reclaimed(reclaimed)

        self._delete_identity_providers(parameters.identity_provider.issuer_host)

        logger.info(f"Deleting stack {stack_name}")
        self.cfn.delete_stack(StackName=stack_id)
        self.monitor.wait(stack_id, "DELETE")
        return reclaimed

    def _delete_identity_providers(self, issuer_host: str) -> List[str]:
        deleted = []
        response = self.iam.list_open_id_connect_providers()
        for provider in response.get("OpenIDConnectProviderList", []):
            arn = provider.get("Arn", "")
            if arn.endswith(issuer_host):
                self.iam.delete_open_id_connect_provider(OpenIDConnectProviderArn=arn)
                logger.info(f"Deleted identity provider: {arn}")
                deleted.append(arn)
        return deleted

    def _verify_outputs(self, stack_name: str) -> Tuple[Dict[str, str], str]:
        record = self.resolver.read_stack(stack_name)
        if record is None:
            raise PartialFailureError(f"Stack {stack_name} not found after deployment")
        missing = [key for key in REQUIRED_OUTPUTS if not record.outputs.get(key)]
        if missing:
            raise PartialFailureError(
                f"Stack {stack_name} is missing outputs: {', '.join(missing)}",
                failures=[ResourceFailure(logical_id=k, reason="output missing") for k in missing],
                status=record.status,
            )
        return record.outputs, record.status
