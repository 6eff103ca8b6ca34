# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Foundation Models

Pydantic models for stack state, orphan candidates, deployment inputs and
operation results. Models are frozen: a value captured at the start of a run
cannot drift while the run is executing.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .naming import MANAGED_BY


class StackState(str, Enum):
    """Classified stack state."""

    ABSENT = "ABSENT"
    HEALTHY = "HEALTHY"
    FAILED_INITIAL = "FAILED_INITIAL"
    FAILED_UPDATE = "FAILED_UPDATE"
    BUSY = "BUSY"
    STUCK = "STUCK"
    DEGRADED = "DEGRADED"


class Transition(str, Enum):
    """Corrective transition chosen for a stack state."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    IMPORT = "IMPORT"
    DISCARD_THEN_CREATE = "DISCARD_THEN_CREATE"
    TEARDOWN_THEN_CREATE = "TEARDOWN_THEN_CREATE"
    FAIL = "FAIL"


class OrphanChoice(str, Enum):
    """Operator decision for orphaned resources."""

    IMPORT = "IMPORT"
    DISCARD = "DISCARD"


class ResourceKind(str, Enum):
    BUCKET = "BUCKET"
    TABLE = "TABLE"
    IDENTITY_PROVIDER = "IDENTITY_PROVIDER"
    ROLE = "ROLE"
    OTHER = "OTHER"


RESOURCE_KINDS: Dict[str, ResourceKind] = {
    "AWS::S3::Bucket": ResourceKind.BUCKET,
    "AWS::DynamoDB::Table": ResourceKind.TABLE,
    "AWS::IAM::OIDCProvider": ResourceKind.IDENTITY_PROVIDER,
    "AWS::IAM::Role": ResourceKind.ROLE,
}


class Confidence(str, Enum):
    """How an orphan candidate was matched."""

    NAME_MATCH = "name match"
    TAG_MATCH = "tag match"
    BOTH = "name and tag match"


class ProviderKind(str, Enum):
    """Supported OIDC federation providers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Stack State Models
# ============================================================================


class StackRecord(_Frozen):
    """Live CloudFormation stack as read from the control plane."""

    stack_name: str = Field(description="CloudFormation stack name")
    stack_id: str = Field(default="", description="CloudFormation stack ID")
    status: str = Field(description="Raw CloudFormation stack status")
    outputs: Dict[str, str] = Field(default_factory=dict)
    termination_protection: bool = Field(default=False)
    creation_time: Optional[datetime] = Field(default=None)


class ResourceRecord(_Frozen):
    """A physical resource owned by the stack."""

    logical_id: str
    physical_id: str = ""
    resource_type: str
    kind: ResourceKind = ResourceKind.OTHER
    status: str = ""
    status_reason: str = ""
    retained: bool = Field(
        default=False, description="Kept by a deletion policy after stack deletion"
    )

    @classmethod
    def from_summary(cls, summary: Dict) -> "ResourceRecord":
        """Build from a list_stack_resources / describe_stack_resources entry"""
        resource_type = summary.get("ResourceType", "")
        status = summary.get("ResourceStatus", "")
        return cls(
            logical_id=summary.get("LogicalResourceId", ""),
            physical_id=summary.get("PhysicalResourceId", "") or "",
            resource_type=resource_type,
            kind=RESOURCE_KINDS.get(resource_type, ResourceKind.OTHER),
            status=status,
            status_reason=summary.get("ResourceStatusReason", "") or "",
            retained=status == "DELETE_SKIPPED",
        )


class OrphanCandidate(_Frozen):
    """A resource matching the project's conventions but owned by no live stack."""

    physical_id: str
    kind: ResourceKind = ResourceKind.BUCKET
    confidence: Confidence
    logical_id: Optional[str] = Field(
        default=None, description="Template logical id when the name is a declared one"
    )

    @property
    def importable(self) -> bool:
        return self.logical_id is not None


class StackSnapshot(_Frozen):
    """Classified view of the stack and its orphans at one point in time."""

    stack_name: str
    state: StackState
    record: Optional[StackRecord] = None
    resources: Tuple[ResourceRecord, ...] = ()
    orphans: Tuple[OrphanCandidate, ...] = ()


class TransitionPlan(_Frozen):
    transition: Transition
    state: StackState
    orphans: Tuple[OrphanCandidate, ...] = ()
    reason: str = ""


# ============================================================================
# Deployment Inputs
# ============================================================================


class IdentityProviderConfig(_Frozen):
    """OIDC federation parameters derived from the repository remote."""

    kind: ProviderKind
    issuer_url: str
    audience: str
    thumbprints: Tuple[str, ...]

    @property
    def issuer_host(self) -> str:
        """Issuer URL without scheme, as IAM uses it in provider ARNs"""
        return self.issuer_url.split("://", 1)[-1].rstrip("/")


class DeploymentParameters(_Frozen):
    """Full parameter set for a transition, captured once per invocation."""

    account_id: str
    account_alias: str = ""
    region: str
    repository: str
    project: str
    deployment_role: str
    cost_center: str
    environment: str
    owner: str
    managed_by: str = MANAGED_BY
    target_repository: str
    identity_provider: IdentityProviderConfig

    @property
    def stack_name(self) -> str:
        return self.project

    def template_parameters(self) -> Dict[str, str]:
        """Template parameter values keyed by CloudFormation parameter name"""
        provider = self.identity_provider
        return {
            "AccountAlias": self.account_alias,
            "CostCenter": self.cost_center,
            "DeploymentRole": self.deployment_role,
            "Environment": self.environment,
            "ManagedBy": self.managed_by,
            "Owner": self.owner,
            "Project": self.project,
            "Region": self.region,
            "Repository": self.repository,
            "TargetDeploymentRolesRepository": self.target_repository,
            "OidcProvider": provider.kind.value,
            "OidcUrl": provider.issuer_url,
            "OidcAudience": provider.audience,
            "OidcThumbprints": ",".join(provider.thumbprints),
        }

    def tags(self) -> Dict[str, str]:
        """Tag set applied uniformly to the stack and every managed resource"""
        return {
            "AccountId": self.account_id,
            "AccountAlias": self.account_alias,
            "CostCenter": self.cost_center,
            "DeploymentRole": self.deployment_role,
            "Environment": self.environment,
            "ManagedBy": self.managed_by,
            "Owner": self.owner,
            "Project": self.project,
            "Region": self.region,
            "Repository": self.repository,
        }


# ============================================================================
# Operation Results
# ============================================================================


class ResourceFailure(_Frozen):
    """One sub-resource that failed during a stack operation."""

    logical_id: str
    resource_type: str = ""
    status: str = ""
    reason: str = ""

    def __str__(self) -> str:
        return f"{self.logical_id} ({self.resource_type}) {self.status}: {self.reason}"


class ReclaimResult(_Frozen):
    """Outcome of emptying (and optionally deleting) a versioned bucket."""

    bucket: str
    existed: bool
    versions_deleted: int = 0
    markers_deleted: int = 0
    bucket_deleted: bool = False
    errors: Tuple[str, ...] = ()

    @property
    def objects_processed(self) -> int:
        return self.versions_deleted + self.markers_deleted


class DeploymentResult(_Frozen):
    """Result of a deploy run."""

    stack_name: str
    transition: Transition
    status: str = Field(description="Final stack status")
    no_changes: bool = False
    outputs: Dict[str, str] = Field(default_factory=dict)
    imported: Tuple[str, ...] = ()
    skipped_orphans: Tuple[str, ...] = ()
    reclaimed: Tuple[ReclaimResult, ...] = ()
    published: Tuple[str, ...] = ()


class DestructionResult(_Frozen):
    """Result of a destroy run."""

    stack_name: str
    noop: bool = False
    declined: bool = False
    stack_deleted: bool = False
    buckets_authorized: bool = False
    reclaimed: Tuple[ReclaimResult, ...] = ()
    retained_buckets: Tuple[str, ...] = ()
    unpublished: Tuple[str, ...] = ()
