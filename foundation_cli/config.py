# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Configuration Module

Captures settings from the environment (and an optional .env file) once per
invocation and builds the immutable DeploymentParameters for a run.
"""

import logging
import os
from typing import Mapping, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .aws import CLIENT_CONFIG
from .exceptions import PreconditionError
from .identity_provider import IdentityProviderResolver
from .models import DeploymentParameters
from .repository import normalize_url, project_name, target_repository

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
DEFAULT_TEMPLATE = "bootstrap.yaml"


class FoundationSettings(BaseModel):
    """Settings captured at startup and threaded into every component."""

    model_config = ConfigDict(frozen=True)

    region: Optional[str] = None
    profile: Optional[str] = None
    cost_center: str = "default"
    environment: str = "prod"
    owner: str = "unassigned"
    target_repository_name: Optional[str] = None
    template_file: str = DEFAULT_TEMPLATE
    poll_interval: float = Field(default=10.0, gt=0)
    wait_timeout: float = Field(default=3600.0, gt=0)
    reclaim_workers: int = Field(default=8, ge=1)
    log_level: Optional[str] = None


def load_settings(
    environ: Optional[Mapping[str, str]] = None, dotenv: bool = True, **overrides
) -> FoundationSettings:
    """
    Load settings from the environment

    Args:
        environ: Environment mapping (defaults to os.environ)
        dotenv: Whether to load a .env file from the working directory first
        **overrides: Values given on the command line; None values are ignored

    Returns:
        FoundationSettings
    """
    if dotenv and environ is None:
        load_dotenv()
    env = os.environ if environ is None else environ

    values = {
        "region": env.get("AWS_REGION"),
        "profile": env.get("AWS_PROFILE"),
        "cost_center": env.get("TAG_COST_CENTER"),
        "environment": env.get("TAG_ENVIRONMENT"),
        "owner": env.get("TAG_OWNER"),
        "target_repository_name": env.get("TARGET_DEPLOYMENT_ROLES_REPOSITORY"),
        "template_file": env.get("FOUNDATION_TEMPLATE"),
        "poll_interval": env.get("FOUNDATION_POLL_INTERVAL"),
        "wait_timeout": env.get("FOUNDATION_WAIT_TIMEOUT"),
        "reclaim_workers": env.get("FOUNDATION_RECLAIM_WORKERS"),
        "log_level": env.get("LOG_LEVEL"),
    }
    # Options left unset on the command line keep the environment value
    values.update({k: v for k, v in overrides.items() if v is not None})
    # Unset and empty values fall back to model defaults
    return FoundationSettings(**{k: v for k, v in values.items() if v not in (None, "")})


def resolve_region(settings: FoundationSettings, session: boto3.Session) -> str:
    return settings.region or session.region_name or DEFAULT_REGION


def caller_account(session: boto3.Session, region: str) -> str:
    """Account id of the current credentials"""
    sts = session.client("sts", region_name=region, config=CLIENT_CONFIG)
    try:
        return sts.get_caller_identity()["Account"]
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(
            f"Unable to determine AWS identity: {e}",
            hint="Configure AWS credentials or set AWS_PROFILE",
        ) from e


def build_parameters(
    settings: FoundationSettings,
    session: boto3.Session,
    repository_url: str,
    resolver: Optional[IdentityProviderResolver] = None,
) -> DeploymentParameters:
    """
    Build the full parameter set for a deploy or destroy run

    Reads the caller identity and account alias once; the result is frozen and
    reused for every call made during the run.

    Args:
        settings: Captured settings
        session: boto3 session
        repository_url: Repository remote URL
        resolver: Identity provider resolver

    Returns:
        DeploymentParameters
    """
    region = resolve_region(settings, session)
    sts = session.client("sts", region_name=region, config=CLIENT_CONFIG)
    iam = session.client("iam", config=CLIENT_CONFIG)

    try:
        identity = sts.get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(
            f"Unable to determine AWS identity: {e}",
            hint="Configure AWS credentials or set AWS_PROFILE",
        ) from e

    aliases = iam.list_account_aliases().get("AccountAliases", [])
    resolver = resolver or IdentityProviderResolver()

    parameters = DeploymentParameters(
        account_id=identity["Account"],
        account_alias=aliases[0] if aliases else "",
        region=region,
        repository=normalize_url(repository_url),
        project=project_name(repository_url),
        deployment_role=identity["Arn"],
        cost_center=settings.cost_center,
        environment=settings.environment,
        owner=settings.owner,
        target_repository=target_repository(
            repository_url, settings.target_repository_name
        ),
        identity_provider=resolver.resolve(repository_url),
    )
    logger.info(
        f"Deployment parameters: project={parameters.project} "
        f"account={parameters.account_id} region={parameters.region}"
    )
    return parameters
