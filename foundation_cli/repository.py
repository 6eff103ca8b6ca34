# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Repository Module

Discovers the git remote of the working tree and derives the project name,
stack name and deployment-roles target repository from it.
"""

import logging
import re
import subprocess
from typing import Optional
from urllib.parse import urlparse

from .exceptions import PreconditionError

logger = logging.getLogger(__name__)

DEFAULT_TARGET_REPOSITORY = "terraform-aws-deployment-roles"

_SCP_STYLE = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>.+)$")


def get_remote_url(cwd: Optional[str] = None, remote: str = "origin") -> str:
    """
    Read the configured remote URL of the repository

    Args:
        cwd: Working directory inside the repository
        remote: Remote name

    Returns:
        Remote URL as configured in git
    """
    cmd = ["git", "config", "--get", f"remote.{remote}.url"]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
    except FileNotFoundError:
        raise PreconditionError("git executable not found on PATH")

    url = result.stdout.strip()
    if result.returncode != 0 or not url:
        raise PreconditionError(
            f"No '{remote}' remote configured for this repository",
            hint=f"Add one with 'git remote add {remote} <url>'",
        )
    logger.info(f"Repository remote: {url}")
    return url


def normalize_url(url: str) -> str:
    """
    Normalize a remote URL to https form.

    ``git@host:org/repo.git`` and ``ssh://git@host/org/repo.git`` both become
    ``https://host/org/repo.git``. Userinfo and port are dropped.
    """
    url = url.strip()
    if "://" not in url:
        match = _SCP_STYLE.match(url)
        if match:
            return f"https://{match.group('host').lower()}/{match.group('path').lstrip('/')}"
        return url

    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    return f"https://{host}/{parsed.path.lstrip('/')}"


def parse_host_and_path(url: str):
    """Return (host, path segments) of a remote URL in any supported form"""
    normalized = normalize_url(url)
    parsed = urlparse(normalized)
    host = (parsed.hostname or "").lower()
    segments = [s for s in parsed.path.split("/") if s]
    return host, segments


def project_name(url: str) -> str:
    """Repository base name without the .git suffix"""
    _, segments = parse_host_and_path(url)
    if not segments:
        raise PreconditionError(f"Cannot derive project name from remote URL: {url}")
    name = segments[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name


def organization(url: str) -> str:
    _, segments = parse_host_and_path(url)
    if len(segments) < 2:
        raise PreconditionError(f"Cannot derive organization from remote URL: {url}")
    return "/".join(segments[:-1])


def target_repository(url: str, override: Optional[str] = None) -> str:
    """
    Build the deployment-roles repository allowed to assume the role.

    Returns ``{org}/{name}``, where name defaults to
    ``terraform-aws-deployment-roles``.
    """
    return f"{organization(url)}/{override or DEFAULT_TARGET_REPOSITORY}"
