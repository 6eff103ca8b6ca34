# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: MIT-0

"""
Identity Provider Module

Derives the OIDC federation parameters (issuer, audience, thumbprints) for the
repository host that will assume the deployment role.
"""

import hashlib
import logging
import re
import socket
import ssl
from typing import Callable, Optional

from .exceptions import ThumbprintError, UnsupportedProviderError
from .models import IdentityProviderConfig, ProviderKind
from .repository import parse_host_and_path

logger = logging.getLogger(__name__)

STS_AUDIENCE = "sts.amazonaws.com"

GITHUB_ISSUER = "https://token.actions.githubusercontent.com"
GITHUB_THUMBPRINTS = (
    "6938fd4d98bab03faadb97b34396831e3780aea1",
    "1c58a3a8518e8759bf075b76b750d4f2df264fcd",
)

GITLAB_HOST = "gitlab.com"
GITLAB_ISSUER = f"https://{GITLAB_HOST}"

BITBUCKET_ISSUER = (
    "https://api.bitbucket.org/2.0/workspaces/{workspace}/pipelines-config/identity/oidc"
)
BITBUCKET_AUDIENCE = "ari:cloud:bitbucket::workspace/{workspace}"
BITBUCKET_THUMBPRINT = "a031c46782e6e6c662c2c87c76da9aa62ccabd8e"

_THUMBPRINT = re.compile(r"^[0-9a-f]{40}$")


def fetch_leaf_certificate(host: str, port: int = 443, timeout: float = 10.0) -> bytes:
    """Return the DER-encoded leaf certificate presented by host:port"""
    context = ssl.create_default_context()
    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=host) as tls:
            return tls.getpeercert(binary_form=True)


class IdentityProviderResolver:
    """Maps a repository remote URL to its OIDC federation configuration"""

    def __init__(
        self, fetch_certificate: Callable[[str], bytes] = fetch_leaf_certificate
    ):
        self._fetch_certificate = fetch_certificate

    def resolve(self, repository_url: str) -> IdentityProviderConfig:
        """
        Resolve the identity provider for a repository

        Args:
            repository_url: Remote URL in https, ssh or scp-like form

        Returns:
            IdentityProviderConfig for the repository host

        Raises:
            UnsupportedProviderError: Host is not a known provider
            ThumbprintError: Issuer certificate could not be fingerprinted
        """
        host, segments = parse_host_and_path(repository_url)
        logger.info(f"Resolving identity provider for host: {host}")

        if host == "github.com":
            return IdentityProviderConfig(
                kind=ProviderKind.GITHUB,
                issuer_url=GITHUB_ISSUER,
                audience=STS_AUDIENCE,
                thumbprints=GITHUB_THUMBPRINTS,
            )

        if host == GITLAB_HOST:
            return IdentityProviderConfig(
                kind=ProviderKind.GITLAB,
                issuer_url=GITLAB_ISSUER,
                audience=STS_AUDIENCE,
                thumbprints=(self.compute_thumbprint(GITLAB_HOST),),
            )

        if host == "bitbucket.org":
            workspace = self._bitbucket_workspace(segments)
            if not workspace:
                raise UnsupportedProviderError(
                    f"Bitbucket remote has no workspace segment: {repository_url}"
                )
            return IdentityProviderConfig(
                kind=ProviderKind.BITBUCKET,
                issuer_url=BITBUCKET_ISSUER.format(workspace=workspace),
                audience=BITBUCKET_AUDIENCE.format(workspace=workspace),
                thumbprints=(BITBUCKET_THUMBPRINT,),
            )

        raise UnsupportedProviderError(
            f"Unsupported repository host '{host or repository_url}'"
        )

    def compute_thumbprint(self, host: str) -> str:
        """SHA-1 fingerprint of the host's leaf certificate, lowercase hex"""
        try:
            der = self._fetch_certificate(host)
        except (OSError, ssl.SSLError) as e:
            raise ThumbprintError(
                f"Unable to retrieve TLS certificate from {host}: {e}"
            ) from e

        if not der:
            raise ThumbprintError(f"{host} presented no certificate")

        thumbprint = hashlib.sha1(der).hexdigest().lower()
        if not _THUMBPRINT.match(thumbprint):
            raise ThumbprintError(f"Malformed thumbprint for {host}: {thumbprint}")

        logger.info(f"Computed thumbprint for {host}: {thumbprint}")
        return thumbprint

    @staticmethod
    def _bitbucket_workspace(segments) -> Optional[str]:
        # bitbucket.org/{workspace}/{repo}
        if len(segments) < 2:
            return None
        return segments[0]
