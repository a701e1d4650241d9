"""AWS session and client construction.

Credential precedence:
1. Explicit access keys in the configuration
2. Named profile (configuration or ``--profile``)
3. AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY environment variables
4. boto3's default chain (AWS_PROFILE, shared config, instance roles)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound

from sitedeck.lib.errors import CredentialsError
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.config import SiteConfig

logger = get_logger(__name__)

# CloudFront, ACM certificates for CloudFront and Route53 are global and
# served from us-east-1.
GLOBAL_REGION = "us-east-1"

CLIENT_CONFIG = Config(
    retries={"mode": "standard", "max_attempts": 5},
    user_agent_extra="sitedeck",
)

CREDENTIALS_HELP = (
    "Configure credentials using one of:\n"
    "  1. Config file (credentials.access_key_id + secret_access_key)\n"
    "  2. Config file or --profile (credentials.profile)\n"
    "  3. Environment variables (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY)\n"
    "  4. AWS profile (~/.aws/credentials)\n"
    "  5. IAM role (EC2/ECS instance metadata)"
)


class CredentialSource(str, Enum):
    """Where the credentials of a session came from."""

    CONFIG = "config"
    PROFILE = "profile"
    ENVIRONMENT = "environment"
    DEFAULT_CHAIN = "default-chain"


def resolve_credential_source(
    config: SiteConfig,
) -> tuple[CredentialSource, dict[str, Any]]:
    """Pick the credential source and the boto3.Session kwargs for it."""
    creds = config.credentials
    if creds.access_key_id and creds.secret_access_key:
        kwargs: dict[str, Any] = {
            "aws_access_key_id": creds.access_key_id,
            "aws_secret_access_key": creds.secret_access_key,
        }
        if creds.session_token:
            kwargs["aws_session_token"] = creds.session_token
        return CredentialSource.CONFIG, kwargs
    if creds.profile:
        return CredentialSource.PROFILE, {"profile_name": creds.profile}
    if os.environ.get("AWS_ACCESS_KEY_ID") and os.environ.get("AWS_SECRET_ACCESS_KEY"):
        return CredentialSource.ENVIRONMENT, {}
    return CredentialSource.DEFAULT_CHAIN, {}


def create_session(config: SiteConfig) -> boto3.Session:
    """Create a boto3 Session honouring the credential precedence.

    Raises:
        CredentialsError: If a configured profile does not exist
    """
    source, kwargs = resolve_credential_source(config)
    try:
        session = boto3.Session(region_name=config.region, **kwargs)
    except ProfileNotFound as exc:
        raise CredentialsError(
            f"AWS profile '{config.credentials.profile}' not found.\n{CREDENTIALS_HELP}"
        ) from exc
    logger.debug("Using AWS credentials from %s", source.value)
    return session


@dataclass
class AwsClients:
    """The service clients a deployment needs.

    ``s3`` lives in the bucket region; ``cloudfront``, ``acm`` and
    ``route53`` are pinned to us-east-1.
    """

    s3: Any
    cloudfront: Any
    acm: Any
    route53: Any
    sts: Any
    region: str

    @classmethod
    def from_session(cls, session: boto3.Session, region: str) -> AwsClients:
        return cls(
            s3=session.client("s3", region_name=region, config=CLIENT_CONFIG),
            cloudfront=session.client(
                "cloudfront", region_name=GLOBAL_REGION, config=CLIENT_CONFIG
            ),
            acm=session.client("acm", region_name=GLOBAL_REGION, config=CLIENT_CONFIG),
            route53=session.client(
                "route53", region_name=GLOBAL_REGION, config=CLIENT_CONFIG
            ),
            sts=session.client("sts", region_name=region, config=CLIENT_CONFIG),
            region=region,
        )

    @classmethod
    def from_config(cls, config: SiteConfig) -> AwsClients:
        return cls.from_session(create_session(config), config.region)


@dataclass(frozen=True)
class CallerIdentity:
    """Result of STS GetCallerIdentity."""

    account: str
    arn: str
    user_id: str


def verify_credentials(clients: AwsClients) -> CallerIdentity:
    """Check that the credentials work by calling STS.

    Raises:
        CredentialsError: If no credentials resolve or STS rejects them
    """
    try:
        response = clients.sts.get_caller_identity()
    except (ClientError, BotoCoreError) as exc:
        raise CredentialsError(
            f"Failed to verify AWS credentials: {exc}\n{CREDENTIALS_HELP}"
        ) from exc
    identity = CallerIdentity(
        account=response["Account"], arn=response["Arn"], user_id=response["UserId"]
    )
    logger.info("Authenticated as %s (account %s)", identity.arn, identity.account)
    return identity
