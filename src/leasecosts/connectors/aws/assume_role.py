"""Cross-account role assumption for Cost Explorer access."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import structlog

from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws
from leasecosts.exceptions import FieldError, UpstreamError, ValidationError
from leasecosts.models.base import AwsCredentials

logger = structlog.get_logger()

MIN_DURATION_SECONDS = 900
MAX_DURATION_SECONDS = 43200
DEFAULT_DURATION_SECONDS = 3600
SESSION_NAME_PREFIX = "lease-costs"


def session_name(now: Callable[[], float] = time.time) -> str:
    return f"{SESSION_NAME_PREFIX}-{int(now() * 1000)}"


class RoleAssumer:
    """Assumes IAM roles through STS with a lazily created client."""

    def __init__(
        self,
        clients: AwsClientFactory | None = None,
        region: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clients = clients or AwsClientFactory(region=region)
        self._region = region
        self._clock = clock
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._clients.client("sts", region=self._region)
        return self._client

    async def assume(
        self, role_arn: str, duration_seconds: int = DEFAULT_DURATION_SECONDS
    ) -> AwsCredentials:
        """Return temporary credentials for ``role_arn``.

        Propagates STS errors unchanged; a response without usable
        credentials raises ``UpstreamError``.
        """
        if not MIN_DURATION_SECONDS <= duration_seconds <= MAX_DURATION_SECONDS:
            raise ValidationError(
                f"Invalid credential duration: {duration_seconds} seconds. Must be between "
                f"{MIN_DURATION_SECONDS} and {MAX_DURATION_SECONDS}",
                errors=[FieldError(field="duration_seconds", message="out of range")],
            )

        client = self._ensure_client()
        response = await call_aws(
            client.assume_role,
            RoleArn=role_arn,
            RoleSessionName=session_name(self._clock),
            DurationSeconds=duration_seconds,
        )
        creds = response.get("Credentials")
        if not creds:
            raise UpstreamError(f"Failed to assume role {role_arn}: no credentials returned")
        if not creds.get("AccessKeyId") or not creds.get("SecretAccessKey"):
            raise UpstreamError(
                f"Failed to assume role {role_arn}: missing AccessKeyId or SecretAccessKey"
            )

        credentials = AwsCredentials(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds.get("SessionToken", ""),
            expiration=creds.get("Expiration"),
        )
        logger.info(
            "role_assumed",
            role_arn=role_arn,
            expires_at=credentials.expiration.isoformat() if credentials.expiration else None,
        )
        return credentials


async def assume_role(
    role_arn: str,
    duration_seconds: int = DEFAULT_DURATION_SECONDS,
    *,
    clients: AwsClientFactory | None = None,
) -> AwsCredentials:
    """Convenience wrapper around ``RoleAssumer.assume``."""
    return await RoleAssumer(clients=clients).assume(role_arn, duration_seconds)
