"""Client for the sandbox leases API.

Requests are authenticated with an HS256 service JWT whose signing secret
lives in Secrets Manager. The secret and the signed token are cached on the
instance; a 401/403 drops both so a rotated secret is picked up on the next
call. Transient failures (5xx, 429, timeouts) are retried with backoff.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx
import jwt
import structlog

from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws
from leasecosts.exceptions import (
    NotFoundError,
    TransientError,
    UpstreamError,
    ValidationError,
)
from leasecosts.models.events import LeaseDetails, parse_model
from leasecosts.observability.logging import sanitize_for_log
from leasecosts.utils.retry import RetryPolicy, retry_async

logger = structlog.get_logger()

DEFAULT_SERVICE_EMAIL = "ndx+costs@dsit.gov.uk"
TOKEN_TTL_SECONDS = 3600
TOKEN_REFRESH_MARGIN_SECONDS = 60
REQUEST_TIMEOUT_SECONDS = 5.0


def encode_lease_id(user_email: str, lease_uuid: str) -> str:
    """Base64 of the compact JSON ``{"userEmail": ..., "uuid": ...}`` composite key."""
    composite = json.dumps({"userEmail": user_email, "uuid": lease_uuid}, separators=(",", ":"))
    return base64.b64encode(composite.encode("utf-8")).decode("ascii")


def sign_service_token(
    secret: str,
    *,
    email: str = DEFAULT_SERVICE_EMAIL,
    now: int | None = None,
    ttl_seconds: int = TOKEN_TTL_SECONDS,
) -> str:
    issued_at = int(time.time()) if now is None else now
    payload = {
        "user": {"email": email, "roles": ["Admin"]},
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class LeasesClient:
    """Fetches lease details from the leases API.

    Parameters
    ----------
    base_url:
        API root, without a trailing slash.
    jwt_secret_path:
        Secrets Manager id of the JWT signing secret.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    sleep:
        Awaitable delay used between retries.
    """

    def __init__(
        self,
        base_url: str,
        jwt_secret_path: str,
        *,
        clients: AwsClientFactory | None = None,
        region: str | None = None,
        service_email: str = DEFAULT_SERVICE_EMAIL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.jwt_secret_path = jwt_secret_path
        self._clients = clients or AwsClientFactory(region=region)
        self._region = region
        self._service_email = service_email
        self._timeout = timeout
        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._client: Any = None
        self._secret: str | None = None
        self._token: str | None = None
        self._token_expiry = 0

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._clients.client("secretsmanager", region=self._region)
        return self._client

    # ── Auth ─────────────────────────────────────────────────────

    async def _fetch_secret(self) -> str:
        client = self._ensure_client()
        response = await call_aws(client.get_secret_value, SecretId=self.jwt_secret_path)
        secret = response.get("SecretString")
        if not secret:
            raise UpstreamError(f"JWT secret {self.jwt_secret_path} is empty")
        return secret

    async def get_token(self) -> str:
        """Signed service token, re-signed when within 60s of expiry."""
        if self._secret is None:
            self._secret = await self._fetch_secret()
        now = int(self._clock())
        if self._token is None or now >= self._token_expiry - TOKEN_REFRESH_MARGIN_SECONDS:
            self._token = sign_service_token(self._secret, email=self._service_email, now=now)
            self._token_expiry = now + TOKEN_TTL_SECONDS
        return self._token

    def invalidate_credentials(self) -> None:
        self._secret = None
        self._token = None
        self._token_expiry = 0

    # ── Lease lookup ─────────────────────────────────────────────

    async def get_lease_details(self, user_email: str, lease_uuid: str) -> LeaseDetails:
        lease_key = encode_lease_id(user_email, lease_uuid)
        url = f"{self.base_url}/leases/{quote(lease_key, safe='')}"
        return await retry_async(
            lambda: self._fetch_once(url, lease_uuid),
            is_retryable=lambda exc: isinstance(exc, TransientError),
            policy=self._retry_policy,
            sleep=self._sleep,
            description="leases_api.get_lease",
        )

    async def _fetch_once(self, url: str, lease_uuid: str) -> LeaseDetails:
        token = await self.get_token()
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as http:
                response = await http.get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientError(f"Leases API request timed out for lease {lease_uuid}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Leases API request failed for lease {lease_uuid}: {exc}") from exc

        status = response.status_code
        if status in (401, 403):
            self.invalidate_credentials()
            raise UpstreamError(f"Leases API error: {status} {response.reason_phrase}")
        if status == 404:
            raise NotFoundError(f"Lease not found: {lease_uuid}")
        if status != 200:
            message = f"Leases API error: {status} - {sanitize_for_log(response.text, 512)}"
            if status >= 500 or status == 429:
                raise TransientError(message, extra={"status": status})
            raise UpstreamError(message, extra={"status": status})

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("Leases API returned a non-JSON body") from exc

        lease_data = body.get("data") if isinstance(body, dict) and body.get("data") else body
        try:
            details = parse_model(LeaseDetails, lease_data, source="lease details response")
        except ValidationError as exc:
            raise UpstreamError(exc.detail, extra=exc.extra) from exc

        logger.info("lease_details_fetched", lease_id=lease_uuid, status=details.status)
        return details
