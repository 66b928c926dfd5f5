"""boto3 client construction with a credential-aware, time-bounded cache.

The cache is a collaborator handed to each connector, not module state.
Entries expire five minutes before the credentials they were built with,
or after one hour when no expiry is known. A miss simply rebuilds the client.
"""

from __future__ import annotations

import asyncio
import functools
import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import boto3
import structlog
from botocore.config import Config

from leasecosts.models.base import AwsCredentials

logger = structlog.get_logger()

T = TypeVar("T")

CREDENTIAL_EXPIRATION_BUFFER_SECONDS = 5 * 60
DEFAULT_CLIENT_TTL_SECONDS = 60 * 60

DEFAULT_CLIENT_CONFIG = Config(
    connect_timeout=3,
    read_timeout=30,
    retries={"max_attempts": 3, "mode": "standard"},
    max_pool_connections=50,
)


def cache_key(
    client_type: str,
    region: str | None = None,
    role_arn: str | None = None,
    profile: str | None = None,
) -> str:
    return ":".join((client_type, region or "default", role_arn or "none", profile or "none"))


def expiry_for(
    credentials: AwsCredentials | None,
    *,
    now: Callable[[], float] = time.time,
) -> float:
    """Epoch seconds after which a client built with ``credentials`` is stale."""
    if credentials is not None and credentials.expiration is not None:
        expiration: datetime = credentials.expiration
        return expiration.timestamp() - CREDENTIAL_EXPIRATION_BUFFER_SECONDS
    return now() + DEFAULT_CLIENT_TTL_SECONDS


class ClientCache:
    """Thread-safe get-or-create cache with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get_or_create(self, key: str, factory: Callable[[], T], expires_at: float) -> T:
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and self._clock() < cached[1]:
                return cached[0]
            client = factory()
            self._entries[key] = (client, expires_at)
            return client

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class AwsClientFactory:
    """Builds (and caches) boto3 clients for the pipeline's connectors.

    Parameters
    ----------
    cache:
        Shared client cache; a fresh one is created when omitted.
    region:
        Default region for clients that do not request one explicitly.
    """

    def __init__(self, cache: ClientCache | None = None, region: str | None = None) -> None:
        self.cache = cache if cache is not None else ClientCache()
        self.region = region

    def client(
        self,
        service_name: str,
        *,
        region: str | None = None,
        credentials: AwsCredentials | None = None,
        role_arn: str | None = None,
        profile: str | None = None,
        config: Config | None = None,
    ) -> Any:
        region = region or self.region
        key = cache_key(service_name, region, role_arn, profile)
        return self.cache.get_or_create(
            key,
            lambda: self._create(service_name, region, credentials, profile, config),
            expiry_for(credentials),
        )

    @staticmethod
    def _create(
        service_name: str,
        region: str | None,
        credentials: AwsCredentials | None,
        profile: str | None,
        config: Config | None,
    ) -> Any:
        session_kwargs: dict[str, Any] = {}
        if profile:
            session_kwargs["profile_name"] = profile
        if credentials is not None:
            session_kwargs.update(
                aws_access_key_id=credentials.access_key_id,
                aws_secret_access_key=credentials.secret_access_key,
                aws_session_token=credentials.session_token,
            )
        session = boto3.Session(**session_kwargs)
        client_config = DEFAULT_CLIENT_CONFIG.merge(config) if config else DEFAULT_CLIENT_CONFIG
        logger.debug("aws_client_created", service=service_name, region=region or "default")
        return session.client(service_name, region_name=region, config=client_config)


async def call_aws(fn: Callable[..., T], /, **kwargs: Any) -> T:
    """Run one blocking boto3 call on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, **kwargs))
