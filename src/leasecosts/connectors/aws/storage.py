"""S3 storage for rendered cost report CSVs."""

from __future__ import annotations

import base64
import hashlib
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog

from leasecosts.connectors.aws.clients import AwsClientFactory, call_aws
from leasecosts.exceptions import FieldError, StorageError, ValidationError, error_context
from leasecosts.observability.logging import sanitize_for_log
from leasecosts.utils.timestamps import utcnow

logger = structlog.get_logger()

OBJECT_KEY_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\.csv$", re.IGNORECASE
)
CLOCK_SKEW_BUFFER_SECONDS = 5 * 60
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class UploadResult:
    etag: str
    checksum: str


@dataclass(frozen=True)
class PresignedUrl:
    url: str
    expires_at: datetime


def object_key_for(lease_id: str) -> str:
    return f"{lease_id}.csv"


def validate_object_key(key: str) -> None:
    """Accept only ``{uuid}.csv`` keys."""
    if not key or not key.strip():
        raise ValidationError(
            "S3 key cannot be empty", errors=[FieldError(field="key", message="empty")]
        )
    if any(bad in key for bad in ("..", "/", "\\", "\0")):
        raise ValidationError(
            "Invalid S3 key: contains forbidden characters (path traversal detected)",
            errors=[FieldError(field="key", message="path traversal")],
        )
    if not OBJECT_KEY_PATTERN.match(key):
        raise ValidationError(
            f"Invalid S3 key format: {sanitize_for_log(key)!r}. Expected {{uuid}}.csv",
            errors=[FieldError(field="key", message="must be {uuid}.csv")],
        )


def sha256_checksum(body: str) -> str:
    """Base64 SHA-256 digest, as S3 expects for ``ChecksumSHA256``."""
    return base64.b64encode(hashlib.sha256(body.encode("utf-8")).digest()).decode("ascii")


class ReportStorage:
    """Uploads report CSVs and issues presigned download URLs.

    Parameters
    ----------
    bucket:
        Destination bucket name.
    clients:
        Client factory; the S3 client is built on first use.
    """

    def __init__(
        self,
        bucket: str,
        clients: AwsClientFactory | None = None,
        region: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.bucket = bucket
        self._clients = clients or AwsClientFactory(region=region)
        self._region = region
        self._clock = clock
        self._client: Any = None

    def _ensure_client(self) -> Any:
        if self._client is None:
            self._client = self._clients.client("s3", region=self._region)
        return self._client

    async def upload_csv(self, key: str, body: str) -> UploadResult:
        validate_object_key(key)
        checksum = sha256_checksum(body)
        client = self._ensure_client()
        location = f"s3://{self.bucket}/{key}"

        with error_context(StorageError, detail=f"Failed to upload to {location}"):
            response = await call_aws(
                client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="text/csv",
                ServerSideEncryption="AES256",
                ChecksumSHA256=checksum,
            )

        etag = response.get("ETag")
        if not etag:
            raise StorageError(
                f"S3 upload to {location} returned no ETag (checksum {checksum})",
                extra={"bucket": self.bucket, "key": key},
            )
        logger.info("report_uploaded", bucket=self.bucket, key=key, etag=etag, checksum=checksum)
        return UploadResult(etag=etag, checksum=checksum)

    async def presigned_url(self, key: str, expires_in_days: int) -> PresignedUrl:
        """Presigned GET URL, valid five minutes less than ``expires_in_days``."""
        validate_object_key(key)
        expires_in = expires_in_days * SECONDS_PER_DAY - CLOCK_SKEW_BUFFER_SECONDS
        expires_at = self._clock() + timedelta(seconds=expires_in)
        client = self._ensure_client()

        with error_context(
            StorageError,
            detail=f"Failed to generate presigned URL for s3://{self.bucket}/{key}",
        ):
            url = await call_aws(
                client.generate_presigned_url,
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key, "ResponseContentType": "text/csv"},
                ExpiresIn=expires_in,
            )
        return PresignedUrl(url=url, expires_at=expires_at)
