from datetime import datetime
from typing import Protocol

import structlog
from botocore.exceptions import ClientError

from app.models.errors import SyncError
from app.services.aws import s3_client
from app.utils.dates import parse_iso_datetime, to_utc

logger = structlog.get_logger(__name__)


class WatermarkStore(Protocol):
    """Key-value persistence for the single watermark string."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class S3WatermarkStore:
    """Stores each key as a small text object in an S3 bucket."""

    def __init__(self, bucket: str, client=None) -> None:
        self.bucket = bucket
        self.client = client if client is not None else s3_client

    def get(self, key: str) -> str | None:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                logger.info("watermark_not_found", bucket=self.bucket, key=key)
                return None
            raise
        return response["Body"].read().decode("utf-8").strip() or None

    def set(self, key: str, value: str) -> None:
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=value.encode("utf-8"),
            ContentType="text/plain",
        )
        logger.info("watermark_saved_to_s3", bucket=self.bucket, key=key, value=value)


def load_watermark(store: WatermarkStore, key: str) -> datetime | None:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError as e:
        raise SyncError(f"Stored watermark under '{key}' is not a timestamp: {raw!r}") from e


def save_watermark(store: WatermarkStore, key: str, value: datetime) -> None:
    store.set(key, to_utc(value).isoformat())
