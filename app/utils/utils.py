import json
from typing import Any

import structlog

from app.services.aws import s3_client

logger = structlog.get_logger()

S3_KEY_PREFIX = "gclid-sync"


def save_json(data: Any, filename: str, bucket: str, client=None) -> str:
    """Serialize data to JSON and upload to S3. Returns the object key."""
    client = client if client is not None else s3_client
    body = json.dumps(data, indent=2, default=str)
    s3_key = f"{S3_KEY_PREFIX}/{filename}"
    client.put_object(
        Bucket=bucket,
        Key=s3_key,
        Body=body.encode("utf-8"),
        ContentType="application/json",
    )
    logger.info("file_saved_to_s3", bucket=bucket, key=s3_key)
    return s3_key
