import os

import boto3
from botocore.config import Config

aws_session_params = {
    "aws_access_key_id": os.environ.get("AWS_ACCESS_KEY_ID"),
    "aws_secret_access_key": os.environ.get("AWS_SECRET_ACCESS_KEY"),
    "region_name": os.environ.get("AWS_REGION", "us-east-1"),
}
aws_session = boto3.Session(**aws_session_params)

s3_client = aws_session.client(
    "s3",
    config=Config(signature_version="s3v4", connect_timeout=5, retries={"max_attempts": 2}),
)
secrets_client = aws_session.client(service_name="secretsmanager")
