"""
S3-Compatible Object Store

Adapter between the sync pipeline and any S3-compatible service (AWS S3,
MinIO, Ceph, ...), built on a boto3 S3 client.
"""

from pathlib import Path
from typing import Any, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from s3mirror.constants import DEFAULT_REGION, S3_NOT_FOUND_CODES
from s3mirror.exceptions import ExistenceCheckFailure, UploadFailure
from s3mirror.log_utils import logger
from s3mirror.utils import get_user_agent

from .interfaces import ObjectStore, Pathish

S3_MAX_ATTEMPTS = 5


def normalize_endpoint(endpoint: str, secure: bool = True) -> str:
    """
    Turn a bare ``host[:port]`` endpoint into a URL.

    Endpoints that already carry a scheme are returned unchanged; otherwise the
    scheme follows ``secure``.
    """
    endpoint = endpoint.strip().rstrip("/")
    if "://" in endpoint:
        return endpoint
    scheme = "https" if secure else "http"
    return f"{scheme}://{endpoint}"


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3ObjectStore(ObjectStore):
    """
    Object store backed by a boto3 S3 client.

    The client is thread-safe, so one instance serves every worker.
    """

    def __init__(self, client: Any):
        self.client = client

    @classmethod
    def from_settings(
        cls,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: Optional[str] = DEFAULT_REGION,
        secure: bool = True,
    ) -> "S3ObjectStore":
        """
        Build a store for an S3-compatible endpoint using static credentials.

        Path-style addressing is used so that endpoints without wildcard DNS
        (MinIO and similar) work out of the box.
        """
        endpoint_url = normalize_endpoint(endpoint, secure)
        logger.debug(f"Connecting to object store at {endpoint_url} ({region})")
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region or DEFAULT_REGION,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            use_ssl=endpoint_url.startswith("https://"),
            config=Config(
                retries={"max_attempts": S3_MAX_ATTEMPTS, "mode": "standard"},
                user_agent_extra=get_user_agent(),
                s3={"addressing_style": "path"},
            ),
        )
        return cls(client)

    def exists(self, bucket: str, key: str) -> bool:
        try:
            self.client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in S3_NOT_FOUND_CODES:
                return False
            raise ExistenceCheckFailure(
                f"Failed to check whether s3://{bucket}/{key} exists",
                key=key,
                details=str(e),
            ) from e
        except BotoCoreError as e:
            raise ExistenceCheckFailure(
                f"Failed to check whether s3://{bucket}/{key} exists",
                key=key,
                details=str(e),
            ) from e
        return True

    def put_file(self, bucket: str, key: str, local_path: Pathish) -> None:
        try:
            self.client.upload_file(str(Path(local_path)), bucket, key)
        except (ClientError, BotoCoreError, S3UploadFailedError, OSError) as e:
            raise UploadFailure(
                f"Failed to upload to s3://{bucket}/{key}", key=key, details=str(e)
            ) from e
        logger.debug(f"Stored s3://{bucket}/{key}")
