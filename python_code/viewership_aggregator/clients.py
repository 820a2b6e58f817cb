"""
A factory module for creating boto3 clients and the object-store wrapper.

This module is the core of the Dependency Injection (DI) pattern for the
application. The pipeline only ever talks to an `S3ObjectStore`, which is
given either a real boto3 client or, during testing, a moto-backed or fake
client. This keeps the fetch logic fully testable without real AWS calls.
"""

import logging
import os
from typing import List, Optional

import boto3
import botocore.config

from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

# A shared, robust retry configuration for boto3 clients that need to be
# resilient to transient network or server-side errors. The fetch stage adds
# its own per-job attempt counting on top of this.
BOTO_CONFIG_RETRYABLE = botocore.config.Config(
    retries={"max_attempts": 5, "mode": "adaptive"}
)


def get_s3_client(region: Optional[str] = None) -> S3Client:
    """
    Returns a boto3 S3 client for the given region.

    If `region` is not given, the `AWS_REGION` environment variable is used.
    When the `USE_MOTO` flag is present, `moto` is assumed to be active and will
    intercept the calls made through this client.
    """
    aws_region = region or os.environ.get("AWS_REGION")
    if not aws_region:
        logger.warning("AWS_REGION not set, boto3 will attempt to resolve it.")

    if os.environ.get("USE_MOTO"):
        logger.info("MOTO ENABLED: Returning mocked S3 client.")

    return boto3.client("s3", region_name=aws_region, config=BOTO_CONFIG_RETRYABLE)


class S3ObjectStore:
    """
    The object-store collaborator consumed by the pipeline.

    Only two operations are needed: listing keys under a prefix and fetching
    one object's bytes. Errors from boto3 (`ClientError`, `BotoCoreError`) are
    propagated to the caller, which decides whether to retry.
    """

    def __init__(self, client: S3Client, bucket: str):
        self._client = client
        self.bucket = bucket

    def list_keys(self, prefix: str) -> List[str]:
        """Returns every key under `prefix`, following pagination."""
        keys: List[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        logger.info("Listed objects", extra={"bucket": self.bucket, "prefix": prefix, "count": len(keys)})
        return keys

    def fetch(self, key: str) -> bytes:
        """Downloads a single object fully into memory."""
        s3_obj = self._client.get_object(Bucket=self.bucket, Key=key)
        body = s3_obj["Body"]
        try:
            return body.read()
        finally:
            body.close()
