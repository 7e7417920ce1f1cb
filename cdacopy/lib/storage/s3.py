"""AWS S3 object store."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, List, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cdacopy.lib.errors import StorageError
from cdacopy.lib.resilience import RetryConfig, retry_operation
from cdacopy.lib.storage.base import ObjectStore

logger = logging.getLogger(__name__)

__all__ = ["S3ObjectStore", "parse_s3_uri"]


def parse_s3_uri(uri: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key`` into ``(bucket, key)``.

    Examples:
        >>> parse_s3_uri("s3://cda-bucket/policy/a1b2/")
        ('cda-bucket', 'policy/a1b2/')
    """
    if not uri.startswith("s3://"):
        raise ValueError(f"Not an S3 URI: {uri}")
    path = uri[len("s3://"):]
    bucket, _, key = path.partition("/")
    if not bucket:
        raise ValueError(f"S3 URI has no bucket: {uri}")
    return bucket, key


class S3ObjectStore(ObjectStore):
    """AWS S3 object store using boto3.

    Listing uses ``list_objects_v2`` with a "/" delimiter, so partitions are
    the common prefixes one level below a fingerprint.

    Environment Variables:
        AWS_ACCESS_KEY_ID: AWS access key
        AWS_SECRET_ACCESS_KEY: AWS secret key
        AWS_REGION: AWS region
        AWS_ENDPOINT_URL: Custom S3 endpoint (for MinIO, LocalStack, etc.)

    Options:
        key: AWS access key (overrides env var)
        secret: AWS secret key (overrides env var)
        region: AWS region (overrides env var)
        endpoint_url: Custom S3 endpoint
        max_pool_connections: botocore connection pool size
        retry: RetryConfig for transient failures
    """

    def __init__(self, **options: Any) -> None:
        self.retry_config: RetryConfig = options.pop("retry", None) or RetryConfig.default()
        super().__init__(**options)
        self._client = None
        self._client_lock = threading.Lock()

    @property
    def scheme(self) -> str:
        return "s3"

    @property
    def client(self):
        """Lazily create the boto3 client; clients are safe to share across threads."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self._create_client()
        return self._client

    def _create_client(self):
        client_kwargs: dict = {}

        key = self.options.get("key") or os.environ.get("AWS_ACCESS_KEY_ID")
        secret = self.options.get("secret") or os.environ.get("AWS_SECRET_ACCESS_KEY")
        if key and secret:
            client_kwargs["aws_access_key_id"] = key
            client_kwargs["aws_secret_access_key"] = secret

        region = self.options.get("region") or os.environ.get("AWS_REGION")
        if region:
            client_kwargs["region_name"] = region

        endpoint_url = self.options.get("endpoint_url") or os.environ.get("AWS_ENDPOINT_URL")
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url

        pool_size = int(self.options.get("max_pool_connections", 50))
        client_kwargs["config"] = BotoConfig(max_pool_connections=pool_size)

        logger.debug("Creating S3 client (region=%s, endpoint=%s)", region or "default", endpoint_url or "default")
        return boto3.client("s3", **client_kwargs)

    def _call(self, operation_name: str, uri: str, operation):
        try:
            return retry_operation(operation, self.retry_config, operation_name)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 {operation_name} failed", uri=uri, cause=e) from e

    def list_directories(self, prefix_uri: str) -> List[str]:
        bucket, prefix = parse_s3_uri(prefix_uri)
        if prefix and not prefix.endswith("/"):
            prefix += "/"

        def list_common_prefixes() -> List[str]:
            names: List[str] = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix, Delimiter="/"):
                for common_prefix in page.get("CommonPrefixes", []):
                    child = common_prefix["Prefix"][len(prefix):].rstrip("/")
                    if child:
                        names.append(child)
            return names

        return self._call("list", prefix_uri, list_common_prefixes)

    def list_objects(self, prefix_uri: str) -> List[str]:
        bucket, prefix = parse_s3_uri(prefix_uri)

        def list_keys() -> List[str]:
            uris: List[str] = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    if not obj["Key"].endswith("/"):
                        uris.append(f"s3://{bucket}/{obj['Key']}")
            return uris

        return self._call("list", prefix_uri, list_keys)

    def read_bytes(self, uri: str) -> bytes:
        bucket, key = parse_s3_uri(uri)

        def get_object() -> bytes:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()

        return self._call("get", uri, get_object)

    def __repr__(self) -> str:
        return f"S3ObjectStore(region={self.options.get('region')!r})"
