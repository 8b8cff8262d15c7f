"""S3 control-plane access: regional clients, policy reads and writes.

Bucket policy calls are made with a client in the bucket's own region.
Clients are created on demand by a factory that lives for one
reconciliation run; nothing is held at module level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .models import PolicyDocument
from .policy import MalformedPolicyError, parse_policy

logger = logging.getLogger(__name__)

# Error code returned by GetBucketPolicy when the bucket has no policy
NO_SUCH_BUCKET_POLICY = "NoSuchBucketPolicy"


class PolicyFetchError(Exception):
    """Raised (or carried) when a bucket policy read fails."""

    pass


class PolicyWriteError(Exception):
    """Raised when a bucket policy write fails."""

    pass


class RegionalClientError(Exception):
    """Raised when no S3 client can be built for a region token."""

    pass


# =============================================================================
# Fetch results
# =============================================================================


@dataclass(frozen=True)
class PolicyFound:
    """The bucket has a policy."""

    document: PolicyDocument


@dataclass(frozen=True)
class PolicyNotFound:
    """The bucket has no policy configured."""


@dataclass(frozen=True)
class PolicyFetchFailed:
    """The read failed for any reason other than a missing policy."""

    error: Exception


PolicyFetchResult = PolicyFound | PolicyNotFound | PolicyFetchFailed


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


# =============================================================================
# Client factory
# =============================================================================


class S3ClientFactory:
    """Builds S3 clients keyed by region, one per region per factory."""

    def __init__(self, endpoint_url: str | None = None) -> None:
        self._endpoint_url = endpoint_url
        self._clients: dict[str, Any] = {}

    def client_for(self, region: str) -> Any:
        """Return the S3 client for a region, creating it on first use.

        Raises:
            RegionalClientError: If the SDK rejects the region name.
        """
        client = self._clients.get(region)
        if client is None:
            logger.debug("Creating S3 client", extra={"region": region})
            try:
                client = boto3.client("s3", region_name=region, endpoint_url=self._endpoint_url)
            except (BotoCoreError, ValueError) as e:
                raise RegionalClientError(
                    f"Cannot create S3 client for region '{region}': {e}"
                ) from e
            self._clients[region] = client
        return client

    @property
    def regions(self) -> list[str]:
        """Regions a client has been created for."""
        return list(self._clients)


# =============================================================================
# Policy operations
# =============================================================================


def fetch_bucket_policy(client: Any, bucket: str) -> PolicyFetchResult:
    """Read the current policy of a bucket.

    Never raises for SDK failures; they are returned as PolicyFetchFailed
    so the caller decides how a failure affects the run. A policy that is
    not valid JSON is also a PolicyFetchFailed carrying MalformedPolicyError.
    """
    try:
        response = client.get_bucket_policy(Bucket=bucket)
    except ClientError as e:
        if _error_code(e) == NO_SUCH_BUCKET_POLICY:
            return PolicyNotFound()
        return PolicyFetchFailed(
            PolicyFetchError(f"Failed to read policy of bucket '{bucket}': {e}")
        )
    except BotoCoreError as e:
        return PolicyFetchFailed(
            PolicyFetchError(f"Failed to read policy of bucket '{bucket}': {e}")
        )

    try:
        return PolicyFound(parse_policy(response.get("Policy") or "{}"))
    except MalformedPolicyError as e:
        return PolicyFetchFailed(e)


def put_bucket_policy(client: Any, bucket: str, policy: str) -> None:
    """Replace the policy of a bucket.

    Raises:
        PolicyWriteError: If the storage API rejects the write.
    """
    try:
        client.put_bucket_policy(Bucket=bucket, Policy=policy)
    except (ClientError, BotoCoreError) as e:
        raise PolicyWriteError(f"Failed to write policy of bucket '{bucket}': {e}") from e
