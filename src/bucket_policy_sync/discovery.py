"""Managed bucket discovery.

Managed buckets are named ``<prefix><region>``. The region is taken from
the name verbatim and is not checked against the list of real regions; a
bad token surfaces later as a failed policy call in that region.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .models import ManagedBucket

logger = logging.getLogger(__name__)


class BucketDiscoveryError(Exception):
    """Raised when the bucket listing cannot be retrieved."""

    pass


def region_from_bucket_name(bucket_name: str, prefix: str) -> str:
    """Strip the managed prefix from a bucket name, leaving the region token."""
    return bucket_name[len(prefix) :]


def list_bucket_names(client: Any) -> list[str]:
    """List every bucket visible to the account, exhausting pagination.

    Raises:
        BucketDiscoveryError: If the listing fails.
    """
    names: list[str] = []
    try:
        paginator = client.get_paginator("list_buckets")
        for page in paginator.paginate():
            names.extend(bucket.get("Name", "") for bucket in page.get("Buckets", []))
    except (ClientError, BotoCoreError) as e:
        raise BucketDiscoveryError(f"Failed to list buckets: {e}") from e
    return names


def discover_managed_buckets(client: Any, prefix: str) -> list[ManagedBucket]:
    """Return the buckets whose names start with ``prefix``.

    Matching is a literal, case-sensitive prefix match. Listing order is kept.

    Args:
        client: S3 client used for the listing (any region).
        prefix: Managed bucket name prefix.

    Returns:
        Managed buckets with their derived regions.
    """
    buckets: list[ManagedBucket] = []
    for name in list_bucket_names(client):
        if not name.startswith(prefix):
            continue
        region = region_from_bucket_name(name, prefix)
        if not region:
            logger.warning(
                "Bucket name has no region suffix, skipping",
                extra={"bucket": name, "prefix": prefix},
            )
            continue
        buckets.append(ManagedBucket(name=name, region=region))

    logger.info(
        "Discovered managed buckets",
        extra={
            "prefix": prefix,
            "bucket_count": len(buckets),
            "regions": sorted({bucket.region for bucket in buckets}),
        },
    )
    return buckets
