"""Tests for managed bucket discovery."""

import logging
from unittest.mock import MagicMock

import pytest
from aws_mock import MockS3Client, MockS3State
from botocore.exceptions import EndpointConnectionError

from bucket_policy_sync.discovery import (
    BucketDiscoveryError,
    discover_managed_buckets,
    list_bucket_names,
    region_from_bucket_name,
)
from bucket_policy_sync.models import ManagedBucket

PREFIX = "some-prefix-lambdabundles-"


@pytest.fixture
def state() -> MockS3State:
    state = MockS3State()
    state.add_bucket(f"{PREFIX}eu-west-2", "eu-west-2")
    state.add_bucket("unrelated-bucket", "eu-west-2")
    state.add_bucket(f"{PREFIX}us-east-1", "us-east-1")
    state.add_bucket("Some-Prefix-Lambdabundles-eu-west-1", "eu-west-1")
    state.add_bucket(f"x-{PREFIX}eu-west-1", "eu-west-1")
    return state


class TestRegionFromBucketName:
    """Tests for region_from_bucket_name."""

    @pytest.mark.parametrize(
        "name,region",
        [
            (f"{PREFIX}eu-west-2", "eu-west-2"),
            (f"{PREFIX}us-east-1", "us-east-1"),
            (f"{PREFIX}ap-southeast-2", "ap-southeast-2"),
            (PREFIX, ""),
        ],
    )
    def test_strips_prefix(self, name: str, region: str) -> None:
        """Test that the region is the name with the prefix removed."""
        assert region_from_bucket_name(name, PREFIX) == region

    def test_uses_configured_prefix_length(self) -> None:
        """Test that the strip follows the prefix actually configured."""
        assert region_from_bucket_name("bundles-eu-west-2", "bundles-") == "eu-west-2"


class TestDiscoverManagedBuckets:
    """Tests for discover_managed_buckets."""

    def test_filters_by_prefix(self, state: MockS3State) -> None:
        """Test that only exact, case-sensitive prefix matches are returned in order."""
        client = MockS3Client(state, "eu-west-2")

        buckets = discover_managed_buckets(client, PREFIX)

        assert buckets == [
            ManagedBucket(name=f"{PREFIX}eu-west-2", region="eu-west-2"),
            ManagedBucket(name=f"{PREFIX}us-east-1", region="us-east-1"),
        ]

    def test_paginated_listing(self, state: MockS3State) -> None:
        """Test that buckets on later pages are discovered."""
        state.page_size = 1
        client = MockS3Client(state, "eu-west-2")

        assert len(discover_managed_buckets(client, PREFIX)) == 2
        assert len(list_bucket_names(client)) == 5

    def test_unrecognized_region_token_kept(self, state: MockS3State) -> None:
        """Test that region tokens are not checked against known regions."""
        state.add_bucket(f"{PREFIX}not-a-region", "eu-west-2")
        client = MockS3Client(state, "eu-west-2")

        regions = [bucket.region for bucket in discover_managed_buckets(client, PREFIX)]

        assert "not-a-region" in regions

    def test_bare_prefix_skipped(
        self, state: MockS3State, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that a bucket named exactly the prefix is skipped with a warning."""
        state.add_bucket(PREFIX, "eu-west-2")
        client = MockS3Client(state, "eu-west-2")

        with caplog.at_level(logging.WARNING):
            buckets = discover_managed_buckets(client, PREFIX)

        assert PREFIX not in [bucket.name for bucket in buckets]
        assert "no region suffix" in caplog.text

    def test_no_buckets(self) -> None:
        """Test discovery against an account with no buckets."""
        client = MockS3Client(MockS3State(), "eu-west-2")
        assert discover_managed_buckets(client, PREFIX) == []

    def test_listing_failure(self, state: MockS3State) -> None:
        """Test that a failed listing raises BucketDiscoveryError."""
        state.fail_list = True
        client = MockS3Client(state, "eu-west-2")

        with pytest.raises(BucketDiscoveryError):
            discover_managed_buckets(client, PREFIX)

    def test_connection_failure(self) -> None:
        """Test that transport errors are wrapped as BucketDiscoveryError."""
        client = MagicMock()
        client.get_paginator.return_value.paginate.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.eu-west-2.amazonaws.com"
        )

        with pytest.raises(BucketDiscoveryError):
            list_bucket_names(client)
