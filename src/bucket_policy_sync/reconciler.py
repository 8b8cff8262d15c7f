"""Bucket policy reconciliation driver.

One run:
1. Resolve the authorized account set from the registry (once)
2. Discover managed buckets from the bucket listing
3. For each bucket, in order: fetch the current policy, merge the managed
   statement, write the result back with a client in the bucket's region

Buckets are processed sequentially. The run holds no state between
invocations; concurrent runs are safe because merging is idempotent and
the storage layer is last-write-wins.

FAILURE MODEL:
- Registry or discovery failure aborts the run before any bucket is written.
- A missing bucket policy is not a failure; the bucket starts from an
  empty document.
- Any other bucket failure aborts the remaining buckets (fail_fast, the
  default) or is recorded and the run continues (fail_fast=False).
- Buckets already written are never rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import Config
from .discovery import BucketDiscoveryError, discover_managed_buckets, region_from_bucket_name
from .models import ManagedBucket, PolicyDocument
from .policy import (
    MalformedPolicyError,
    empty_policy,
    managed_statements,
    merge_policy,
    serialize_policy,
)
from .provenance import ReconcileProvenance, get_provenance_logger
from .registry import RegistryReadError, resolve_authorized_accounts
from .storage import (
    PolicyFetchError,
    PolicyFetchFailed,
    PolicyFound,
    PolicyNotFound,
    PolicyWriteError,
    RegionalClientError,
    S3ClientFactory,
    fetch_bucket_policy,
    put_bucket_policy,
)

logger = logging.getLogger(__name__)

# Failures that are scoped to a single bucket
BUCKET_ERRORS = (
    RegionalClientError,
    PolicyFetchError,
    MalformedPolicyError,
    PolicyWriteError,
)


class ReconciliationFailedError(Exception):
    """Raised at the invocation boundary when a run did not succeed."""

    pass


class BucketStatus(str, Enum):
    """Outcome of reconciling one bucket."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DRY_RUN = "dry_run"
    FAILED = "failed"


@dataclass
class BucketOutcome:
    """Result of reconciling a single bucket."""

    bucket: str
    region: str
    status: BucketStatus
    policy_created: bool = False
    error: Exception | None = None


@dataclass
class ReconcileResult:
    """Result of a single reconciliation run."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    account_count: int = 0
    buckets_discovered: int = 0
    outcomes: list[BucketOutcome] = field(default_factory=list)
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if every step of the run succeeded."""
        return self.error is None

    @property
    def failed_buckets(self) -> list[str]:
        """Names of buckets whose reconciliation failed."""
        return [o.bucket for o in self.outcomes if o.status == BucketStatus.FAILED]

    def count(self, status: BucketStatus) -> int:
        """Number of buckets that ended with the given status."""
        return sum(1 for o in self.outcomes if o.status == status)

    def raise_for_error(self) -> None:
        """Raise ReconciliationFailedError if the run did not succeed."""
        if self.error is None:
            return
        failed = self.failed_buckets
        message = f"Reconciliation failed: {self.error}"
        if failed:
            message += f" (failed buckets: {', '.join(failed)})"
        raise ReconciliationFailedError(message) from self.error


class Reconciler:
    """Reconciles the managed statement on every managed bucket."""

    def __init__(self, config: Config) -> None:
        """Initialize reconciler with configuration.

        Args:
            config: Validated engine configuration.
        """
        self._config = config
        self._provenance_logger = get_provenance_logger()

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    def resolve_accounts(self) -> set[str]:
        """Resolve the authoritative account set.

        Raises:
            RegistryReadError: If the registry cannot be read.
        """
        return resolve_authorized_accounts(self._config)

    def discover_buckets(
        self, client_factory: S3ClientFactory | None = None
    ) -> list[ManagedBucket]:
        """Discover managed buckets.

        Raises:
            BucketDiscoveryError: If the bucket listing fails.
        """
        factory = client_factory or self._new_client_factory()
        try:
            listing_client = factory.client_for(self._config.default_region)
        except RegionalClientError as e:
            raise BucketDiscoveryError(str(e)) from e
        return discover_managed_buckets(listing_client, self._config.bucket_prefix)

    def preview(self, bucket_name: str, region: str | None = None) -> PolicyDocument:
        """Compute the policy a bucket would receive, without writing it.

        Args:
            bucket_name: Bucket to preview.
            region: Bucket region; derived from the name when omitted.

        Raises:
            RegistryReadError: If the registry cannot be read.
            RegionalClientError: If no client can be built for the region.
            PolicyFetchError: If the current policy cannot be read.
            MalformedPolicyError: If the current policy is not valid JSON.
        """
        if region is None:
            if bucket_name.startswith(self._config.bucket_prefix):
                region = region_from_bucket_name(bucket_name, self._config.bucket_prefix)
            else:
                region = self._config.default_region
        accounts = self.resolve_accounts()
        client = self._new_client_factory().client_for(region)
        current, _ = self._current_policy(client, bucket_name)
        return merge_policy(current, accounts, bucket_name, self._config.managed_sid)

    def reconcile_once(self) -> ReconcileResult:
        """Execute a single reconciliation run.

        Errors are recorded on the result, never raised; callers use
        ReconcileResult.raise_for_error() at the invocation boundary.

        Returns:
            ReconcileResult with details of the run.
        """
        result = ReconcileResult()

        provenance = self._provenance_logger.create_provenance(
            registry_table=self._config.registry_table,
            bucket_prefix=self._config.bucket_prefix,
            managed_sid=self._config.managed_sid,
            dry_run=self._config.dry_run,
        )

        try:
            # Resolve once; an incomplete account set must never be written
            accounts = self.resolve_accounts()
            result.account_count = len(accounts)
            provenance.account_count = len(accounts)

            # Fresh clients every run
            client_factory = self._new_client_factory()
            buckets = self.discover_buckets(client_factory)
            result.buckets_discovered = len(buckets)

            for index, bucket in enumerate(buckets):
                outcome = self._reconcile_bucket_safely(
                    client_factory, bucket, accounts, provenance
                )
                result.outcomes.append(outcome)

                if outcome.error is None:
                    continue
                if result.error is None:
                    result.error = outcome.error
                if self._config.fail_fast:
                    remaining = [b.name for b in buckets[index + 1 :]]
                    if remaining:
                        logger.error(
                            "Aborting remaining buckets after failure",
                            extra={"failed_bucket": bucket.name, "skipped_buckets": remaining},
                        )
                    break

        except RegistryReadError as e:
            logger.error("Failed to resolve authorized accounts", extra={"error": str(e)})
            result.error = e
        except BucketDiscoveryError as e:
            logger.error("Failed to discover managed buckets", extra={"error": str(e)})
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e

        result.end_time = datetime.now(UTC)

        summary = provenance.bucket_summary
        summary.discovered_count = result.buckets_discovered
        summary.updated_count = result.count(BucketStatus.UPDATED)
        summary.unchanged_count = result.count(BucketStatus.UNCHANGED)
        summary.dry_run_count = result.count(BucketStatus.DRY_RUN)
        summary.failed_count = result.count(BucketStatus.FAILED)
        provenance.failed_buckets = result.failed_buckets
        provenance.duration_seconds = result.duration_seconds
        if result.error:
            provenance.error = str(result.error)
            provenance.error_type = type(result.error).__name__
        self._provenance_logger.log_provenance(provenance)

        self._log_result(result)
        return result

    def _new_client_factory(self) -> S3ClientFactory:
        return S3ClientFactory(endpoint_url=self._config.s3_endpoint_url)

    def _reconcile_bucket_safely(
        self,
        client_factory: S3ClientFactory,
        bucket: ManagedBucket,
        accounts: set[str],
        provenance: ReconcileProvenance,
    ) -> BucketOutcome:
        """Reconcile one bucket, turning bucket-scoped failures into an outcome."""
        try:
            return self._reconcile_bucket(client_factory, bucket, accounts, provenance)
        except BUCKET_ERRORS as e:
            logger.error(
                "Bucket reconciliation failed",
                extra={
                    "bucket": bucket.name,
                    "region": bucket.region,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return BucketOutcome(
                bucket=bucket.name,
                region=bucket.region,
                status=BucketStatus.FAILED,
                error=e,
            )

    def _reconcile_bucket(
        self,
        client_factory: S3ClientFactory,
        bucket: ManagedBucket,
        accounts: set[str],
        provenance: ReconcileProvenance,
    ) -> BucketOutcome:
        """Fetch, merge and write back the policy of one bucket.

        Raises:
            RegionalClientError: If no client can be built for the bucket region.
            PolicyFetchError: If the current policy cannot be read.
            MalformedPolicyError: If the current policy is not valid JSON.
            PolicyWriteError: If the new policy cannot be written.
        """
        client = client_factory.client_for(bucket.region)
        current, policy_created = self._current_policy(client, bucket.name)

        existing_managed = len(managed_statements(current, self._config.managed_sid))
        if existing_managed > 1:
            logger.warning(
                "Multiple managed statements found, collapsing to one",
                extra={"bucket": bucket.name, "managed_statement_count": existing_managed},
            )

        merged = merge_policy(current, accounts, bucket.name, self._config.managed_sid)
        changed = policy_created or merged.to_dict() != current.to_dict()
        policy = serialize_policy(merged)

        if self._config.dry_run:
            logger.info(
                "Dry-run, skipping policy write",
                extra={"bucket": bucket.name, "region": bucket.region, "changed": changed},
            )
            logger.debug("Computed policy", extra={"bucket": bucket.name, "policy": policy})
            return BucketOutcome(
                bucket=bucket.name,
                region=bucket.region,
                status=BucketStatus.DRY_RUN,
                policy_created=policy_created,
            )

        put_bucket_policy(client, bucket.name, policy)

        self._provenance_logger.log_policy_change(
            provenance,
            bucket=bucket.name,
            region=bucket.region,
            policy_created=policy_created,
            changed=changed,
            statement_count=len(merged.statement),
        )
        return BucketOutcome(
            bucket=bucket.name,
            region=bucket.region,
            status=BucketStatus.UPDATED if changed else BucketStatus.UNCHANGED,
            policy_created=policy_created,
        )

    def _current_policy(self, client: Any, bucket_name: str) -> tuple[PolicyDocument, bool]:
        """Return the bucket's current policy and whether it had none.

        Raises:
            PolicyFetchError: If the read failed.
            MalformedPolicyError: If the stored policy is not valid JSON.
        """
        match fetch_bucket_policy(client, bucket_name):
            case PolicyFound(document=document):
                return document, False
            case PolicyNotFound():
                logger.info(
                    "Bucket has no policy, starting from an empty document",
                    extra={"bucket": bucket_name},
                )
                return empty_policy(), True
            case PolicyFetchFailed(error=error):
                raise error
            case unexpected:
                raise TypeError(f"Unexpected policy fetch result: {unexpected!r}")

    def _log_result(self, result: ReconcileResult) -> None:
        """Log run result with structured data."""
        extra: dict[str, Any] = {
            "duration_seconds": result.duration_seconds,
            "account_count": result.account_count,
            "buckets_discovered": result.buckets_discovered,
            "buckets_updated": result.count(BucketStatus.UPDATED),
            "buckets_unchanged": result.count(BucketStatus.UNCHANGED),
            "buckets_dry_run": result.count(BucketStatus.DRY_RUN),
            "buckets_failed": result.count(BucketStatus.FAILED),
            "dry_run": self._config.dry_run,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["failed_buckets"] = result.failed_buckets
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
