"""Run provenance tracking for audit.

Every reconciliation run is stamped with a provenance record answering:
- "Which accounts could read the bundles after run X?"
- "Which buckets did run X rewrite, and which did it fail on?"
- "What version of the engine was running?"

Records are emitted as structured log lines so they can be queried from
the log sink of whatever runs the engine.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
ENGINE_VERSION = os.environ.get("ENGINE_VERSION", "dev")


@dataclass
class BucketProvenanceSummary:
    """Per-status bucket counts for a run."""

    discovered_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    dry_run_count: int = 0
    failed_count: int = 0

    @property
    def written_count(self) -> int:
        """Buckets whose policy was written (changed or not)."""
        return self.updated_count + self.unchanged_count


@dataclass
class ReconcileProvenance:
    """Complete provenance record for a reconciliation run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    engine_version: str = ENGINE_VERSION
    instance_id: str = ""
    git_commit_sha: str = ""

    # What was reconciled
    registry_table: str = ""
    bucket_prefix: str = ""
    managed_sid: str = ""
    dry_run: bool = False

    # Outcome
    account_count: int = 0
    bucket_summary: BucketProvenanceSummary = field(default_factory=BucketProvenanceSummary)
    failed_buckets: list[str] = field(default_factory=list)

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records and per-bucket change records."""

    def __init__(self) -> None:
        self._git_commit_sha = os.environ.get("GIT_COMMIT_SHA", "")
        # Lambda exposes the log stream; fall back to a host identifier elsewhere
        self._instance_id = os.environ.get(
            "AWS_LAMBDA_LOG_STREAM_NAME", os.environ.get("HOSTNAME", "")
        )

    def create_provenance(
        self,
        registry_table: str,
        bucket_prefix: str,
        managed_sid: str,
        dry_run: bool,
    ) -> ReconcileProvenance:
        """Create a new provenance record for a reconciliation run."""
        return ReconcileProvenance(
            engine_version=ENGINE_VERSION,
            instance_id=self._instance_id,
            git_commit_sha=self._git_commit_sha,
            registry_table=registry_table,
            bucket_prefix=bucket_prefix,
            managed_sid=managed_sid,
            dry_run=dry_run,
        )

    def log_provenance(self, provenance: ReconcileProvenance) -> None:
        """Log a completed provenance record.

        Logged at ERROR when the run failed, WARNING when it was a dry run,
        INFO otherwise.
        """
        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.dry_run:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "registry_table": provenance.registry_table,
                "account_count": provenance.account_count,
                "buckets_discovered": provenance.bucket_summary.discovered_count,
                "buckets_written": provenance.bucket_summary.written_count,
                "buckets_failed": provenance.bucket_summary.failed_count,
                "engine_version": provenance.engine_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )

    def log_policy_change(
        self,
        provenance: ReconcileProvenance,
        bucket: str,
        region: str,
        policy_created: bool,
        changed: bool,
        statement_count: int,
    ) -> None:
        """Log one bucket policy write for fine-grained audit.

        Args:
            provenance: Parent provenance record.
            bucket: Bucket whose policy was written.
            region: Region the write was issued in.
            policy_created: True when the bucket had no policy before.
            changed: True when the written policy differs from the previous one.
            statement_count: Statements in the written policy.
        """
        logger.info(
            "Bucket policy change",
            extra={
                "git_commit": provenance.git_commit_sha,
                "bucket": bucket,
                "region": region,
                "policy_created": policy_created,
                "changed": changed,
                "statement_count": statement_count,
                "account_count": provenance.account_count,
            },
        )


def get_provenance_logger() -> ProvenanceLogger:
    """Create a provenance logger for the current run."""
    return ProvenanceLogger()
