"""Configuration management with validation.

Configuration is loaded once at process start (environment variables,
optionally layered over a YAML settings file) and is immutable afterwards.
Invalid values fail the invocation before the registry or any bucket is
touched.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Defaults for the managed deployment
DEFAULT_REGISTRY_TABLE = "table-name"
DEFAULT_BUCKET_PREFIX = "some-prefix-lambdabundles-"
DEFAULT_MANAGED_SID = "DeploymentAccess"
DEFAULT_REGION = "eu-west-2"

# Version written into a policy document when a bucket has none yet
DEFAULT_POLICY_VERSION = "2012-10-17"

# Read-only object permissions granted to authorized accounts.
# Exactly these eight; changing the list changes what every customer can read.
READ_ONLY_ACTIONS: tuple[str, ...] = (
    "s3:GetObject",
    "s3:GetObjectTagging",
    "s3:GetObjectAttributes",
    "s3:GetObjectVersion",
    "s3:GetObjectVersionTagging",
    "s3:GetObjectVersionAttributes",
    "s3:GetObjectVersionAcl",
    "s3:GetObjectAcl",
)

ACCOUNT_ROOT_ARN_TEMPLATE = "arn:aws:iam::{account_id}:root"
BUCKET_OBJECTS_ARN_TEMPLATE = "arn:aws:s3:::{bucket}/*"

# Input validation patterns
VALID_TABLE_NAME_PATTERN = r"^[A-Za-z0-9_.-]{3,255}$"
VALID_BUCKET_PREFIX_PATTERN = r"^[a-z0-9][a-z0-9.-]{0,62}$"
VALID_SID_PATTERN = r"^[A-Za-z0-9]+$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"

# Bucket names are at most 63 characters; the prefix must leave room for a region
MAX_BUCKET_PREFIX_LENGTH = 50


@dataclass(frozen=True)
class Config:
    """Engine configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    # Registry and managed bucket naming
    registry_table: str = DEFAULT_REGISTRY_TABLE
    bucket_prefix: str = DEFAULT_BUCKET_PREFIX
    managed_sid: str = DEFAULT_MANAGED_SID

    # Region used for the registry read and the bucket listing
    default_region: str = DEFAULT_REGION

    # Endpoint overrides (LocalStack and similar)
    s3_endpoint_url: str | None = None
    dynamodb_endpoint_url: str | None = None

    # Behavior
    dry_run: bool = False
    fail_fast: bool = True

    # Logging
    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.registry_table:
            errors.append("REGISTRY_TABLE_NAME is required")
        elif not re.match(VALID_TABLE_NAME_PATTERN, self.registry_table):
            errors.append(
                f"REGISTRY_TABLE_NAME must match pattern {VALID_TABLE_NAME_PATTERN}: "
                f"{self.registry_table}"
            )

        if not self.bucket_prefix:
            errors.append("BUCKET_PREFIX is required")
        elif len(self.bucket_prefix) > MAX_BUCKET_PREFIX_LENGTH:
            errors.append(f"BUCKET_PREFIX exceeds maximum length of {MAX_BUCKET_PREFIX_LENGTH}")
        elif not re.match(VALID_BUCKET_PREFIX_PATTERN, self.bucket_prefix):
            errors.append(
                f"BUCKET_PREFIX must match pattern {VALID_BUCKET_PREFIX_PATTERN}: "
                f"{self.bucket_prefix}"
            )

        if not self.managed_sid:
            errors.append("POLICY_SID is required")
        elif not re.match(VALID_SID_PATTERN, self.managed_sid):
            errors.append(f"POLICY_SID must be alphanumeric: {self.managed_sid}")

        if not self.default_region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.default_region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.default_region}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            REGISTRY_TABLE_NAME: DynamoDB table holding customer records
            BUCKET_PREFIX: Name prefix of managed buckets; the remainder is the region
            POLICY_SID: Statement id claimed by this engine (default: DeploymentAccess)
            AWS_REGION / AWS_DEFAULT_REGION: Region for registry and bucket listing
            S3_ENDPOINT_URL: Optional S3 endpoint override
            DYNAMODB_ENDPOINT_URL: Optional DynamoDB endpoint override
            DRY_RUN: If "true", compute policies without writing them (default: false)
            FAIL_FAST: If "true", abort remaining buckets on first failure (default: true)
            ENABLE_JSON_LOGGING: Emit JSON log lines (default: true)
            SETTINGS_FILE: Optional YAML file providing defaults for the first four

        Explicit environment variables take precedence over the settings file.
        """
        # Imported here to avoid a circular import (settings_loader imports config)
        from .settings_loader import SettingsLoadError, load_settings

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_optional(key: str) -> str | None:
            value = os.environ.get(key, "").strip()
            return value or None

        file_values: dict[str, str] = {}
        settings_path = get_optional("SETTINGS_FILE")
        if settings_path:
            try:
                file_values = load_settings(Path(settings_path)).as_config_values()
            except SettingsLoadError as e:
                raise ConfigurationError(str(e)) from e

        def get_str(key: str, field_name: str, default: str) -> str:
            value = os.environ.get(key)
            if value is not None:
                return value
            return file_values.get(field_name, default)

        region_default = os.environ.get("AWS_DEFAULT_REGION") or file_values.get(
            "default_region", DEFAULT_REGION
        )

        return cls(
            registry_table=get_str("REGISTRY_TABLE_NAME", "registry_table", DEFAULT_REGISTRY_TABLE),
            bucket_prefix=get_str("BUCKET_PREFIX", "bucket_prefix", DEFAULT_BUCKET_PREFIX),
            managed_sid=get_str("POLICY_SID", "managed_sid", DEFAULT_MANAGED_SID),
            default_region=os.environ.get("AWS_REGION") or region_default,
            s3_endpoint_url=get_optional("S3_ENDPOINT_URL"),
            dynamodb_endpoint_url=get_optional("DYNAMODB_ENDPOINT_URL"),
            dry_run=get_bool("DRY_RUN", False),
            fail_fast=get_bool("FAIL_FAST", True),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )
