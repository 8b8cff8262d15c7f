"""Authorized account resolution from the customer registry.

The registry is a DynamoDB table of customer records. Only the
``Accounts`` attribute is projected; the result is the deduplicated set of
account identifiers across every customer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from .config import Config
from .models import CustomerRecord

logger = logging.getLogger(__name__)

# Projection used for the registry scan
ACCOUNTS_ATTRIBUTE = "Accounts"


class RegistryReadError(Exception):
    """Raised when the customer registry cannot be read.

    Fatal for the run: no bucket is touched without a complete account set.
    """

    pass


class AccountSetResolver:
    """Reads the registry and reduces it to a set of account identifiers."""

    def __init__(self, config: Config) -> None:
        self._config = config
        dynamodb = boto3.resource(
            "dynamodb",
            region_name=config.default_region,
            endpoint_url=config.dynamodb_endpoint_url,
        )
        self._table = dynamodb.Table(config.registry_table)

    def resolve(self) -> set[str]:
        """Return every account identifier referenced by any customer.

        Raises:
            RegistryReadError: If the scan fails or a record is malformed.
        """
        account_ids: set[str] = set()
        record_count = 0

        for item in self._scan():
            record_count += 1
            try:
                record = CustomerRecord.model_validate(item)
            except ValidationError as e:
                raise RegistryReadError(f"Malformed customer record in registry: {e}") from e
            account_ids.update(account.id for account in record.accounts)

        logger.info(
            "Resolved authorized accounts",
            extra={
                "registry_table": self._config.registry_table,
                "record_count": record_count,
                "account_count": len(account_ids),
            },
        )
        return account_ids

    def _scan(self) -> Iterator[dict[str, Any]]:
        """Yield every registry item, following scan pagination."""
        scan_kwargs: dict[str, Any] = {
            "ProjectionExpression": "#A",
            "ExpressionAttributeNames": {"#A": ACCOUNTS_ATTRIBUTE},
        }
        while True:
            try:
                response = self._table.scan(**scan_kwargs)
            except (ClientError, BotoCoreError) as e:
                raise RegistryReadError(
                    f"Failed to scan registry table '{self._config.registry_table}': {e}"
                ) from e

            yield from response.get("Items", [])

            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return
            scan_kwargs["ExclusiveStartKey"] = last_key


def resolve_authorized_accounts(config: Config) -> set[str]:
    """Resolve the authoritative account set for one reconciliation run."""
    return AccountSetResolver(config).resolve()
