"""Mock DynamoDB registry table.

Supports the projected, paginated scan used to read customer records.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from .s3 import client_error


@dataclass
class MockRegistryState:
    """In-memory registry contents and scan behaviour."""

    table_name: str = "table-name"
    items: list[dict[str, Any]] = field(default_factory=list)
    page_size: int = 100
    fail_scan: bool = False
    scan_calls: list[dict[str, Any]] = field(default_factory=list)

    def add_customer(self, customer_id: str, account_ids: list[str], **fields: Any) -> None:
        """Add a customer record with the given account identifiers."""
        item: dict[str, Any] = {
            "ID": customer_id,
            "Name": fields.pop("name", customer_id),
            "Active": fields.pop("active", True),
            "Accounts": [
                {
                    "ID": account_id,
                    "Name": f"account-{account_id}",
                    "Enabled": True,
                    "RoleName": "DeployRole",
                    "Environment": ["prod"],
                }
                for account_id in account_ids
            ],
        }
        item.update(fields)
        self.items.append(item)


class MockRegistryTable:
    """Mock of a boto3 DynamoDB Table resource."""

    def __init__(self, state: MockRegistryState, name: str) -> None:
        self._state = state
        self.name = name

    def scan(self, **kwargs: Any) -> dict[str, Any]:
        self._state.scan_calls.append(copy.deepcopy(kwargs))
        if self._state.fail_scan:
            raise client_error("ProvisionedThroughputExceededException", "Scan", status=400)
        if self.name != self._state.table_name:
            raise client_error("ResourceNotFoundException", "Scan", status=400)

        start = int(kwargs.get("ExclusiveStartKey", {}).get("offset", 0))
        end = start + self._state.page_size
        projected = [self._project(item, kwargs) for item in self._state.items[start:end]]

        response: dict[str, Any] = {"Items": projected, "Count": len(projected)}
        if end < len(self._state.items):
            response["LastEvaluatedKey"] = {"offset": end}
        return response

    @staticmethod
    def _project(item: dict[str, Any], kwargs: dict[str, Any]) -> dict[str, Any]:
        expression = kwargs.get("ProjectionExpression")
        if not expression:
            return copy.deepcopy(item)
        names = kwargs.get("ExpressionAttributeNames", {})
        attributes = [names.get(token.strip(), token.strip()) for token in expression.split(",")]
        return {key: copy.deepcopy(item[key]) for key in attributes if key in item}


class MockDynamoDBResource:
    """Mock of boto3.resource("dynamodb")."""

    def __init__(self, state: MockRegistryState, region: str | None) -> None:
        self._state = state
        self.region = region

    def Table(self, name: str) -> MockRegistryTable:  # noqa: N802
        return MockRegistryTable(self._state, name)
