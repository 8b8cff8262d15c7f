"""Pydantic models for registry records and bucket policy documents.

These models provide:
1. Type-safe parsing of registry scan items
2. Validation at the boundary (fail fast, fail loudly)
3. Alias-preserving serialization of policy documents
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Registry Records
# =============================================================================


class Account(BaseModel):
    """External account attached to a customer.

    Only ``ID`` is consumed by the reconciliation engine; the remaining
    attributes are carried for completeness.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str = Field(alias="ID", min_length=1)
    name: str | None = Field(None, alias="Name")
    enabled: bool | None = Field(None, alias="Enabled")
    role_name: str | None = Field(None, alias="RoleName")
    environment: list[str] = Field(default_factory=list, alias="Environment")
    admin_only: bool | None = Field(None, alias="AdminOnly")
    external_id: str | None = Field(None, alias="ExternalID")


class CustomerRecord(BaseModel):
    """Customer registry record.

    The registry scan projects only ``Accounts``, so every other field is
    optional. A record without the attribute has no accounts.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str | None = Field(None, alias="ID")
    name: str | None = Field(None, alias="Name")
    active: bool | None = Field(None, alias="Active")
    accounts: list[Account] = Field(default_factory=list, alias="Accounts")


# =============================================================================
# Bucket Policy Documents
# =============================================================================


class PolicyStatement(BaseModel):
    """A single bucket policy statement."""

    model_config = {"extra": "allow", "populate_by_name": True}

    sid: str | None = Field(None, alias="Sid")
    effect: Literal["Allow", "Deny"] = Field(alias="Effect")
    principal: dict[str, Any] | str = Field(alias="Principal")
    action: list[str] | str = Field(alias="Action")
    resource: list[str] | str = Field(alias="Resource")
    condition: dict[str, Any] | None = Field(None, alias="Condition")

    def to_dict(self) -> dict[str, Any]:
        """Serialize using AWS field names, dropping unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PolicyDocument(BaseModel):
    """A bucket policy document.

    Statements are held as plain mappings: statements not owned by this
    engine must round-trip without any normalization. Unknown top-level
    keys are preserved as extras.
    """

    model_config = {"extra": "allow"}

    version: str | None = Field(None, alias="Version")
    id: str | None = Field(None, alias="Id")
    statement: list[dict[str, Any]] = Field(default_factory=list, alias="Statement")

    @field_validator("statement", mode="before")
    @classmethod
    def wrap_single_statement(cls, v: Any) -> Any:
        # IAM accepts a lone statement object in place of a list
        if isinstance(v, dict):
            return [v]
        return v

    def to_dict(self) -> dict[str, Any]:
        """Serialize using AWS field names.

        Built by hand rather than through model_dump so statement contents
        (including any null values) are emitted exactly as held.
        """
        document: dict[str, Any] = {}
        if self.version is not None:
            document["Version"] = self.version
        if self.id is not None:
            document["Id"] = self.id
        document["Statement"] = copy.deepcopy(self.statement)
        for key, value in (self.model_extra or {}).items():
            document[key] = copy.deepcopy(value)
        return document


# =============================================================================
# Buckets
# =============================================================================


@dataclass(frozen=True)
class ManagedBucket:
    """A bucket under management and the region derived from its name."""

    name: str
    region: str
