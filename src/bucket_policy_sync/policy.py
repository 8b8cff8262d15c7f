"""Bucket policy merging.

The engine owns exactly one statement per bucket policy, identified by the
managed Sid. Merging replaces that statement and leaves every other
statement, and every other top-level field, as it was.

INVARIANTS:
1. The output holds exactly one statement carrying the managed Sid,
   however many the input held.
2. Foreign statements (any other Sid, or none) keep their content and
   relative order.
3. The managed statement depends only on the account set and the bucket
   name, so merging an already merged document is a no-op.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from .config import (
    ACCOUNT_ROOT_ARN_TEMPLATE,
    BUCKET_OBJECTS_ARN_TEMPLATE,
    DEFAULT_MANAGED_SID,
    DEFAULT_POLICY_VERSION,
    READ_ONLY_ACTIONS,
)
from .models import PolicyDocument, PolicyStatement


class MalformedPolicyError(Exception):
    """Raised when an existing bucket policy is not a usable JSON document."""

    pass


def empty_policy() -> PolicyDocument:
    """Starting document for a bucket that has no policy configured."""
    return PolicyDocument(Version=DEFAULT_POLICY_VERSION, Statement=[])


def account_root_arn(account_id: str) -> str:
    """Principal ARN for the root of an account."""
    return ACCOUNT_ROOT_ARN_TEMPLATE.format(account_id=account_id)


def account_id_from_arn(arn: str) -> str | None:
    """Recover the account identifier from an account-root principal ARN.

    Returns None when the ARN is not an account-root reference.
    """
    prefix, _, suffix = ACCOUNT_ROOT_ARN_TEMPLATE.partition("{account_id}")
    if not (arn.startswith(prefix) and arn.endswith(suffix)):
        return None
    account_id = arn[len(prefix) : len(arn) - len(suffix)]
    return account_id or None


def build_managed_statement(
    accounts: Iterable[str],
    bucket_name: str,
    managed_sid: str = DEFAULT_MANAGED_SID,
) -> PolicyStatement:
    """Build the read-access statement for the given accounts.

    Principals are sorted so that the same account set always serializes
    to the same bytes. An empty account set still yields a statement; an
    Allow with no principals grants nothing.
    """
    principals = [account_root_arn(account_id) for account_id in sorted(set(accounts))]
    return PolicyStatement(
        sid=managed_sid,
        effect="Allow",
        principal={"AWS": principals},
        action=list(READ_ONLY_ACTIONS),
        resource=BUCKET_OBJECTS_ARN_TEMPLATE.format(bucket=bucket_name),
    )


def merge_policy(
    current: PolicyDocument,
    accounts: Iterable[str],
    bucket_name: str,
    managed_sid: str = DEFAULT_MANAGED_SID,
) -> PolicyDocument:
    """Produce the reconciled policy for a bucket.

    Pure function: ``current`` is not modified.

    Args:
        current: The bucket's existing policy (or empty_policy()).
        accounts: Authoritative set of account identifiers.
        bucket_name: Bucket the policy belongs to.
        managed_sid: Sid identifying the statement owned by this engine.

    Returns:
        New document with foreign statements first, in their original
        order, followed by the freshly built managed statement.
    """
    foreign = [
        statement for statement in current.statement if statement.get("Sid") != managed_sid
    ]
    managed = build_managed_statement(accounts, bucket_name, managed_sid)
    return current.model_copy(
        update={"statement": [*foreign, managed.to_dict()]},
        deep=True,
    )


def managed_statements(
    document: PolicyDocument, managed_sid: str = DEFAULT_MANAGED_SID
) -> list[dict[str, Any]]:
    """Return the statements in a document carrying the managed Sid."""
    return [statement for statement in document.statement if statement.get("Sid") == managed_sid]


def parse_policy(policy_text: str) -> PolicyDocument:
    """Parse a bucket policy as returned by the storage API.

    Raises:
        MalformedPolicyError: If the text is not JSON, not an object, or
            its Statement field is neither a list nor a single statement.
    """
    try:
        raw = json.loads(policy_text)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedPolicyError(f"Bucket policy is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedPolicyError(
            f"Bucket policy must be a JSON object, got {type(raw).__name__}"
        )

    try:
        return PolicyDocument.model_validate(raw)
    except ValidationError as e:
        raise MalformedPolicyError(f"Bucket policy has an invalid structure: {e}") from e


def serialize_policy(document: PolicyDocument) -> str:
    """Serialize a policy document for the put-policy call."""
    return json.dumps(document.to_dict(), separators=(",", ":"))
