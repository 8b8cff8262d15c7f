"""AWS API Mock for Integration Testing.

In-memory stand-ins for the two AWS services the engine talks to:

- S3: buckets with policies, regional clients, paginated listing,
  error injection for list/get/put
- DynamoDB: the customer registry table with projected, paginated scans

Usage:
    from aws_mock import MockAwsContext

    with MockAwsContext() as ctx:
        ctx.registry.add_customer("c1", ["111111111111"])
        ctx.s3.add_bucket("some-prefix-lambdabundles-eu-west-2", "eu-west-2")

        result = Reconciler(config).reconcile_once()

        assert len(ctx.s3.put_calls) == 1
"""

from .context import MockAwsContext, mock_aws_context
from .dynamodb import MockDynamoDBResource, MockRegistryState, MockRegistryTable
from .s3 import MockS3Client, MockS3State, PutPolicyCall, client_error

__all__ = [
    "MockAwsContext",
    "MockDynamoDBResource",
    "MockRegistryState",
    "MockRegistryTable",
    "MockS3Client",
    "MockS3State",
    "PutPolicyCall",
    "client_error",
    "mock_aws_context",
]
