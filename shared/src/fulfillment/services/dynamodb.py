"""DynamoDB access for versioned items.

Every write is conditional on the ``version`` attribute the caller last read,
so two Lambda invocations racing on one item cannot both succeed.
"""

import os
from typing import Any

import boto3
from botocore.exceptions import ClientError

VERSION_ATTRIBUTE = "version"

_dynamodb_service_instance: "DynamoDBService | None" = None


def get_dynamodb_service(environment: str | None = None) -> "DynamoDBService":
    """Return the shared DynamoDBService, creating it on first use."""
    global _dynamodb_service_instance
    if _dynamodb_service_instance is None:
        _dynamodb_service_instance = DynamoDBService(environment)
    return _dynamodb_service_instance


def reset_dynamodb_service() -> None:
    """Drop the shared instance so tests can rebuild it inside mock_aws."""
    global _dynamodb_service_instance
    _dynamodb_service_instance = None


class DynamoDBService:
    """Versioned reads and compare-and-set writes against prefixed tables.

    Table names are ``{DYNAMODB_TABLE_PREFIX}-{table}``; the prefix defaults
    to ``studio-{ENVIRONMENT}``.
    """

    def __init__(self, environment: str | None = None) -> None:
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        self.name_prefix = os.getenv("DYNAMODB_TABLE_PREFIX") or f"studio-{self.environment}"
        self._resource = boto3.resource("dynamodb")

    def table_name(self, table: str) -> str:
        return f"{self.name_prefix}-{table}"

    def get_versioned(self, table: str, key_name: str, key: str) -> tuple[dict[str, Any] | None, int]:
        """Read one item with a strongly consistent read.

        Returns:
            (item, version); (None, 0) if the item does not exist
        """
        response = self._resource.Table(self.table_name(table)).get_item(
            Key={key_name: key}, ConsistentRead=True
        )
        item = response.get("Item")
        if not item:
            return None, 0
        return item, int(item.get(VERSION_ATTRIBUTE, 0))

    def put_versioned(
        self,
        table: str,
        key_name: str,
        item: dict[str, Any],
        expected_version: int,
    ) -> bool:
        """Write ``item`` as version ``expected_version + 1``.

        Version 0 means the item must not exist yet.

        Returns:
            False if another writer got there first
        """
        item = {**item, VERSION_ATTRIBUTE: expected_version + 1}
        kwargs: dict[str, Any] = {"Item": item}
        if expected_version == 0:
            kwargs["ConditionExpression"] = f"attribute_not_exists({key_name})"
        else:
            # "version" is a DynamoDB reserved word
            kwargs["ConditionExpression"] = "#v = :expected"
            kwargs["ExpressionAttributeNames"] = {"#v": VERSION_ATTRIBUTE}
            kwargs["ExpressionAttributeValues"] = {":expected": expected_version}

        try:
            self._resource.Table(self.table_name(table)).put_item(**kwargs)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            raise
        return True
