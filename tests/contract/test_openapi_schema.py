"""Contract tests for the generated OpenAPI schema.

The gateway dashboard is configured against these paths, so both webhook
routes must stay documented with their 200 and 401 bodies.
"""

from typing import Any

import pytest
from jsonschema import ValidationError, validate

from fulfillment_api.main import app

WEBHOOK_PATHS = ["/webhook", "/api/paystack/webhook"]


@pytest.fixture
def generated_openapi() -> dict[str, Any]:
    return app.openapi()


def component_schema(openapi: dict[str, Any], ref: str) -> dict[str, Any]:
    name = ref.rsplit("/", 1)[-1]
    return openapi["components"]["schemas"][name]


class TestOpenAPISchemaContract:
    """Test suite for OpenAPI schema contract compliance."""

    @pytest.mark.parametrize("path", WEBHOOK_PATHS)
    def test_webhook_paths_are_documented(self, generated_openapi: dict, path: str) -> None:
        operation = generated_openapi["paths"][path]["post"]

        assert set(operation["responses"]) >= {"200", "401"}
        assert "webhooks" in operation["tags"]

    def test_acknowledgement_body_matches_schema(self, generated_openapi: dict) -> None:
        response = generated_openapi["paths"]["/webhook"]["post"]["responses"]["200"]
        schema = component_schema(
            generated_openapi, response["content"]["application/json"]["schema"]["$ref"]
        )

        validate(instance={"received": True}, schema=schema)
        with pytest.raises(ValidationError):
            validate(instance={"received": "yes"}, schema=schema)

    def test_rejection_body_requires_message(self, generated_openapi: dict) -> None:
        response = generated_openapi["paths"]["/webhook"]["post"]["responses"]["401"]
        schema = component_schema(
            generated_openapi, response["content"]["application/json"]["schema"]["$ref"]
        )

        validate(instance={"received": False, "message": "Invalid signature"}, schema=schema)
        with pytest.raises(ValidationError):
            validate(instance={"received": False}, schema=schema)

    def test_ping_is_documented(self, generated_openapi: dict) -> None:
        assert "get" in generated_openapi["paths"]["/api/ping"]
