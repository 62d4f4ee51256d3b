"""OpenAPI customization utilities.

Adds the ``X-API-Key`` security scheme, tag descriptions, and documents the
429 response shared by every rate limited operation.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

RATE_LIMITED_TAGS = {"Rate Limit"}

_TOO_MANY_REQUESTS = {
    "description": "Rate limit exceeded",
    "headers": {
        "Retry-After": {"schema": {"type": "integer"}, "description": "Seconds to wait (>= 1)"},
        "X-RateLimit-Limit": {"schema": {"type": "integer"}},
        "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
        "X-RateLimit-Reset": {"schema": {"type": "integer"}, "description": "UNIX seconds"},
    },
    "content": {
        "application/json": {
            "example": {"error": "Rate limit exceeded. Please try again later."},
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add security and 429 docs.

    - Injects components.securitySchemes for API Key auth (header ``X-API-Key``)
    - Marks the health endpoint as public with ``security: []``
    - Adds a 429 response to operations tagged as rate limited
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Optional caller key; anonymous callers are limited by address.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in (
            {"name": "Rate Limit", "description": "Caller budget inspection."},
            {"name": "Admin", "description": "Administrative resets (admin key required)."},
            {"name": "Health", "description": "Liveness and backend status."},
        ):
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                if RATE_LIMITED_TAGS & set(method_obj.get("tags", [])):
                    method_obj.setdefault("responses", {}).setdefault("429", _TOO_MANY_REQUESTS)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
