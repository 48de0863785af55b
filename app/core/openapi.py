"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- Internal token security scheme (``X-Internal-Token``) on the admin API

Protected application routes stay documented without a security
requirement: the token is optional there and only bypasses rate limiting.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from app.core.auth import INTERNAL_TOKEN_HEADER

ADMIN_PATH_PREFIX = "/v1/rate-limits"


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for the internal token header
    - Marks every admin operation as requiring the internal token
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "InternalToken",
            {
                "type": "apiKey",
                "in": "header",
                "name": INTERNAL_TOKEN_HEADER,
                "description": (
                    "Shared secret for trusted internal callers. Required on the "
                    "rate limit admin API; bypasses rate limiting elsewhere."
                ),
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Rate Limits",
                "description": "Inspect and update rate limit rules, metrics and usage.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            if not path.startswith(ADMIN_PATH_PREFIX):
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = [{"InternalToken": []}]

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
