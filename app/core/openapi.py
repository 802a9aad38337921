"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- The ``api-version`` request header on every versioned operation, with the
  versions registered for the application
- Governance response headers (rate limit, validators) documented once as
  reusable components

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {"name": "Companies", "description": "Companies and company collections."},
    {"name": "Employees", "description": "Employees of a company, paged and filterable."},
    {"name": "Health", "description": "Liveness and database checks."},
]

_RESPONSE_HEADERS = {
    "X-RateLimit-Limit": "Requests admitted per window by the applied rule.",
    "X-RateLimit-Remaining": "Requests left in the current window.",
    "X-RateLimit-Reset": "Unix time at which the window resets.",
    "ETag": "Strong validator of the representation.",
    "Last-Modified": "Time the current representation was first served.",
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to document request governance.

    Governance-exempt paths (health, docs) get no version header.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()
        cfg = app.state.settings
        versions = [str(v) for v in app.state.governance.version_router.supported_versions()]

        components = schema.setdefault("components", {})
        headers = components.setdefault("headers", {})
        for name, description in _RESPONSE_HEADERS.items():
            headers.setdefault(name, {"description": description, "schema": {"type": "string"}})

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in _TAGS:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        version_parameter = {
            "name": cfg.versioning.header_name,
            "in": "header",
            "required": False,
            "description": f"API version; defaults to {versions[0] if versions else 'none'}.",
            "schema": {"type": "string", "enum": versions},
        }
        exempt = tuple(p.rstrip("/") for p in cfg.app.exempt_paths)
        for path, methods in schema.get("paths", {}).items():
            if path.rstrip("/") in exempt:
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj.setdefault("parameters", []).append(dict(version_parameter))

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
