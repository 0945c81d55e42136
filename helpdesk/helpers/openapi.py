"""OpenAPI augmentation helpers."""
from __future__ import annotations

from typing import Any, Dict

EXAMPLE_TICKET = {
    "id": "5b0c6a1e-4f7e-4d9a-9a51-2f3c1e0d8b11",
    "ticket_number": "TKT-00042",
    "title": "VPN drops every few minutes",
    "description": "Since this morning the VPN disconnects roughly every five minutes.",
    "status": "open",
    "priority": "high",
    "submitter_id": 7,
    "assigned_to_id": None,
    "category_id": 3,
    "created_at": "2026-02-07T10:00:00Z",
    "updated_at": "2026-02-07T10:00:00Z",
    "closed_at": None,
    "resolution_notes": None,
    "version": 0,
    "tags": ["vpn"],
}


def _json_examples(operation: Dict[str, Any], status_code: str) -> Dict[str, Any]:
    responses = operation.setdefault("responses", {})
    content = responses.setdefault(status_code, {"description": ""}).setdefault("content", {})
    return content.setdefault("application/json", {}).setdefault("examples", {})


def augment_openapi(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Add request/response and error examples for the ticket endpoints to `spec`.

    Adds:
    - request and 201 response examples for POST /api/tickets
    - a 409 version conflict example for PUT /api/tickets/{ticket_id}/status
    - the shared APIError schema and attachment error examples
    """
    paths = spec.setdefault("paths", {})

    create = paths.get("/api/tickets", {}).get("post")
    if create is not None:
        body = create.setdefault("requestBody", {}).setdefault("content", {}).setdefault("application/json", {})
        body.setdefault("examples", {})["create_ticket_example"] = {
            "summary": "Open a ticket",
            "value": {
                "title": EXAMPLE_TICKET["title"],
                "description": EXAMPLE_TICKET["description"],
                "priority": "high",
                "category_id": 3,
                "tags": ["vpn"],
            },
        }
        _json_examples(create, "201")["created_ticket"] = {"summary": "Created ticket", "value": EXAMPLE_TICKET}

    update_status = paths.get("/api/tickets/{ticket_id}/status", {}).get("put")
    if update_status is not None:
        _json_examples(update_status, "409")["version_conflict"] = {
            "summary": "Another user changed the ticket first",
            "value": {
                "error": {
                    "code": "version_conflict",
                    "message": "The ticket was modified by another user. Refresh and try again.",
                    "details": {"expected_version": 2, "current_version": 3},
                }
            },
        }

    components = spec.setdefault("components", {})
    components.setdefault("schemas", {}).setdefault(
        "APIError",
        {
            "type": "object",
            "properties": {
                "error": {
                    "type": "object",
                    "properties": {
                        "code": {"type": "string"},
                        "message": {"type": "string"},
                        "details": {},
                    },
                    "required": ["code", "message"],
                }
            },
        },
    )

    examples = components.setdefault("examples", {})
    examples.setdefault(
        "attachment_too_large_example",
        {
            "summary": "Attachment too large error",
            "value": {"error": {"code": "attachment_too_large", "message": "Attachment too large: big.bin"}},
        },
    )
    examples.setdefault(
        "attachment_invalid_type_example",
        {
            "summary": "Attachment type not allowed",
            "value": {"error": {"code": "attachment_invalid_type", "message": "Attachment type not allowed: application/x-msdownload"}},
        },
    )

    return spec
