"""Centralized API error helpers and standard error schema.

Provides:
- api_error(...) -> HTTPException with JSON detail: {"error": {"code": str, "message": str, "details": ...}}
- error_payload(...) -> the same body as a plain dict, for exception handlers
- make_validation_error_response(...) -> dict payload used by the validation handler
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder


def error_payload(code: str, message: str, details: Optional[Any] = None) -> dict:
    payload: dict = {"error": {"code": code, "message": message}}
    if details is not None:
        payload["error"]["details"] = details
    return jsonable_encoder(payload)


def api_error(status_code: int, code: str, message: str, details: Optional[Any] = None, headers: Optional[dict] = None) -> HTTPException:
    return HTTPException(status_code=status_code, detail=error_payload(code, message, details), headers=headers)


def make_validation_error_response(errors: Any) -> dict:
    # jsonable_encoder converts exception objects carried in pydantic's ctx
    return error_payload("validation_error", "Validation error", errors)


__all__ = ["api_error", "error_payload", "make_validation_error_response"]
