"""Local file storage and validation for ticket attachments."""

from __future__ import annotations

import logging
import os
import uuid
from typing import List, Optional

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.path.abspath(os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads")))

MAX_ATTACHMENT_SIZE = int(os.getenv("MAX_ATTACHMENT_SIZE", str(10 * 1024 * 1024)))  # 10 MB
MAX_FILE_NAME_LENGTH = 255

ALLOWED_ATTACHMENT_MIME_TYPES = os.getenv(
    "ALLOWED_ATTACHMENT_MIME_TYPES",
    "image/*,application/pdf,text/plain,text/csv,application/zip,application/msword,"
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
    "application/vnd.ms-excel,application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
)
ALLOWED_ATTACHMENT_MIME: List[str] = [m.strip() for m in ALLOWED_ATTACHMENT_MIME_TYPES.split(",") if m.strip()]


def mime_allowed(content_type: Optional[str]) -> bool:
    """Return True if content_type matches any allowed pattern (supports wildcard like image/*)."""
    if not content_type:
        return False
    for allowed in ALLOWED_ATTACHMENT_MIME:
        if allowed.endswith("/*"):
            prefix = allowed.split("/")[0]
            if content_type.startswith(prefix + "/"):
                return True
        elif content_type == allowed:
            return True
    return False


def file_name_problem(file_name: Optional[str]) -> Optional[str]:
    """Return why a client-supplied file name is unacceptable, or None."""
    if not file_name or not file_name.strip():
        return "File name is required"
    if len(file_name) > MAX_FILE_NAME_LENGTH:
        return f"File name must not exceed {MAX_FILE_NAME_LENGTH} characters"
    if ".." in file_name or "/" in file_name or "\\" in file_name or "\x00" in file_name:
        return "File name contains invalid characters"
    return None


def save_file(ticket_id: str, file_name: str, data: bytes) -> str:
    """Write `data` under UPLOAD_DIR/<ticket_id>/ and return the stored path."""
    ticket_dir = os.path.join(UPLOAD_DIR, ticket_id)
    os.makedirs(ticket_dir, exist_ok=True)
    path = os.path.join(ticket_dir, f"{uuid.uuid4().hex}_{os.path.basename(file_name)}")
    with open(path, "wb") as f:
        f.write(data)
    logger.debug("Stored %d byte(s) at %s", len(data), path)
    return path


def delete_file(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        logger.warning("Attachment file already missing: %s", path)
        return False


__all__ = [
    "UPLOAD_DIR",
    "MAX_ATTACHMENT_SIZE",
    "MAX_FILE_NAME_LENGTH",
    "ALLOWED_ATTACHMENT_MIME",
    "mime_allowed",
    "file_name_problem",
    "save_file",
    "delete_file",
]
