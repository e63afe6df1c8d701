"""Client-side attachment checks run before any network call."""

from __future__ import annotations

from pathlib import PurePath
from typing import Optional

from campchat.config import AttachmentConfig
from campchat.core.errors import AttachmentValidationError

_GENERIC_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


def format_limit(max_bytes: int) -> str:
    mib = max_bytes / (1024 * 1024)
    return f"{mib:g} MB"


def infer_content_type(filename: str, config: AttachmentConfig) -> Optional[str]:
    suffix = PurePath(filename).suffix.lower()
    for content_type, extensions in config.allowed_types.items():
        if suffix in extensions:
            return content_type
    return None


def validate_attachment(
    filename: str,
    size: int,
    declared_type: Optional[str],
    config: AttachmentConfig,
) -> str:
    """Check extension, MIME type and size; return the resolved content type.

    The declared type is only trusted when it agrees with the extension, so a
    renamed or mislabelled file is rejected either way.
    """
    suffix = PurePath(filename).suffix.lower()
    if not suffix:
        raise AttachmentValidationError("File has no extension")

    inferred = infer_content_type(filename, config)
    if inferred is None:
        raise AttachmentValidationError(f"Unsupported file type: {suffix}")

    declared = (declared_type or "").split(";")[0].strip().lower()
    if declared not in _GENERIC_TYPES:
        if declared not in config.allowed_types:
            raise AttachmentValidationError(f"Unsupported file type: {declared}")
        if suffix not in config.allowed_types[declared]:
            raise AttachmentValidationError("File extension does not match its type")
        content_type = declared
    else:
        content_type = inferred

    if size <= 0:
        raise AttachmentValidationError("File is empty")
    if size > config.max_bytes:
        raise AttachmentValidationError(f"File exceeds {format_limit(config.max_bytes)}")
    return content_type
