"""Attachment validation, upload orchestration and local previews."""
