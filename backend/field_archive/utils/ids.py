"""Identifier and content-digest helpers."""

from __future__ import annotations

import hashlib
import uuid


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def content_digest(data: bytes) -> str:
    """SHA-256 hex digest of a document's raw bytes."""
    return hashlib.sha256(data).hexdigest()
