"""Exception hierarchy for the ingestion core.

    FieldArchiveError
    +-- RemoteUnavailable   (drive service unreachable, auth refused, bad payload)
    +-- UnsupportedFormat   (extension outside the accepted set)
    +-- ExtractionFailed    (a format extractor raised)
    +-- EnrichmentFailed    (AI tagging/receipt call failed or was unparseable)
    +-- ConfigurationError  (a collaborator cannot be built from settings)
    +-- DocumentNotFound    (unknown document id)
"""

from __future__ import annotations


class FieldArchiveError(Exception):
    """Base error; ``provider`` names the external service involved, if any."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class RemoteUnavailable(FieldArchiveError):
    pass


class UnsupportedFormat(FieldArchiveError):
    pass


class ExtractionFailed(FieldArchiveError):
    pass


class EnrichmentFailed(FieldArchiveError):
    pass


class ConfigurationError(FieldArchiveError):
    pass


class DocumentNotFound(FieldArchiveError):
    pass


__all__ = [
    "FieldArchiveError",
    "RemoteUnavailable",
    "UnsupportedFormat",
    "ExtractionFailed",
    "EnrichmentFailed",
    "ConfigurationError",
    "DocumentNotFound",
]
