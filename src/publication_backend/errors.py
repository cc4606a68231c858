"""
Error taxonomy for the publication artifact store.

Every error raised by the store, the artifact backends and the lifecycle
manager derives from PublicationError. Each class carries the HTTP status the
API layer answers with, so route handlers never translate errors themselves.
"""

from __future__ import annotations


class PublicationError(Exception):
    """Base class for all publication store errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PublicationError):
    """Missing or malformed client input."""

    status_code = 400


class InvalidIdentifier(ValidationError):
    """A record identifier does not have the expected shape."""


class UnsupportedMediaType(ValidationError):
    """An upload is not application/pdf."""

    status_code = 415


class NotFound(PublicationError):
    status_code = 404


class ArtifactNotFound(NotFound):
    """An artifact reference does not resolve to stored bytes."""


class ArtifactStoreFailed(PublicationError):
    status_code = 502


class ArtifactRetrieveFailed(PublicationError):
    status_code = 502


class ArtifactReleaseFailed(PublicationError):
    status_code = 502


class PersistenceFailed(PublicationError):
    """The record store could not complete an operation."""

    status_code = 500
