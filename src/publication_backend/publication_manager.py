"""
Publication lifecycle management.

This module keeps a publication's three pieces consistent:
- the metadata record (authoritative, in the record store)
- the PDF artifact (in the configured artifact backend)
- the XML sidecar (a derived cache written by the sidecar projector)

The record store and the artifact backend share no transaction, so each
multi-step operation is ordered so that a record never references an artifact
that is not stored, and later failures are met with explicit compensating
cleanup steps instead of a rollback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Tuple

import pydantic

from .artifacts import ArtifactBackend, ArtifactRef, check_pdf_upload
from .database import PublicationDatabase, PublicationRecord, validate_identifier
from .errors import NotFound, PersistenceFailed, PublicationError, ValidationError
from .models import PublicationFields, PublicationUpdate
from .sidecar import SidecarProjector
from .utils import PDF_CONTENT_TYPE

logger = logging.getLogger(__name__)


@dataclass
class PdfUpload:
    data: bytes
    content_type: Optional[str] = PDF_CONTENT_TYPE
    filename: Optional[str] = None


@dataclass
class PublicationOutcome:
    """
    Result of a lifecycle operation.

    Attributes:
        record: The record as committed (or as it was before deletion)
        warnings: Non-fatal problems, e.g. a sidecar that could not be written
            or an artifact whose storage could not be reclaimed
    """

    record: PublicationRecord
    warnings: List[str] = field(default_factory=list)

    @property
    def sidecar_written(self) -> bool:
        return not any(warning.startswith("Sidecar") for warning in self.warnings)


def _validation_message(exc: pydantic.ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


class PublicationManager:
    """
    Orchestrates create, update and delete across store, backend and sidecar.

    Each call is one independent intent; no lock is held, so concurrent calls
    on the same id resolve as last-write-wins or NotFound on the losing side.
    """

    def __init__(
        self,
        database: PublicationDatabase,
        backend: ArtifactBackend,
        projector: Optional[SidecarProjector] = None,
    ) -> None:
        self.database = database
        self.backend = backend
        self.projector = projector

    def get(self, record_id: str) -> PublicationRecord:
        record = self.database.get(record_id)
        if record is None:
            raise NotFound("Publication not found.")
        return record

    def create(self, fields: Mapping[str, Any], pdf: Optional[PdfUpload]) -> PublicationOutcome:
        """
        Create a publication from metadata and its PDF.

        Steps:
        1. Validate every field and the PDF before touching storage
        2. Store the artifact (failure: nothing is created)
        3. Insert the record (failure: the artifact is released again)
        4. Write the sidecar (failure: reported as a warning only)

        Raises:
            ValidationError: Missing/malformed fields or PDF
            UnsupportedMediaType: The upload is not application/pdf
            ArtifactStoreFailed: The artifact backend could not store the PDF
            PersistenceFailed: The record could not be inserted
        """
        try:
            validated = PublicationFields.model_validate(dict(fields))
        except pydantic.ValidationError as exc:
            raise ValidationError(
                f"All required fields must be provided, including a PDF. {_validation_message(exc)}"
            ) from exc
        if pdf is None:
            raise ValidationError("All required fields must be provided, including a PDF.")
        check_pdf_upload(pdf.data, pdf.content_type)

        ref = self.backend.store(pdf.data, pdf.content_type, pdf.filename)

        try:
            record = self.database.insert({
                **validated.model_dump(),
                "artifact_ref": ref,
                "artifact_content_type": PDF_CONTENT_TYPE,
            })
        except PersistenceFailed:
            self._release_quietly(ref, reason="record insert failed")
            raise

        outcome = PublicationOutcome(record=record)
        self._write_sidecar(outcome)
        logger.info(f"Created publication {record.id}")
        return outcome

    def update(
        self,
        record_id: str,
        fields: Mapping[str, Any],
        pdf: Optional[PdfUpload] = None,
    ) -> PublicationOutcome:
        """
        Apply a partial update and optionally replace the PDF.

        Omitted, None and empty-string values leave a field unchanged. A new
        PDF is stored first, the record is committed pointing at it, and only
        then is the previous artifact released.

        Raises:
            InvalidIdentifier: Malformed id
            NotFound: No such publication (also when it is deleted mid-update)
            ValidationError / UnsupportedMediaType: Bad fields or PDF
            ArtifactStoreFailed: The new PDF could not be stored
            PersistenceFailed: The record could not be updated
        """
        validate_identifier(record_id)
        try:
            changes = PublicationUpdate.model_validate(dict(fields)).changes()
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid publication update. {_validation_message(exc)}") from exc
        if pdf is not None:
            check_pdf_upload(pdf.data, pdf.content_type)

        existing = self.get(record_id)
        warnings: List[str] = []

        new_ref: Optional[ArtifactRef] = None
        if pdf is not None:
            new_ref = self.backend.store(pdf.data, pdf.content_type, pdf.filename)
            changes["artifact_ref"] = new_ref
            changes["artifact_content_type"] = PDF_CONTENT_TYPE

        try:
            record = self.database.update(record_id, changes)
        except PersistenceFailed:
            if new_ref is not None:
                self._release_quietly(new_ref, reason="record update failed")
            raise
        if record is None:
            if new_ref is not None:
                self._release_quietly(new_ref, reason="publication deleted during update")
            raise NotFound("Publication not found.")

        if new_ref is not None and existing.artifact_ref and existing.artifact_ref != new_ref:
            if not self._release_quietly(existing.artifact_ref, reason="artifact replaced"):
                warnings.append("Previous PDF could not be released.")

        outcome = PublicationOutcome(record=record, warnings=warnings)
        self._write_sidecar(outcome)
        logger.info(f"Updated publication {record_id}")
        return outcome

    def delete(self, record_id: str) -> PublicationOutcome:
        """
        Delete the record, then reclaim its artifact and sidecar.

        Cleanup failures are logged and reported as warnings; the publication
        is gone either way.
        """
        record = self.database.delete(record_id)
        if record is None:
            raise NotFound("Publication not found.")

        outcome = PublicationOutcome(record=record)
        if record.artifact_ref and not self._release_quietly(record.artifact_ref, reason="publication deleted"):
            outcome.warnings.append("PDF could not be released.")
        if self.projector is not None:
            try:
                self.projector.retire(record_id)
            except OSError as exc:
                logger.warning(f"Sidecar for {record_id} could not be removed: {exc}")
                outcome.warnings.append("Sidecar could not be removed.")
        logger.info(f"Deleted publication {record_id}")
        return outcome

    def open_artifact(self, record_id: str) -> Tuple[PublicationRecord, Iterator[bytes]]:
        """
        Resolve a publication's PDF for streaming.

        Raises:
            NotFound: No such publication, or it has no PDF
            ArtifactNotFound: The reference no longer resolves
            ArtifactRetrieveFailed: The backend could not read the PDF
        """
        record = self.get(record_id)
        if not record.artifact_ref:
            raise NotFound("PDF not found.")
        return record, self.backend.retrieve(record.artifact_ref)

    def _release_quietly(self, ref: ArtifactRef, reason: str) -> bool:
        """Best-effort release used for compensation and cleanup; never raises."""
        try:
            self.backend.release(ref)
        except PublicationError as exc:
            logger.error(f"Could not release artifact after {reason}: {exc}")
            return False
        except OSError as exc:
            logger.error(f"Could not release artifact after {reason}: {exc}")
            return False
        return True

    def _write_sidecar(self, outcome: PublicationOutcome) -> None:
        if self.projector is None:
            return
        record = outcome.record
        try:
            self.projector.persist(record.id, self.projector.project(record))
        except Exception as exc:  # noqa: BLE001 - the sidecar is a cache, never fatal
            logger.warning(f"Sidecar for {record.id} could not be written: {exc}", exc_info=True)
            outcome.warnings.append("Sidecar XML could not be written.")
