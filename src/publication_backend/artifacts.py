"""
Artifact backends for storing the PDF associated with a publication.

These interchangeable strategies share one interface:
- FileArtifactBackend keeps PDFs as files in a managed directory
- InlineArtifactBackend keeps the PDF bytes inside the record itself
- RemoteArtifactBackend forwards to a peer instance of this service over HTTP

All variants accept only ``application/pdf`` payloads and reject anything else
before a single byte is written. The variant is chosen once from configuration
via ``build_artifact_backend`` and never mixed per record.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union
from uuid import uuid4

import httpx

from .configuration import Settings
from .errors import (
    ArtifactNotFound,
    ArtifactReleaseFailed,
    ArtifactRetrieveFailed,
    ArtifactStoreFailed,
    UnsupportedMediaType,
    ValidationError,
)
from .utils import PDF_CONTENT_TYPE, artifact_extension, ensure_directory

logger = logging.getLogger(__name__)

ArtifactRef = Union[str, bytes]

DEFAULT_CHUNK_SIZE = 1024 * 1024


def check_pdf_upload(data: bytes, content_type: Optional[str]) -> None:
    """
    Reject uploads that are not a non-empty ``application/pdf`` payload.

    Raises:
        UnsupportedMediaType: If the content type is anything but application/pdf
        ValidationError: If the payload is empty
    """
    if (content_type or "").split(";")[0].strip().lower() != PDF_CONTENT_TYPE:
        raise UnsupportedMediaType(f"Only PDF files are allowed, got {content_type or 'no content type'}")
    if not data:
        raise ValidationError("The uploaded PDF is empty")


class ArtifactBackend(ABC):
    """Abstract interface for PDF artifact storage."""

    name: str = "abstract"

    def store(self, data: bytes, content_type: Optional[str], filename: Optional[str] = None) -> ArtifactRef:
        """
        Store a PDF and return the reference to record on the publication.

        Raises:
            UnsupportedMediaType: Before any write, for non-PDF content
            ArtifactStoreFailed: If the bytes could not be stored durably
        """
        check_pdf_upload(data, content_type)
        return self._write(data, filename)

    @abstractmethod
    def _write(self, data: bytes, filename: Optional[str]) -> ArtifactRef:
        pass

    @abstractmethod
    def retrieve(self, ref: ArtifactRef) -> Iterator[bytes]:
        """Stream the stored bytes for ``ref``."""
        pass

    @abstractmethod
    def release(self, ref: ArtifactRef) -> None:
        """Free the storage behind ``ref``; releasing a missing artifact is not an error."""
        pass

    def close(self) -> None:
        pass


def _iter_file(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    with handle:
        while chunk := handle.read(chunk_size):
            yield chunk


class FileArtifactBackend(ArtifactBackend):
    """PDFs stored as files; the reference is the filename inside ``root``."""

    name = "file"

    def __init__(self, root: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.root = ensure_directory(Path(root))
        self.chunk_size = chunk_size

    def _new_filename(self, filename: Optional[str]) -> str:
        # Creation time keeps names sortable; the random suffix prevents collisions within a millisecond
        return f"{int(time.time() * 1000)}-{uuid4().hex[:8]}{artifact_extension(filename)}"

    def path_for(self, ref: ArtifactRef) -> Path:
        name = ref.decode("utf-8", "replace") if isinstance(ref, bytes) else str(ref)
        if not name or Path(name).name != name or name in {".", ".."}:
            raise ArtifactNotFound(f"Invalid artifact reference: {name!r}")
        return self.root / name

    def _write(self, data: bytes, filename: Optional[str]) -> str:
        name = self._new_filename(filename)
        destination = self.root / name
        try:
            buffer = destination.open("xb")
        except OSError as exc:
            # Nothing was created; a colliding file belongs to another artifact.
            raise ArtifactStoreFailed(f"Failed to create PDF {name}: {exc}") from exc
        try:
            with buffer:
                buffer.write(data)
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise ArtifactStoreFailed(f"Failed to write PDF {name}: {exc}") from exc
        logger.info(f"Stored PDF artifact {name} ({len(data)} bytes)")
        return name

    def retrieve(self, ref: ArtifactRef) -> Iterator[bytes]:
        path = self.path_for(ref)
        try:
            handle = path.open("rb")
        except FileNotFoundError as exc:
            raise ArtifactNotFound("PDF file not found on disk.") from exc
        except OSError as exc:
            raise ArtifactRetrieveFailed(f"Failed to read PDF {path.name}: {exc}") from exc
        return _iter_file(handle, self.chunk_size)

    def release(self, ref: ArtifactRef) -> None:
        try:
            path = self.path_for(ref)
        except ArtifactNotFound:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise ArtifactReleaseFailed(f"Failed to delete PDF {path.name}: {exc}") from exc
        logger.info(f"Released PDF artifact {path.name}")

    def exists(self, ref: ArtifactRef) -> bool:
        try:
            return self.path_for(ref).is_file()
        except ArtifactNotFound:
            return False


class InlineArtifactBackend(ArtifactBackend):
    """The record carries the PDF bytes; deleting the record frees them."""

    name = "inline"

    def _write(self, data: bytes, filename: Optional[str]) -> bytes:
        return bytes(data)

    def retrieve(self, ref: ArtifactRef) -> Iterator[bytes]:
        if not ref or not isinstance(ref, (bytes, bytearray, memoryview)):
            raise ArtifactNotFound("PDF not found.")
        return iter([bytes(ref)])

    def release(self, ref: ArtifactRef) -> None:
        pass


class RemoteArtifactBackend(ArtifactBackend):
    """
    Proxy to the artifact exchange endpoints of a peer instance.

    The peer answers ``POST /artifacts`` with ``{"ref": ...}`` and serves
    ``GET``/``DELETE /artifacts/{ref}``. Transport failures and non-2xx answers
    are translated to this module's errors; nothing is retried.
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    @staticmethod
    def _ref_text(ref: ArtifactRef) -> str:
        text = ref.decode("utf-8", "replace") if isinstance(ref, bytes) else str(ref)
        if not text or "/" in text:
            raise ArtifactNotFound(f"Invalid remote artifact reference: {text!r}")
        return text

    def _write(self, data: bytes, filename: Optional[str]) -> str:
        try:
            response = self.client.post(
                "/artifacts",
                files={"pdf": (filename or "document.pdf", data, PDF_CONTENT_TYPE)},
            )
            response.raise_for_status()
            ref = response.json()["ref"]
        except httpx.TimeoutException as exc:
            raise ArtifactStoreFailed(f"Remote artifact store timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise ArtifactStoreFailed(f"Remote artifact store answered {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise ArtifactStoreFailed(f"Remote artifact store failed: {exc}") from exc
        logger.info(f"Stored PDF artifact {ref} on {self.base_url}")
        return ref

    def retrieve(self, ref: ArtifactRef) -> Iterator[bytes]:
        ref_text = self._ref_text(ref)
        try:
            response = self.client.get(f"/artifacts/{ref_text}")
        except httpx.HTTPError as exc:
            raise ArtifactRetrieveFailed(f"Remote artifact retrieval failed: {exc}") from exc
        if response.status_code == 404:
            raise ArtifactNotFound("PDF not found on remote store.")
        if response.is_error:
            raise ArtifactRetrieveFailed(f"Remote artifact retrieval answered {response.status_code}")
        return iter([response.content])

    def release(self, ref: ArtifactRef) -> None:
        try:
            ref_text = self._ref_text(ref)
        except ArtifactNotFound:
            return
        try:
            response = self.client.delete(f"/artifacts/{ref_text}")
        except httpx.HTTPError as exc:
            raise ArtifactReleaseFailed(f"Remote artifact release failed: {exc}") from exc
        if response.status_code != 404 and response.is_error:
            raise ArtifactReleaseFailed(f"Remote artifact release answered {response.status_code}")
        logger.info(f"Released PDF artifact {ref_text} on {self.base_url}")

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


def build_artifact_backend(settings: Settings, client: Optional[httpx.Client] = None) -> ArtifactBackend:
    """Create the backend variant selected by ``storage.backend``."""
    backend = settings.storage.backend
    if backend == "file":
        return FileArtifactBackend(settings.storage.artifacts_dir, chunk_size=settings.storage.chunk_size)
    if backend == "inline":
        return InlineArtifactBackend()
    if backend == "remote":
        return RemoteArtifactBackend(
            settings.remote.base_url or "",
            timeout=settings.remote.timeout_seconds,
            client=client,
        )
    raise ValueError(f"Unknown artifact backend: {backend}")
