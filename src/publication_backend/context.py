from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from .artifacts import ArtifactBackend, FileArtifactBackend, build_artifact_backend
from .configuration import Settings
from .database import PublicationDatabase
from .publication_manager import PublicationManager
from .query import QueryEngine
from .sidecar import SidecarProjector


@dataclass
class AppContext:
    """Everything a request needs, built once at startup and passed explicitly."""

    settings: Settings
    database: PublicationDatabase
    backend: ArtifactBackend
    projector: Optional[SidecarProjector]
    manager: PublicationManager
    queries: QueryEngine
    # Serves the artifact exchange endpoints peers use in remote mode
    exchange: FileArtifactBackend

    def close(self) -> None:
        self.backend.close()


def build_context(settings: Settings, remote_client: Optional[httpx.Client] = None) -> AppContext:
    """
    Construct the record store, artifact backend and sidecar projector.

    Args:
        settings: Validated settings
        remote_client: Optional HTTP client for the remote backend (tests point
            it at another in-process instance)
    """
    database = PublicationDatabase(settings.database.path)
    backend = build_artifact_backend(settings, client=remote_client)
    projector = SidecarProjector(settings.sidecar.output_dir) if settings.sidecar.enabled else None
    if isinstance(backend, FileArtifactBackend):
        exchange = backend
    else:
        exchange = FileArtifactBackend(settings.storage.artifacts_dir, chunk_size=settings.storage.chunk_size)
    return AppContext(
        settings=settings,
        database=database,
        backend=backend,
        projector=projector,
        manager=PublicationManager(database, backend, projector),
        queries=QueryEngine(database),
        exchange=exchange,
    )
