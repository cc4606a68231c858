"""
Publication Backend - REST API for academic publication records

This package provides a FastAPI-based web service that stores publication
metadata together with an uploaded PDF and a derived XML sidecar. It enables:

- Creating, updating and deleting publications with their PDF
- Filtered listing, special-issue listing and year/volume enumeration
- Streaming PDFs inline or as a download
- Three interchangeable PDF storage backends: files on disk, inline blobs in
  the record, or a remote peer instance of this service

The record is authoritative; the PDF and the sidecar are kept consistent with
it by ordering each multi-step operation and compensating on failure.

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - publication_manager: Create/update/delete lifecycle and failure policy
    - database: SQLite record store
    - artifacts: File, inline and remote PDF backends
    - sidecar: XML projection of records
    - query: Filter parameters to record predicates
    - configuration: Config loading (OmegaConf) and validation (pydantic)
    - context: Startup wiring of the components above

Usage:
    Run the API server with:
        uvicorn publication_backend.main:app --reload --host 0.0.0.0 --port 8080
"""
