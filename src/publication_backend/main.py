from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile as StarletteUploadFile

from .configuration import configure_logging, load_settings
from .context import AppContext, build_context
from .errors import PublicationError, UnsupportedMediaType, ValidationError
from .middleware import RequestLoggingMiddleware
from .models import ArtifactReceipt, PublicationEnvelope, PublicationResponse
from .publication_manager import PdfUpload, PublicationManager, PublicationOutcome
from .query import QueryEngine
from .utils import PDF_CONTENT_TYPE, content_disposition

router = APIRouter()

FORM_CONTENT_TYPES = {"multipart/form-data", "application/x-www-form-urlencoded"}


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_manager(context: AppContext = Depends(get_context)) -> PublicationManager:
    return context.manager


def get_queries(context: AppContext = Depends(get_context)) -> QueryEngine:
    return context.queries


async def _read_upload(file: Optional[UploadFile]) -> Optional[PdfUpload]:
    if file is None:
        return None
    data = await file.read()
    await file.close()
    return PdfUpload(data=data, content_type=file.content_type, filename=file.filename)


async def _read_update_body(request: Request) -> Tuple[Dict[str, Any], Optional[PdfUpload]]:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "application/json" or content_type.endswith("+json"):
        try:
            payload = await request.json()
        except ValueError as exc:
            raise ValidationError(f"Invalid JSON payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValidationError("JSON payload must be an object")
        return payload, None

    if content_type and content_type not in FORM_CONTENT_TYPES:
        raise UnsupportedMediaType(f"Unsupported content type for update: {content_type}")

    form = await request.form()
    fields: Dict[str, Any] = {}
    upload: Optional[PdfUpload] = None
    for key, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            if key == "pdf":
                upload = await _read_upload(value)
        else:
            fields[key] = value
    return fields, upload


def _envelope(message: str, outcome: PublicationOutcome) -> PublicationEnvelope:
    return PublicationEnvelope(message=message, data=outcome.record.to_response(), warnings=outcome.warnings)


def _stream_artifact(manager: PublicationManager, publication_id: str, disposition: str) -> StreamingResponse:
    record, stream = manager.open_artifact(publication_id)
    return StreamingResponse(
        stream,
        media_type=record.artifact_content_type or PDF_CONTENT_TYPE,
        headers={"Content-Disposition": content_disposition(disposition, record.title)},
    )


@router.get("/healthz")
def healthcheck(context: AppContext = Depends(get_context)) -> Dict[str, str]:
    return {"status": "ok", "backend": context.backend.name}


@router.get("/years", response_model=List[int])
def list_years(queries: QueryEngine = Depends(get_queries)) -> List[int]:
    return queries.years()


@router.get("/volumes", response_model=List[str])
def list_volumes(year: Optional[str] = None, queries: QueryEngine = Depends(get_queries)) -> List[str]:
    return queries.volumes(year)


@router.get("/publications", response_model=List[PublicationResponse])
def list_publications(
    year: Optional[str] = None,
    volume: Optional[str] = None,
    issue: Optional[str] = None,
    doi: Optional[str] = None,
    is_special_issue: Optional[str] = Query(None, alias="isSpecialIssue"),
    queries: QueryEngine = Depends(get_queries),
) -> List[PublicationResponse]:
    records = queries.list({
        "year": year,
        "volume": volume,
        "issue": issue,
        "doi": doi,
        "isSpecialIssue": is_special_issue,
    })
    return [record.to_response() for record in records]


@router.get("/special-issues", response_model=List[PublicationResponse])
def list_special_issues(
    year: Optional[str] = None,
    volume: Optional[str] = None,
    issue: Optional[str] = None,
    queries: QueryEngine = Depends(get_queries),
) -> List[PublicationResponse]:
    records = queries.special_issues({"year": year, "volume": volume, "issue": issue})
    return [record.to_response() for record in records]


@router.post("/publications", response_model=PublicationEnvelope, status_code=201)
async def create_publication(
    pdf: Optional[UploadFile] = File(None),
    year: Optional[str] = Form(None),
    volume: Optional[str] = Form(None),
    issue: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    doi: Optional[str] = Form(None),
    is_special_issue: Optional[str] = Form(None, alias="isSpecialIssue"),
    context: AppContext = Depends(get_context),
) -> PublicationEnvelope:
    fields = {
        "year": year,
        "volume": volume,
        "issue": issue,
        "title": title,
        "content": content,
        "author": author,
        "doi": doi,
        "isSpecialIssue": is_special_issue,
    }
    upload = await _read_upload(pdf)
    outcome = await run_in_threadpool(context.manager.create, fields, upload)
    if context.projector is not None and outcome.sidecar_written:
        message = "Publication added successfully with PDF and XML created."
    else:
        message = "Publication added successfully with PDF."
    return _envelope(message, outcome)


@router.get("/publications/{publication_id}", response_model=PublicationResponse)
def get_publication(publication_id: str, manager: PublicationManager = Depends(get_manager)) -> PublicationResponse:
    return manager.get(publication_id).to_response()


@router.put("/publications/{publication_id}", response_model=PublicationEnvelope)
async def update_publication(
    publication_id: str,
    request: Request,
    manager: PublicationManager = Depends(get_manager),
) -> PublicationEnvelope:
    """
    Partial update from a JSON body, or from form fields with an optional ``pdf`` file.
    """
    fields, upload = await _read_update_body(request)
    outcome = await run_in_threadpool(manager.update, publication_id, fields, upload)
    return _envelope("Publication updated successfully.", outcome)


@router.delete("/publications/{publication_id}", response_model=PublicationEnvelope)
def delete_publication(publication_id: str, manager: PublicationManager = Depends(get_manager)) -> PublicationEnvelope:
    return _envelope("Publication deleted successfully.", manager.delete(publication_id))


@router.get("/view-pdf/{publication_id}")
def view_pdf(publication_id: str, manager: PublicationManager = Depends(get_manager)) -> StreamingResponse:
    return _stream_artifact(manager, publication_id, "inline")


@router.get("/download-pdf/{publication_id}")
def download_pdf(publication_id: str, manager: PublicationManager = Depends(get_manager)) -> StreamingResponse:
    return _stream_artifact(manager, publication_id, "attachment")


@router.post("/artifacts", response_model=ArtifactReceipt, status_code=201)
async def store_artifact(pdf: UploadFile = File(...), context: AppContext = Depends(get_context)) -> ArtifactReceipt:
    upload = await _read_upload(pdf)
    ref = await run_in_threadpool(context.exchange.store, upload.data, upload.content_type, upload.filename)
    return ArtifactReceipt(ref=ref)


@router.get("/artifacts/{ref}")
def fetch_artifact(ref: str, context: AppContext = Depends(get_context)) -> StreamingResponse:
    return StreamingResponse(context.exchange.retrieve(ref), media_type=PDF_CONTENT_TYPE)


@router.delete("/artifacts/{ref}")
def release_artifact(ref: str, context: AppContext = Depends(get_context)) -> Dict[str, str]:
    context.exchange.release(ref)
    return {"status": "released"}


async def publication_error_handler(request: Request, exc: PublicationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the API around an explicit context.

    Args:
        context: Prebuilt context; defaults to one built from config.yaml and
            the environment
    """
    if context is None:
        context = build_context(load_settings())
    configure_logging(context.settings.logging.level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        context.close()

    app = FastAPI(title="Publication API", version="0.1.0", lifespan=lifespan)
    app.state.context = context

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PublicationError, publication_error_handler)
    app.include_router(router)
    return app


app = create_app()
