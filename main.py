"""Main entry point for the creative-question API."""

import asyncio
import os
import shutil
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from config import Settings
from errors import ServiceError
from logger import get_logger
from services.service import ServiceContainer
from utils.file_util import IMAGE_MIME_TYPES, cleanup_files
from utils.response_format import flatten_question_sets
from utils.schema import IngestRequest, SearchRequest, SearchResponse

# Initialize logger
logger = get_logger(__name__)

router = APIRouter()


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def _save_upload(file: UploadFile, path: str):
    with open(path, "wb") as buffer:
        shutil.copyfileobj(file.file, buffer)


async def save_uploads(container: ServiceContainer, files: List[UploadFile]) -> List[str]:
    """Writes uploaded images to UPLOAD_DIR and returns their paths."""
    settings = container.settings
    if not files:
        raise HTTPException(status_code=400, detail="At least one image is required")
    if len(files) > settings.max_upload_files:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.max_upload_files} images per request",
        )
    for file in files:
        file_ext = os.path.splitext(file.filename or "")[1].lower()
        if file_ext not in IMAGE_MIME_TYPES:
            raise HTTPException(
                status_code=400,
                detail=f"Unsupported file type. Allowed: {', '.join(IMAGE_MIME_TYPES)}",
            )

    os.makedirs(settings.upload_dir, exist_ok=True)
    paths: List[str] = []
    try:
        for file in files:
            path = os.path.join(
                settings.upload_dir, f"{uuid.uuid4().hex}_{os.path.basename(file.filename)}"
            )
            paths.append(path)
            await asyncio.to_thread(_save_upload, file, path)
    except OSError as e:
        await cleanup_files(paths)
        raise HTTPException(status_code=500, detail=f"Failed to save file: {str(e)}")
    return paths


@router.get("/ping")
async def ping():
    return {"status": "alive"}


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint. Answers 503 when a backing service is down."""
    components = await get_container(request).health()
    healthy = all(components.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "degraded", "components": components},
    )


@router.post("/extract-questions")
async def extract_questions(
    request: Request,
    files: List[UploadFile] = File(...),
    num_blocks: Optional[int] = Form(None),
    custom_instructions: Optional[str] = Form(None),
):
    """Extract creative questions from photographed pages.

    Returns the flat [original, translated, ...] list in `data`.
    """
    container = get_container(request)
    paths = await save_uploads(container, files)
    question_sets = await container.extraction.extract_questions(
        paths, num_blocks=num_blocks, custom_instructions=custom_instructions
    )
    return {
        "success": True,
        "count": len(question_sets),
        "data": flatten_question_sets(question_sets),
    }


@router.post("/extract-answers")
async def extract_answers(
    request: Request,
    files: List[UploadFile] = File(...),
    custom_instructions: Optional[str] = Form(None),
):
    container = get_container(request)
    paths = await save_uploads(container, files)
    answers = await container.extraction.extract_answers(
        paths, custom_instructions=custom_instructions
    )
    return {"success": True, "data": [group.model_dump() for group in answers]}


@router.post("/questions", status_code=201)
async def create_question(request: Request, body: Dict[str, Any] = Body(...)):
    question = await get_container(request).questions.create_question(body)
    return {"success": True, "message": "Question created", "data": question}


@router.post("/questions/ingest", status_code=201)
async def ingest_question(request: Request, body: IngestRequest):
    """Create a question from an extracted pair, its answers and taxonomy hints."""
    base = {
        "meta": {
            "subject": {"_id": body.subject_id},
            "level": body.level,
            "group": body.group,
        },
        "source": body.source,
    }
    question = await get_container(request).questions.ingest_extracted(
        body.question,
        answers=body.answers,
        extracted_metadata=body.extracted_metadata,
        base=base,
        marks=body.marks,
    )
    return {"success": True, "message": "Question created", "data": question}


@router.get("/questions/{question_id}")
async def get_question(request: Request, question_id: str):
    question = await get_container(request).questions.get_question_by_id(question_id)
    return {"success": True, "data": question}


@router.patch("/questions/{question_id}")
async def update_question(
    request: Request,
    question_id: str,
    body: Dict[str, Any] = Body(...),
    expected_version: Optional[int] = None,
):
    question = await get_container(request).questions.update_question(
        question_id, body, expected_version=expected_version
    )
    return {"success": True, "message": "Question updated", "data": question}


@router.delete("/questions/{question_id}")
async def delete_question(request: Request, question_id: str):
    deleted = await get_container(request).questions.delete_question(question_id)
    return {"success": True, "deleted": deleted}


@router.get("/subjects/{subject_id}/questions")
async def list_questions(
    request: Request,
    subject_id: str,
    level: Optional[str] = None,
    group: Optional[str] = None,
    limit: int = 100,
):
    questions = await get_container(request).questions.list_questions(
        subject_id, level=level, group=group, limit=limit
    )
    return {"success": True, "count": len(questions), "data": questions}


@router.post("/search")
async def search(request: Request, body: SearchRequest):
    """Semantic search over question or topic embeddings.

    With `hydrate` set (questions only) each hit carries the full record.
    """
    container = get_container(request)
    if body.hydrate and body.kind == "question":
        hits = await container.questions.find_similar_questions(
            body.query, top_k=body.top_k, subject_id=body.subject_id
        )
        return {"results": hits, "count": len(hits)}

    filters = {"subject_id": body.subject_id} if body.subject_id else None
    results = await container.search.search(
        body.query, top_k=body.top_k, kind=body.kind, filters=filters
    )
    return SearchResponse(results=results, count=len(results))


@router.post("/subjects/{subject_id}/topic-index")
async def index_topics(request: Request, subject_id: str):
    indexed = await get_container(request).topic_index.index_subject(subject_id)
    return {"success": True, "indexed": indexed}


@router.post("/maintenance/reconcile")
async def reconcile(request: Request):
    report = await get_container(request).questions.reconcile_embeddings()
    return {"success": True, "data": report.model_dump()}


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Builds the API. Without a container one is built from the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = container is None
        app.state.container = container or ServiceContainer.from_settings(
            Settings.from_env()
        )
        await app.state.container.startup()
        yield
        if owned:
            await app.state.container.close()

    app = FastAPI(
        lifespan=lifespan,
        title="Creative Question API",
        description="""
    ## Creative Question API

    Ingestion and retrieval of Bangladeshi HSC/SSC creative (Srijonshil) questions.

    ### Features:
    * Extract questions and answers from page images with a vision model
    * Store questions in MongoDB with their embeddings in Qdrant
    * Semantic search over questions and subject topics

    ### Documentation:
    * **Swagger UI**: [/docs](/docs)
    * **ReDoc**: [/redoc](/redoc)
    """,
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.include_router(router)
    return app


app = create_app()
