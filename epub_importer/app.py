from __future__ import annotations

import logging

from fastapi import FastAPI, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from epub_importer.importer import ImportResponse, run_import
from epub_importer.importer_config import ImporterConfig, load_cors_allowed_origins, load_importer_config
from epub_importer.llm_provider import LlmLessonGenerator
from epub_importer.orchestrator import LessonGenerator

logger = logging.getLogger(__name__)

app = FastAPI(title="EPUB Lesson Importer")


@app.middleware("http")
async def api_prefix_alias(request, call_next):
    """Accept both `/path` and `/api/path` for frontend compatibility."""
    if request.scope.get("path", "").startswith("/api/"):
        request.scope["path"] = request.scope["path"][4:]
    return await call_next(request)

IMPORTER_CONFIG = load_importer_config()
CORS_ALLOWED_ORIGINS = load_cors_allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


def _lesson_generator(config: ImporterConfig) -> LessonGenerator:
    return LlmLessonGenerator(config)


def _archive_response(result: ImportResponse) -> Response:
    return Response(
        content=result.archive_bytes or b"",
        status_code=result.status_code,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Import-Status": result.status,
            "X-Import-Lessons": str(result.lesson_count),
        },
    )


@app.get("/", response_class=PlainTextResponse)
def index():
    return "EPUB Importer running"


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.post("/import")
async def import_epub(
    file: UploadFile | None = File(None),
    series_title: str | None = Form(None, alias="seriesTitle"),
    book_title: str | None = Form(None, alias="bookTitle"),
    author: str | None = Form(None),
    target_words: str | None = Form(None, alias="targetWords"),
    max_fragments: str | None = Form(None, alias="maxFragments"),
    start_from: str | None = Form(None, alias="startFrom"),
    provider: str | None = Form(None),
    api_key: str | None = Form(None),
):
    if file is None:
        return JSONResponse(
            status_code=400,
            content={"status": "error", "message": "Missing file.", "warnings": []},
        )

    try:
        config = IMPORTER_CONFIG.with_overrides(provider=provider, api_key=api_key)
    except ValueError as exc:
        return JSONResponse(
            status_code=400,
            content={"status": "error", "message": str(exc), "warnings": []},
        )

    form = {
        "seriesTitle": series_title,
        "bookTitle": book_title,
        "author": author,
        "targetWords": target_words,
        "maxFragments": max_fragments,
        "startFrom": start_from,
    }

    try:
        content = await file.read()
        result = await run_in_threadpool(
            run_import,
            content,
            file.filename or "",
            form,
            _lesson_generator(config),
            config,
        )
    except Exception as exc:
        logger.exception("Import of '%s' failed unexpectedly", file.filename)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": f"Importer error: {exc}", "warnings": []},
        )

    if result.archive_bytes is None:
        return JSONResponse(status_code=result.status_code, content=result.to_dict())

    return _archive_response(result)
