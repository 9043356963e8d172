from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from pydantic import ValidationError

from epub_importer.chunking import fragment_text
from epub_importer.epub_reader import EpubStructureError, read_archive, resolve_reading_order
from epub_importer.importer_config import ImporterConfig
from epub_importer.lesson_archive import archive_filename, build_lesson_archive
from epub_importer.orchestrator import FragmentOrchestrator, LessonGenerator
from epub_importer.schema_models import ImportOptionsModel, validate_import_options
from epub_importer.text_extraction import extract_book_text

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".epub"}
ZIP_MAGIC = b"PK\x03\x04"
DEFAULT_BOOK_TITLE = "Untitled"

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"
STATUS_WARNING = "warning"


@dataclass
class ValidationResult:
    status: str
    message: str
    warnings: list[str]


@dataclass
class ImportResponse:
    status: str
    status_code: int
    message: str
    warnings: list[str] = field(default_factory=list)
    filename: str | None = None
    archive_bytes: bytes | None = None
    lesson_count: int = 0
    total_fragments: int = 0
    error: dict | None = None

    def to_dict(self) -> dict:
        payload = {
            "status": self.status,
            "message": self.message,
            "warnings": self.warnings,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _normalize_extension(filename: str) -> str:
    return PurePosixPath(filename.replace("\\", "/")).suffix.lower().strip()


def validate_upload(filename: str, content_bytes: bytes) -> ValidationResult:
    warnings: list[str] = []
    extension = _normalize_extension(filename)

    if not content_bytes:
        return ValidationResult(
            status=STATUS_ERROR,
            message="Missing file.",
            warnings=warnings,
        )

    if extension not in ALLOWED_EXTENSIONS and not (not extension and content_bytes.startswith(ZIP_MAGIC)):
        warnings.append(f"Unsupported file type '{extension or 'unknown'}'. Supported types: EPUB.")
        return ValidationResult(
            status=STATUS_WARNING,
            message="Unsupported file type.",
            warnings=warnings,
        )

    return ValidationResult(
        status=STATUS_SUCCESS,
        message="File accepted for import.",
        warnings=warnings,
    )


def default_book_title(filename: str) -> str:
    name = PurePosixPath(filename.replace("\\", "/")).name
    title = re.sub(r"\.epub$", "", name, flags=re.IGNORECASE).strip()
    return title or DEFAULT_BOOK_TITLE


def _validation_messages(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item.get('msg', 'invalid value')}")
    return messages


def build_import_options(form: dict[str, Any], config: ImporterConfig) -> ImportOptionsModel:
    payload = {
        "targetWords": config.target_words,
        "maxFragments": config.max_fragments,
        "startFrom": config.start_from,
    }
    payload.update({key: value for key, value in form.items() if value is not None and value != ""})
    return validate_import_options(payload)


def _error_response(message: str, warnings: list[str], status_code: int = 400) -> ImportResponse:
    return ImportResponse(
        status=STATUS_ERROR,
        status_code=status_code,
        message=message,
        warnings=warnings,
    )


def run_import(
    content_bytes: bytes,
    filename: str,
    form: dict[str, Any],
    generator: LessonGenerator,
    config: ImporterConfig,
) -> ImportResponse:
    """Turn an uploaded EPUB into an archive of generated lessons.

    Input and structural problems return an error response before any
    generator call. Generation failures stop at the first failing fragment
    and still return every lesson produced before it.
    """
    validation = validate_upload(filename, content_bytes)
    if validation.status == STATUS_ERROR:
        return _error_response(validation.message, validation.warnings)
    if validation.status == STATUS_WARNING:
        return _error_response(validation.message, validation.warnings, status_code=415)

    try:
        options = build_import_options(form, config)
    except ValidationError as exc:
        return _error_response("Invalid import options.", _validation_messages(exc))

    book_title = options.book_title or default_book_title(filename)
    output_filename = archive_filename(options.series_title, book_title)

    try:
        archive = read_archive(content_bytes)
        reading_order = resolve_reading_order(archive)
    except EpubStructureError as exc:
        logger.info("Rejected EPUB '%s': %s", filename, exc)
        return _error_response(str(exc), [])

    warnings = list(archive.warnings) + list(reading_order.warnings)
    book_text = extract_book_text(archive, reading_order.paths)
    if book_text.empty_documents:
        warnings.append(
            f"Skipped {len(book_text.empty_documents)} documents with no text: {', '.join(book_text.empty_documents)}."
        )
    if len(book_text.text.strip()) < config.min_text_chars:
        return _error_response(
            "Extracted text is empty or too short to import.",
            warnings + [f"Extracted {len(book_text.text.strip())} characters; at least {config.min_text_chars} required."],
            status_code=422,
        )

    window = fragment_text(
        book_text.text,
        target_words=options.target_words,
        start_from=options.start_from,
        max_fragments=options.max_fragments,
    )
    if not window.fragments:
        warnings.append(
            f"Start fragment {options.start_from} is beyond the {window.total_fragments} available fragments."
        )

    logger.info(
        "Importing '%s' by %s (%s): %s documents, %s words, fragments %s of %s",
        book_title,
        options.author,
        options.series_title,
        len(reading_order.paths),
        book_text.word_count,
        window.indices,
        window.total_fragments,
    )

    outcome = FragmentOrchestrator(
        fragments=window.fragments,
        generator=generator,
        book_title=book_title,
    ).run()
    archive_bytes = build_lesson_archive(outcome)

    if outcome.is_partial and outcome.error is not None:
        return ImportResponse(
            status=STATUS_PARTIAL,
            status_code=206,
            message=f"Import stopped at fragment {outcome.error.fragment}.",
            warnings=warnings,
            filename=output_filename,
            archive_bytes=archive_bytes,
            lesson_count=len(outcome.results),
            total_fragments=window.total_fragments,
            error=outcome.error.to_dict(),
        )

    return ImportResponse(
        status=STATUS_SUCCESS,
        status_code=200,
        message=f"Imported {len(outcome.results)} fragments.",
        warnings=warnings,
        filename=output_filename,
        archive_bytes=archive_bytes,
        lesson_count=len(outcome.results),
        total_fragments=window.total_fragments,
    )
