from __future__ import annotations

import io
import json
import re
import zipfile
from typing import Any

from epub_importer.orchestrator import ImportOutcome
from epub_importer.schema_models import validate_import_error_record

ERROR_ENTRY_NAME = "import_error.json"
ARCHIVE_COMPRESSION_LEVEL = 6
SLUG_MAX_LENGTH = 80
SLUG_FALLBACK = "book"
ARCHIVE_ENTRY_TIMESTAMP = (1980, 1, 1, 0, 0, 0)

_QUOTE_PATTERN = re.compile("['\"‘’‚‛“”„‟]")
_NON_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    slug = value.lower().strip()
    slug = _QUOTE_PATTERN.sub("", slug)
    slug = _NON_SLUG_PATTERN.sub("_", slug)
    slug = slug.strip("_")[:SLUG_MAX_LENGTH]
    return slug or SLUG_FALLBACK


def archive_filename(series_title: str, book_title: str) -> str:
    return f"{slugify(series_title)}_{slugify(book_title)}.zip"


def lesson_entry_name(fragment_index: int) -> str:
    return f"lesson_{fragment_index}.json"


def _entry_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ARCHIVE_ENTRY_TIMESTAMP)
    info.compress_type = zipfile.ZIP_DEFLATED
    return info


def _json_bytes(payload: Any) -> bytes:
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def build_lesson_archive(outcome: ImportOutcome) -> bytes:
    """Serialize generated lessons, plus the error record on partial failure, into zip bytes."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer,
        "w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=ARCHIVE_COMPRESSION_LEVEL,
    ) as archive:
        for result in outcome.results:
            archive.writestr(
                _entry_info(lesson_entry_name(result.index)),
                _json_bytes(result.lesson),
                compresslevel=ARCHIVE_COMPRESSION_LEVEL,
            )

        if outcome.error is not None:
            record = validate_import_error_record(outcome.error.to_dict())
            archive.writestr(
                _entry_info(ERROR_ENTRY_NAME),
                _json_bytes(record),
                compresslevel=ARCHIVE_COMPRESSION_LEVEL,
            )

    return buffer.getvalue()
