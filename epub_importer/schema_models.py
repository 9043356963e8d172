from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from epub_importer.importer_config import (
    DEFAULT_MAX_FRAGMENTS,
    DEFAULT_START_FROM,
    DEFAULT_TARGET_WORDS,
)

DEFAULT_SERIES_TITLE = "Standalone"
DEFAULT_AUTHOR = "Unknown"


class ImportOptionsModel(BaseModel):
    """Per-request import parameters, accepted under their form-field names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    series_title: str = Field(default=DEFAULT_SERIES_TITLE, alias="seriesTitle")
    book_title: str | None = Field(default=None, alias="bookTitle")
    author: str = Field(default=DEFAULT_AUTHOR, alias="author")
    target_words: int = Field(default=DEFAULT_TARGET_WORDS, alias="targetWords", ge=1)
    max_fragments: int = Field(default=DEFAULT_MAX_FRAGMENTS, alias="maxFragments")
    start_from: int = Field(default=DEFAULT_START_FROM, alias="startFrom")

    @field_validator("series_title", mode="before")
    @classmethod
    def _default_series_title(cls, value: Any) -> Any:
        return value if isinstance(value, str) and value.strip() else DEFAULT_SERIES_TITLE

    @field_validator("author", mode="before")
    @classmethod
    def _default_author(cls, value: Any) -> Any:
        return value if isinstance(value, str) and value.strip() else DEFAULT_AUTHOR

    @field_validator("book_title", mode="before")
    @classmethod
    def _blank_book_title(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("max_fragments", "start_from", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)


class ImportErrorRecordModel(BaseModel):
    """Error entry written next to the lessons when generation stops early."""

    model_config = ConfigDict(extra="forbid")

    fragment: int = Field(ge=1)
    error: str


def validate_import_options(payload: dict[str, Any]) -> ImportOptionsModel:
    """Validate form values, treating missing or blank entries as defaults."""

    cleaned = {key: value for key, value in payload.items() if value is not None and value != ""}
    return ImportOptionsModel.model_validate(cleaned)


def validate_import_error_record(payload: dict[str, Any]) -> dict[str, Any]:
    return ImportErrorRecordModel.model_validate(payload).model_dump()


def import_options_json_schema() -> dict[str, Any]:
    return ImportOptionsModel.model_json_schema(by_alias=True)
