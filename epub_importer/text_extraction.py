from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from epub_importer.epub_reader import EpubArchive

DOCUMENT_SEPARATOR = "\n\n"

_SCRIPT_PATTERN = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_STYLE_PATTERN = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
_BLOCK_CLOSE_PATTERN = re.compile(r"</\s*(?:p|div|br|li|h[1-6])\s*>", re.IGNORECASE)
_LINE_BREAK_PATTERN = re.compile(r"<\s*br\s*/?\s*>", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]+>")
# Tags that only appear once entities are decoded, e.g. "&lt;b&gt;". Requires a letter so "<3" survives.
_DECODED_TAG_PATTERN = re.compile(r"</?[A-Za-z][^<>]*>")
_HORIZONTAL_WHITESPACE_PATTERN = re.compile(r"[^\S\n]+")
_SPACE_AROUND_NEWLINE_PATTERN = re.compile(r" ?\n ?")
_EXCESS_NEWLINES_PATTERN = re.compile(r"\n{3,}")

# Only the entities that matter for prose; &amp; goes last so "&amp;lt;" stays "&lt;".
_ENTITIES = (
    ("&nbsp;", " "),
    ("&#160;", " "),
    ("&#xa0;", " "),
    ("&#xA0;", " "),
    ("&lt;", "<"),
    ("&#60;", "<"),
    ("&gt;", ">"),
    ("&#62;", ">"),
    ("&quot;", '"'),
    ("&#34;", '"'),
    ("&apos;", "'"),
    ("&#39;", "'"),
    ("&#x27;", "'"),
    ("&amp;", "&"),
    ("&#38;", "&"),
)


@dataclass(frozen=True)
class BookText:
    text: str
    documents: list[str]
    empty_documents: list[str]

    @property
    def word_count(self) -> int:
        return len(self.text.split())


def _decode_entities(text: str) -> str:
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    return text


def strip_markup(html: str) -> str:
    """Best-effort plain text from one (X)HTML document.

    Not an HTML parser: script/style blocks are dropped, block closers and
    line breaks become newlines, every other tag is removed, a handful of
    entities are decoded (tags spelled out with entities are removed too) and
    whitespace is collapsed.
    """
    text = _SCRIPT_PATTERN.sub("", html)
    text = _STYLE_PATTERN.sub("", text)
    text = _BLOCK_CLOSE_PATTERN.sub("\n", text)
    text = _LINE_BREAK_PATTERN.sub("\n", text)
    text = _TAG_PATTERN.sub(" ", text)
    text = _decode_entities(text)
    text = _DECODED_TAG_PATTERN.sub(" ", text)
    text = _HORIZONTAL_WHITESPACE_PATTERN.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE_PATTERN.sub("\n", text)
    text = _EXCESS_NEWLINES_PATTERN.sub("\n\n", text)
    return text.strip()


def decode_document(content_bytes: bytes) -> str:
    return content_bytes.decode("utf-8", errors="replace")


def combine_documents(texts: Iterable[str]) -> str:
    return DOCUMENT_SEPARATOR.join(texts)


def extract_book_text(archive: EpubArchive, reading_order: list[str]) -> BookText:
    texts: list[str] = []
    empty_documents: list[str] = []
    for path in reading_order:
        text = strip_markup(decode_document(archive.read(path)))
        if not text:
            empty_documents.append(path)
            continue
        texts.append(text)

    return BookText(
        text=combine_documents(texts),
        documents=list(reading_order),
        empty_documents=empty_documents,
    )
