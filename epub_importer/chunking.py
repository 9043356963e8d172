from __future__ import annotations

from dataclasses import asdict, dataclass

from epub_importer.importer_config import (
    DEFAULT_MAX_FRAGMENTS,
    DEFAULT_START_FROM,
    DEFAULT_TARGET_WORDS,
)


@dataclass(frozen=True)
class Fragment:
    index: int
    text: str
    word_count: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FragmentWindow:
    fragments: list[Fragment]
    total_fragments: int
    start_from: int
    max_fragments: int

    @property
    def indices(self) -> list[int]:
        return [fragment.index for fragment in self.fragments]


def _validate_chunk_params(target_words: int, start_from: int, max_fragments: int) -> str | None:
    if target_words <= 0:
        return "Target words per fragment must be greater than zero."
    if start_from < 1:
        return "Start fragment must be 1 or greater."
    if max_fragments < 1:
        return "Maximum fragments must be 1 or greater."
    return None


def chunk_words(text: str, target_words: int = DEFAULT_TARGET_WORDS) -> list[Fragment]:
    """Split text into consecutive windows of target_words whitespace-delimited words.

    Only the last fragment may be shorter; empty or whitespace-only text
    yields no fragments.
    """
    error = _validate_chunk_params(target_words, DEFAULT_START_FROM, DEFAULT_MAX_FRAGMENTS)
    if error:
        raise ValueError(error)

    words = text.split()
    fragments: list[Fragment] = []
    for offset in range(0, len(words), target_words):
        window = words[offset : offset + target_words]
        fragments.append(
            Fragment(
                index=len(fragments) + 1,
                text=" ".join(window),
                word_count=len(window),
            )
        )
    return fragments


def select_fragments(
    fragments: list[Fragment],
    *,
    start_from: int = DEFAULT_START_FROM,
    max_fragments: int = DEFAULT_MAX_FRAGMENTS,
) -> FragmentWindow:
    error = _validate_chunk_params(DEFAULT_TARGET_WORDS, start_from, max_fragments)
    if error:
        raise ValueError(error)

    offset = start_from - 1
    return FragmentWindow(
        fragments=list(fragments[offset : offset + max_fragments]),
        total_fragments=len(fragments),
        start_from=start_from,
        max_fragments=max_fragments,
    )


def fragment_text(
    text: str,
    *,
    target_words: int = DEFAULT_TARGET_WORDS,
    start_from: int = DEFAULT_START_FROM,
    max_fragments: int = DEFAULT_MAX_FRAGMENTS,
) -> FragmentWindow:
    error = _validate_chunk_params(target_words, start_from, max_fragments)
    if error:
        raise ValueError(error)
    return select_fragments(
        chunk_words(text, target_words),
        start_from=start_from,
        max_fragments=max_fragments,
    )
