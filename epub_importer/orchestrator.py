from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from epub_importer.chunking import Fragment

logger = logging.getLogger(__name__)

LessonGenerator = Callable[[str, str], Any]


class OrchestratorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    PARTIAL_FAILURE = "partial_failure"


TERMINAL_STATES = frozenset({OrchestratorState.COMPLETE, OrchestratorState.PARTIAL_FAILURE})


@dataclass(frozen=True)
class FragmentResult:
    index: int
    lesson: Any


@dataclass(frozen=True)
class FragmentError:
    fragment: int
    error: str

    def to_dict(self) -> dict:
        return {"fragment": self.fragment, "error": self.error}


@dataclass(frozen=True)
class ImportOutcome:
    state: OrchestratorState
    results: list[FragmentResult]
    error: FragmentError | None = None

    @property
    def is_partial(self) -> bool:
        return self.state is OrchestratorState.PARTIAL_FAILURE


def lesson_title(book_title: str, fragment_index: int) -> str:
    return f"{book_title} — Fragment {fragment_index}"


@dataclass
class FragmentOrchestrator:
    """Sequential generation over an operative fragment sequence.

    Fragments are attempted strictly in order. The first failing call moves
    the machine to PARTIAL_FAILURE with the results earned so far; nothing
    is retried or skipped.
    """

    fragments: list[Fragment]
    generator: LessonGenerator
    book_title: str
    state: OrchestratorState = OrchestratorState.IDLE
    results: list[FragmentResult] = field(default_factory=list)
    error: FragmentError | None = None
    _position: int = field(default=0, init=False, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def step(self) -> OrchestratorState:
        if self.is_finished:
            return self.state

        self.state = OrchestratorState.RUNNING
        if self._position >= len(self.fragments):
            self.state = OrchestratorState.COMPLETE
            return self.state

        fragment = self.fragments[self._position]
        title = lesson_title(self.book_title, fragment.index)
        logger.info("Generating lesson for fragment %s (%s words)", fragment.index, fragment.word_count)
        try:
            lesson = self.generator(fragment.text, title)
        except Exception as exc:
            logger.warning("Lesson generation failed for fragment %s: %s", fragment.index, exc)
            self.error = FragmentError(fragment=fragment.index, error=str(exc) or exc.__class__.__name__)
            self.state = OrchestratorState.PARTIAL_FAILURE
            return self.state

        self.results.append(FragmentResult(index=fragment.index, lesson=lesson))
        logger.info("Generated lesson for fragment %s", fragment.index)
        self._position += 1
        if self._position >= len(self.fragments):
            self.state = OrchestratorState.COMPLETE
        return self.state

    def run(self) -> ImportOutcome:
        while not self.is_finished:
            self.step()
        return self.outcome()

    def outcome(self) -> ImportOutcome:
        if not self.is_finished:
            raise RuntimeError(f"Orchestrator has not finished (state: {self.state.value}).")
        return ImportOutcome(state=self.state, results=list(self.results), error=self.error)
