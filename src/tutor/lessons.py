"""
Lesson lookup.

The tutor only needs the lesson title for its system prompt. Lessons come from a
JSON file (LESSONS_FILE) or an in-memory mapping.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import structlog

from src.tutor.config import get_config
from src.tutor.errors import LessonNotFound

logger = structlog.get_logger(__name__)

LessonId = Union[int, str]


@dataclass(frozen=True)
class Lesson:
    id: LessonId
    title: str


def _normalize_id(lesson_id: LessonId) -> str:
    return str(lesson_id).strip()


class LessonContextProvider(ABC):
    @abstractmethod
    async def resolve(self, lesson_id: LessonId) -> Lesson:
        """Return the lesson or raise LessonNotFound."""
        raise NotImplementedError


class InMemoryLessonProvider(LessonContextProvider):
    def __init__(self, lessons: Iterable[Lesson] = ()):
        self._lessons: Dict[str, Lesson] = {_normalize_id(lesson.id): lesson for lesson in lessons}

    def add(self, lesson: Lesson) -> None:
        self._lessons[_normalize_id(lesson.id)] = lesson

    async def resolve(self, lesson_id: LessonId) -> Lesson:
        if lesson_id is None or not _normalize_id(lesson_id):
            raise LessonNotFound(lesson_id)
        lesson = self._lessons.get(_normalize_id(lesson_id))
        if lesson is None:
            raise LessonNotFound(lesson_id)
        return lesson

    def __len__(self) -> int:
        return len(self._lessons)


class JsonLessonProvider(InMemoryLessonProvider):
    """
    Lessons loaded once from a JSON file.

    Accepts either a list of {"id", "title"} objects or a {"lessons": [...]} wrapper.
    Entries without an id or title are skipped.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(self._load(self.path))

    @staticmethod
    def _load(path: Path) -> Iterable[Lesson]:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("lessons", [])

        lessons = []
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            lesson_id = entry.get("id")
            title = str(entry.get("title") or "").strip()
            if lesson_id is None or not title:
                logger.warning("Skipping malformed lesson entry", entry=entry)
                continue
            lessons.append(Lesson(id=lesson_id, title=title))

        logger.info("Lessons loaded", path=str(path), count=len(lessons))
        return lessons


def create_lesson_provider(
    config: Optional[Any] = None,
    *,
    lessons_file: Optional[str] = None,
    extra: Iterable[Lesson] = (),
) -> InMemoryLessonProvider:
    """
    Build the provider selected by configuration.

    `lessons_file` overrides LESSONS_FILE. Lessons in `extra` are added on top
    of the file's lessons (replacing any with the same id).
    """
    if config is None:
        config = get_config()
    path = lessons_file or config.lessons_file
    provider = JsonLessonProvider(path) if path else InMemoryLessonProvider()
    for lesson in extra:
        provider.add(lesson)
    return provider
