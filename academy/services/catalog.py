"""Course catalog loader.

Catalog content is edited outside this service.  A course definition is
a JSON document (a file for scripts/seed_catalog.py, or the body of
POST /v1/courses)::

    {
      "course": {"slug": "...", "title": "...", "acronym": "...", "price_cents": 0},
      "modules": [{"title": "...", "lessons": [{"title": "..."}, ...]}, ...],
      "questions": [
        {"text": "...", "options": ["a", "b", "c", "d"],
         "correct": "B", "explanation": "..."},
        ...
      ]
    }

CourseDefinition validates the whole document up front, so nothing that
would only fail at INSERT time reaches the ledger.  Module and lesson
numbers are 1-based positions in the lists.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

from academy.core.errors import ConflictError, ValidationError
from academy.models.course import OPTION_IDS, Course, ExamQuestion, Lesson
from academy.repos.ledger_repo import Ledger

logger = logging.getLogger(__name__)

Text = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _Strict(BaseModel):
    # No int -> str coercion: a numeric title is a mistake, not a title.
    model_config = ConfigDict(strict=True, extra="ignore")


class CourseHeader(_Strict):
    slug: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
    acronym: Annotated[str, StringConstraints(strip_whitespace=True, max_length=32)] = ""
    price_cents: int = Field(default=0, ge=0)
    status: Literal["draft", "published", "retired"] = "published"


class LessonDefinition(_Strict):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]


class ModuleDefinition(_Strict):
    title: str = ""
    lessons: list[LessonDefinition] = Field(default_factory=list)


class QuestionDefinition(_Strict):
    text: Text
    options: list[Text] = Field(min_length=len(OPTION_IDS), max_length=len(OPTION_IDS))
    correct: Literal["A", "B", "C", "D"]
    explanation: str = ""


class CourseDefinition(_Strict):
    course: CourseHeader
    modules: list[ModuleDefinition] = Field(default_factory=list)
    questions: list[QuestionDefinition] = Field(default_factory=list)


def parse_definition(data: object) -> CourseDefinition:
    """Validate a raw catalog document; ValidationError names every bad field."""
    try:
        return CourseDefinition.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"invalid course definition: {problems}") from None


def build_course(
    definition: CourseDefinition,
) -> tuple[Course, list[Lesson], list[ExamQuestion]]:
    header = definition.course
    course = Course.new(
        slug=header.slug,
        title=header.title,
        acronym=header.acronym,
        price_cents=header.price_cents,
        status=header.status,
    )
    lessons = [
        Lesson.new(
            course_id=course.id,
            module_number=m_idx,
            lesson_number=l_idx,
            title=lesson.title,
        )
        for m_idx, module in enumerate(definition.modules, start=1)
        for l_idx, lesson in enumerate(module.lessons, start=1)
    ]
    questions = [
        ExamQuestion.new(
            course_id=course.id,
            text=q.text,
            options=tuple(q.options),
            correct_option_id=q.correct,
            explanation=q.explanation,
        )
        for q in definition.questions
    ]
    return course, lessons, questions


async def load_catalog(ledger: Ledger, definition: CourseDefinition) -> Course:
    """Insert one course with its lessons and question bank."""
    course, lessons, questions = build_course(definition)
    if any(c.slug == course.slug for c in await ledger.list_courses()):
        raise ConflictError(f"course {course.slug!r} is already loaded")

    await ledger.add_course(course)
    for lesson in lessons:
        await ledger.add_lesson(lesson)
    for question in questions:
        await ledger.add_question(question)

    logger.info(
        "Loaded course %s: %d lessons, %d questions",
        course.slug,
        len(lessons),
        len(questions),
    )
    return course


def read_catalog_file(path: str | Path) -> dict:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)
