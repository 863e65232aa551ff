from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

OPTION_IDS = ("A", "B", "C", "D")


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    acronym: str = ""
    price_cents: int = 0
    status: str = "published"  # draft|published|retired

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        acronym: str = "",
        price_cents: int = 0,
        status: str = "published",
    ) -> Course:
        return Course(
            id=uuid4(),
            slug=slug,
            title=title,
            acronym=acronym,
            price_cents=price_cents,
            status=status,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    course_id: UUID
    module_number: int
    lesson_number: int
    title: str

    @staticmethod
    def new(
        *, course_id: UUID, module_number: int, lesson_number: int, title: str
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            course_id=course_id,
            module_number=module_number,
            lesson_number=lesson_number,
            title=title,
        )


@dataclass(frozen=True, slots=True)
class QuestionOption:
    id: str  # A|B|C|D
    text: str


@dataclass(frozen=True, slots=True)
class ExamQuestion:
    """A question in a course's bank.  Always exactly four options."""

    id: UUID
    course_id: UUID
    text: str
    options: tuple[QuestionOption, ...]
    correct_option_id: str
    explanation: str = ""

    @staticmethod
    def new(
        *,
        course_id: UUID,
        text: str,
        options: tuple[str, str, str, str],
        correct_option_id: str,
        explanation: str = "",
    ) -> ExamQuestion:
        if len(options) != len(OPTION_IDS):
            raise ValueError("a question must have exactly 4 options")
        if correct_option_id not in OPTION_IDS:
            raise ValueError(f"correct_option_id must be one of {OPTION_IDS}")
        return ExamQuestion(
            id=uuid4(),
            course_id=course_id,
            text=text,
            options=tuple(
                QuestionOption(id=oid, text=t)
                for oid, t in zip(OPTION_IDS, options, strict=True)
            ),
            correct_option_id=correct_option_id,
            explanation=explanation,
        )
