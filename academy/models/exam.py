from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

from academy.models.course import ExamQuestion, QuestionOption


@dataclass(frozen=True, slots=True)
class FrozenQuestion:
    """A question exactly as it was shown in one attempt.

    Copied out of the bank when the attempt is created; later bank edits
    never reach it.
    """

    question_id: UUID
    text: str
    options: tuple[QuestionOption, ...]
    correct_option_id: str
    explanation: str = ""

    @staticmethod
    def from_bank(question: ExamQuestion) -> FrozenQuestion:
        return FrozenQuestion(
            question_id=question.id,
            text=question.text,
            options=question.options,
            correct_option_id=question.correct_option_id,
            explanation=question.explanation,
        )

    def to_json(self) -> dict:
        return {
            "question_id": str(self.question_id),
            "text": self.text,
            "options": [{"id": o.id, "text": o.text} for o in self.options],
            "correct_option_id": self.correct_option_id,
            "explanation": self.explanation,
        }

    @staticmethod
    def from_json(data: dict) -> FrozenQuestion:
        return FrozenQuestion(
            question_id=UUID(data["question_id"]),
            text=data["text"],
            options=tuple(
                QuestionOption(id=o["id"], text=o["text"]) for o in data["options"]
            ),
            correct_option_id=data["correct_option_id"],
            explanation=data.get("explanation", ""),
        )


@dataclass(frozen=True, slots=True)
class ExamAttempt:
    id: UUID
    enrollment_id: UUID
    attempt_number: int
    question_set: tuple[FrozenQuestion, ...]
    started_at: int
    submitted_at: int | None = None
    score: int | None = None
    passed: bool | None = None
    voucher_id: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.submitted_at is None

    @staticmethod
    def new(
        *,
        enrollment_id: UUID,
        attempt_number: int,
        question_set: tuple[FrozenQuestion, ...],
        started_at: int,
        voucher_id: UUID | None = None,
    ) -> ExamAttempt:
        return ExamAttempt(
            id=uuid4(),
            enrollment_id=enrollment_id,
            attempt_number=attempt_number,
            question_set=question_set,
            started_at=started_at,
            voucher_id=voucher_id,
        )


@dataclass(frozen=True, slots=True)
class ExamAnswer:
    question_id: UUID
    selected_option_id: str


@dataclass(frozen=True, slots=True)
class QuestionFeedback:
    question_id: UUID
    question_text: str
    selected_option_id: str | None
    correct_option_id: str
    is_correct: bool
    explanation: str = ""


@dataclass(frozen=True, slots=True)
class ExamResult:
    attempt_id: UUID
    enrollment_id: UUID
    attempt_number: int
    score: int
    passed: bool
    total_questions: int
    correct_answers: int
    submitted_at: int
    feedback: tuple[QuestionFeedback, ...] = ()
    already_submitted: bool = False
    certificate_id: UUID | None = None
    verification_id: str | None = None

    @property
    def incorrect_answers(self) -> int:
        return self.total_questions - self.correct_answers
