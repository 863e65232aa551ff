"""Response models shared by several routers, plus domain -> model converters.

Correct options and explanations only ever appear in ResultOut (after
grading); QuestionOut has no field that could carry them.
"""

from __future__ import annotations

from pydantic import BaseModel

from academy.models.certificate import Certificate
from academy.models.course import Course, Lesson
from academy.models.exam import ExamAttempt, ExamResult
from academy.models.progress import Eligibility, Progress


class CourseOut(BaseModel):
    id: str
    slug: str
    title: str
    acronym: str
    price_cents: int


class ProgressOut(BaseModel):
    enrollment_id: str
    completed: int
    total: int
    percentage: int
    all_completed: bool
    completed_lesson_ids: list[str]


class EligibilityOut(BaseModel):
    enrollment_id: str
    all_lessons_completed: bool
    attempts_used: int
    attempts_available: int
    vouchers_purchased: int
    vouchers_unconsumed: int
    open_attempt_id: str | None
    can_attempt_exam: bool
    can_purchase_voucher: bool


class OptionOut(BaseModel):
    id: str
    text: str


class QuestionOut(BaseModel):
    question_id: str
    text: str
    options: list[OptionOut]


class AttemptOut(BaseModel):
    attempt_id: str
    enrollment_id: str
    attempt_number: int
    started_at: int
    submitted_at: int | None
    voucher_id: str | None
    questions: list[QuestionOut]


class FeedbackOut(BaseModel):
    question_id: str
    question_text: str
    selected_option_id: str | None
    correct_option_id: str
    is_correct: bool
    explanation: str


class ResultOut(BaseModel):
    attempt_id: str
    enrollment_id: str
    attempt_number: int
    score: int
    passed: bool
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    submitted_at: int
    already_submitted: bool
    certificate_id: str | None
    verification_id: str | None
    feedback: list[FeedbackOut]


class CertificateOut(BaseModel):
    id: str
    enrollment_id: str
    course_id: str
    verification_id: str
    student_name: str
    course_name: str
    issued_at: int


def course_out(c: Course) -> CourseOut:
    return CourseOut(
        id=str(c.id),
        slug=c.slug,
        title=c.title,
        acronym=c.acronym,
        price_cents=c.price_cents,
    )


def progress_out(p: Progress) -> ProgressOut:
    return ProgressOut(
        enrollment_id=str(p.enrollment_id),
        completed=p.completed,
        total=p.total,
        percentage=p.percentage,
        all_completed=p.all_completed,
        completed_lesson_ids=[str(i) for i in p.completed_lesson_ids],
    )


def eligibility_out(e: Eligibility) -> EligibilityOut:
    return EligibilityOut(
        enrollment_id=str(e.enrollment_id),
        all_lessons_completed=e.all_lessons_completed,
        attempts_used=e.attempts_used,
        attempts_available=e.attempts_available,
        vouchers_purchased=e.vouchers_purchased,
        vouchers_unconsumed=e.vouchers_unconsumed,
        open_attempt_id=str(e.open_attempt_id) if e.open_attempt_id else None,
        can_attempt_exam=e.can_attempt_exam,
        can_purchase_voucher=e.can_purchase_voucher,
    )


def attempt_out(a: ExamAttempt) -> AttemptOut:
    return AttemptOut(
        attempt_id=str(a.id),
        enrollment_id=str(a.enrollment_id),
        attempt_number=a.attempt_number,
        started_at=a.started_at,
        submitted_at=a.submitted_at,
        voucher_id=str(a.voucher_id) if a.voucher_id else None,
        questions=[
            QuestionOut(
                question_id=str(q.question_id),
                text=q.text,
                options=[OptionOut(id=o.id, text=o.text) for o in q.options],
            )
            for q in a.question_set
        ],
    )


def result_out(r: ExamResult) -> ResultOut:
    return ResultOut(
        attempt_id=str(r.attempt_id),
        enrollment_id=str(r.enrollment_id),
        attempt_number=r.attempt_number,
        score=r.score,
        passed=r.passed,
        total_questions=r.total_questions,
        correct_answers=r.correct_answers,
        incorrect_answers=r.incorrect_answers,
        submitted_at=r.submitted_at,
        already_submitted=r.already_submitted,
        certificate_id=str(r.certificate_id) if r.certificate_id else None,
        verification_id=r.verification_id,
        feedback=[
            FeedbackOut(
                question_id=str(f.question_id),
                question_text=f.question_text,
                selected_option_id=f.selected_option_id,
                correct_option_id=f.correct_option_id,
                is_correct=f.is_correct,
                explanation=f.explanation,
            )
            for f in r.feedback
        ],
    )


def certificate_out(c: Certificate) -> CertificateOut:
    return CertificateOut(
        id=str(c.id),
        enrollment_id=str(c.enrollment_id),
        course_id=str(c.course_id),
        verification_id=c.verification_id,
        student_name=c.student_name,
        course_name=c.course_name,
        issued_at=c.issued_at,
    )


class LessonOut(BaseModel):
    id: str
    module_number: int
    lesson_number: int
    title: str


def lesson_out(le: Lesson) -> LessonOut:
    return LessonOut(
        id=str(le.id),
        module_number=le.module_number,
        lesson_number=le.lesson_number,
        title=le.title,
    )
