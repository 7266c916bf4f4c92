"""Automatic correction of a submitted verification.

``grade_verification`` is pure: it reads the questions, the student's raw
answers and the rubric and returns a :class:`GradingResult`. Persisting the
result and guarding against double submission is the caller's job.

Open and practical questions are not really graded. An answer longer than
``OPEN_ANSWER_MIN_LENGTH`` characters gets half the points as a preliminary
score, anything shorter gets zero; the teacher is expected to review both.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .schemas import CorrectedAnswer, GradingResult, Number, Question, QuestionType, RubricBand


logger = logging.getLogger(__name__)

OPEN_ANSWER_MIN_LENGTH = 15
UNCLASSIFIED = "unclassified"

Rubric = Union[Mapping[str, str], Sequence[RubricBand]]

# (score, is_correct, comment)
Outcome = Tuple[Number, bool, str]


def _normalize(text: str) -> str:
	return text.strip().upper()


def _grade_exact(question: Question, answer: str) -> Outcome:
	if _normalize(answer) == _normalize(question.correct_answer):
		return question.points, True, "Exact answer."
	return 0, False, f"Wrong answer. The correct answer was: {question.correct_answer}"


def _grade_open(question: Question, answer: str) -> Outcome:
	if len(answer.strip()) > OPEN_ANSWER_MIN_LENGTH:
		score = math.floor(question.points / 2)
		return (
			score,
			True,
			f"Preliminary automatic score: {score}/{question.points} points. Final grading is up to the teacher.",
		)
	return 0, False, "Insufficient or missing answer. Grade manually."


_STRATEGIES: Dict[QuestionType, Callable[[Question, str], Outcome]] = {
	QuestionType.MULTIPLE_CHOICE: _grade_exact,
	QuestionType.CLOSED: _grade_exact,
	QuestionType.OPEN: _grade_open,
	QuestionType.PRACTICAL: _grade_open,
}


def parse_rubric(rubric: Optional[Rubric]) -> List[RubricBand]:
	"""Turn a ``{"min-max": label}`` mapping into ordered bands.

	Keys are kept in mapping order. Keys that are not two integers separated
	by a dash, or whose bounds are reversed, are skipped.
	"""
	if not rubric:
		return []
	if not isinstance(rubric, Mapping):
		return [band for band in rubric if isinstance(band, RubricBand)]
	bands: List[RubricBand] = []
	for key, label in rubric.items():
		parts = str(key).split("-")
		if len(parts) != 2:
			logger.debug("Skipping malformed rubric range %r", key)
			continue
		try:
			low, high = int(parts[0].strip()), int(parts[1].strip())
		except ValueError:
			logger.debug("Skipping non-numeric rubric range %r", key)
			continue
		if low > high:
			logger.debug("Skipping reversed rubric range %r", key)
			continue
		bands.append(RubricBand(min=low, max=high, label=str(label)))
	return bands


def lookup_grade(percentage: float, rubric: Optional[Rubric]) -> str:
	for band in parse_rubric(rubric):
		if band.min <= percentage <= band.max:
			return band.label
	return UNCLASSIFIED


def compute_percentage(total_score: Number, max_score: Number) -> float:
	if max_score <= 0:
		return 0.0
	percentage = 100.0 * total_score / max_score
	return min(100.0, max(0.0, percentage))


def _answers_by_id(answers: Optional[Mapping[Any, Any]]) -> Dict[str, str]:
	normalized: Dict[str, str] = {}
	for key, value in (answers or {}).items():
		normalized[str(key).strip()] = "" if value is None else str(value)
	return normalized


def grade_question(question: Question, answer: str) -> CorrectedAnswer:
	strategy = _STRATEGIES.get(question.kind)
	if strategy is None:
		logger.warning("Question %s has unsupported type %r; scored 0", question.id, question.type)
		score, is_correct, comment = 0, False, "Unsupported question type."
	else:
		score, is_correct, comment = strategy(question, answer)
	return CorrectedAnswer(
		question_id=question.id,
		answer=answer,
		is_correct=is_correct,
		score=score,
		max_points=question.points,
		comment=comment,
	)


def grade_verification(
	questions: Iterable[Union[Question, Mapping[str, Any]]],
	answers: Optional[Mapping[Any, Any]],
	rubric: Optional[Rubric],
) -> GradingResult:
	by_id = _answers_by_id(answers)
	corrected: List[CorrectedAnswer] = []
	total_score: Number = 0
	max_score: Number = 0
	for raw in questions:
		question = raw if isinstance(raw, Question) else Question.model_validate(raw)
		max_score += question.points
		entry = grade_question(question, by_id.get(str(question.id), ""))
		total_score += entry.score
		corrected.append(entry)

	percentage = compute_percentage(total_score, max_score)
	return GradingResult(
		total_score=total_score,
		max_score=max_score,
		percentage=percentage,
		final_grade=lookup_grade(percentage, rubric),
		corrected_answers=corrected,
	)
