"""Auto-grading for submitted answers.

Functions:
- grade_multiple_choice: the submitted value must equal the single correct option.
- grade_checkbox: the submitted selection must match the correct set exactly; no partial credit.
- grade_question: dispatch by question type; manually-reviewed types stay ungraded (None).
- score_answers: per-question results plus the aggregate percentage.

Manually-reviewed questions earn 0 here but their points still count toward the
maximum, so a mixed assessment reports a provisional score that undercounts
until the open items are reviewed.
"""

from __future__ import annotations
from typing import Iterable, List, Mapping, Optional

from .schemas import AnswerValue, Question, QuestionScore, QuestionType, ScoreReport, is_blank


def _as_selection(value: AnswerValue) -> List[str]:
	# A lone string submitted for a checkbox question counts as a one-item selection
	if value is None:
		return []
	if isinstance(value, str):
		return [value]
	return list(value)


def grade_multiple_choice(question: Question, value: AnswerValue) -> bool:
	if is_blank(value) or not isinstance(value, str):
		return False
	correct = question.correct_values()
	return len(correct) == 1 and value == correct[0]


def grade_checkbox(question: Question, value: AnswerValue) -> bool:
	selected = _as_selection(value)
	if not selected:
		return False
	correct = question.correct_values()
	return len(selected) == len(correct) and set(selected) == set(correct)


def grade_question(question: Question, value: AnswerValue) -> Optional[bool]:
	"""Return True/False for auto-graded types, None when the answer needs manual review."""
	if question.type is QuestionType.MULTIPLE_CHOICE:
		return grade_multiple_choice(question, value)
	if question.type is QuestionType.CHECKBOX:
		return grade_checkbox(question, value)
	return None


def score_answers(questions: Iterable[Question], answers: Mapping[str, AnswerValue]) -> ScoreReport:
	per_question = {}
	earned_total = 0.0
	max_total = 0.0
	for question in sorted(questions, key=lambda q: q.order):
		is_correct = grade_question(question, answers.get(question.id))
		earned = float(question.points) if is_correct else 0.0
		per_question[question.id] = QuestionScore(
			question_id=question.id,
			earned=earned,
			max_points=float(question.points),
			is_correct=is_correct,
		)
		earned_total += earned
		max_total += float(question.points)
	percent = (earned_total / max_total) * 100.0 if max_total > 0 else 0.0
	return ScoreReport(
		per_question=per_question,
		earned_total=earned_total,
		max_total=max_total,
		total_score_percent=percent,
	)
