"""Persistence gateway: the engine's only way to reach the store.

``PersistenceGateway`` is the contract; ``SqlGateway`` implements it with
SQLAlchemy, one transaction per call. Driver errors surface as
``PersistenceFailure`` (``PromotionFailure`` for the promotion call).
"""

from __future__ import annotations
import abc
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import models
from .errors import AssessmentNotFound, AttemptNotFound, PersistenceFailure, PromotionFailure
from .schemas import (
	Answer,
	Assessment,
	AssessmentKind,
	Attempt,
	Level,
	Question,
	QuestionType,
	UPLOAD_TYPES,
)
from .settings import settings

logger = logging.getLogger(__name__)


class PersistenceGateway(abc.ABC):
	@abc.abstractmethod
	async def get_assessment(self, assessment_id: str) -> Assessment:
		"""Assessment with its questions; raises AssessmentNotFound."""

	@abc.abstractmethod
	async def list_attempts(self, student_id: str, assessment_id: str) -> List[Attempt]:
		"""Attempts for (student, assessment), newest attempt_number first."""

	@abc.abstractmethod
	async def get_attempt(self, attempt_id: str) -> Attempt:
		"""Raises AttemptNotFound."""

	@abc.abstractmethod
	async def create_attempt(self, student_id: str, assessment_id: str, attempt_number: int, started_at: datetime) -> Attempt:
		...

	@abc.abstractmethod
	async def save_answers(self, answers: Sequence[Answer], submitted_at: datetime) -> None:
		"""Write one row per answer, replacing any earlier row for the same (attempt, question)."""

	@abc.abstractmethod
	async def finalize_attempt(self, attempt: Attempt) -> Optional[Attempt]:
		"""Persist the submitted fields. Returns None when the attempt was already submitted."""

	@abc.abstractmethod
	async def get_level(self, level_id: str) -> Optional[Level]:
		...

	@abc.abstractmethod
	async def promote_student_to_next_level(self, student_id: str, current_level_id: str, attempt_id: str) -> Optional[str]:
		"""Atomic backend-side promotion. Returns the next level id, or None at the top level."""


def _aware(value: Optional[datetime]) -> Optional[datetime]:
	# SQLite hands back naive datetimes even for timezone-aware columns
	if value is not None and value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value


def _to_question(row: models.Question) -> Question:
	return Question(
		id=row.id,
		type=QuestionType(row.type),
		prompt=row.question_text or {},
		options=row.options or [],
		points=row.points,
		order=row.display_order,
	)


def _to_assessment(row: models.Assessment) -> Assessment:
	kind = AssessmentKind(row.kind)
	passing = row.passing_score
	# Only a missing threshold takes the default; a stored 0 means "always pass", unlike a falsy check
	if passing is None:
		passing = settings.exam_passing_score if kind is AssessmentKind.EXAM else settings.exercise_passing_score
	max_attempts = row.max_attempts
	if kind is AssessmentKind.EXAM and not max_attempts:
		max_attempts = settings.exam_max_attempts
	return Assessment(
		id=row.id,
		kind=kind,
		title=row.title or "",
		passing_score_percent=passing,
		time_limit_seconds=row.time_limit_seconds or None,
		max_attempts=max_attempts or None,
		level_id=row.level_id,
		questions=[_to_question(q) for q in row.questions],
	)


def _to_attempt(row: models.Attempt) -> Attempt:
	return Attempt(
		id=row.id,
		student_id=row.student_id,
		assessment_id=row.assessment_id,
		attempt_number=row.attempt_number,
		started_at=_aware(row.started_at),
		submitted_at=_aware(row.submitted_at),
		total_score_percent=row.total_score,
		passed=row.passed,
		promoted_to_level_id=row.promoted_to_level_id,
	)


def _to_level(row: models.Level) -> Level:
	names = {lang: getattr(row, f"name_{lang}") for lang in ("nl", "en", "ar") if getattr(row, f"name_{lang}")}
	return Level(id=row.id, name=row.name, names=names, display_order=row.display_order)


def _answer_columns(answer: Answer, question_type: Optional[str]) -> dict:
	value = answer.value
	columns = {"answer_text": None, "answer_data": None, "file_url": None}
	if value is None:
		return columns
	if isinstance(value, list):
		columns["answer_data"] = {"selected": list(value)}
	elif question_type is not None and QuestionType(question_type) in UPLOAD_TYPES:
		columns["file_url"] = value
	else:
		columns["answer_text"] = value
	return columns


class SqlGateway(PersistenceGateway):
	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory

	@contextmanager
	def _transaction(self, operation: str, failure: type = PersistenceFailure) -> Iterator[Session]:
		try:
			with self._session_factory() as db:
				with db.begin():
					yield db
		except SQLAlchemyError as exc:
			logger.error("%s failed: %s", operation, exc)
			raise failure(operation, str(exc)) from exc

	async def get_assessment(self, assessment_id: str) -> Assessment:
		with self._transaction("get_assessment") as db:
			row = db.get(models.Assessment, assessment_id)
			if row is None:
				raise AssessmentNotFound(assessment_id)
			return _to_assessment(row)

	async def list_attempts(self, student_id: str, assessment_id: str) -> List[Attempt]:
		with self._transaction("list_attempts") as db:
			rows = db.execute(
				select(models.Attempt)
				.where(models.Attempt.student_id == student_id, models.Attempt.assessment_id == assessment_id)
				.order_by(models.Attempt.attempt_number.desc())
			).scalars().all()
			return [_to_attempt(r) for r in rows]

	async def get_attempt(self, attempt_id: str) -> Attempt:
		with self._transaction("get_attempt") as db:
			row = db.get(models.Attempt, attempt_id)
			if row is None:
				raise AttemptNotFound(attempt_id)
			return _to_attempt(row)

	async def create_attempt(self, student_id: str, assessment_id: str, attempt_number: int, started_at: datetime) -> Attempt:
		with self._transaction("create_attempt") as db:
			row = models.Attempt(
				student_id=student_id,
				assessment_id=assessment_id,
				attempt_number=attempt_number,
				started_at=started_at,
				time_spent_seconds=0,
			)
			db.add(row)
			db.flush()
			return _to_attempt(row)

	async def save_answers(self, answers: Sequence[Answer], submitted_at: datetime) -> None:
		if not answers:
			return
		with self._transaction("save_answers") as db:
			question_ids = [a.question_id for a in answers]
			types = dict(
				db.execute(select(models.Question.id, models.Question.type).where(models.Question.id.in_(question_ids))).all()
			)
			for answer in answers:
				row = db.execute(
					select(models.StudentAnswer).where(
						models.StudentAnswer.attempt_id == answer.attempt_id,
						models.StudentAnswer.question_id == answer.question_id,
					)
				).scalar_one_or_none()
				if row is None:
					row = models.StudentAnswer(attempt_id=answer.attempt_id, question_id=answer.question_id)
					db.add(row)
				row.student_id = answer.student_id
				for column, value in _answer_columns(answer, types.get(answer.question_id)).items():
					setattr(row, column, value)
				row.is_correct = answer.is_correct
				row.score = answer.score
				row.feedback = answer.feedback
				row.submitted_at = submitted_at

	async def finalize_attempt(self, attempt: Attempt) -> Optional[Attempt]:
		with self._transaction("finalize_attempt") as db:
			result = db.execute(
				update(models.Attempt)
				.where(models.Attempt.id == attempt.id, models.Attempt.submitted_at.is_(None))
				.values(
					submitted_at=attempt.submitted_at,
					time_spent_seconds=attempt.time_spent_seconds or 0,
					total_score=attempt.total_score_percent,
					passed=attempt.passed,
					promoted_to_level_id=attempt.promoted_to_level_id,
				)
			)
			if not result.rowcount:
				return None
			return attempt

	async def get_level(self, level_id: str) -> Optional[Level]:
		with self._transaction("get_level") as db:
			row = db.get(models.Level, level_id)
			return _to_level(row) if row is not None else None

	async def promote_student_to_next_level(self, student_id: str, current_level_id: str, attempt_id: str) -> Optional[str]:
		with self._transaction("promote_student_to_next_level", PromotionFailure) as db:
			row = db.get(models.StudentLevel, student_id)
			# Repeating the call for the same attempt must not skip a second level
			if row is not None and row.promoted_by_attempt_id == attempt_id:
				return row.level_id
			current = db.get(models.Level, current_level_id)
			if current is None:
				raise PromotionFailure("promote_student_to_next_level", f"unknown level {current_level_id}")
			next_level = db.execute(
				select(models.Level)
				.where(models.Level.display_order > current.display_order)
				.order_by(models.Level.display_order.asc())
				.limit(1)
			).scalar_one_or_none()
			if next_level is None:
				return None
			if row is None:
				row = models.StudentLevel(student_id=student_id, level_id=next_level.id)
				db.add(row)
			row.level_id = next_level.id
			row.promoted_by_attempt_id = attempt_id
			logger.info("student=%s promoted %s -> %s by attempt %s", student_id, current.id, next_level.id, attempt_id)
			return next_level.id
