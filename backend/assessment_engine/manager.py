"""Attempt lifecycle: open, collect answers, submit, score, resolve, persist.

``AttemptManager`` owns the operations against the store. ``AttemptSession``
holds one live attempt (collected answers, countdown, explicit state) for the
caller that drives it.
"""

from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .countdown import CountdownController, CountdownState, TickCallback
from .errors import AttemptEngineError, AttemptLimitExceeded, CountdownAlreadyStarted, PersistenceFailure
from .gateway import PersistenceGateway
from .outcome import OutcomeResolver, PromotionContext
from .schemas import Answer, AnswerValue, Assessment, Attempt, AttemptResult, AssessmentKind, ScoreReport
from .scoring import score_answers
from .settings import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class AttemptState(str, Enum):
	IN_PROGRESS = "in_progress"
	SCORING = "scoring"
	RESOLVED = "resolved"
	PERSISTED = "persisted"


class AttemptManager:
	def __init__(
		self,
		gateway: PersistenceGateway,
		*,
		clock: Callable[[], datetime] = _utcnow,
		resolver: Optional[OutcomeResolver] = None,
		enforce_exercise_max_attempts: Optional[bool] = None,
	) -> None:
		self.gateway = gateway
		self.clock = clock
		self.resolver = resolver or OutcomeResolver(gateway)
		if enforce_exercise_max_attempts is None:
			enforce_exercise_max_attempts = settings.enforce_exercise_max_attempts
		self.enforce_exercise_max_attempts = enforce_exercise_max_attempts
		self._locks: Dict[str, asyncio.Lock] = {}
		self._results: Dict[str, AttemptResult] = {}
		# Answers an attempt was first scored with; a retried submit reuses them
		self._scored: Dict[str, Dict[str, AnswerValue]] = {}

	def attempt_cap(self, assessment: Assessment) -> Optional[int]:
		if assessment.is_exam or self.enforce_exercise_max_attempts:
			return assessment.max_attempts
		return None

	async def list_attempts(self, student_id: str, assessment_id: str) -> List[Attempt]:
		return await self.gateway.list_attempts(student_id, assessment_id)

	async def open_attempt(
		self,
		student_id: str,
		assessment_id: str,
		held_attempt_id: Optional[str] = None,
		*,
		assessment: Optional[Assessment] = None,
	) -> Attempt:
		if assessment is None:
			assessment = await self.gateway.get_assessment(assessment_id)
		existing = await self.gateway.list_attempts(student_id, assessment_id)

		if held_attempt_id is not None:
			for attempt in existing:
				if attempt.id == held_attempt_id and not attempt.is_submitted:
					return attempt

		cap = self.attempt_cap(assessment)
		if cap is not None and len(existing) >= cap:
			logger.info("attempt limit reached student=%s assessment=%s cap=%s", student_id, assessment_id, cap)
			raise AttemptLimitExceeded(student_id, assessment_id, cap)

		attempt_number = max((a.attempt_number for a in existing), default=0) + 1
		attempt = await self.gateway.create_attempt(student_id, assessment_id, attempt_number, self.clock())
		logger.info("opened attempt %s (#%d) student=%s assessment=%s", attempt.id, attempt_number, student_id, assessment_id)
		return attempt

	async def submit_attempt(
		self,
		attempt: Attempt,
		answers: Mapping[str, AnswerValue],
		*,
		assessment: Optional[Assessment] = None,
		language: Optional[str] = None,
		on_transition: Optional[Callable[[AttemptState], Any]] = None,
	) -> AttemptResult:
		"""Score, resolve and persist an attempt once; later calls return the first result."""
		lock = self._locks.setdefault(attempt.id, asyncio.Lock())
		async with lock:
			cached = self._results.get(attempt.id)
			if cached is not None:
				return cached

			stored = await self.gateway.get_attempt(attempt.id)
			if assessment is None:
				assessment = await self.gateway.get_assessment(stored.assessment_id)
			if stored.is_submitted:
				result = await self._result_from_stored(stored, assessment, language)
				self._results[attempt.id] = result
				return result

			_notify(on_transition, AttemptState.SCORING)
			# Promotion may already have been committed by an earlier try
			answers = self._scored.setdefault(attempt.id, dict(answers))
			report = score_answers(assessment.questions, answers)
			submitted_at = self.clock()
			await self.gateway.save_answers(_answer_rows(stored, assessment, answers, report), submitted_at)

			context = None
			if assessment.kind is AssessmentKind.EXAM:
				context = PromotionContext(student_id=stored.student_id, level_id=assessment.level_id, attempt_id=stored.id)
			outcome = await self.resolver.resolve(
				report.total_score_percent, assessment.passing_score_percent, assessment.kind, context
			)
			_notify(on_transition, AttemptState.RESOLVED)

			final = stored.model_copy(update={
				"submitted_at": submitted_at,
				"total_score_percent": report.total_score_percent,
				"passed": outcome.passed,
				"promoted_to_level_id": outcome.promoted_to_level_id,
			})
			written = await self.gateway.finalize_attempt(final)
			if written is None:
				# Someone else finished this attempt first; theirs is the record
				logger.info("attempt %s was already submitted elsewhere", attempt.id)
				final = await self.gateway.get_attempt(attempt.id)
				result = await self._result_from_stored(final, assessment, language)
			else:
				result = AttemptResult(
					attempt_id=final.id,
					attempt_number=final.attempt_number,
					score_percent=report.total_score_percent,
					passed=outcome.passed,
					promoted_to_level_id=outcome.promoted_to_level_id,
					promoted_to_level_name=await self._level_name(outcome.promoted_to_level_id, language),
					requires_manual_review=report.requires_manual_review,
					submitted_at=submitted_at,
				)
			_notify(on_transition, AttemptState.PERSISTED)
			logger.info(
				"submitted attempt %s score=%.2f passed=%s promoted_to=%s",
				attempt.id, result.score_percent, result.passed, result.promoted_to_level_id,
			)
			self._results[attempt.id] = result
			self._scored.pop(attempt.id, None)
			return result

	async def stored_result(self, stored: Attempt, assessment: Assessment, language: Optional[str] = None) -> Optional[AttemptResult]:
		"""Result of an attempt submitted earlier, or None while it is still open."""
		if not stored.is_submitted:
			return None
		cached = self._results.get(stored.id)
		if cached is not None:
			return cached
		return await self._result_from_stored(stored, assessment, language)

	async def _result_from_stored(self, stored: Attempt, assessment: Assessment, language: Optional[str]) -> AttemptResult:
		return AttemptResult(
			attempt_id=stored.id,
			attempt_number=stored.attempt_number,
			score_percent=stored.total_score_percent or 0.0,
			passed=bool(stored.passed),
			promoted_to_level_id=stored.promoted_to_level_id,
			promoted_to_level_name=await self._level_name(stored.promoted_to_level_id, language),
			requires_manual_review=assessment.requires_manual_review,
			submitted_at=stored.submitted_at,
		)

	async def _level_name(self, level_id: Optional[str], language: Optional[str]) -> Optional[str]:
		if level_id is None:
			return None
		try:
			level = await self.gateway.get_level(level_id)
		except PersistenceFailure:
			# The attempt is already recorded; only the display name is missing
			logger.warning("could not load level %s for display", level_id, exc_info=True)
			return None
		if level is None:
			return None
		return level.localized_name(language or settings.default_language)


def _notify(callback: Optional[Callable[[AttemptState], Any]], state: AttemptState) -> None:
	if callback is not None:
		callback(state)


def _answer_rows(attempt: Attempt, assessment: Assessment, answers: Mapping[str, AnswerValue], report: ScoreReport) -> List[Answer]:
	rows = []
	for question in assessment.questions:
		graded = report.per_question[question.id]
		rows.append(Answer(
			question_id=question.id,
			attempt_id=attempt.id,
			student_id=attempt.student_id,
			value=answers.get(question.id),
			is_correct=graded.is_correct,
			# Manually-reviewed answers keep score/feedback empty until review
			score=graded.earned if graded.is_correct is not None else None,
		))
	return rows


class AttemptSession:
	"""One live attempt: the answers collected so far, its countdown and its state."""

	def __init__(
		self,
		manager: AttemptManager,
		attempt: Attempt,
		assessment: Assessment,
		*,
		countdown_factory: Callable[[], CountdownController] = CountdownController,
	) -> None:
		self.manager = manager
		self.attempt = attempt
		self.assessment = assessment
		self.state = AttemptState.PERSISTED if attempt.is_submitted else AttemptState.IN_PROGRESS
		self.result: Optional[AttemptResult] = None
		self.language: Optional[str] = None
		self.opened_at = manager.clock()
		self._answers: Dict[str, AnswerValue] = {}
		self._countdown_factory = countdown_factory
		self._countdown: Optional[CountdownController] = None
		# Set once scoring starts; answers stay fixed from then on, even if persisting fails
		self.answers_frozen = attempt.is_submitted

	@property
	def answers(self) -> Dict[str, AnswerValue]:
		return dict(self._answers)

	@property
	def countdown(self) -> Optional[CountdownController]:
		return self._countdown

	@property
	def expired(self) -> bool:
		return self._countdown is not None and self._countdown.state is CountdownState.EXPIRED

	@property
	def remaining_seconds(self) -> Optional[int]:
		if self._countdown is None:
			return None
		return self._countdown.remaining

	@property
	def accepting_answers(self) -> bool:
		return self.state is AttemptState.IN_PROGRESS and not self.expired and not self.answers_frozen

	def record_answer(self, question_id: str, value: AnswerValue) -> bool:
		"""Store or overwrite an answer. Writes after expiry or once scoring started are ignored."""
		self.assessment.question(question_id)
		if not self.accepting_answers:
			logger.debug("ignored late answer attempt=%s question=%s state=%s", self.attempt.id, question_id, self.state.value)
			return False
		self._answers[question_id] = value
		return True

	def start_countdown(self, on_tick: Optional[TickCallback] = None) -> Optional[asyncio.Task]:
		budget = self.assessment.time_limit_seconds
		if not budget:
			return None
		if self._countdown is not None:
			raise CountdownAlreadyStarted(f"attempt {self.attempt.id} already has a countdown")
		self._countdown = self._countdown_factory()
		return self._countdown.start(budget, on_tick, self._on_expire)

	async def _on_expire(self) -> None:
		logger.info("time is up for attempt %s, submitting collected answers", self.attempt.id)
		try:
			await self.submit()
		except AttemptEngineError:
			# The student is never shown an error for a timed-out submission; they may resubmit
			logger.exception("auto-submit failed for attempt %s", self.attempt.id)

	def _transition(self, state: AttemptState) -> None:
		self.state = state
		if state is AttemptState.SCORING:
			self.answers_frozen = True

	async def submit(self, answers: Optional[Mapping[str, AnswerValue]] = None) -> AttemptResult:
		if self.result is not None:
			return self.result
		if answers and self.accepting_answers:
			for question_id, value in answers.items():
				self.assessment.question(question_id)
				self._answers[question_id] = value
		try:
			result = await self.manager.submit_attempt(
				self.attempt,
				dict(self._answers),
				assessment=self.assessment,
				language=self.language,
				on_transition=self._transition,
			)
		except PersistenceFailure:
			if self.state is not AttemptState.PERSISTED:
				self.state = AttemptState.IN_PROGRESS
			raise
		self.result = result
		self.state = AttemptState.PERSISTED
		self.attempt = self.attempt.model_copy(update={
			"submitted_at": result.submitted_at,
			"total_score_percent": result.score_percent,
			"passed": result.passed,
			"promoted_to_level_id": result.promoted_to_level_id,
		})
		if self._countdown is not None:
			self._countdown.cancel()
		return result
