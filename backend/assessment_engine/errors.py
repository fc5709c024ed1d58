from __future__ import annotations
from typing import Optional


class AttemptEngineError(Exception):
	"""Base class for everything the attempt engine raises on purpose."""


class AttemptLimitExceeded(AttemptEngineError):
	"""The student has used every attempt the assessment allows. Not retryable."""

	def __init__(self, student_id: str, assessment_id: str, max_attempts: int) -> None:
		super().__init__(
			f"student {student_id} has used all {max_attempts} attempts for assessment {assessment_id}"
		)
		self.student_id = student_id
		self.assessment_id = assessment_id
		self.max_attempts = max_attempts


class AssessmentNotFound(AttemptEngineError):
	def __init__(self, assessment_id: str) -> None:
		super().__init__(f"assessment {assessment_id} not found")
		self.assessment_id = assessment_id


class AttemptNotFound(AttemptEngineError):
	def __init__(self, attempt_id: str) -> None:
		super().__init__(f"attempt {attempt_id} not found")
		self.attempt_id = attempt_id


class PersistenceFailure(AttemptEngineError):
	"""A read or write against the store failed. The caller may retry."""

	retryable = True

	def __init__(self, operation: str, detail: Optional[str] = None) -> None:
		message = f"{operation} failed"
		if detail:
			message = f"{message}: {detail}"
		super().__init__(message)
		self.operation = operation


class PromotionFailure(PersistenceFailure):
	"""The level-promotion call failed after a passing score was already determined."""


class CountdownAlreadyStarted(AttemptEngineError, RuntimeError):
	"""A second countdown was started for an attempt that already has one."""
