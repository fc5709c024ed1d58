from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import PersistenceFailure
from .schemas import AssessmentKind, Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromotionContext:
	student_id: str
	level_id: str
	attempt_id: str


def is_passing(score_percent: float, passing_score_percent: float) -> bool:
	# Meeting the threshold exactly passes
	return score_percent >= passing_score_percent


class OutcomeResolver:
	"""Turns a score into pass/fail and, for a passed exam, asks the store to promote the student."""

	def __init__(self, gateway) -> None:
		self.gateway = gateway

	async def resolve(
		self,
		score_percent: float,
		passing_score_percent: float,
		mode: AssessmentKind,
		context: Optional[PromotionContext] = None,
	) -> Outcome:
		passed = is_passing(score_percent, passing_score_percent)
		if mode is not AssessmentKind.EXAM or not passed:
			return Outcome(passed=passed)
		if context is None:
			raise ValueError("a passed exam needs a promotion context")
		try:
			next_level_id = await self.gateway.promote_student_to_next_level(
				context.student_id, context.level_id, context.attempt_id
			)
		except PersistenceFailure:
			# The attempt still counts as passed; the caller is told no promotion happened
			logger.warning(
				"promotion failed for student=%s level=%s attempt=%s",
				context.student_id, context.level_id, context.attempt_id,
				exc_info=True,
			)
			return Outcome(passed=True, promotion_attempted=True, promotion_failed=True)
		if next_level_id is None:
			logger.info("student=%s passed top level %s, nothing to promote to", context.student_id, context.level_id)
		return Outcome(passed=True, promoted_to_level_id=next_level_id, promotion_attempted=True)
