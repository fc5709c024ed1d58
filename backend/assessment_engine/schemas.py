"""Domain types shared by the attempt engine.

These are the shapes the engine reads and writes; the ORM rows in
``models.py`` are mapped onto them by the persistence gateway.
"""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class QuestionType(str, Enum):
	MULTIPLE_CHOICE = "multiple_choice"
	CHECKBOX = "checkbox"
	OPEN_TEXT = "open_text"
	AUDIO_UPLOAD = "audio_upload"
	VIDEO_UPLOAD = "video_upload"
	FILE_UPLOAD = "file_upload"


AUTO_GRADED_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE, QuestionType.CHECKBOX})
UPLOAD_TYPES = frozenset({QuestionType.AUDIO_UPLOAD, QuestionType.VIDEO_UPLOAD, QuestionType.FILE_UPLOAD})


class AssessmentKind(str, Enum):
	EXERCISE = "exercise"
	EXAM = "exam"


# A single selected value / free text / upload URL, or a list of selected values
AnswerValue = Union[str, List[str], None]

FALLBACK_LANGUAGES = ("en", "nl")


def localize(text: Dict[str, str], language: Optional[str] = None) -> str:
	if language and text.get(language):
		return text[language]
	for lang in FALLBACK_LANGUAGES:
		if text.get(lang):
			return text[lang]
	return ""


def is_blank(value: AnswerValue) -> bool:
	if value is None:
		return True
	if isinstance(value, str):
		return value == ""
	return len(value) == 0


class QuestionOption(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	label: str
	value: str
	is_correct: bool = Field(default=False, alias="isCorrect")


class Question(BaseModel):
	id: str
	type: QuestionType
	prompt: Dict[str, str]
	options: List[QuestionOption] = Field(default_factory=list)
	points: float = Field(gt=0)
	order: int

	@field_validator("prompt")
	@classmethod
	def _prompt_has_text(cls, value: Dict[str, str]) -> Dict[str, str]:
		if not value:
			raise ValueError("prompt needs at least one language entry")
		return value

	@field_validator("options", mode="before")
	@classmethod
	def _none_means_no_options(cls, value):
		return [] if value is None else value

	@model_validator(mode="after")
	def _check_correct_options(self) -> "Question":
		correct = sum(1 for o in self.options if o.is_correct)
		if self.type is QuestionType.MULTIPLE_CHOICE and correct != 1:
			raise ValueError(f"multiple_choice question {self.id} needs exactly one correct option, has {correct}")
		if self.type is QuestionType.CHECKBOX and correct < 1:
			raise ValueError(f"checkbox question {self.id} needs at least one correct option")
		return self

	@property
	def auto_graded(self) -> bool:
		return self.type in AUTO_GRADED_TYPES

	def correct_values(self) -> List[str]:
		return [o.value for o in self.options if o.is_correct]

	def prompt_text(self, language: Optional[str] = None) -> str:
		return localize(self.prompt, language)


class Assessment(BaseModel):
	"""An exercise or a level final exam, with its questions in presentation order."""

	id: str
	kind: AssessmentKind
	title: str = ""
	passing_score_percent: float = Field(ge=0, le=100)
	time_limit_seconds: Optional[int] = Field(default=None, gt=0)
	max_attempts: Optional[int] = Field(default=None, gt=0)
	level_id: Optional[str] = None
	questions: List[Question] = Field(default_factory=list)

	@model_validator(mode="after")
	def _check_questions(self) -> "Assessment":
		orders = [q.order for q in self.questions]
		if len(orders) != len(set(orders)):
			raise ValueError(f"question order values must be unique within assessment {self.id}")
		self.questions.sort(key=lambda q: q.order)
		if self.kind is AssessmentKind.EXAM and not self.level_id:
			raise ValueError(f"exam {self.id} has no level_id")
		return self

	@property
	def is_exam(self) -> bool:
		return self.kind is AssessmentKind.EXAM

	@property
	def requires_manual_review(self) -> bool:
		return any(not q.auto_graded for q in self.questions)

	def question(self, question_id: str) -> Question:
		for q in self.questions:
			if q.id == question_id:
				return q
		raise KeyError(question_id)


class Level(BaseModel):
	id: str
	name: str
	names: Dict[str, str] = Field(default_factory=dict)
	display_order: int = 0

	def localized_name(self, language: Optional[str] = None) -> str:
		if language and self.names.get(language):
			return self.names[language]
		return self.name


class Attempt(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: str
	student_id: str
	assessment_id: str
	attempt_number: int = Field(ge=1)
	started_at: datetime
	submitted_at: Optional[datetime] = None
	total_score_percent: Optional[float] = None
	passed: Optional[bool] = None
	promoted_to_level_id: Optional[str] = None

	@property
	def is_submitted(self) -> bool:
		return self.submitted_at is not None

	@property
	def time_spent_seconds(self) -> Optional[int]:
		if self.submitted_at is None:
			return None
		return max(0, int((self.submitted_at - self.started_at).total_seconds()))


class Answer(BaseModel):
	question_id: str
	attempt_id: str
	student_id: str
	value: AnswerValue = None
	# None for manually-reviewed questions until they are reviewed
	is_correct: Optional[bool] = None
	score: Optional[float] = None
	feedback: Optional[str] = None


class QuestionScore(BaseModel):
	question_id: str
	earned: float
	max_points: float
	is_correct: Optional[bool] = None


class ScoreReport(BaseModel):
	per_question: Dict[str, QuestionScore]
	earned_total: float
	max_total: float
	total_score_percent: float

	@property
	def requires_manual_review(self) -> bool:
		return any(s.is_correct is None for s in self.per_question.values())


class Outcome(BaseModel):
	passed: bool
	promoted_to_level_id: Optional[str] = None
	promotion_attempted: bool = False
	promotion_failed: bool = False


class AttemptResult(BaseModel):
	attempt_id: str
	attempt_number: int
	score_percent: float
	passed: bool
	promoted_to_level_id: Optional[str] = None
	promoted_to_level_name: Optional[str] = None
	requires_manual_review: bool = False
	submitted_at: datetime
