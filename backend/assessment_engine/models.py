from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Float, Boolean, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .db import Base


def _new_id() -> str:
	return uuid.uuid4().hex


class Level(Base):
	__tablename__ = "levels"
	id = Column(String(64), primary_key=True, default=_new_id)
	name = Column(String(128), nullable=False)
	name_nl = Column(String(128), nullable=True)
	name_en = Column(String(128), nullable=True)
	name_ar = Column(String(128), nullable=True)
	# Curriculum position; promotion moves to the next higher display_order
	display_order = Column(Integer, nullable=False, default=0)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Assessment(Base):
	__tablename__ = "assessments"
	id = Column(String(64), primary_key=True, default=_new_id)
	# "exercise" or "exam"
	kind = Column(String(16), nullable=False, default="exercise")
	title = Column(String(256), nullable=False, default="")
	passing_score = Column(Float, nullable=True)
	time_limit_seconds = Column(Integer, nullable=True)
	max_attempts = Column(Integer, nullable=True)
	# Exams only: the level this exam certifies completion of
	level_id = Column(String(64), ForeignKey("levels.id"), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	questions = relationship("Question", back_populates="assessment", order_by="Question.display_order")


class Question(Base):
	__tablename__ = "questions"
	__table_args__ = (UniqueConstraint("assessment_id", "display_order"),)
	id = Column(String(64), primary_key=True, default=_new_id)
	assessment_id = Column(String(64), ForeignKey("assessments.id"), nullable=False, index=True)
	type = Column(String(32), nullable=False)
	question_text = Column(JSON, nullable=False)  # {"nl": ..., "en": ..., "ar": ...}
	options = Column(JSON, nullable=True)  # [{"label", "value", "isCorrect"}]
	points = Column(Float, nullable=False, default=1)
	display_order = Column(Integer, nullable=False, default=0)

	assessment = relationship("Assessment", back_populates="questions")


class Attempt(Base):
	__tablename__ = "attempts"
	__table_args__ = (UniqueConstraint("student_id", "assessment_id", "attempt_number"),)
	id = Column(String(64), primary_key=True, default=_new_id)
	student_id = Column(String(128), nullable=False, index=True)
	assessment_id = Column(String(64), ForeignKey("assessments.id"), nullable=False, index=True)
	attempt_number = Column(Integer, nullable=False)
	started_at = Column(DateTime(timezone=True), nullable=False)
	submitted_at = Column(DateTime(timezone=True), nullable=True)
	time_spent_seconds = Column(Integer, nullable=False, default=0)
	total_score = Column(Float, nullable=True)
	passed = Column(Boolean, nullable=True)
	promoted_to_level_id = Column(String(64), ForeignKey("levels.id"), nullable=True)


class StudentAnswer(Base):
	__tablename__ = "student_answers"
	__table_args__ = (UniqueConstraint("attempt_id", "question_id"),)
	id = Column(String(64), primary_key=True, default=_new_id)
	attempt_id = Column(String(64), ForeignKey("attempts.id"), nullable=False, index=True)
	question_id = Column(String(64), ForeignKey("questions.id"), nullable=False)
	student_id = Column(String(128), nullable=False)
	answer_text = Column(Text, nullable=True)
	answer_data = Column(JSON, nullable=True)  # {"selected": [...]} for checkbox answers
	file_url = Column(Text, nullable=True)
	is_correct = Column(Boolean, nullable=True)
	# Filled by review for manually-reviewed questions
	score = Column(Float, nullable=True)
	feedback = Column(Text, nullable=True)
	reviewed_at = Column(DateTime, nullable=True)
	reviewed_by = Column(String(128), nullable=True)
	submitted_at = Column(DateTime(timezone=True), nullable=False)


class StudentLevel(Base):
	__tablename__ = "student_levels"
	# Single row per student holding their current level
	student_id = Column(String(128), primary_key=True)
	level_id = Column(String(64), ForeignKey("levels.id"), nullable=False)
	promoted_by_attempt_id = Column(String(64), ForeignKey("attempts.id"), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
