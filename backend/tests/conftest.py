"""Shared fixtures: an in-memory SQLite store, seed helpers and a fake gateway."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assessment_engine import models
from assessment_engine.db import Base
from assessment_engine.errors import AssessmentNotFound, AttemptNotFound, PersistenceFailure, PromotionFailure
from assessment_engine.gateway import PersistenceGateway, SqlGateway
from assessment_engine.schemas import Answer, Assessment, Attempt, Level


T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class StepClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def mc_question(qid: str, order: int, correct: str = "b", points: float = 1) -> Dict:
    return {
        "id": qid,
        "type": "multiple_choice",
        "prompt": {"en": f"Question {qid}", "nl": f"Vraag {qid}"},
        "options": [{"label": v.upper(), "value": v, "isCorrect": v == correct} for v in ("a", "b", "c")],
        "points": points,
        "order": order,
    }


def checkbox_question(qid: str, order: int, correct=("a", "b"), points: float = 1) -> Dict:
    return {
        "id": qid,
        "type": "checkbox",
        "prompt": {"en": f"Question {qid}"},
        "options": [{"label": v.upper(), "value": v, "isCorrect": v in correct} for v in ("a", "b", "c")],
        "points": points,
        "order": order,
    }


def manual_question(qid: str, order: int, qtype: str = "open_text", points: float = 1) -> Dict:
    return {"id": qid, "type": qtype, "prompt": {"en": f"Question {qid}"}, "points": points, "order": order}


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, future=True)
    engine.dispose()


@pytest.fixture
def gateway(session_factory) -> SqlGateway:
    return SqlGateway(session_factory)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def seed(session_factory):
    """Helpers writing levels and assessments straight into the store."""

    class Seed:
        def levels(self, *names: str) -> List[str]:
            ids = []
            with session_factory() as db, db.begin():
                for order, name in enumerate(names, start=1):
                    level = models.Level(
                        id=f"level-{name.lower()}",
                        name=name,
                        name_en=f"{name} (en)",
                        name_nl=f"{name} (nl)",
                        display_order=order,
                    )
                    db.add(level)
                    ids.append(level.id)
            return ids

        def assessment(
            self,
            questions: List[Dict],
            *,
            assessment_id: str = "exercise-1",
            kind: str = "exercise",
            passing_score: Optional[float] = None,
            time_limit_seconds: Optional[int] = None,
            max_attempts: Optional[int] = None,
            level_id: Optional[str] = None,
        ) -> str:
            with session_factory() as db, db.begin():
                db.add(models.Assessment(
                    id=assessment_id,
                    kind=kind,
                    title=f"{kind} {assessment_id}",
                    passing_score=passing_score,
                    time_limit_seconds=time_limit_seconds,
                    max_attempts=max_attempts,
                    level_id=level_id,
                ))
                for q in questions:
                    db.add(models.Question(
                        id=q["id"],
                        assessment_id=assessment_id,
                        type=q["type"],
                        question_text=q["prompt"],
                        options=q.get("options"),
                        points=q["points"],
                        display_order=q["order"],
                    ))
            return assessment_id

        def answers(self, attempt_id: str) -> Dict[str, models.StudentAnswer]:
            with session_factory() as db:
                rows = db.query(models.StudentAnswer).filter(models.StudentAnswer.attempt_id == attempt_id).all()
                db.expunge_all()
                return {r.question_id: r for r in rows}

        def student_level(self, student_id: str) -> Optional[str]:
            with session_factory() as db:
                row = db.get(models.StudentLevel, student_id)
                return row.level_id if row else None

    return Seed()


class FakeGateway(PersistenceGateway):
    """In-memory gateway; operations named in ``fail`` raise like a broken store."""

    def __init__(self, assessments=(), levels=()) -> None:
        self.assessments: Dict[str, Assessment] = {a.id: a for a in assessments}
        self.levels: Dict[str, Level] = {lv.id: lv for lv in levels}
        self.attempts: Dict[str, Attempt] = {}
        self.answers: Dict[tuple, Answer] = {}
        self.next_level: Dict[str, Optional[str]] = {}
        self.fail: set = set()
        self.calls: List[str] = []

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            failure = PromotionFailure if operation == "promote_student_to_next_level" else PersistenceFailure
            raise failure(operation, "injected")

    async def get_assessment(self, assessment_id):
        self._enter("get_assessment")
        if assessment_id not in self.assessments:
            raise AssessmentNotFound(assessment_id)
        return self.assessments[assessment_id]

    async def list_attempts(self, student_id, assessment_id):
        self._enter("list_attempts")
        found = [a for a in self.attempts.values() if a.student_id == student_id and a.assessment_id == assessment_id]
        return sorted(found, key=lambda a: a.attempt_number, reverse=True)

    async def get_attempt(self, attempt_id):
        self._enter("get_attempt")
        if attempt_id not in self.attempts:
            raise AttemptNotFound(attempt_id)
        return self.attempts[attempt_id]

    async def create_attempt(self, student_id, assessment_id, attempt_number, started_at):
        self._enter("create_attempt")
        attempt = Attempt(
            id=f"attempt-{len(self.attempts) + 1}",
            student_id=student_id,
            assessment_id=assessment_id,
            attempt_number=attempt_number,
            started_at=started_at,
        )
        self.attempts[attempt.id] = attempt
        return attempt

    async def save_answers(self, answers, submitted_at):
        self._enter("save_answers")
        for answer in answers:
            self.answers[(answer.attempt_id, answer.question_id)] = answer

    async def finalize_attempt(self, attempt):
        self._enter("finalize_attempt")
        if self.attempts[attempt.id].submitted_at is not None:
            return None
        self.attempts[attempt.id] = attempt
        return attempt

    async def get_level(self, level_id):
        self._enter("get_level")
        return self.levels.get(level_id)

    async def promote_student_to_next_level(self, student_id, current_level_id, attempt_id):
        self._enter("promote_student_to_next_level")
        return self.next_level.get(current_level_id)


@pytest.fixture
def fake_gateway_factory():
    def build(assessments=(), levels=()):
        return FakeGateway(assessments=assessments, levels=levels)
    return build
