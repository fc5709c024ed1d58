from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..db import SessionLocal
from ..errors import (
    AssessmentNotFound,
    AttemptEngineError,
    AttemptLimitExceeded,
    AttemptNotFound,
    PersistenceFailure,
)
from ..gateway import PersistenceGateway, SqlGateway
from ..manager import AttemptManager, AttemptSession, AttemptState
from ..schemas import AnswerValue, Question
from .auth import Student, get_current_student


router = APIRouter(prefix="/attempts", tags=["attempts"])

logger = logging.getLogger(__name__)

# Live attempts of this process, keyed by attempt id
_sessions: Dict[str, AttemptSession] = {}


def get_gateway() -> PersistenceGateway:
    return SqlGateway(SessionLocal)


def get_manager(gateway: PersistenceGateway = Depends(get_gateway)) -> AttemptManager:
    return AttemptManager(gateway)


class OpenRequest(BaseModel):
    assessment_id: str
    # Attempt the page already holds; reopening returns it instead of creating another
    attempt_id: Optional[str] = None


class AnswerRequest(BaseModel):
    value: AnswerValue = None


class SubmitRequest(BaseModel):
    answers: Dict[str, AnswerValue] = Field(default_factory=dict)


def _http_error(exc: AttemptEngineError) -> HTTPException:
    if isinstance(exc, AttemptLimitExceeded):
        return HTTPException(status_code=409, detail={
            "code": "attempt_limit_exceeded",
            "message": "You have reached the maximum number of attempts.",
            "max_attempts": exc.max_attempts,
        })
    if isinstance(exc, (AssessmentNotFound, AttemptNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PersistenceFailure):
        return HTTPException(status_code=503, detail={
            "code": "persistence_failure",
            "message": "Could not save your attempt. Please try again.",
            "retryable": True,
        })
    return HTTPException(status_code=400, detail=str(exc))


def _question_payload(question: Question, lang: Optional[str]) -> Dict[str, Any]:
    # Correctness flags stay on the server
    return {
        "id": question.id,
        "type": question.type.value,
        "text": question.prompt_text(lang),
        "options": [{"label": o.label, "value": o.value} for o in question.options],
        "points": question.points,
        "order": question.order,
    }


def _session_payload(session: AttemptSession, lang: Optional[str]) -> Dict[str, Any]:
    attempt = session.attempt
    return {
        "attempt_id": attempt.id,
        "assessment_id": attempt.assessment_id,
        "attempt_number": attempt.attempt_number,
        "kind": session.assessment.kind.value,
        "title": session.assessment.title,
        "state": session.state.value,
        "started_at": attempt.started_at.isoformat(),
        "time_limit_seconds": session.assessment.time_limit_seconds,
        "remaining_seconds": session.remaining_seconds,
        "passing_score_percent": session.assessment.passing_score_percent,
        "questions": [_question_payload(q, lang) for q in session.assessment.questions],
        "answers": session.answers,
        "result": session.result.model_dump(mode="json") if session.result else None,
    }


async def _load_session(attempt_id: str, student: Student, manager: AttemptManager, lang: Optional[str] = None) -> AttemptSession:
    session = _sessions.get(attempt_id)
    if session is None:
        # Not live in this process (e.g. after a restart): rebuild without a countdown
        try:
            attempt = await manager.gateway.get_attempt(attempt_id)
            if attempt.student_id != student.student_id:
                raise AttemptNotFound(attempt_id)
            assessment = await manager.gateway.get_assessment(attempt.assessment_id)
            result = await manager.stored_result(attempt, assessment, lang)
        except AttemptEngineError as exc:
            raise _http_error(exc)
        session = AttemptSession(manager, attempt, assessment)
        session.result = result
        _sessions[attempt_id] = session
    if session.attempt.student_id != student.student_id:
        raise HTTPException(status_code=404, detail=f"attempt {attempt_id} not found")
    return session


@router.post("")
async def open_attempt(
    req: OpenRequest,
    lang: Optional[str] = None,
    student: Student = Depends(get_current_student),
    manager: AttemptManager = Depends(get_manager),
):
    held = _sessions.get(req.attempt_id) if req.attempt_id else None
    if (
        held is not None
        and held.attempt.student_id == student.student_id
        and held.attempt.assessment_id == req.assessment_id
        and held.state is AttemptState.IN_PROGRESS
    ):
        return _session_payload(held, lang)
    try:
        assessment = await manager.gateway.get_assessment(req.assessment_id)
        attempt = await manager.open_attempt(student.student_id, req.assessment_id, req.attempt_id, assessment=assessment)
    except AttemptEngineError as exc:
        raise _http_error(exc)
    session = _sessions.get(attempt.id)
    if session is None:
        session = AttemptSession(manager, attempt, assessment)
        session.language = lang
        _sessions[attempt.id] = session
        if attempt.id != req.attempt_id:
            session.start_countdown()
    return _session_payload(session, lang)


@router.get("")
async def list_attempts(
    assessment_id: str,
    student: Student = Depends(get_current_student),
    manager: AttemptManager = Depends(get_manager),
):
    try:
        attempts = await manager.list_attempts(student.student_id, assessment_id)
    except AttemptEngineError as exc:
        raise _http_error(exc)
    return {
        "assessment_id": assessment_id,
        "attempts": [
            {
                "attempt_id": a.id,
                "attempt_number": a.attempt_number,
                "started_at": a.started_at.isoformat(),
                "submitted_at": a.submitted_at.isoformat() if a.submitted_at else None,
                "time_spent_seconds": a.time_spent_seconds,
                "score_percent": a.total_score_percent,
                "passed": a.passed,
                "promoted_to_level_id": a.promoted_to_level_id,
            }
            for a in attempts
        ],
    }


@router.get("/{attempt_id}")
async def get_attempt(
    attempt_id: str,
    lang: Optional[str] = None,
    student: Student = Depends(get_current_student),
    manager: AttemptManager = Depends(get_manager),
):
    session = await _load_session(attempt_id, student, manager, lang)
    return _session_payload(session, lang)


@router.put("/{attempt_id}/answers/{question_id}")
async def record_answer(
    attempt_id: str,
    question_id: str,
    req: AnswerRequest,
    student: Student = Depends(get_current_student),
    manager: AttemptManager = Depends(get_manager),
):
    session = await _load_session(attempt_id, student, manager)
    try:
        accepted = session.record_answer(question_id, req.value)
    except KeyError:
        raise HTTPException(status_code=400, detail=f"question {question_id} is not part of this assessment")
    return {"accepted": accepted, "state": session.state.value}


@router.post("/{attempt_id}/submit")
async def submit_attempt(
    attempt_id: str,
    req: SubmitRequest,
    lang: Optional[str] = None,
    student: Student = Depends(get_current_student),
    manager: AttemptManager = Depends(get_manager),
):
    session = await _load_session(attempt_id, student, manager, lang)
    if lang:
        session.language = lang
    try:
        result = await session.submit(req.answers)
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=f"question {exc.args[0]} is not part of this assessment")
    except AttemptEngineError as exc:
        logger.warning("submit failed for attempt %s: %s", attempt_id, exc)
        raise _http_error(exc)
    return result.model_dump(mode="json")
