from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, ValidationError

from ..documents import SERVER_TIMESTAMP, Document, DocumentExistsError, VersionConflictError
from ..grading import grade_verification
from ..schemas import Verification, VerificationStatus
from ..state import AppState, get_app_state
from .auth import verify_password


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student", tags=["student"])


class LoginRequest(BaseModel):
    verification_id: str
    password: str


class SubmitRequest(BaseModel):
    verification_id: str
    password: str
    # Question id -> raw answer; unanswered questions may be omitted
    answers: Dict[str, Any] = Field(default_factory=dict)


class SubmitResponse(BaseModel):
    verification_id: str
    total_score: float
    max_score: float
    percentage: float
    final_grade: str


async def _open_verification(state: AppState, verification_id: str, password: str) -> Tuple[Document, Verification]:
    doc = await state.store.get(state.verifications_path, verification_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Verification not found")
    if not await run_in_threadpool(verify_password, password, doc.data.get("passwordHash")):
        raise HTTPException(status_code=401, detail="Wrong password")
    try:
        verification = Verification.model_validate(doc.data)
    except ValidationError:
        logger.exception("Verification %s is malformed", verification_id)
        raise HTTPException(status_code=500, detail="Verification document is malformed")
    return doc, verification


def _student_questions(verification: Verification) -> List[Dict[str, Any]]:
    questions = []
    for q in verification.questions:
        item = q.to_document()
        item.pop("correctAnswer", None)
        questions.append(item)
    return questions


@router.post("/login")
async def login(req: LoginRequest, state: AppState = Depends(get_app_state)):
    doc, verification = await _open_verification(state, req.verification_id, req.password)
    return {
        "id": doc.id,
        "studentName": verification.student_name,
        "class": verification.class_name,
        "date": verification.date,
        "uniqueCode": verification.unique_code,
        "status": verification.status.value,
        "questions": _student_questions(verification),
    }


@router.post("/submit", response_model=SubmitResponse)
async def submit(req: SubmitRequest, state: AppState = Depends(get_app_state)):
    doc, verification = await _open_verification(state, req.verification_id, req.password)
    if verification.status is VerificationStatus.SUBMITTED:
        logger.info("Rejected second submission for verification %s", doc.id)
        raise HTTPException(status_code=409, detail="Verification already submitted")

    result = grade_verification(verification.questions, req.answers, verification.rubric)

    # The result is keyed by the verification id and insert-only: of two racing
    # submissions only one gets past this write
    graded = result.to_document()
    try:
        await state.store.create(state.results_path, doc.id, {
            "verificationId": doc.id,
            "submissionDate": SERVER_TIMESTAMP,
            "studentName": verification.student_name,
            "class": verification.class_name,
            "totalScore": graded["totalScore"],
            "maxScore": graded["maxScore"],
            "percentage": graded["percentage"],
            "finalGrade": graded["finalGrade"],
            "studentAnswers": graded["correctedAnswers"],
            "rubric": verification.rubric,
            "uniqueCode": verification.unique_code,
        })
    except DocumentExistsError:
        logger.info("Concurrent submission lost the race for verification %s", doc.id)
        raise HTTPException(status_code=409, detail="Verification already submitted")

    # A verification is only marked submitted once its result exists. If the
    # flip fails the result is withdrawn so the student can submit again.
    try:
        await state.store.update(
            state.verifications_path,
            doc.id,
            {**doc.data, "status": VerificationStatus.SUBMITTED.value, "submissionDate": SERVER_TIMESTAMP},
            expected_version=doc.version,
        )
    except VersionConflictError:
        await state.store.delete(state.results_path, doc.id)
        logger.info("Verification %s changed while submitting; result withdrawn", doc.id)
        raise HTTPException(status_code=409, detail="Verification changed during submission")
    except Exception:
        await state.store.delete(state.results_path, doc.id)
        raise

    logger.info("Verification %s graded: %s/%s (%s)", doc.id, result.total_score, result.max_score, result.final_grade)
    return SubmitResponse(
        verification_id=doc.id,
        total_score=result.total_score,
        max_score=result.max_score,
        percentage=result.percentage,
        final_grade=result.final_grade,
    )


@router.get("/results/{verification_id}")
async def results(verification_id: str, password: Optional[str] = None, state: AppState = Depends(get_app_state)):
    doc, _ = await _open_verification(state, verification_id, password or "")
    result = await state.store.get(state.results_path, doc.id)
    if result is None:
        raise HTTPException(status_code=404, detail="No result yet")
    return result.to_dict()
