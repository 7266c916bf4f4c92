from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from ..documents import SERVER_TIMESTAMP
from ..quiz_generator import QuizGenerationError
from ..schemas import Complexity, VerificationStatus
from ..state import AppState, get_app_state
from .auth import User, generate_password, get_current_user, hash_password


logger = logging.getLogger(__name__)

router = APIRouter(tags=["quizzes"])


class GenerateQuizRequest(BaseModel):
    topic: str = Field(min_length=1)
    complexity: Complexity = Complexity.INTERMEDIA
    num_students: int = Field(ge=1, le=100)
    # Optional per-student names; missing entries become "Alunno <n>"
    student_names: List[str] = Field(default_factory=list)
    # Students are assigned to classes cyclically
    classes: List[str] = Field(default_factory=list)


class StudentLink(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    class_name: str = Field(alias="class")
    link: str
    password: str
    verification_id: str
    unique_code: str


class GenerateQuizResponse(BaseModel):
    quiz_id: str
    links: List[StudentLink]


def _student_name(names: List[str], index: int) -> str:
    if index < len(names) and names[index].strip():
        return names[index].strip()
    return f"Alunno {index + 1}"


async def create_verifications(state: AppState, teacher_id: str, req: GenerateQuizRequest) -> GenerateQuizResponse:
    generator = state.generator_factory()
    try:
        content = await generator.generate(req.topic, req.complexity)
    except QuizGenerationError as err:
        logger.error("Quiz generation failed for teacher %s: %s", teacher_id, err)
        raise HTTPException(
            status_code=502,
            detail=f"Could not generate the quiz content. Details: {err}. Please try again.",
        )

    classes = [c.strip() for c in req.classes if c.strip()]
    quiz = await state.store.add(state.quizzes_path(teacher_id), {
        "topic": req.topic,
        "totalStudents": req.num_students,
        "classes": classes,
        "complexity": req.complexity.value,
        "teacherId": teacher_id,
        "creationDate": SERVER_TIMESTAMP,
    })

    base_questions = [q.to_document() for q in content.questions]
    today = datetime.now().strftime("%d/%m/%Y")
    links: List[StudentLink] = []
    # Not atomic: verifications already written stay if a later write fails
    for i in range(req.num_students):
        name = _student_name(req.student_names, i)
        class_name = classes[i % len(classes)] if classes else ""
        password = generate_password()
        password_hash = await run_in_threadpool(hash_password, password)
        unique_code = f"VERIFICA-{quiz.id[:4]}-{i + 1}"
        verification = await state.store.add(state.verifications_path, {
            "quizId": quiz.id,
            "teacherId": teacher_id,
            "studentName": name,
            "class": class_name,
            "date": today,
            "uniqueCode": unique_code,
            "passwordHash": password_hash,
            "status": VerificationStatus.PENDING.value,
            "questions": state.rng.sample(base_questions, len(base_questions)),
            "rubric": content.rubric,
            "creationDate": SERVER_TIMESTAMP,
        })
        links.append(StudentLink(
            name=name,
            class_name=class_name,
            link=state.student_link(verification.id),
            password=password,
            verification_id=verification.id,
            unique_code=unique_code,
        ))
    logger.info("Created %d verifications for quiz %s", len(links), quiz.id)
    return GenerateQuizResponse(quiz_id=quiz.id, links=links)


@router.post("/quizzes", response_model=GenerateQuizResponse, status_code=201)
async def generate_quiz(
    req: GenerateQuizRequest,
    user: User = Depends(get_current_user),
    state: AppState = Depends(get_app_state),
):
    return await create_verifications(state, user.uid, req)


@router.get("/quizzes")
async def list_quizzes(user: User = Depends(get_current_user), state: AppState = Depends(get_app_state)):
    docs = await state.store.list(state.quizzes_path(user.uid))
    quizzes = [d.to_dict() for d in docs]
    quizzes.sort(key=lambda q: q.get("creationDate") or "", reverse=True)
    return {"quizzes": quizzes}


@router.get("/dashboard")
async def dashboard(user: User = Depends(get_current_user), state: AppState = Depends(get_app_state)):
    return {"verifications": state.dashboard.rows(teacher_id=user.uid)}


@router.get("/verifications/{verification_id}/result")
async def verification_result(
    verification_id: str,
    user: User = Depends(get_current_user),
    state: AppState = Depends(get_app_state),
) -> Dict[str, Any]:
    verification = await state.store.get(state.verifications_path, verification_id)
    if verification is None or verification.data.get("teacherId") != user.uid:
        raise HTTPException(status_code=404, detail="Verification not found")
    result = await state.store.get(state.results_path, verification_id)
    if result is None:
        raise HTTPException(status_code=404, detail="No result yet")
    return result.to_dict()
