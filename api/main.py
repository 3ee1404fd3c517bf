from fastapi import FastAPI, HTTPException, Depends, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
import hmac
import hashlib
import time

from core.config import settings
from core.exceptions import ConcurrencyConflict, DataIntegrityError, InvalidInput, NotFound, SessionClosed
from core.logger import logger
from db.session import get_db, get_redis
from services.analytics_service import AnalyticsService
from services.catalog_service import CatalogService
from services.result_service import ResultService, SubmissionOutcome
from services.session_service import ACTIONS, ExamSessionService, LiveSession
from services.user_service import UserService

API_DESCRIPTION = """
## Exam Prep API

Mock tests with a timed, multi-section exam runner, section-wise scoring and
running performance analytics.

### Authentication

Every endpoint except `/api/health` needs a session token issued by the auth
service, sent as `X-Auth-Token: <token>` or `Authorization: Bearer <token>`.
Tokens expire after 30 days.
"""

TAGS_METADATA = [
    {"name": "tests", "description": "Test catalog and submission."},
    {"name": "sessions", "description": "Server-held exam sessions with countdown."},
    {"name": "results", "description": "Submitted results and analytics."},
]

app = FastAPI(
    title="Exam Prep API",
    description=API_DESCRIPTION,
    version="1.0.0",
    openapi_tags=TAGS_METADATA,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Error mapping ===

ERROR_STATUS = {
    NotFound: 404,
    InvalidInput: 400,
    SessionClosed: 409,
    ConcurrencyConflict: 409,
    DataIntegrityError: 500,
}

def _register_error(exc_class, status_code):
    @app.exception_handler(exc_class)
    async def handler(request: Request, exc: Exception):
        if status_code >= 500:
            logger.error("Request failed", path=request.url.path, error=str(exc), kind=exc_class.__name__)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

for _exc, _status in ERROR_STATUS.items():
    _register_error(_exc, _status)

# === Pydantic Models ===

class OptionOut(BaseModel):
    id: str = Field(..., description="Option label (a-f)")
    content: str


class QuestionOut(BaseModel):
    """Question as shown to a candidate: no answer key."""
    number: int = Field(..., description="Global question number (1-based)")
    section: str
    text: str
    options: List[OptionOut]


class SectionInstructions(BaseModel):
    name: str
    questions: int
    first_question: int
    last_question: int
    max_marks: float
    positive_marks: float
    negative_marks: float


class Instructions(BaseModel):
    duration: int = Field(..., description="Duration in minutes")
    sections: List[SectionInstructions]


class TestDetail(BaseModel):
    id: int
    name: str
    instructions: Instructions
    questions: List[QuestionOut]


class SubmitRequest(BaseModel):
    """Final answers of a client-held session."""
    answers: Dict[int, Optional[str]] = Field(..., description="question_number -> option label; null = unanswered")
    time_taken: int = Field(..., description="Seconds spent on the test", ge=0)


class SectionAnalysis(BaseModel):
    correct: int
    wrong: int
    unattempted: int
    marks: float


class ResultOut(BaseModel):
    result_id: str
    test_id: int
    submitted_at: datetime
    time_taken: int
    answers: Dict[int, str]
    section_wise_analysis: Dict[str, SectionAnalysis]
    section_wise_marks: Dict[str, float]
    total_marks: float
    correct_answers: int
    wrong_answers: int
    unattempted: int


class SubmitResponse(ResultOut):
    analytics_updated: bool


class TrendPoint(BaseModel):
    date: str
    score: float


class TimeManagement(BaseModel):
    average_time_per_question: float
    section_wise_time: Dict[str, float]


class AnalyticsOut(BaseModel):
    user_id: str
    total_tests_taken: int
    average_score: float
    section_wise_average: Dict[str, float]
    improvement_trend: List[TrendPoint]
    weak_areas: List[str]
    strong_areas: List[str]
    time_management: TimeManagement


class SessionAction(BaseModel):
    action: str = Field(..., description=f"One of: {', '.join(ACTIONS)}")
    question_number: Optional[int] = Field(None, description="Target for navigate")
    option: Optional[str] = Field(None, description="Option label for select")


class SessionState(BaseModel):
    attempt_id: str
    test_id: int
    current_question: int
    section: str
    remaining_seconds: int
    submitted: bool
    result_id: Optional[str] = None
    answers: Dict[int, str]
    statuses: Dict[int, str]
    palette: Dict[str, int]

# === Auth ===

def issue_token(user_id: str, issued_at: Optional[int] = None) -> str:
    """Format: {user_id}:{timestamp}:{signature}"""
    timestamp = str(int(issued_at if issued_at is not None else time.time()))
    data = f"{user_id}:{timestamp}"
    signature = hmac.new(settings.SECRET_KEY.encode(), data.encode(), hashlib.sha256).hexdigest()
    return f"{data}:{signature}"

def verify_token(token: str) -> Optional[str]:
    if not token:
        return None

    parts = token.rsplit(':', 2)
    if len(parts) != 3:
        return None
    user_id, timestamp_str, signature = parts

    try:
        issued_at = int(timestamp_str)
    except ValueError:
        return None
    if int(time.time()) - issued_at > settings.TOKEN_TTL_SECONDS:
        logger.warning("Token expired", user_id=user_id)
        return None

    expected = hmac.new(settings.SECRET_KEY.encode(), f"{user_id}:{timestamp_str}".encode(), hashlib.sha256).hexdigest()
    if hmac.compare_digest(expected, signature):
        return user_id

    logger.warning("Token signature mismatch", user_id=user_id)
    return None

def get_current_user(
    x_auth_token: str = Header(None),
    authorization: str = Header(None),
) -> str:
    token = x_auth_token
    if not token and authorization and authorization.lower().startswith('bearer '):
        token = authorization.split(' ', 1)[1].strip()

    user_id = verify_token(token)
    if user_id:
        return user_id

    logger.warning("Auth failed: Missing or invalid credentials")
    raise HTTPException(status_code=401, detail="Unauthorized")

# === Serializers ===

def _result_out(result) -> dict:
    return {
        "result_id": result.id,
        "test_id": result.test_id,
        "submitted_at": result.submitted_at,
        "time_taken": result.time_taken,
        "answers": {int(k): v for k, v in result.answers.items()},
        "section_wise_analysis": result.section_wise_analysis,
        "section_wise_marks": result.section_wise_marks,
        "total_marks": result.total_marks,
        "correct_answers": result.correct_answers,
        "wrong_answers": result.wrong_answers,
        "unattempted": result.unattempted,
    }

def _submit_out(outcome: SubmissionOutcome) -> dict:
    return {**_result_out(outcome.result), "analytics_updated": outcome.analytics_updated}

def _session_out(session: LiveSession, section: str) -> dict:
    tracker = session.tracker
    return {
        "attempt_id": session.attempt_id,
        "test_id": session.test_id,
        "current_question": tracker.current,
        "section": section,
        "remaining_seconds": tracker.remaining,
        "submitted": tracker.finished,
        "result_id": session.result_id,
        "answers": {n: tracker.answer(n) for n in tracker.visited() if tracker.answer(n)},
        "statuses": {n: tracker.status(n).value for n in range(1, tracker.total_questions + 1)},
        "palette": tracker.status_counts(),
    }

async def _session_response(db: AsyncSession, session: LiveSession) -> dict:
    catalog = await CatalogService(db).load_catalog(session.test_id)
    return _session_out(session, catalog.section_for(session.tracker.current).name)

# === Endpoints ===

@app.get("/api/health", include_in_schema=False)
async def health():
    return {"status": "ok"}


@app.get(
    "/api/tests/{test_id}",
    response_model=TestDetail,
    tags=["tests"],
    summary="Get test paper",
    description="Returns instructions and globally numbered questions without the answer key.",
    responses={404: {"description": "Test not found"}},
)
async def get_test(test_id: int, user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    catalog = await CatalogService(db).load_catalog(test_id)
    return {
        "id": catalog.test.id,
        "name": catalog.test.name,
        "instructions": catalog.instructions(),
        "questions": [
            {
                "number": q.number,
                "section": q.section,
                "text": q.text,
                "options": [{"id": label, "content": content} for label, content in q.options.items()],
            }
            for q in catalog.questions
        ],
    }


@app.post(
    "/api/tests/{test_id}/submit",
    response_model=SubmitResponse,
    tags=["tests"],
    summary="Submit final answers",
    description="Scores a client-held attempt, stores the result and updates analytics.",
    responses={400: {"description": "Malformed answers"}, 404: {"description": "Test not found"}},
)
async def submit_test(
    test_id: int,
    body: SubmitRequest,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await UserService(db).get_or_create_user(user_id)
    outcome = await ResultService(db).submit_result(user_id, test_id, body.answers, body.time_taken)
    return _submit_out(outcome)


@app.post("/api/tests/{test_id}/session", response_model=SessionState, tags=["sessions"],
          summary="Start or resume an exam session")
async def start_session(
    test_id: int,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    await UserService(db).get_or_create_user(user_id)
    session = await ExamSessionService(redis, db).start(user_id, test_id)
    return await _session_response(db, session)


@app.get("/api/tests/{test_id}/session", response_model=SessionState, tags=["sessions"],
         summary="Current session state")
async def get_session(
    test_id: int,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    session = await ExamSessionService(redis, db).get(user_id, test_id)
    return await _session_response(db, session)


@app.post("/api/tests/{test_id}/session/actions", response_model=SessionState, tags=["sessions"],
          summary="Navigate, answer, clear or mark a question")
async def session_action(
    test_id: int,
    body: SessionAction,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    session = await ExamSessionService(redis, db).apply(
        user_id, test_id, body.action, question_number=body.question_number, option=body.option
    )
    return await _session_response(db, session)


@app.post("/api/tests/{test_id}/session/submit", response_model=SubmitResponse, tags=["sessions"],
          summary="Submit the session")
async def submit_session(
    test_id: int,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    outcome = await ExamSessionService(redis, db).submit(user_id, test_id)
    return _submit_out(outcome)


@app.get("/api/results", response_model=List[ResultOut], tags=["results"], summary="Submitted results, newest first")
async def list_results(user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    results = await ResultService(db).list_results(user_id)
    return [_result_out(r) for r in results]


@app.get("/api/results/{result_id}", response_model=ResultOut, tags=["results"], summary="One submitted result")
async def get_result(result_id: str, user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return _result_out(await ResultService(db).get_result(user_id, result_id))


@app.get("/api/analytics/me", response_model=AnalyticsOut, tags=["results"], summary="Running analytics")
async def my_analytics(user_id: str = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    row = await AnalyticsService(db).get_user_analytics(user_id)
    if not row:
        raise HTTPException(status_code=404, detail="No analytics yet")
    return {
        "user_id": row.user_id,
        "total_tests_taken": row.total_tests_taken,
        "average_score": row.average_score,
        "section_wise_average": row.section_wise_average,
        "improvement_trend": row.improvement_trend,
        "weak_areas": row.weak_areas,
        "strong_areas": row.strong_areas,
        "time_management": {
            "average_time_per_question": row.average_time_per_question,
            "section_wise_time": row.section_wise_time,
        },
    }


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)
