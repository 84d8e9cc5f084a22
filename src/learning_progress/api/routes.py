"""REST API routes for session tracking and progress reports."""

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from learning_progress.errors import (
    DataValidationError,
    RetryExhaustedError,
    SessionNotFoundError,
    SessionStateError,
)
from learning_progress.insights import Insights
from learning_progress.models.profile import LearnerProfile
from learning_progress.models.session import (
    ActivityRecord,
    Effectiveness,
    EnergyLevel,
    LearningSession,
    SupportType,
    SupportUsage,
)
from learning_progress.models.weekly import WeeklyProgress
from learning_progress.service import LearningProgressService

router = APIRouter(prefix="/api")


def get_service(request: Request) -> LearningProgressService:
    return request.app.state.service


class StartSessionRequest(BaseModel):
    learner_id: str = Field(min_length=1)
    brain_state: str


class SupportUsageRequest(BaseModel):
    type: SupportType
    triggered_by: str = ""
    effectiveness: Effectiveness


class MomentRequest(BaseModel):
    description: str = Field(min_length=1)


class EndSessionRequest(BaseModel):
    end_brain_state: str
    energy_level: EnergyLevel = EnergyLevel.MEDIUM


class RegisterLearnerRequest(BaseModel):
    guardian_id: str = ""
    display_name: str = ""
    age: int | None = Field(default=None, ge=0)


@router.post("/sessions", status_code=201)
async def start_session(
    body: StartSessionRequest,
    service: LearningProgressService = Depends(get_service),
) -> dict:
    """Start a learning session for a learner."""
    recorder = service.start_session(body.learner_id, body.brain_state)
    return {"session_id": recorder.session_id}


@router.post("/sessions/{session_id}/activities")
async def record_activity(
    session_id: str,
    activity: ActivityRecord,
    service: LearningProgressService = Depends(get_service),
) -> ActivityRecord:
    return await service.get_session(session_id).record_activity(activity)


@router.post("/sessions/{session_id}/supports")
async def record_support_usage(
    session_id: str,
    body: SupportUsageRequest,
    service: LearningProgressService = Depends(get_service),
) -> SupportUsage:
    recorder = service.get_session(session_id)
    return recorder.record_support_usage(body.type, body.triggered_by, body.effectiveness)


@router.post("/sessions/{session_id}/breakthroughs", status_code=204)
async def record_breakthrough(
    session_id: str,
    body: MomentRequest,
    service: LearningProgressService = Depends(get_service),
) -> None:
    service.get_session(session_id).record_breakthrough(body.description)


@router.post("/sessions/{session_id}/challenges", status_code=204)
async def record_challenge(
    session_id: str,
    body: MomentRequest,
    service: LearningProgressService = Depends(get_service),
) -> None:
    service.get_session(session_id).record_challenge(body.description)


@router.post("/sessions/{session_id}/end")
async def end_session(
    session_id: str,
    body: EndSessionRequest,
    service: LearningProgressService = Depends(get_service),
) -> LearningSession:
    """End a session and persist it together with its weekly rollup."""
    return await service.end_session(session_id, body.end_brain_state, body.energy_level)


@router.put("/learners/{learner_id}")
async def register_learner(
    learner_id: str,
    body: RegisterLearnerRequest,
    service: LearningProgressService = Depends(get_service),
) -> LearnerProfile:
    return await service.register_learner(
        learner_id, body.guardian_id, body.display_name, body.age
    )


@router.get("/learners/{learner_id}/profile")
async def get_profile(
    learner_id: str,
    service: LearningProgressService = Depends(get_service),
) -> LearnerProfile:
    profile = await service.get_profile(learner_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.get("/learners/{learner_id}/sessions")
async def get_recent_sessions(
    learner_id: str,
    limit: int | None = Query(default=None, ge=1, le=100),
    service: LearningProgressService = Depends(get_service),
) -> list[LearningSession]:
    """Most recent sessions first."""
    return await service.get_recent_sessions(learner_id, limit)


@router.get("/learners/{learner_id}/weekly")
async def get_weekly_progress(
    learner_id: str,
    week_id: str | None = None,
    service: LearningProgressService = Depends(get_service),
) -> WeeklyProgress:
    progress = await service.get_weekly_progress(learner_id, week_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="No progress recorded for this week")
    return progress


@router.get("/learners/{learner_id}/insights")
async def get_insights(
    learner_id: str,
    service: LearningProgressService = Depends(get_service),
) -> Insights:
    return await service.get_insights(learner_id)


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


_ERROR_STATUS = {
    DataValidationError: 422,
    SessionStateError: 409,
    SessionNotFoundError: 404,
    RetryExhaustedError: 503,
}


def install_error_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP status codes."""

    def _handler(status_code: int):
        async def handle(request: Request, exc: Exception) -> JSONResponse:
            return JSONResponse({"error": str(exc)}, status_code=status_code)

        return handle

    for exc_type, status_code in _ERROR_STATUS.items():
        app.add_exception_handler(exc_type, _handler(status_code))
