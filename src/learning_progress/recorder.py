"""Per-session recorder: accumulates one learning session and persists it."""

import asyncio
import hashlib
import math
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

import pydantic
import structlog

from learning_progress.aggregator import ProfileAggregator
from learning_progress.coordinator import PersistenceCoordinator
from learning_progress.errors import DataValidationError, SessionStateError
from learning_progress.models.profile import utcnow
from learning_progress.models.session import (
    ActivityRecord,
    ActivityType,
    Difficulty,
    Effectiveness,
    EnergyLevel,
    LearningSession,
    MoodSnapshot,
    SessionStatus,
    SupportType,
    SupportUsage,
)
from learning_progress.models.weekly import WeeklyProgress
from learning_progress.retry import RetryPolicy

logger = structlog.get_logger()


def new_session_id(now: datetime) -> str:
    return f"session_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:10]}"


def _coerce_activity(activity: ActivityRecord | dict[str, Any]) -> ActivityRecord:
    data = activity.model_dump() if isinstance(activity, ActivityRecord) else activity
    try:
        return ActivityRecord.model_validate(data)
    except pydantic.ValidationError as e:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DataValidationError(f"Invalid activity: {reasons}") from e


class SessionRecorder:
    """Handle for one learning session.

    Lifecycle: ``NOT_STARTED -> ACTIVE -> ENDED``. Accumulator methods are
    only valid while ACTIVE and raise ``SessionStateError`` otherwise;
    ``start`` is valid from NOT_STARTED or ENDED. ``record_activity`` and
    ``end`` are serialized, so an activity still being applied to the profile
    is part of the frozen session.

    Args:
        aggregator: Applies activity outcomes to the learner profile.
        coordinator: Commits the finished session.
        retry: Retry policy wrapping every store call.
        clock: Source of the current time.
    """

    def __init__(
        self,
        aggregator: ProfileAggregator,
        coordinator: PersistenceCoordinator,
        retry: RetryPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._aggregator = aggregator
        self._coordinator = coordinator
        self._retry = retry
        self._clock = clock

        self.status = SessionStatus.NOT_STARTED
        self.session_id: str | None = None
        self.learner_id: str | None = None
        self.persisted = False
        self._start_time: datetime | None = None
        self._brain_state = ""
        self._activities: list[ActivityRecord] = []
        self._supports: dict[SupportType, SupportUsage] = {}
        self._breakthroughs: list[str] = []
        self._challenges: list[str] = []
        self._session: LearningSession | None = None
        self._lock = asyncio.Lock()

    @property
    def activities(self) -> tuple[ActivityRecord, ...]:
        return tuple(self._activities)

    @property
    def session(self) -> LearningSession | None:
        """The frozen record, available once the session has ended."""
        return self._session

    def _require_active(self, operation: str) -> None:
        if self.status is not SessionStatus.ACTIVE:
            raise SessionStateError(f"Cannot {operation}: session is {self.status}")

    def start(self, learner_id: str, brain_state: str) -> str:
        """Begin a new session and return its id."""
        if self.status is SessionStatus.ACTIVE:
            raise SessionStateError(f"Session {self.session_id} is already active")
        if not learner_id:
            raise DataValidationError("learner_id is required")

        self._start_time = self._clock()
        self.session_id = new_session_id(self._start_time)
        self.learner_id = learner_id
        self._brain_state = brain_state
        self._activities = []
        self._supports = {}
        self._breakthroughs = []
        self._challenges = []
        self._session = None
        self.persisted = False
        self.status = SessionStatus.ACTIVE

        logger.info("session_started", session_id=self.session_id, learner_id=learner_id)
        return self.session_id

    async def record_activity(self, activity: ActivityRecord | dict[str, Any]) -> ActivityRecord:
        """Validate an activity, fold it into the profile, then keep it.

        The activity is appended only after the profile update succeeds, so a
        failed call can be repeated without duplicating it. Repeats of the
        same activity carry the same idempotency key.
        """
        async with self._lock:
            self._require_active("record activity")
            record = _coerce_activity(activity)

            digest = hashlib.sha1(record.model_dump_json().encode()).hexdigest()[:12]
            activity_id = f"{self.session_id}:{len(self._activities)}:{digest}"
            learner_id = self.learner_id

            await self._retry.run(
                lambda: asyncio.to_thread(
                    self._aggregator.record_activity, learner_id, record, activity_id
                ),
                "update_profile",
            )
            self._activities.append(record)
        logger.info(
            "activity_recorded",
            session_id=self.session_id,
            activity_type=record.type,
            title=record.title,
        )
        return record

    def record_support_usage(
        self,
        support_type: SupportType,
        triggered_by: str,
        effectiveness: Effectiveness,
    ) -> SupportUsage:
        self._require_active("record support usage")
        try:
            support_type = SupportType(support_type)
            effectiveness = Effectiveness(effectiveness)
        except ValueError as e:
            raise DataValidationError(str(e)) from e
        existing = self._supports.get(support_type)
        if existing is None:
            usage = SupportUsage(
                type=support_type,
                frequency=1,
                triggered_by=triggered_by,
                effectiveness=effectiveness,
            )
        else:
            usage = existing.model_copy(update={
                "frequency": existing.frequency + 1,
                "effectiveness": effectiveness,
            })
        self._supports[support_type] = usage
        return usage

    def record_breakthrough(self, description: str) -> None:
        self._require_active("record breakthrough")
        self._breakthroughs.append(description)

    def record_challenge(self, description: str) -> None:
        self._require_active("record challenge")
        self._challenges.append(description)

    async def end(self, end_brain_state: str, energy_level: EnergyLevel) -> LearningSession:
        """Freeze the session and persist it with its weekly rollup.

        If persistence fails the recorder stays ENDED with the frozen record
        kept on ``session``; the error propagates and ``persist`` can be
        called again.
        """
        async with self._lock:
            self._require_active("end session")
            try:
                energy_level = EnergyLevel(energy_level)
            except ValueError as e:
                raise DataValidationError(str(e)) from e
            end_time = self._clock()
            elapsed_minutes = (end_time - self._start_time).total_seconds() / 60
            if end_time < self._start_time:
                raise DataValidationError("End time cannot be before start time")
            duration = math.floor(elapsed_minutes + 0.5)

            self._session = LearningSession(
                session_id=self.session_id,
                learner_id=self.learner_id,
                start_time=self._start_time,
                end_time=end_time,
                duration=duration,
                brain_state_at_start=self._brain_state,
                activities_completed=tuple(self._activities),
                supports_used=tuple(self._supports.values()),
                mood=MoodSnapshot(
                    start=self._brain_state,
                    end=end_brain_state,
                    energy_level=energy_level,
                ),
                breakthrough_moments=tuple(self._breakthroughs),
                challenges_met=tuple(self._challenges),
            )
            self.status = SessionStatus.ENDED
            logger.info("session_ended", session_id=self.session_id, duration_minutes=duration)

        await self.persist()
        return self._session

    async def persist(self) -> WeeklyProgress:
        """Commit the ended session. Repeating a successful commit is a no-op."""
        if self._session is None:
            raise SessionStateError("Only an ended session can be persisted")
        session = self._session
        progress = await self._retry.run(
            lambda: asyncio.to_thread(self._coordinator.commit_session, session),
            "save_session",
        )
        self.persisted = True
        return progress

    # Convenience trackers for raw activity results

    async def track_word_practice(
        self,
        words_attempted: list[str],
        correct_words: list[str],
        time_spent: float,
        difficulty: Difficulty = Difficulty.REGULAR,
        hints_used: int = 0,
    ) -> ActivityRecord:
        if not words_attempted:
            raise DataValidationError("Word practice needs at least one attempted word")
        accuracy = round(len(correct_words) / len(words_attempted) * 100)
        record = await self.record_activity({
            "type": ActivityType.WORD_BUILDING,
            "title": f"Word Practice ({len(words_attempted)} words)",
            "difficulty": difficulty,
            "time_spent": time_spent,
            "performance": {
                "accuracy": accuracy,
                "hints_used": hints_used,
                "attempts": len(words_attempted),
                "completion_rate": 100,
            },
            "mastered_skills": list(correct_words),
            "struggled_with": [w for w in words_attempted if w not in correct_words],
        })
        if record.difficulty is Difficulty.CHALLENGE and accuracy > 80:
            self.record_breakthrough("Mastered challenging words")
        return record

    async def track_story_reading(
        self,
        story_title: str,
        pages_read: int,
        total_pages: int,
        time_spent: float,
        difficulty: Difficulty = Difficulty.REGULAR,
        comprehension_score: float | None = None,
        wpm: int | None = None,
    ) -> ActivityRecord:
        if total_pages <= 0:
            raise DataValidationError("total_pages must be positive")
        struggled = []
        if comprehension_score is not None and comprehension_score < 70:
            struggled.append("comprehension")
        return await self.record_activity({
            "type": ActivityType.STORY_READING,
            "title": story_title,
            "difficulty": difficulty,
            "time_spent": time_spent,
            "performance": {
                "accuracy": comprehension_score,
                "wpm": wpm,
                "completion_rate": min(100, round(pages_read / total_pages * 100)),
            },
            "mastered_skills": ["story_completion"] if pages_read >= total_pages else [],
            "struggled_with": struggled,
        })

    def track_calm_corner_usage(self, triggered_from: str, returned_to_learning: bool) -> SupportUsage:
        usage = self.record_support_usage(
            SupportType.CALM_CORNER,
            triggered_by=triggered_from,
            effectiveness=Effectiveness.HELPED if returned_to_learning else Effectiveness.NEUTRAL,
        )
        if returned_to_learning:
            self.record_challenge("Used calm corner and returned to learning")
        return usage
