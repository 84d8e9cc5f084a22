"""Engine facade used by the API layer and other collaborators."""

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from learning_progress.aggregator import ProfileAggregator
from learning_progress.config import Settings
from learning_progress.coordinator import PersistenceCoordinator
from learning_progress.errors import SessionNotFoundError, SessionStateError
from learning_progress.insights import Insights, build_summary
from learning_progress.models.profile import LearnerProfile, utcnow
from learning_progress.models.session import EnergyLevel, LearningSession, SessionStatus
from learning_progress.models.weekly import WeeklyProgress
from learning_progress.recorder import SessionRecorder
from learning_progress.retry import RetryPolicy
from learning_progress.storage.documents import DocumentStore
from learning_progress.storage.profiles import LearnerProfileStore
from learning_progress.storage.sessions import SessionStore
from learning_progress.storage.weekly import WeeklyRollupStore
from learning_progress.weeks import current_week_id, parse_week_id

logger = structlog.get_logger()


class LearningProgressService:
    """Session lifecycle entry point plus the read APIs.

    Keeps one recorder per in-progress session and refuses to start a second
    active session for the same learner.

    Args:
        store: Backing document store.
        retry: Retry policy for every store call.
        clock: Source of the current time.
        activity_window: Applied activity keys remembered per profile.
        recent_sessions_limit: Default size of ``get_recent_sessions``.
        insights_sessions_limit: Sessions considered by ``get_insights``.
    """

    def __init__(
        self,
        store: DocumentStore,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        activity_window: int = 200,
        recent_sessions_limit: int = 10,
        insights_sessions_limit: int = 5,
    ):
        self.store = store
        self.retry = retry or RetryPolicy()
        self._clock = clock
        self.recent_sessions_limit = recent_sessions_limit
        self.insights_sessions_limit = insights_sessions_limit

        self.profiles = LearnerProfileStore(store)
        self.sessions = SessionStore(store)
        self.weekly = WeeklyRollupStore(store)
        self.aggregator = ProfileAggregator(self.profiles, activity_window=activity_window, clock=clock)
        self.coordinator = PersistenceCoordinator(store, self.aggregator)

        self._recorders: dict[str, SessionRecorder] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "LearningProgressService":
        return cls(
            DocumentStore(settings.store_dir),
            retry=RetryPolicy.from_settings(settings),
            activity_window=settings.applied_activity_window,
            recent_sessions_limit=settings.recent_sessions_limit,
            insights_sessions_limit=settings.insights_sessions_limit,
        )

    # Session lifecycle

    def start_session(self, learner_id: str, brain_state: str) -> SessionRecorder:
        for recorder in self._recorders.values():
            if recorder.learner_id == learner_id and recorder.status is SessionStatus.ACTIVE:
                raise SessionStateError(
                    f"Learner {learner_id} already has active session {recorder.session_id}"
                )
        recorder = SessionRecorder(self.aggregator, self.coordinator, self.retry, clock=self._clock)
        session_id = recorder.start(learner_id, brain_state)
        self._recorders[session_id] = recorder
        return recorder

    def get_session(self, session_id: str) -> SessionRecorder:
        recorder = self._recorders.get(session_id)
        if recorder is None:
            raise SessionNotFoundError(f"No session in progress with id {session_id}")
        return recorder

    async def end_session(
        self,
        session_id: str,
        end_brain_state: str,
        energy_level: EnergyLevel,
    ) -> LearningSession:
        """End and persist a session.

        A session that ended but failed to persist stays registered; calling
        this again retries the commit.
        """
        recorder = self.get_session(session_id)
        if recorder.status is SessionStatus.ENDED:
            await recorder.persist()
            session = recorder.session
        else:
            session = await recorder.end(end_brain_state, energy_level)
        del self._recorders[session_id]
        return session

    # Profile identity

    async def register_learner(
        self,
        learner_id: str,
        guardian_id: str = "",
        display_name: str = "",
        age: int | None = None,
    ) -> LearnerProfile:
        """Create the learner's profile or update its identity fields."""

        def _set_identity(profile: LearnerProfile) -> bool:
            profile.guardian_id = guardian_id
            profile.display_name = display_name
            profile.age = age
            return True

        return await self.retry.run(
            lambda: asyncio.to_thread(self.profiles.update, learner_id, _set_identity),
            "register_learner",
        )

    # Reads

    async def get_profile(self, learner_id: str) -> LearnerProfile | None:
        return await self.retry.run(
            lambda: asyncio.to_thread(self.profiles.get, learner_id),
            "get_profile",
        )

    async def get_recent_sessions(
        self,
        learner_id: str,
        limit: int | None = None,
    ) -> list[LearningSession]:
        limit = limit or self.recent_sessions_limit
        return await self.retry.run(
            lambda: asyncio.to_thread(self.sessions.recent, learner_id, limit),
            "get_recent_sessions",
        )

    async def get_weekly_progress(
        self,
        learner_id: str,
        week: str | None = None,
    ) -> WeeklyProgress | None:
        """Rollup for ``week`` (a ``YYYY_Www`` id), defaulting to the current week."""
        target = parse_week_id(week).week_id if week else current_week_id(self._clock())
        return await self.retry.run(
            lambda: asyncio.to_thread(self.weekly.get, learner_id, target),
            "get_weekly_progress",
        )

    async def get_insights(self, learner_id: str) -> Insights:
        profile, sessions, weekly = await asyncio.gather(
            self.get_profile(learner_id),
            self.get_recent_sessions(learner_id, self.insights_sessions_limit),
            self.get_weekly_progress(learner_id),
        )
        logger.info("insights_built", learner_id=learner_id, sessions=len(sessions))
        return Insights(
            profile=profile,
            recent_sessions=sessions,
            weekly_progress=weekly,
            summary=build_summary(profile, sessions, weekly),
        )
