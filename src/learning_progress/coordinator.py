"""Atomic commit of a finished session with its weekly rollup."""

import structlog

from learning_progress.aggregator import ProfileAggregator
from learning_progress.models.profile import utcnow
from learning_progress.models.session import LearningSession
from learning_progress.models.weekly import WeeklyProgress
from learning_progress.storage.documents import DocumentStore, Transaction
from learning_progress.storage.sessions import SessionStore
from learning_progress.storage.weekly import WeeklyRollupStore
from learning_progress.weeks import week_id

logger = structlog.get_logger()


class PersistenceCoordinator:
    """Writes session, weekly rollup and profile counters as one unit.

    The rollup and profile are read inside the same optimistic transaction
    that writes the session, so two sessions ending together for one
    learner/week conflict instead of overwriting each other's increment.
    A session id that is already stored makes the whole commit a no-op.
    """

    def __init__(self, store: DocumentStore, aggregator: ProfileAggregator):
        self.store = store
        self.sessions = SessionStore(store)
        self.weekly = WeeklyRollupStore(store)
        self.aggregator = aggregator

    def commit_session(self, session: LearningSession) -> WeeklyProgress:
        """Persist ``session`` and fold it into its week.

        Returns:
            The weekly rollup as of this commit.

        Raises:
            ConcurrencyConflict: A concurrent writer touched the same records.
            TransientStoreError: The store rejected the write.
        """
        target_week = week_id(session.start_time)

        def _apply(txn: Transaction) -> WeeklyProgress:
            progress = self.weekly.load_for_update(txn, session.learner_id, target_week)
            if self.sessions.exists_in(txn, session.session_id) or progress.includes(session.session_id):
                logger.info("session_already_committed", session_id=session.session_id)
                return progress

            progress.add_session(session)

            profile = self.aggregator.profiles.load_for_update(txn, session.learner_id)
            self.aggregator.apply_session(profile, session)
            profile.updated_at = utcnow()

            self.sessions.stage(txn, session)
            self.weekly.stage(txn, progress)
            self.aggregator.profiles.stage(txn, profile)
            return progress

        progress = self.store.run_transaction(_apply)
        logger.info(
            "session_committed",
            session_id=session.session_id,
            learner_id=session.learner_id,
            week_id=target_week,
            sessions_completed=progress.sessions_completed,
        )
        return progress
