"""Learning session persistence for tracking history."""

from datetime import datetime

from learning_progress.models.session import LearningSession
from learning_progress.storage.documents import DocumentStore, Transaction

SESSIONS = "sessions"
SESSION_INDEX = "session_index"


class SessionStore:
    """Write-once session records keyed by session id.

    A per-learner index document lists each learner's session ids with their
    start times, so history reads only touch that learner's records.
    """

    def __init__(self, store: DocumentStore):
        self._store = store

    def get(self, session_id: str) -> LearningSession | None:
        data = self._store.get(SESSIONS, session_id)
        if data is None:
            return None
        return LearningSession.model_validate(data)

    def exists_in(self, txn: Transaction, session_id: str) -> bool:
        return txn.get(SESSIONS, session_id) is not None

    def stage(self, txn: Transaction, session: LearningSession) -> None:
        """Write the session and add it to its learner's index in ``txn``."""
        txn.set(SESSIONS, session.session_id, session.model_dump(mode="json"))

        index = txn.get(SESSION_INDEX, session.learner_id) or {"sessions": []}
        index["sessions"].append({
            "session_id": session.session_id,
            "start_time": session.start_time.isoformat(),
        })
        txn.set(SESSION_INDEX, session.learner_id, index)

    def recent(self, learner_id: str, limit: int = 10) -> list[LearningSession]:
        """A learner's sessions, newest start time first."""
        index = self._store.get(SESSION_INDEX, learner_id)
        if index is None:
            return []
        entries = sorted(
            index["sessions"],
            key=lambda e: datetime.fromisoformat(e["start_time"]),
            reverse=True,
        )[:limit]
        docs = self._store.get_many(SESSIONS, [e["session_id"] for e in entries])
        return [LearningSession.model_validate(d) for d in docs if d is not None]
