"""Weekly rollup persistence."""

from learning_progress.models.weekly import WeeklyProgress
from learning_progress.storage.documents import DocumentStore, Transaction

WEEKLY_PROGRESS = "weekly_progress"


def rollup_key(learner_id: str, week_id: str) -> str:
    return f"{learner_id}_{week_id}"


class WeeklyRollupStore:
    """One additive record per (learner, ISO week)."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def get(self, learner_id: str, week_id: str) -> WeeklyProgress | None:
        data = self._store.get(WEEKLY_PROGRESS, rollup_key(learner_id, week_id))
        if data is None:
            return None
        return WeeklyProgress.model_validate(data)

    def load_for_update(self, txn: Transaction, learner_id: str, week_id: str) -> WeeklyProgress:
        data = txn.get(WEEKLY_PROGRESS, rollup_key(learner_id, week_id))
        if data is None:
            return WeeklyProgress.empty(learner_id, week_id)
        return WeeklyProgress.model_validate(data)

    def stage(self, txn: Transaction, progress: WeeklyProgress) -> None:
        txn.set(
            WEEKLY_PROGRESS,
            rollup_key(progress.learner_id, progress.week_id),
            progress.model_dump(mode="json"),
        )
