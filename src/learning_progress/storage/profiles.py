"""Learner profile persistence."""

from collections.abc import Callable

from learning_progress.models.profile import LearnerProfile, utcnow
from learning_progress.storage.documents import DocumentStore, Transaction

PROFILES = "profiles"


class LearnerProfileStore:
    """Single profile record per learner. Every mutation runs in a transaction."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def get(self, learner_id: str) -> LearnerProfile | None:
        data = self._store.get(PROFILES, learner_id)
        if data is None:
            return None
        return LearnerProfile.model_validate(data)

    def load_for_update(self, txn: Transaction, learner_id: str) -> LearnerProfile:
        """Read the profile inside ``txn``, or a default one for a new learner."""
        data = txn.get(PROFILES, learner_id)
        if data is None:
            return LearnerProfile(learner_id=learner_id)
        return LearnerProfile.model_validate(data)

    def stage(self, txn: Transaction, profile: LearnerProfile) -> None:
        txn.set(PROFILES, profile.learner_id, profile.model_dump(mode="json"))

    def update(
        self,
        learner_id: str,
        mutate: Callable[[LearnerProfile], bool],
    ) -> LearnerProfile:
        """Read-modify-write the profile in one transaction.

        ``mutate`` edits the profile in place and returns False when nothing
        changed, in which case no write is made.
        """

        def _apply(txn: Transaction) -> LearnerProfile:
            profile = self.load_for_update(txn, learner_id)
            if mutate(profile):
                profile.updated_at = utcnow()
                self.stage(txn, profile)
            return profile

        return self._store.run_transaction(_apply)
