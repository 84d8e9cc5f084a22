"""Profile update rules applied per activity and per finished session."""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from learning_progress.models.profile import (
    LearnerProfile,
    LearningStatePattern,
    Strength,
    StruggleArea,
    SupportPreference,
    utcnow,
)
from learning_progress.models.session import ActivityRecord, LearningSession
from learning_progress.skills import StrengthSkill, improvement_plan_for
from learning_progress.storage.profiles import LearnerProfileStore

logger = structlog.get_logger()

STRENGTH_ACCURACY_THRESHOLD = 85
STRENGTH_INITIAL_CONFIDENCE = 6.0
STRENGTH_CONFIDENCE_STEP = 0.5
MAX_CONFIDENCE = 10.0


class ProfileAggregator:
    """Folds activity outcomes into the learner profile.

    Args:
        profiles: Profile store providing the transaction.
        activity_window: How many applied activity keys to remember for
            replay detection.
        clock: Source of the current time.
    """

    def __init__(
        self,
        profiles: LearnerProfileStore,
        activity_window: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.profiles = profiles
        self.activity_window = activity_window
        self._clock = clock

    def record_activity(
        self,
        learner_id: str,
        activity: ActivityRecord,
        activity_id: str,
    ) -> LearnerProfile:
        """Apply one activity to the stored profile in a single transaction.

        Safe to re-run: an activity whose key was already applied is skipped.
        """
        return self.profiles.update(
            learner_id,
            lambda profile: self.apply_activity(profile, activity, activity_id),
        )

    def apply_activity(
        self,
        profile: LearnerProfile,
        activity: ActivityRecord,
        activity_id: str,
    ) -> bool:
        """Mutate ``profile`` for one activity. Returns False for a replay."""
        if activity_id in profile.applied_activity_ids:
            logger.info("activity_already_applied", learner_id=profile.learner_id, activity_id=activity_id)
            return False

        now = self._clock()
        accuracy = activity.performance.accuracy
        if accuracy is not None and accuracy > STRENGTH_ACCURACY_THRESHOLD:
            self._update_strength(profile, StrengthSkill(activity.difficulty, activity.type), now)

        for tag in activity.struggled_with:
            self._update_struggle(profile, tag, now)

        if activity.performance.wpm:
            profile.current_reading_speed = activity.performance.wpm

        profile.total_activities += 1
        profile.applied_activity_ids.append(activity_id)
        del profile.applied_activity_ids[:-self.activity_window]
        return True

    def apply_session(self, profile: LearnerProfile, session: LearningSession) -> None:
        """Per-session counters, streak and pattern statistics."""
        profile.total_active_sessions += 1
        profile.total_learning_time += session.duration
        self._update_streak(profile, session.end_time)

        for usage in session.supports_used:
            pref = next((p for p in profile.preferred_supports if p.type == usage.type), None)
            if pref is None:
                profile.preferred_supports.append(SupportPreference(
                    type=usage.type,
                    usage_frequency=usage.frequency,
                    effectiveness=usage.effectiveness.score,
                ))
            else:
                total = pref.usage_frequency + usage.frequency
                pref.effectiveness = (
                    pref.effectiveness * pref.usage_frequency
                    + usage.effectiveness.score * usage.frequency
                ) / total
                pref.usage_frequency = total

        accuracies = session.accuracies
        state = next(
            (s for s in profile.best_learning_states if s.brain_state == session.brain_state_at_start),
            None,
        )
        if state is None:
            state = LearningStatePattern(brain_state=session.brain_state_at_start, last_used=session.end_time)
            profile.best_learning_states.append(state)
        state.last_used = session.end_time
        if accuracies:
            session_mean = sum(accuracies) / len(accuracies)
            state.success_rate = (state.success_rate * state.sessions + session_mean) / (state.sessions + 1)
            state.sessions += 1

    # Helpers

    def _update_strength(self, profile: LearnerProfile, skill: StrengthSkill, now: datetime) -> None:
        existing = profile.find_strength(skill.tag)
        if existing is not None:
            existing.confidence = min(MAX_CONFIDENCE, existing.confidence + STRENGTH_CONFIDENCE_STEP)
            existing.last_demonstrated = now
        else:
            profile.strengths.append(Strength(
                skill=skill.tag,
                confidence=STRENGTH_INITIAL_CONFIDENCE,
                last_demonstrated=now,
            ))
            logger.info("strength_added", learner_id=profile.learner_id, skill=skill.tag)

    def _update_struggle(self, profile: LearnerProfile, tag: str, now: datetime) -> None:
        existing = profile.find_struggle(tag)
        if existing is not None:
            existing.frequency += 1
            existing.last_struggle = now
        else:
            profile.struggling_areas.append(StruggleArea(
                skill=tag,
                frequency=1,
                last_struggle=now,
                improvement_plan=improvement_plan_for(tag),
            ))

    @staticmethod
    def _update_streak(profile: LearnerProfile, active_at: datetime) -> None:
        day = active_at.date()
        last = profile.last_active_date
        if last is None or day > last + timedelta(days=1):
            profile.streak_days = 1
        elif day == last + timedelta(days=1):
            profile.streak_days += 1
        elif profile.streak_days == 0:
            profile.streak_days = 1
        if last is None or day > last:
            profile.last_active_date = day
