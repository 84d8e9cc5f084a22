"""Read-only summary statistics and recommendations for caregivers."""

from typing import Literal

from pydantic import BaseModel, Field

from learning_progress.models.profile import LearnerProfile
from learning_progress.models.session import LearningSession
from learning_progress.models.weekly import WeeklyProgress
from learning_progress.skills import strength_display_name, struggle_display_name

Trend = Literal["improving", "steady"]

NO_PROFILE_RECOMMENDATION = "Complete more activities to see personalized recommendations"
PRACTICE_MORE_RECOMMENDATION = "Encourage daily reading practice for consistent progress"


class QuickStats(BaseModel):
    total_sessions: int = 0
    reading_speed: int = 0
    top_strengths: list[str] = Field(default_factory=list)
    needs_support: list[str] = Field(default_factory=list)
    streak_days: int = 0


class InsightSummary(BaseModel):
    total_sessions: int = 0
    average_accuracy: float = 0
    improvement_trend: Trend | None = None
    recommended_actions: list[str] = Field(default_factory=list)
    quick_stats: QuickStats = Field(default_factory=QuickStats)
    weekly_narrative: str = ""


class Insights(BaseModel):
    profile: LearnerProfile | None
    recent_sessions: list[LearningSession]
    weekly_progress: WeeklyProgress | None
    summary: InsightSummary


def average_accuracy(sessions: list[LearningSession]) -> float:
    """Mean of the non-zero accuracies across all activities, rounded."""
    values = [acc for s in sessions for acc in s.accuracies]
    if not values:
        return 0
    return round(sum(values) / len(values))


def improvement_trend(sessions: list[LearningSession]) -> Trend | None:
    """Coarse trend over the three most recent sessions (newest first).

    Compares the first and third accuracy values found in those sessions.
    Returns None when there is not enough data.
    """
    if len(sessions) < 3:
        return None
    values = [acc for s in sessions[:3] for acc in s.accuracies]
    if len(values) < 3:
        return None
    return "improving" if values[0] > values[2] else "steady"


def recommendations(profile: LearnerProfile | None, sessions: list[LearningSession]) -> list[str]:
    if profile is None:
        return [NO_PROFILE_RECOMMENDATION]

    actions = []
    if profile.struggling_areas:
        top = profile.top_struggles(1)[0]
        actions.append(f"Focus on {struggle_display_name(top.skill)}: {top.improvement_plan}")
    if len(sessions) < 3:
        actions.append(PRACTICE_MORE_RECOMMENDATION)
    return actions


def quick_stats(profile: LearnerProfile | None) -> QuickStats:
    if profile is None:
        return QuickStats()
    return QuickStats(
        total_sessions=profile.total_active_sessions,
        reading_speed=profile.current_reading_speed,
        top_strengths=[strength_display_name(s.skill) for s in profile.top_strengths()],
        needs_support=[struggle_display_name(s.skill) for s in profile.top_struggles()],
        streak_days=profile.streak_days,
    )


def weekly_narrative(progress: WeeklyProgress | None) -> str:
    """Short caregiver-facing paragraph for one week."""
    if progress is None or progress.sessions_completed == 0:
        return "No learning sessions recorded this week yet."

    sessions = progress.sessions_completed
    parts = [
        f"This week your child completed {sessions} learning "
        f"session{'s' if sessions != 1 else ''}, spending "
        f"{progress.total_learning_time} minutes engaged in reading activities."
    ]
    if progress.new_skills_acquired:
        parts.append(f"They developed new skills in: {', '.join(progress.new_skills_acquired)}.")
    if progress.celebration_moments:
        parts.append("Celebrate their progress!")
    return " ".join(parts)


def build_summary(
    profile: LearnerProfile | None,
    sessions: list[LearningSession],
    weekly: WeeklyProgress | None,
) -> InsightSummary:
    return InsightSummary(
        total_sessions=profile.total_active_sessions if profile else 0,
        average_accuracy=average_accuracy(sessions),
        improvement_trend=improvement_trend(sessions),
        recommended_actions=recommendations(profile, sessions),
        quick_stats=quick_stats(profile),
        weekly_narrative=weekly_narrative(weekly),
    )
