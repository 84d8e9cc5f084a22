"""Session data models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionStatus(StrEnum):
    """Session lifecycle states."""

    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDED = "ended"


class ActivityType(StrEnum):
    STORY_READING = "story_reading"
    WORD_BUILDING = "word_building"
    COMPREHENSION = "comprehension"
    CREATIVE_WRITING = "creative_writing"


class Difficulty(StrEnum):
    EASY = "easy"
    REGULAR = "regular"
    CHALLENGE = "challenge"


class SupportType(StrEnum):
    TTS = "tts"
    CALM_CORNER = "calm_corner"
    BREAK = "break"
    VISUAL_AID = "visual_aid"


class Effectiveness(StrEnum):
    HELPED = "helped"
    NEUTRAL = "neutral"
    NOT_HELPFUL = "not_helpful"

    @property
    def score(self) -> float:
        """Effectiveness on the 1-10 scale used by profile support stats."""
        return {"helped": 10.0, "neutral": 5.0, "not_helpful": 1.0}[self.value]


class EnergyLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerformanceMetrics(BaseModel):
    """Outcome measurements for one activity."""

    model_config = ConfigDict(frozen=True)

    accuracy: float | None = Field(default=None, ge=0, le=100)
    wpm: int | None = Field(default=None, ge=0)
    hints_used: int = Field(default=0, ge=0)
    attempts: int = Field(default=0, ge=0)
    completion_rate: float = Field(default=100.0, ge=0, le=100)


class ActivityRecord(BaseModel):
    """A single completed learning activity."""

    model_config = ConfigDict(frozen=True)

    type: ActivityType
    title: str = Field(min_length=1)
    difficulty: Difficulty = Difficulty.REGULAR
    time_spent: float = Field(default=0, ge=0)  # minutes
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    struggled_with: tuple[str, ...] = ()
    mastered_skills: tuple[str, ...] = ()


class SupportUsage(BaseModel):
    """Per-type support counter within a session."""

    model_config = ConfigDict(frozen=True)

    type: SupportType
    frequency: int = Field(default=1, ge=1)
    triggered_by: str = ""
    effectiveness: Effectiveness = Effectiveness.NEUTRAL


class MoodSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str
    end: str
    energy_level: EnergyLevel = EnergyLevel.MEDIUM


class LearningSession(BaseModel):
    """A finished learning session. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)
    learner_id: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    duration: int = Field(ge=0)  # minutes
    brain_state_at_start: str
    activities_completed: tuple[ActivityRecord, ...] = ()
    supports_used: tuple[SupportUsage, ...] = ()
    mood: MoodSnapshot
    breakthrough_moments: tuple[str, ...] = ()
    challenges_met: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_times(self) -> "LearningSession":
        if self.end_time < self.start_time:
            raise ValueError("end_time cannot be before start_time")
        return self

    @property
    def mastered_skills(self) -> list[str]:
        """Mastered skills across activities, first occurrence order."""
        seen: dict[str, None] = {}
        for activity in self.activities_completed:
            for skill in activity.mastered_skills:
                seen.setdefault(skill, None)
        return list(seen)

    @property
    def accuracies(self) -> list[float]:
        """Non-zero accuracy values in activity order."""
        return [
            a.performance.accuracy
            for a in self.activities_completed
            if a.performance.accuracy
        ]
