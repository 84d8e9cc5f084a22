"""Learner profile model for tracking learning progress across sessions."""

from datetime import date, datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field

from learning_progress.models.session import Difficulty, SupportType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingLevel(StrEnum):
    EARLY_READER = "early_reader"
    DEVELOPING_READER = "developing_reader"
    FLUENT_READER = "fluent_reader"
    ADVANCED_READER = "advanced_reader"


class Strength(BaseModel):
    skill: str
    confidence: float = Field(ge=1, le=10)
    last_demonstrated: datetime


class StruggleArea(BaseModel):
    skill: str
    frequency: int = Field(default=1, ge=1)
    last_struggle: datetime
    improvement_plan: str


class SupportPreference(BaseModel):
    type: SupportType
    usage_frequency: int = 0
    effectiveness: float = Field(default=5.0, ge=1, le=10)  # running mean, 1-10


class LearningStatePattern(BaseModel):
    brain_state: str
    success_rate: float = Field(default=0.0, ge=0, le=100)  # running mean accuracy
    sessions: int = 0
    last_used: datetime


class LearnerProfile(BaseModel):
    learner_id: str
    guardian_id: str = ""
    display_name: str = ""
    age: int | None = None
    current_level: ReadingLevel = ReadingLevel.DEVELOPING_READER
    current_reading_speed: int = Field(default=120, ge=0)  # wpm
    preferred_difficulty: Difficulty = Difficulty.REGULAR
    strengths: list[Strength] = Field(default_factory=list)
    struggling_areas: list[StruggleArea] = Field(default_factory=list)
    preferred_supports: list[SupportPreference] = Field(default_factory=list)
    best_learning_states: list[LearningStatePattern] = Field(default_factory=list)
    total_active_sessions: int = 0
    total_activities: int = 0
    total_learning_time: int = 0  # minutes
    streak_days: int = 0
    last_active_date: date | None = None
    applied_activity_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def find_strength(self, skill: str) -> Strength | None:
        return next((s for s in self.strengths if s.skill == skill), None)

    def find_struggle(self, skill: str) -> StruggleArea | None:
        return next((s for s in self.struggling_areas if s.skill == skill), None)

    def top_strengths(self, n: int = 3) -> list[Strength]:
        return sorted(self.strengths, key=lambda s: s.confidence, reverse=True)[:n]

    def top_struggles(self, n: int = 3) -> list[StruggleArea]:
        return sorted(self.struggling_areas, key=lambda s: s.frequency, reverse=True)[:n]
