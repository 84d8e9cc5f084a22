"""Weekly rollup model."""

from datetime import date

from pydantic import BaseModel, Field, computed_field

from learning_progress.models.session import LearningSession
from learning_progress.weeks import week_bounds


class WeeklyProgress(BaseModel):
    """Additive aggregate of every session that started in one ISO week."""

    week_id: str
    learner_id: str
    start_date: date
    end_date: date
    sessions_completed: int = 0
    total_learning_time: int = 0  # minutes
    accuracy_total: float = 0.0
    accuracy_samples: int = 0
    current_reading_speed: int = 0
    new_skills_acquired: list[str] = Field(default_factory=list)
    struggling_areas: list[str] = Field(default_factory=list)
    celebration_moments: list[str] = Field(default_factory=list)
    session_ids: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def average_session_length(self) -> float:
        if self.sessions_completed == 0:
            return 0.0
        return self.total_learning_time / self.sessions_completed

    @computed_field
    @property
    def average_accuracy(self) -> float:
        if self.accuracy_samples == 0:
            return 0.0
        return round(self.accuracy_total / self.accuracy_samples, 1)

    @classmethod
    def empty(cls, learner_id: str, week_id: str) -> "WeeklyProgress":
        start, end = week_bounds(week_id)
        return cls(week_id=week_id, learner_id=learner_id, start_date=start, end_date=end)

    def includes(self, session_id: str) -> bool:
        return session_id in self.session_ids

    def add_session(self, session: LearningSession) -> None:
        """Fold one finished session into the week's totals."""
        self.sessions_completed += 1
        self.total_learning_time += session.duration
        self.session_ids.append(session.session_id)

        for skill in session.mastered_skills:
            if skill not in self.new_skills_acquired:
                self.new_skills_acquired.append(skill)

        for activity in session.activities_completed:
            for tag in activity.struggled_with:
                if tag not in self.struggling_areas:
                    self.struggling_areas.append(tag)
            if activity.performance.wpm:
                self.current_reading_speed = activity.performance.wpm

        accuracies = session.accuracies
        self.accuracy_total += sum(accuracies)
        self.accuracy_samples += len(accuracies)

        self.celebration_moments.extend(session.breakthrough_moments)
