"""Skill tag taxonomy: strength tags and struggle improvement plans."""

from enum import StrEnum
from typing import NamedTuple

import structlog

from learning_progress.models.session import ActivityType, Difficulty

logger = structlog.get_logger()

GENERIC_IMPROVEMENT_PLAN = "Work with educator to identify specific support strategies"

_DIFFICULTY_LABELS = {
    Difficulty.EASY: "Easy",
    Difficulty.REGULAR: "Regular",
    Difficulty.CHALLENGE: "Challenge",
}

_ACTIVITY_LABELS = {
    ActivityType.STORY_READING: "story reading",
    ActivityType.WORD_BUILDING: "word building",
    ActivityType.COMPREHENSION: "comprehension",
    ActivityType.CREATIVE_WRITING: "creative writing",
}


class StrengthSkill(NamedTuple):
    """A strength is demonstrated per (difficulty, activity type) pair."""

    difficulty: Difficulty
    activity_type: ActivityType

    @property
    def tag(self) -> str:
        return f"{self.difficulty}_{self.activity_type}"

    @property
    def display_name(self) -> str:
        return f"{_DIFFICULTY_LABELS[self.difficulty]} {_ACTIVITY_LABELS[self.activity_type]}"

    @classmethod
    def from_tag(cls, tag: str) -> "StrengthSkill":
        difficulty, _, activity_type = tag.partition("_")
        return cls(Difficulty(difficulty), ActivityType(activity_type))


class StruggleCategory(StrEnum):
    """Struggle areas with a known improvement plan."""

    LONG_WORDS = "long_words"
    READING_SPEED = "reading_speed"
    COMPREHENSION = "comprehension"
    SPELLING = "spelling"
    FOCUS = "focus"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").capitalize()

    @property
    def improvement_plan(self) -> str:
        return _IMPROVEMENT_PLANS[self]


_IMPROVEMENT_PLANS = {
    StruggleCategory.LONG_WORDS: "Break words into smaller chunks, practice syllable counting",
    StruggleCategory.READING_SPEED: "Focus on sight words, reduce subvocalization",
    StruggleCategory.COMPREHENSION: "Ask prediction questions, summarize after reading",
    StruggleCategory.SPELLING: "Use phonetic patterns, visual memory techniques",
    StruggleCategory.FOCUS: "Shorter sessions, movement breaks, check brain state",
}


def classify_struggle(tag: str) -> StruggleCategory | None:
    try:
        return StruggleCategory(tag)
    except ValueError:
        return None


def improvement_plan_for(tag: str) -> str:
    """Plan for a struggle tag; unclassified tags (e.g. single words) get the generic plan."""
    category = classify_struggle(tag)
    if category is None:
        logger.debug("struggle_tag_unclassified", tag=tag)
        return GENERIC_IMPROVEMENT_PLAN
    return category.improvement_plan


def strength_display_name(tag: str) -> str:
    """Caregiver-facing name for a strength tag; tags outside the taxonomy are shown as stored."""
    try:
        return StrengthSkill.from_tag(tag).display_name
    except ValueError:
        return tag


def struggle_display_name(tag: str) -> str:
    category = classify_struggle(tag)
    return category.display_name if category is not None else tag
