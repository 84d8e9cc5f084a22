"""Tests for the session recorder lifecycle and trackers."""

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from learning_progress.aggregator import ProfileAggregator
from learning_progress.coordinator import PersistenceCoordinator
from learning_progress.errors import (
    ConcurrencyConflict,
    DataValidationError,
    RetryExhaustedError,
    SessionStateError,
    TransientStoreError,
)
from learning_progress.models.session import (
    Difficulty,
    Effectiveness,
    EnergyLevel,
    SessionStatus,
    SupportType,
)
from learning_progress.recorder import SessionRecorder
from learning_progress.retry import RetryPolicy
from learning_progress.storage.documents import DocumentStore
from learning_progress.storage.profiles import LearnerProfileStore


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def no_sleep(delay):
    return None


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path):
    return DocumentStore(tmp_path / "store")


@pytest.fixture
def aggregator(store, clock):
    return ProfileAggregator(LearnerProfileStore(store), clock=clock)


@pytest.fixture
def coordinator(store, aggregator):
    return PersistenceCoordinator(store, aggregator)


@pytest.fixture
def recorder(aggregator, coordinator, clock):
    retry = RetryPolicy(max_attempts=3, base_delay=0, max_jitter=0, sleep=no_sleep)
    return SessionRecorder(aggregator, coordinator, retry, clock=clock)


WORD_ACTIVITY = {
    "type": "word_building",
    "title": "3 words",
    "time_spent": 5,
    "performance": {"accuracy": 100},
    "mastered_skills": ["cat", "dog"],
}


class TestLifecycle:
    async def test_full_session(self, recorder, aggregator, coordinator, clock):
        recorder.start("kid", "calm")
        await recorder.record_activity(WORD_ACTIVITY)
        clock.advance(minutes=5)
        session = await recorder.end("happy", EnergyLevel.MEDIUM)

        assert session.duration == 5
        assert recorder.status is SessionStatus.ENDED
        assert recorder.persisted

        stored = coordinator.sessions.get(session.session_id)
        assert stored.duration == 5
        assert stored.mood.end == "happy"

        profile = aggregator.profiles.get("kid")
        strength = profile.find_strength("regular_word_building")
        assert strength.confidence == 6

        progress = coordinator.weekly.get("kid", "2026_W43")
        assert progress.sessions_completed == 1
        assert progress.new_skills_acquired == ["cat", "dog"]

    def test_start_returns_unique_ids(self, recorder):
        session_id = recorder.start("kid", "calm")
        assert session_id.startswith("session_")
        assert recorder.session_id == session_id
        assert recorder.status is SessionStatus.ACTIVE

    def test_cannot_start_twice(self, recorder):
        recorder.start("kid", "calm")
        with pytest.raises(SessionStateError):
            recorder.start("kid", "calm")

    def test_start_requires_learner(self, recorder):
        with pytest.raises(DataValidationError):
            recorder.start("", "calm")

    async def test_methods_require_active_session(self, recorder):
        with pytest.raises(SessionStateError):
            await recorder.record_activity(WORD_ACTIVITY)
        with pytest.raises(SessionStateError):
            recorder.record_breakthrough("read a page")
        with pytest.raises(SessionStateError):
            await recorder.end("happy", EnergyLevel.LOW)
        with pytest.raises(SessionStateError):
            await recorder.persist()

    async def test_ended_session_rejects_changes(self, recorder):
        recorder.start("kid", "calm")
        await recorder.end("happy", EnergyLevel.HIGH)
        with pytest.raises(SessionStateError):
            recorder.record_challenge("late")
        with pytest.raises(SessionStateError):
            recorder.record_support_usage(SupportType.TTS, "hard word", Effectiveness.HELPED)

    async def test_can_start_again_after_end(self, recorder):
        first = recorder.start("kid", "calm")
        await recorder.end("happy", EnergyLevel.MEDIUM)
        second = recorder.start("kid", "excited")
        assert second != first
        assert recorder.activities == ()
        assert recorder.session is None

    async def test_session_is_frozen(self, recorder):
        recorder.start("kid", "calm")
        session = await recorder.end("happy", EnergyLevel.MEDIUM)
        with pytest.raises(pydantic.ValidationError):
            session.duration = 99

    @pytest.mark.parametrize(
        "elapsed,expected",
        [
            ({"minutes": 2, "seconds": 29}, 2),
            ({"minutes": 2, "seconds": 30}, 3),
            ({"seconds": 10}, 0),
        ],
    )
    async def test_duration_rounds_half_up(self, recorder, clock, elapsed, expected):
        recorder.start("kid", "calm")
        clock.advance(**elapsed)
        session = await recorder.end("happy", EnergyLevel.MEDIUM)
        assert session.duration == expected

    async def test_clock_going_backwards_is_rejected(self, recorder, clock):
        recorder.start("kid", "calm")
        clock.advance(minutes=-1)
        with pytest.raises(DataValidationError):
            await recorder.end("happy", EnergyLevel.MEDIUM)
        assert recorder.status is SessionStatus.ACTIVE

    async def test_invalid_energy_level(self, recorder):
        recorder.start("kid", "calm")
        with pytest.raises(DataValidationError):
            await recorder.end("happy", "sleepy")


class TestRecordActivity:
    async def test_invalid_accuracy_is_rejected(self, recorder, aggregator):
        recorder.start("kid", "calm")
        bad = dict(WORD_ACTIVITY, performance={"accuracy": 150})
        with pytest.raises(DataValidationError) as exc_info:
            await recorder.record_activity(bad)
        assert "accuracy" in str(exc_info.value)
        assert recorder.activities == ()
        assert aggregator.profiles.get("kid") is None

    async def test_missing_title_is_rejected(self, recorder):
        recorder.start("kid", "calm")
        with pytest.raises(DataValidationError):
            await recorder.record_activity({"type": "word_building", "title": ""})

    async def test_activities_kept_in_order(self, recorder):
        recorder.start("kid", "calm")
        await recorder.record_activity(WORD_ACTIVITY)
        await recorder.record_activity(dict(WORD_ACTIVITY, title="story", type="story_reading"))
        assert [a.title for a in recorder.activities] == ["3 words", "story"]

    async def test_conflict_is_retried(self, recorder, aggregator, monkeypatch):
        original = aggregator.record_activity
        calls = {"count": 0}

        def conflict_once(*args):
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConcurrencyConflict("profiles", "kid")
            return original(*args)

        monkeypatch.setattr(aggregator, "record_activity", conflict_once)
        recorder.start("kid", "calm")
        await recorder.record_activity(WORD_ACTIVITY)

        assert calls["count"] == 2
        assert len(recorder.activities) == 1
        assert aggregator.profiles.get("kid").total_activities == 1

    async def test_retry_after_lost_acknowledgement_applies_once(self, recorder, aggregator, monkeypatch):
        original = aggregator.record_activity
        calls = {"count": 0}

        def succeed_then_fail(*args):
            calls["count"] += 1
            result = original(*args)
            if calls["count"] == 1:
                raise TransientStoreError("timed out waiting for acknowledgement")
            return result

        monkeypatch.setattr(aggregator, "record_activity", succeed_then_fail)
        recorder.start("kid", "calm")
        await recorder.record_activity(dict(WORD_ACTIVITY, struggled_with=["ship"]))

        profile = aggregator.profiles.get("kid")
        assert profile.total_activities == 1
        assert profile.find_struggle("ship").frequency == 1

    async def test_exhausted_retry_does_not_append(self, recorder, aggregator, monkeypatch):
        def always_down(*args):
            raise TransientStoreError("store unavailable")

        monkeypatch.setattr(aggregator, "record_activity", always_down)
        recorder.start("kid", "calm")
        with pytest.raises(RetryExhaustedError):
            await recorder.record_activity(WORD_ACTIVITY)
        assert recorder.activities == ()

    async def test_end_waits_for_activity_in_flight(self, recorder, aggregator, coordinator, monkeypatch):
        original = aggregator.record_activity
        applying = threading.Event()
        release = threading.Event()

        def slow_update(*args):
            applying.set()
            release.wait(5)
            return original(*args)

        monkeypatch.setattr(aggregator, "record_activity", slow_update)
        recorder.start("kid", "calm")
        recording = asyncio.create_task(recorder.record_activity(WORD_ACTIVITY))
        await asyncio.to_thread(applying.wait, 5)

        ending = asyncio.create_task(recorder.end("happy", EnergyLevel.HIGH))
        await asyncio.sleep(0.05)
        assert not ending.done()
        assert recorder.status is SessionStatus.ACTIVE

        release.set()
        await recording
        session = await ending
        assert [a.title for a in session.activities_completed] == ["3 words"]
        assert coordinator.sessions.get(session.session_id).activities_completed == session.activities_completed

    async def test_activity_after_end_is_rejected(self, recorder):
        recorder.start("kid", "calm")
        await recorder.end("calm", EnergyLevel.LOW)
        with pytest.raises(SessionStateError):
            await recorder.record_activity(WORD_ACTIVITY)
        assert recorder.session.activities_completed == ()


class TestSupportsAndMoments:
    async def test_support_usage_is_merged_per_type(self, recorder):
        recorder.start("kid", "calm")
        recorder.record_support_usage(SupportType.TTS, "long word", Effectiveness.NEUTRAL)
        recorder.record_support_usage(SupportType.TTS, "long word", Effectiveness.HELPED)
        recorder.record_support_usage(SupportType.BREAK, "tired", Effectiveness.HELPED)
        session = await recorder.end("calm", EnergyLevel.MEDIUM)

        supports = {s.type: s for s in session.supports_used}
        assert supports[SupportType.TTS].frequency == 2
        assert supports[SupportType.TTS].effectiveness is Effectiveness.HELPED
        assert supports[SupportType.BREAK].frequency == 1

    def test_unknown_support_type(self, recorder):
        recorder.start("kid", "calm")
        with pytest.raises(DataValidationError):
            recorder.record_support_usage("telepathy", "x", Effectiveness.HELPED)

    async def test_moments_end_up_in_session(self, recorder, coordinator):
        recorder.start("kid", "calm")
        recorder.record_breakthrough("Read a whole page")
        recorder.record_challenge("Tried a hard word")
        session = await recorder.end("proud", EnergyLevel.HIGH)

        assert session.breakthrough_moments == ("Read a whole page",)
        assert session.challenges_met == ("Tried a hard word",)
        progress = coordinator.weekly.get("kid", "2026_W43")
        assert progress.celebration_moments == ["Read a whole page"]


class TestPersistence:
    async def test_failed_persist_can_be_retried(self, recorder, coordinator, monkeypatch):
        original = coordinator.commit_session
        state = {"down": True}

        def flaky_commit(session):
            if state["down"]:
                raise TransientStoreError("store unavailable")
            return original(session)

        monkeypatch.setattr(coordinator, "commit_session", flaky_commit)
        recorder.start("kid", "calm")
        with pytest.raises(RetryExhaustedError):
            await recorder.end("happy", EnergyLevel.MEDIUM)

        assert recorder.status is SessionStatus.ENDED
        assert not recorder.persisted
        assert recorder.session is not None
        assert coordinator.weekly.get("kid", "2026_W43") is None

        state["down"] = False
        progress = await recorder.persist()
        assert recorder.persisted
        assert progress.sessions_completed == 1

    async def test_persist_twice_is_noop(self, recorder, coordinator):
        recorder.start("kid", "calm")
        await recorder.end("happy", EnergyLevel.MEDIUM)
        progress = await recorder.persist()
        assert progress.sessions_completed == 1
        assert coordinator.aggregator.profiles.get("kid").total_active_sessions == 1


class TestTrackers:
    async def test_word_practice(self, recorder):
        recorder.start("kid", "calm")
        record = await recorder.track_word_practice(
            ["cat", "dog", "ship"], ["cat", "dog"], time_spent=4, hints_used=1
        )
        assert record.title == "Word Practice (3 words)"
        assert record.performance.accuracy == 67
        assert record.performance.attempts == 3
        assert record.mastered_skills == ("cat", "dog")
        assert record.struggled_with == ("ship",)

    async def test_challenge_word_practice_records_breakthrough(self, recorder):
        recorder.start("kid", "calm")
        await recorder.track_word_practice(
            ["elephant", "giraffe"], ["elephant", "giraffe"], time_spent=3,
            difficulty=Difficulty.CHALLENGE,
        )
        session = await recorder.end("happy", EnergyLevel.HIGH)
        assert session.breakthrough_moments == ("Mastered challenging words",)

    async def test_regular_word_practice_no_breakthrough(self, recorder):
        recorder.start("kid", "calm")
        await recorder.track_word_practice(["cat"], ["cat"], time_spent=1)
        session = await recorder.end("happy", EnergyLevel.HIGH)
        assert session.breakthrough_moments == ()

    async def test_word_practice_needs_words(self, recorder):
        recorder.start("kid", "calm")
        with pytest.raises(DataValidationError):
            await recorder.track_word_practice([], [], time_spent=1)

    async def test_story_reading(self, recorder, aggregator):
        recorder.start("kid", "calm")
        record = await recorder.track_story_reading(
            "The Brave Fox", pages_read=10, total_pages=10, time_spent=12,
            comprehension_score=60, wpm=95,
        )
        assert record.struggled_with == ("comprehension",)
        assert record.mastered_skills == ("story_completion",)
        assert record.performance.completion_rate == 100
        assert aggregator.profiles.get("kid").current_reading_speed == 95

    async def test_partial_story(self, recorder):
        recorder.start("kid", "calm")
        record = await recorder.track_story_reading(
            "The Brave Fox", pages_read=3, total_pages=12, time_spent=6, comprehension_score=90,
        )
        assert record.struggled_with == ()
        assert record.mastered_skills == ()
        assert record.performance.completion_rate == 25

    async def test_calm_corner(self, recorder):
        recorder.start("kid", "frustrated")
        usage = recorder.track_calm_corner_usage("story_reading", returned_to_learning=True)
        assert usage.type is SupportType.CALM_CORNER
        assert usage.effectiveness is Effectiveness.HELPED
        session = await recorder.end("calm", EnergyLevel.LOW)
        assert session.challenges_met == ("Used calm corner and returned to learning",)

    async def test_calm_corner_without_return(self, recorder):
        recorder.start("kid", "frustrated")
        usage = recorder.track_calm_corner_usage("word_building", returned_to_learning=False)
        assert usage.effectiveness is Effectiveness.NEUTRAL
        session = await recorder.end("calm", EnergyLevel.LOW)
        assert session.challenges_met == ()
