"""Unit tests for the live session state machine and adaptation rules."""

import asyncio
import random

import pytest

from math_tutor.services.session_monitor import (
    TUTOR_TIPS,
    SessionError,
    SessionManager,
    TipCategory,
    TipThrottle,
)


@pytest.fixture
def manager(clock, store):
    """Manager with a fake clock, seeded randomness and no filler tips."""
    return SessionManager(store=store, clock=clock, rng=random.Random(7), filler_probability=0.0)


def complete(manager, *outcomes):
    return [manager.mark_exercise_complete(outcome) for outcome in outcomes]


class TestLifecycle:
    """Tests for start, pause, resume and end."""

    def test_start_initializes_session(self, manager, plan):
        """A new session starts running with the full countdown and a greeting."""
        session = manager.start_session(plan)
        assert session.status == "running"
        assert session.time_remaining == 1800
        assert session.performance.current_difficulty == "medium"
        assert session.difficulty_history == ["medium"]
        assert session.messages[0].type == "greeting"

    def test_empty_plan_starts_easy(self, manager, plan_factory):
        """Without exercises the session difficulty defaults to easy."""
        session = manager.start_session(plan_factory(count=0))
        assert session.performance.current_difficulty == "easy"

    def test_only_one_session(self, manager, plan):
        """Starting twice is rejected."""
        manager.start_session(plan)
        with pytest.raises(SessionError):
            manager.start_session(plan)

    def test_countdown_only_while_running(self, manager, plan):
        """Paused sessions keep their remaining time."""
        manager.start_session(plan)
        manager.tick(10)
        assert manager.pause_session()
        manager.tick(10)
        assert manager.session.time_remaining == 1790
        assert not manager.pause_session()
        assert manager.resume_session()
        manager.tick()
        assert manager.session.time_remaining == 1789

    def test_sync_clock_catches_up(self, manager, plan, clock):
        """Whole elapsed seconds come off the countdown; the remainder carries."""
        manager.start_session(plan)
        clock.advance(5.5)
        assert manager.sync_clock() == 1795
        clock.advance(0.5)
        assert manager.sync_clock() == 1794

    def test_paused_time_not_counted(self, manager, plan, clock):
        """Time spent paused is not charged on resume."""
        manager.start_session(plan)
        manager.pause_session()
        clock.advance(600)
        manager.resume_session()
        clock.advance(2)
        assert manager.sync_clock() == 1798

    def test_expiry_ends_session(self, manager, plan_factory):
        """Reaching zero ends the session with a time-expired summary."""
        manager.start_session(plan_factory(total_minutes=1))
        assert manager.tick(60) == 0
        assert manager.session is None
        assert manager.last_summary.ended_reason == "time_expired"
        assert manager.mark_exercise_complete(True) is None

    def test_run_countdown(self, manager, plan_factory):
        """The async countdown drives the session to expiry."""
        manager.start_session(plan_factory(total_minutes=1))
        asyncio.run(manager.run_countdown(interval=0))
        assert manager.session is None
        assert manager.last_summary.duration_minutes == 1

    def test_complete_ignored_while_paused(self, manager, plan):
        """Completions are only accepted while running."""
        manager.start_session(plan)
        manager.pause_session()
        assert manager.mark_exercise_complete(True) is None
        assert manager.session.exercises_completed == 0


class TestAdaptation:
    """Tests for rule-based difficulty adaptation and tips."""

    def test_counters_and_streaks(self, manager, plan):
        """Streaks track the newest run and accuracy covers the session."""
        manager.start_session(plan)
        complete(manager, True, True, False)
        perf = manager.session.performance
        assert manager.session.exercises_completed == 3
        assert manager.session.exercises_correct == 2
        assert perf.consecutive_correct == 0
        assert perf.consecutive_wrong == 1
        assert perf.recent_accuracy == pytest.approx(66.7)
        assert manager.session.current_exercise_index == 3

    def test_streak_grows_at_ceiling(self, manager, plan_factory):
        """With no tier to move to the streak keeps counting."""
        manager.start_session(plan_factory(difficulty="hard", count=6))
        results = complete(manager, True, True, True, True)
        assert not results[-1].should_adjust_difficulty
        assert manager.session.performance.consecutive_correct == 4
        assert manager.session.performance.adaptations_made == 0

    def test_struggling_steps_down(self, manager, plan):
        """Two misses in a row lower the tier and send guidance."""
        manager.start_session(plan)
        results = complete(manager, False, False)
        assert results[-1].should_adjust_difficulty
        assert results[-1].new_difficulty == "easy"
        perf = manager.session.performance
        assert perf.current_difficulty == "easy"
        assert perf.adaptations_made == 1
        assert perf.consecutive_wrong == 0
        assert manager.session.difficulty_history == ["medium", "easy"]
        assert [m.type for m in manager.session.messages][-2:] == ["adaptation", "guidance"]

    def test_struggling_at_floor(self, manager, plan_factory):
        """At the easiest tier struggling is reported without a change."""
        manager.start_session(plan_factory(difficulty="easy"))
        result = complete(manager, False, False)[-1]
        assert not result.should_adjust_difficulty
        assert result.new_difficulty == "easy"
        assert result.tip_type == "guidance"

    def test_struggling_on_low_accuracy(self, clock, store, plan):
        """A single miss counts as struggling once session accuracy drops under 40%."""
        manager = SessionManager(store=store, clock=clock, rng=random.Random(5), tip_cooldown=0, filler_probability=0.0)
        manager.start_session(plan)
        first, second, third = complete(manager, False, True, False)
        assert second.tutor_tip is None
        assert manager.session.exercises_completed == 3
        assert third.should_adjust_difficulty
        assert third.new_difficulty == "easy"
        assert third.tip_type == "guidance"
        assert third.tutor_tip in TUTOR_TIPS[TipCategory.STRUGGLING]
        assert manager.session.messages[-1].content == third.tutor_tip

    def test_excelling_not_throttled(self, manager, plan):
        """A throttled tip never blocks the difficulty change."""
        manager.start_session(plan)
        results = complete(manager, True, True, True)
        assert results[1].tip_type == "encouragement"
        assert results[2].should_adjust_difficulty
        assert results[2].new_difficulty == "hard"
        assert results[2].tutor_tip is None
        assert manager.session.performance.current_difficulty == "hard"

    def test_comeback(self, clock, store, plan_factory):
        """A correct answer after a rough patch is encouraged."""
        manager = SessionManager(store=store, clock=clock, rng=random.Random(3), tip_cooldown=0, filler_probability=0.0)
        manager.start_session(plan_factory(count=6))
        results = complete(manager, False, False, False, True)
        assert results[-1].tip_type == "encouragement"
        assert results[-1].tutor_tip in TUTOR_TIPS[TipCategory.COMEBACK]
        assert not results[-1].should_adjust_difficulty

    def test_tip_cooldown(self, manager, plan_factory, clock):
        """Tips are spaced out by the cooldown."""
        manager.start_session(plan_factory(count=6))
        first, second, third = complete(manager, False, False, False)
        assert second.tutor_tip is not None
        assert third.tutor_tip is None
        clock.advance(121)
        fourth = manager.mark_exercise_complete(False)
        assert fourth.tip_type == "guidance"

    def test_adapted_exercise_uses_live_difficulty(self, manager, plan):
        """The next exercise is served at the session's current tier."""
        manager.start_session(plan)
        complete(manager, False, False)
        adapted = manager.get_adapted_exercise()
        assert adapted.difficulty == "easy"
        assert manager.session.plan.exercises[2].difficulty == "medium"

    def test_skip_exercise(self, manager, plan):
        """Skipping advances the index but not the counters."""
        manager.start_session(plan)
        assert manager.skip_exercise()
        assert manager.session.current_exercise_index == 1
        assert manager.session.exercises_completed == 0


class TestProactiveTips:
    """Tests for time- and progress-based tips."""

    def test_halfway_fires_once(self, manager, plan, clock):
        """The halfway milestone is announced a single time."""
        manager.start_session(plan)
        complete(manager, True, False)
        clock.advance(200)
        tip = manager.get_proactive_tip()
        assert tip.tip.startswith("Halfway")
        clock.advance(200)
        assert manager.get_proactive_tip() is None

    def test_almost_done_retires_halfway(self, manager, plan_factory, clock):
        """Passing ninety percent announces the finish and skips the halfway tip."""
        manager.start_session(plan_factory(count=10))
        complete(manager, True, False, True, False, True, False, True, False, True)
        clock.advance(200)
        tip = manager.get_proactive_tip()
        assert tip.tip == "Almost done! Just a few more to go."
        assert tip.type == "encouragement"
        clock.advance(200)
        assert manager.get_proactive_tip() is None

    def test_cooldown_blocks_proactive(self, manager, plan):
        """Nothing is offered right after another tip."""
        manager.start_session(plan)
        complete(manager, True, True)
        assert manager.get_proactive_tip() is None

    def test_low_time_has_priority(self, manager, plan, clock):
        """Low remaining time beats a pending milestone."""
        manager.start_session(plan)
        complete(manager, True, False)
        manager.session.time_remaining = 200
        clock.advance(200)
        tip = manager.get_proactive_tip()
        assert tip.tip.startswith("5 minutes left")
        assert tip.type == "encouragement"

    def test_filler_tip(self, clock, store, plan):
        """With certainty configured a general tip is offered."""
        manager = SessionManager(store=store, clock=clock, rng=random.Random(1), filler_probability=1.0)
        manager.start_session(plan)
        tip = manager.get_proactive_tip()
        assert tip.type == "tip"
        assert tip.tip in TUTOR_TIPS[TipCategory.GENERAL]


class TestThrottle:
    """Tests for the shared tip cooldown."""

    def test_ready_after_cooldown(self, clock):
        """The throttle opens again once the cooldown passes."""
        throttle = TipThrottle(clock)
        assert throttle.ready(120)
        throttle.mark()
        assert not throttle.ready(120)
        clock.advance(120)
        assert throttle.ready(120)


class TestSummary:
    """Tests for the end-of-session summary."""

    def test_summary_contents(self, manager, plan, store):
        """Summary reports accuracy, XP and readiness and is persisted."""
        manager.start_session(plan)
        complete(manager, True, True)
        summary = manager.end_session()
        assert summary.accuracy == 100
        assert summary.xp_earned == 20
        assert summary.difficulty_progression == "medium"
        assert summary.readiness.level == "ready"
        assert summary.readiness.strong_areas == ["multi-step problems"]
        assert summary.ended_reason == "ended"
        assert manager.session is None
        assert len(store.select("session_summaries")) == 1

    def test_progression_and_xp_by_attempted_tier(self, manager, plan):
        """XP and progression follow the tier each exercise was actually played at."""
        manager.start_session(plan)
        complete(manager, False, False, True)
        summary = manager.end_session()
        assert summary.difficulty_progression == "medium → easy"
        assert summary.xp_earned == 5
        assert summary.adaptations_made == 1

    def test_end_without_session(self, manager):
        """Ending with nothing running returns nothing."""
        assert manager.end_session() is None
