# backend/tests/test_training_session.py
"""
Training session orchestration: transcript buffering, throttled checks,
stale-response handling, coaching delivery, teardown and the registry.
"""

import asyncio
from typing import List, Optional

import pytest

from app.agents.gate_progress import GateScore, ScoreResult
from app.agents.sales_engine import peek_sales_engine
from app.agents.script_gates import ScriptMode, UnknownScriptModeError, get_gate
from app.services.scoring_client import ScoringUnavailableError
from app.services.training_session import (
    Role,
    TrainingSession,
    TranscriptEvent,
    cleanup_all_sessions,
    end_training_session,
    get_active_session_count,
    get_training_session,
    start_training_session,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _result(similarity: float, gate: int = 1, adherence: float = 50.0, recommended: Optional[int] = None):
    return ScoreResult(
        gates=[GateScore(gate=gate, similarity=similarity)],
        adherence_score=adherence,
        recommended_gate=recommended,
    )


def _scores(similarities, adherence: float = 50.0):
    return ScoreResult(
        gates=[GateScore(gate=g, similarity=s) for g, s in similarities.items()],
        adherence_score=adherence,
    )


class FakeScorer:
    """Replays queued results; an entry may wait on an event or be an exception."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[tuple] = []

    async def score(self, transcript, current_gate, mode):
        self.calls.append((transcript, current_gate, mode))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        release, outcome = response if isinstance(response, tuple) else (None, response)
        if release is not None:
            await release.wait()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _session(scorer, **kwargs):
    updates = []

    async def on_update(data):
        updates.append(data)

    session = TrainingSession("sess-1", ScriptMode.ACQUISITION, scorer, on_update=on_update, **kwargs)
    return session, updates


class TestTranscript:
    @pytest.mark.asyncio
    async def test_empty_speech_never_requests_a_check(self):
        session, _ = _session(FakeScorer(_result(0.9)), check_interval=0.05)
        session.activate()

        session.add_transcript_event(Role.PERSONA, "Hi, who is this?")
        session.add_transcript_event("trainee", "   ")

        assert session.throttle.has_pending is False
        await session.end()

    @pytest.mark.asyncio
    async def test_excerpt_is_trainee_only_tail(self):
        session, _ = _session(FakeScorer(_result(0.1)), check_interval=10)
        session.activate()

        session.add_transcript_event("persona", "PERSONA LINE")
        session.add_transcript_event("trainee", "a" * 400)
        session.add_transcript_event("trainee", "b" * 200)

        excerpt = session.trainee_excerpt
        assert len(excerpt) == 500
        assert excerpt.endswith("b" * 200)
        assert "PERSONA" not in excerpt
        assert len(session.transcript) == 3
        await session.end()

    @pytest.mark.asyncio
    async def test_events_ignored_when_inactive(self):
        session, _ = _session(FakeScorer(_result(0.1)))
        assert session.add_transcript_event("trainee", "hello") is False
        assert session.transcript == []

    @pytest.mark.asyncio
    async def test_activate_rebuilds_buffer_from_history(self):
        scorer = FakeScorer(_result(0.9))
        session, updates = _session(scorer, check_interval=0.05)
        session.activate(history=[
            TranscriptEvent(Role.TRAINEE, "Hi, this is Sam.", 1.0),
            TranscriptEvent(Role.PERSONA, "Hello.", 2.0),
            TranscriptEvent(Role.TRAINEE, "Fair enough?", 3.0),
        ])

        assert session.trainee_excerpt == "Hi, this is Sam. Fair enough?"
        assert session.throttle.has_pending is True

        await asyncio.sleep(0.15)
        assert scorer.calls == [("Hi, this is Sam. Fair enough?", 1, ScriptMode.ACQUISITION)]
        await session.end()


class TestScoringLoop:
    @pytest.mark.asyncio
    async def test_result_is_applied_and_published(self):
        scorer = FakeScorer(_result(0.9, adherence=70))
        session, updates = _session(scorer, check_interval=0.05)
        session.activate()

        session.add_transcript_event("trainee", "I can promise you one of two things")
        await asyncio.sleep(0.15)

        assert session.gate_state.current_gate == 2
        progress = [u for u in updates if u["type"] == "script_progress"]
        assert len(progress) == 1
        assert progress[0]["gate_advanced"] is True
        assert progress[0]["gates"]["current_gate"] == 2
        assert progress[0]["session_id"] == "sess-1"
        await session.end()

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self):
        clock = FakeClock()
        release = asyncio.Event()
        scorer = FakeScorer((release, _result(0.1, recommended=8)), _result(0.9))
        session, updates = _session(scorer, check_interval=1.0, clock=clock)
        session.activate()

        clock.now = 1.0
        session.add_transcript_event("trainee", "first attempt")
        await asyncio.sleep(0)

        clock.now = 2.0
        session.add_transcript_event("trainee", "second attempt")
        await asyncio.sleep(0.01)
        assert session.gate_state.current_gate == 2

        release.set()
        await asyncio.sleep(0.01)

        # The older response would have jumped to gate 8
        assert session.gate_state.current_gate == 2
        assert session.stale_responses == 1
        assert len([u for u in updates if u["type"] == "script_progress"]) == 1
        await session.end()

    @pytest.mark.asyncio
    async def test_scoring_failure_leaves_state_unchanged(self):
        scorer = FakeScorer(ScoringUnavailableError("backend down"))
        session, updates = _session(scorer, check_interval=0.05)
        session.activate()

        session.add_transcript_event("trainee", "hello there")
        await asyncio.sleep(0.15)

        assert len(scorer.calls) == 1
        assert session.gate_state.current_gate == 1
        assert session.gate_state.gate_similarities == {}
        assert updates == []
        await session.end()

    @pytest.mark.asyncio
    async def test_callback_failure_does_not_break_loop(self):
        async def broken(data):
            raise RuntimeError("socket gone")

        session = TrainingSession("sess-2", "acquisition", FakeScorer(_result(0.9)), on_update=broken, check_interval=0.05)
        session.activate()
        session.add_transcript_event("trainee", "hello")
        await asyncio.sleep(0.15)

        assert session.gate_state.current_gate == 2
        await session.end()

    @pytest.mark.asyncio
    async def test_apply_feeds_streak_peak_and_coach(self):
        session, _ = _session(FakeScorer(_result(0.9)), stuck_seconds=15, cooldown_seconds=30)
        session.activate()

        # Each result also scores the next gate, which becomes current
        session.apply_score_result(_scores({1: 0.8, 2: 0.8}, adherence=95), now=0)
        session.apply_score_result(_scores({2: 0.8, 3: 0.8}, adherence=95), now=10)
        snapshot = session.apply_score_result(_scores({3: 0.8, 4: 0.8}, adherence=95), now=30)

        assert snapshot["gates"]["current_gate"] == 4
        assert snapshot["streak"]["streak"] == 3
        assert snapshot["streak"]["is_active"] is True
        assert snapshot["peak_mode"]["active"] is True
        assert snapshot["hints"]["stuck_since"] is None

        snapshot = session.apply_score_result(_scores({4: 0.1}, adherence=40), now=31)
        assert snapshot["streak"]["streak"] == 0
        assert snapshot["peak_mode"]["active"] is False
        assert snapshot["hints"]["stuck_since"] == 31
        await session.end()


class TestCoaching:
    @pytest.mark.asyncio
    async def test_stuck_gate_publishes_hint(self):
        session, updates = _session(FakeScorer(_result(0.1)), stuck_seconds=0.05, cooldown_seconds=30)
        session.activate()

        session.apply_score_result(_result(0.1))
        await asyncio.sleep(0.15)

        hints = [u for u in updates if u["type"] == "coach_hint"]
        assert len(hints) == 1
        assert hints[0]["gate"] == 1
        assert hints[0]["message"] == get_gate(ScriptMode.ACQUISITION, 1).coaching_hint
        await session.end()

    @pytest.mark.asyncio
    async def test_hints_can_be_disabled(self):
        session, updates = _session(FakeScorer(_result(0.1)), stuck_seconds=0.05, hints_enabled=False)
        session.activate()

        session.apply_score_result(_result(0.1))
        await asyncio.sleep(0.15)

        assert [u for u in updates if u["type"] == "coach_hint"] == []
        session.set_hints_enabled(True)
        assert session.snapshot()["hints"]["enabled"] is True
        await session.end()


class TestTeardown:
    @pytest.mark.asyncio
    async def test_end_cancels_timers_and_clears_state(self):
        clock = FakeClock()
        session, updates = _session(FakeScorer(_result(0.1)), check_interval=5, stuck_seconds=60, clock=clock)
        session.activate()

        session.apply_score_result(_result(0.1, adherence=30), now=0)
        session.add_transcript_event("trainee", "still talking")
        assert session.coach.has_pending_timer is True
        assert session.throttle.has_pending is True

        clock.now = 120.0
        summary = await session.end()

        assert session.active is False
        assert session.coach.has_pending_timer is False
        assert session.throttle.has_pending is False
        assert session.transcript == []
        assert session.trainee_excerpt == ""
        assert session.gate_state.current_gate == 1
        assert summary["call_seconds"] == 120.0
        assert summary["xp"]["base_xp"] == 120
        assert updates[-1]["type"] == "session_ended"

    @pytest.mark.asyncio
    async def test_response_landing_after_end_is_dropped(self):
        clock = FakeClock()
        release = asyncio.Event()
        scorer = FakeScorer((release, _result(0.9, recommended=5)))
        session, updates = _session(scorer, check_interval=1.0, clock=clock)
        session.activate()

        clock.now = 1.0
        session.add_transcript_event("trainee", "hello")
        await asyncio.sleep(0)
        await session.end()

        release.set()
        await asyncio.sleep(0.01)

        assert session.gate_state.current_gate == 1
        assert [u for u in updates if u["type"] == "script_progress"] == []

    @pytest.mark.asyncio
    async def test_response_from_before_restart_is_dropped(self):
        clock = FakeClock()
        release = asyncio.Event()
        scorer = FakeScorer((release, _result(0.1, recommended=8)), _result(0.1))
        session, updates = _session(scorer, check_interval=1.0, clock=clock)
        session.activate()

        clock.now = 1.0
        session.add_transcript_event("trainee", "before the restart")
        await asyncio.sleep(0)
        old_request_id = session.throttle.latest_request_id

        await session.end()
        session.activate()

        clock.now = 2.5
        session.add_transcript_event("trainee", "after the restart")
        await asyncio.sleep(0.01)
        assert session.throttle.latest_request_id > old_request_id

        release.set()
        await asyncio.sleep(0.01)

        # The pre-restart response would have jumped to gate 8
        assert session.gate_state.current_gate == 1
        assert session.stale_responses == 1
        await session.end()

    @pytest.mark.asyncio
    async def test_summary_reports_bests(self):
        session, _ = _session(FakeScorer(_result(0.9)))
        session.activate()
        for i in range(4):
            session.apply_score_result(_scores({i + 1: 0.9, i + 2: 0.9}, adherence=96))

        summary = session.summary()
        assert summary["best_streak"] == 4
        assert summary["best_adherence_score"] == 96
        assert summary["gate_reached"] == 5
        assert summary["total_gates"] == 8
        assert summary["xp"]["bonus_xp"] == 6
        await session.end()


class TestSessionRegistry:
    @pytest.mark.asyncio
    async def test_start_and_end(self):
        session = await start_training_session("call-a", "disposition", scorer=FakeScorer(_result(0.1)))
        try:
            assert session.active is True
            assert session.mode == ScriptMode.DISPOSITION
            assert get_training_session("call-a") is session
            assert get_active_session_count() == 1
            assert peek_sales_engine("call-a") is not None

            summary = await end_training_session("call-a")
            assert summary["total_gates"] == 5
            assert get_training_session("call-a") is None
            assert peek_sales_engine("call-a") is None
        finally:
            await cleanup_all_sessions()

    @pytest.mark.asyncio
    async def test_restart_replaces_session_and_engine(self):
        try:
            first = await start_training_session("call-b", scorer=FakeScorer(_result(0.1)))
            peek_sales_engine("call-b").update_pillar("motivation", True)

            second = await start_training_session("call-b", scorer=FakeScorer(_result(0.1)))

            assert second is not first
            assert first.active is False
            assert get_active_session_count() == 1
            assert not any(peek_sales_engine("call-b").pillars.values())
        finally:
            await cleanup_all_sessions()

    @pytest.mark.asyncio
    async def test_start_resumes_sales_process(self):
        try:
            first = await start_training_session("call-f", scorer=FakeScorer(_result(0.1)))
            engine = peek_sales_engine("call-f")
            for pillar in ("motivation", "timeline", "condition", "price_anchor"):
                engine.update_pillar(pillar, True)
            engine.complete_underwriting()
            saved = engine.snapshot()

            await start_training_session("call-f", scorer=FakeScorer(_result(0.1)), sales_state=saved)

            resumed = peek_sales_engine("call-f")
            assert resumed is not engine
            assert resumed.phase.value == "OFFER_STAGE"
            assert resumed.can_reveal_offer() is True
            assert first.active is False
        finally:
            await cleanup_all_sessions()

    @pytest.mark.asyncio
    async def test_bad_sales_state_keeps_running_session(self):
        try:
            session = await start_training_session("call-g", scorer=FakeScorer(_result(0.1)))
            engine = peek_sales_engine("call-g")

            with pytest.raises(ValueError):
                await start_training_session(
                    "call-g", scorer=FakeScorer(_result(0.1)), sales_state={"phase": "HAGGLING"}
                )

            assert get_training_session("call-g") is session
            assert session.active is True
            assert peek_sales_engine("call-g") is engine
        finally:
            await cleanup_all_sessions()

    @pytest.mark.asyncio
    async def test_unknown_mode_is_refused(self):
        with pytest.raises(UnknownScriptModeError):
            await start_training_session("call-c", "wholesale", scorer=FakeScorer(_result(0.1)))
        assert get_training_session("call-c") is None

    @pytest.mark.asyncio
    async def test_end_unknown_session(self):
        assert await end_training_session("nope") is None

    @pytest.mark.asyncio
    async def test_cleanup_all(self):
        await start_training_session("call-d", scorer=FakeScorer(_result(0.1)))
        await start_training_session("call-e", scorer=FakeScorer(_result(0.1)))

        assert await cleanup_all_sessions() == 2
        assert get_active_session_count() == 0
        assert peek_sales_engine("call-d") is None
