# =============================================================================
# Unit Tests — Orchestrator (Full Pipeline over a SessionChannel)
# =============================================================================
#
# Drives Orchestrator.run() with in-memory providers while a consumer task
# drains the channel like the HTTP response body would.
# =============================================================================

from __future__ import annotations

import asyncio
import json

import pytest
from sse_starlette.sse import ServerSentEvent

from app.agents.classifier import CLASSIFICATION_FAILED_MESSAGE
from app.agents.orchestrator import (
    GENERIC_ERROR_MESSAGE,
    Orchestrator,
    PipelineStage,
    SessionState,
)
from app.agents.synthesizer import STREAM_FAILED_MESSAGE
from app.config import Settings
from app.services.channel import CancellationToken, SessionChannel
from fakes import FakeLLM, FakeSnapshotProvider, failing_snapshot_provider


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _settings(**overrides) -> Settings:
    values = {"max_experts": 4}
    values.update(overrides)
    return Settings(**values)


def _advise(orchestrator: Orchestrator, question: str = "Should I pay off my card?"):
    """Run one request; return (session, channel, decoded events)."""

    async def scenario():
        channel = SessionChannel(CancellationToken())
        consumer = asyncio.create_task(_drain(channel))
        session = await orchestrator.run(question, "2", channel)
        frames = await asyncio.wait_for(consumer, 5)
        return session, channel, frames

    session, channel, frames = _run(scenario())
    events = [json.loads(m.data) for m in frames if m.data is not None]
    return session, channel, events


async def _drain(channel: SessionChannel) -> list[ServerSentEvent]:
    return [message async for message in channel.frames()]


def _types(events) -> list[str]:
    return [e["type"] for e in events]


# ---------------------------------------------------------------------------
# Test: Happy Path
# ---------------------------------------------------------------------------


class TestHappyPath:
    def test_event_order(self):
        llm = FakeLLM()
        session, channel, events = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings())
        )
        types = _types(events)

        assert events[0]["stage"] == "initial"
        assert events[1]["stage"] == "classified"
        assert types[-1] == "complete"
        assert types.count("complete") == 1
        assert "error" not in types

        synth = next(
            i for i, e in enumerate(events) if e.get("stage") == "synthesizing"
        )
        first_delta = types.index("delta")
        last_agent = max(
            i for i, t in enumerate(types) if t in ("agent_start", "agent_complete")
        )
        assert last_agent < synth < first_delta

    def test_every_agent_starts_before_it_completes(self):
        _, _, events = _advise(
            Orchestrator(FakeSnapshotProvider(), FakeLLM(), _settings())
        )
        starts = [e["agent"] for e in events if e["type"] == "agent_start"]
        completes = [e["agent"] for e in events if e["type"] == "agent_complete"]
        assert sorted(starts) == sorted(completes)
        for agent in starts:
            start = next(
                i for i, e in enumerate(events)
                if e["type"] == "agent_start" and e["agent"] == agent
            )
            complete = next(
                i for i, e in enumerate(events)
                if e["type"] == "agent_complete" and e["agent"] == agent
            )
            assert start < complete

    def test_answer_is_the_concatenated_deltas(self):
        llm = FakeLLM(fragments=("\n", "Keep ", "going.", "  \n"))
        session, _, events = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings())
        )
        deltas = "".join(e["delta"] for e in events if e["type"] == "delta")
        assert deltas == "\nKeep going.  \n"
        assert events[-1]["answer"] == deltas
        assert events[-1]["done"] is True
        assert session.answer == deltas

    def test_session_reaches_done(self):
        session, channel, _ = _advise(
            Orchestrator(FakeSnapshotProvider(), FakeLLM(), _settings())
        )
        assert session.stage == PipelineStage.DONE
        assert session.history == [
            PipelineStage.INIT,
            PipelineStage.SNAPSHOT,
            PipelineStage.CLASSIFY,
            PipelineStage.ROUTE,
            PipelineStage.EXPERTS,
            PipelineStage.SYNTHESIZE,
            PipelineStage.DONE,
        ]
        assert "total" in session.stage_timings
        assert channel.closed
        assert channel.close() is False
        assert channel.consumer_done

    def test_anxious_recommendation_with_debt_runs_four_experts(self):
        llm = FakeLLM()
        session, _, _ = _advise(Orchestrator(FakeSnapshotProvider(), llm, _settings()))
        assert [k.value for k in session.experts] == [
            "financial_analyst",
            "behavioral_economist",
            "behavioral_therapist",
            "debt_strategist",
        ]
        assert len(llm.expert_calls) == 4

    def test_expert_cap_from_settings(self):
        llm = FakeLLM()
        session, _, _ = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings(max_experts=1))
        )
        assert len(session.experts) == 1
        assert llm.expert_calls == ["financial_analyst_analysis"]

    def test_stage_models_from_settings(self):
        llm = FakeLLM()
        settings = _settings(
            classifier_model="small", expert_model="medium", synthesizer_model="big"
        )
        _advise(Orchestrator(FakeSnapshotProvider(), llm, settings))
        assert llm.structured_kwargs[0]["model"] == "small"
        assert {k["model"] for k in llm.structured_kwargs[1:]} == {"medium"}
        assert llm.stream_calls[0]["model"] == "big"


# ---------------------------------------------------------------------------
# Test: Degradation
# ---------------------------------------------------------------------------


class TestDegradedExpert:
    def test_bad_expert_still_completes(self):
        llm = FakeLLM(expert_outputs={"debt_strategist": "{not json"})
        session, _, events = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings())
        )
        completes = {
            e["agent"]: e["degraded"] for e in events if e["type"] == "agent_complete"
        }
        assert completes["debt_strategist"] is True
        assert completes["financial_analyst"] is False
        assert _types(events)[-1] == "complete"
        assert session.stage == PipelineStage.DONE


# ---------------------------------------------------------------------------
# Test: Fatal Errors
# ---------------------------------------------------------------------------


class TestFatalErrors:
    def _assert_single_error(self, session: SessionState, channel, events):
        types = _types(events)
        assert types.count("error") == 1
        assert types[-1] == "error"
        assert "complete" not in types
        assert session.stage == PipelineStage.ERROR
        assert channel.terminal_sent
        assert channel.closed
        assert channel.consumer_done
        assert not channel.token.cancelled

    def test_snapshot_failure(self):
        llm = FakeLLM()
        session, channel, events = _advise(
            Orchestrator(failing_snapshot_provider(), llm, _settings())
        )
        self._assert_single_error(session, channel, events)
        assert events[-1]["message"] == "Could not load your financial records."
        assert llm.structured_calls == []

    def test_classification_failure(self):
        llm = FakeLLM(classification='{"question_type": "gossip"}')
        session, channel, events = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings())
        )
        self._assert_single_error(session, channel, events)
        assert events[-1]["message"] == CLASSIFICATION_FAILED_MESSAGE
        assert llm.expert_calls == []
        assert llm.stream_calls == []

    def test_classifier_provider_details_stay_out_of_the_stream(self):
        llm = FakeLLM(classify_error=RuntimeError(
            "Incorrect API key provided: sk-live-SECRET123 "
            "at https://internal-proxy:8443"
        ))
        session, channel, events = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings())
        )
        self._assert_single_error(session, channel, events)
        assert events[-1]["message"] == CLASSIFICATION_FAILED_MESSAGE
        assert session.error == CLASSIFICATION_FAILED_MESSAGE
        body = json.dumps(events)
        assert "sk-live-SECRET123" not in body
        assert "internal-proxy" not in body

    def test_stream_failure_after_deltas(self):
        llm = FakeLLM(
            fragments=("Start ",),
            stream_error=ConnectionError(
                "upstream 500 from https://internal-proxy:8443 org=org-XYZ"
            ),
        )
        session, channel, events = _advise(
            Orchestrator(FakeSnapshotProvider(), llm, _settings())
        )
        self._assert_single_error(session, channel, events)
        assert "delta" in _types(events)
        assert events[-1]["message"] == STREAM_FAILED_MESSAGE
        body = json.dumps(events)
        assert "org-XYZ" not in body
        assert "internal-proxy" not in body

    def test_unexpected_error_uses_generic_message(self):
        provider = FakeSnapshotProvider(error=KeyError("amount"))
        session, channel, events = _advise(
            Orchestrator(provider, FakeLLM(), _settings())
        )
        self._assert_single_error(session, channel, events)
        assert events[-1]["message"] == GENERIC_ERROR_MESSAGE


# ---------------------------------------------------------------------------
# Test: Client Disconnect
# ---------------------------------------------------------------------------


def _cancel_run(make_llm, provider=None):
    """Run with a channel whose token the fake LLM can cancel."""
    channel = None

    def cancel(*_):
        channel.client_gone()

    llm = make_llm(cancel)

    async def scenario():
        nonlocal channel
        channel = SessionChannel(CancellationToken())
        consumer = asyncio.create_task(_drain(channel))
        orchestrator = Orchestrator(provider or FakeSnapshotProvider(), llm, _settings())
        session = await orchestrator.run("q", "2", channel)
        frames = await asyncio.wait_for(consumer, 5)
        return session, frames

    session, frames = _run(scenario())
    events = [json.loads(m.data) for m in frames if m.data is not None]
    return session, llm, channel, events


class TestClientDisconnect:
    def _assert_aborted(self, session: SessionState, channel, events):
        assert session.stage == PipelineStage.ABORTED
        assert session.aborted
        assert session.error is None
        assert "error" not in _types(events)
        assert "complete" not in _types(events)
        assert channel.closed
        assert channel.consumer_done

    def test_disconnect_before_snapshot_does_no_work(self):
        provider = FakeSnapshotProvider()
        llm = FakeLLM()

        async def scenario():
            channel = SessionChannel(CancellationToken())
            consumer = asyncio.create_task(_drain(channel))
            channel.client_gone()
            session = await Orchestrator(provider, llm, _settings()).run(
                "q", "2", channel
            )
            frames = await asyncio.wait_for(consumer, 5)
            return session, channel, frames

        session, channel, frames = _run(scenario())
        self._assert_aborted(session, channel, [])
        assert [m.data for m in frames if m.data is not None] == []
        assert session.history == [PipelineStage.INIT, PipelineStage.ABORTED]
        assert provider.requested == []
        assert llm.structured_calls == []
        assert llm.stream_calls == []

    def test_disconnect_during_classification_runs_no_experts(self):
        session, llm, channel, events = _cancel_run(
            lambda cancel: FakeLLM(on_classify=cancel)
        )
        self._assert_aborted(session, channel, events)
        assert llm.expert_calls == []
        assert llm.stream_calls == []

    def test_disconnect_during_experts_skips_synthesis(self):
        session, llm, channel, events = _cancel_run(
            lambda cancel: FakeLLM(on_expert=cancel)
        )
        self._assert_aborted(session, channel, events)
        assert PipelineStage.EXPERTS in session.history
        assert PipelineStage.SYNTHESIZE not in session.history
        assert llm.stream_calls == []
        assert "delta" not in _types(events)
        assert "synthesizing" not in [e.get("stage") for e in events]

    def test_disconnect_during_synthesis_stops_deltas(self):
        def make_llm(cancel):
            def on_fragment(i):
                if i == 1:
                    cancel()

            return FakeLLM(fragments=("a", "b", "c", "d"), on_fragment=on_fragment)

        session, _, channel, events = _cancel_run(make_llm)
        deltas = [e["delta"] for e in events if e["type"] == "delta"]
        assert deltas == ["a"]
        self._assert_aborted(session, channel, events)

    def test_failure_after_disconnect_is_not_reported(self):
        def make_llm(cancel):
            return FakeLLM(on_classify=cancel, classification="garbage")

        session, _, channel, events = _cancel_run(make_llm)
        self._assert_aborted(session, channel, events)


# ---------------------------------------------------------------------------
# Test: Session State Machine
# ---------------------------------------------------------------------------


class TestSessionState:
    def test_terminal_stage_is_absorbing(self):
        session = SessionState(account_id="2")
        session.enter(PipelineStage.SNAPSHOT)
        session.enter(PipelineStage.ABORTED)
        with pytest.raises(RuntimeError):
            session.enter(PipelineStage.CLASSIFY)
        assert session.aborted
