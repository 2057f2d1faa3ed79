# =============================================================================
# LangGraph Orchestrator — Advisory Pipeline over a Session Channel
# =============================================================================
#
# Wires the snapshot, classify, route, experts and synthesize steps into a
# LangGraph StateGraph and drives it for one request, emitting events to the
# request's SessionChannel.
#
# GRAPH TOPOLOGY (every arrow is a cancellation gate):
#
#   START ─?─▶ snapshot ─?─▶ classify ─?─▶ route ─?─▶ experts ─?─▶ synthesize ─▶ END
#              │             │             │          │            │
#              └─────────────┴─────────────┴──────────┴────────────┴──▶ END (aborted)
#
# A gate routes to END as soon as the CancellationToken is cancelled, so no
# later stage starts after the client has gone. A stage already in flight
# runs to completion and its output is discarded.
#
# STATE MACHINE (SessionState.stage):
#   INIT → SNAPSHOT → CLASSIFY → ROUTE → EXPERTS → SYNTHESIZE → DONE
#   any non-terminal stage → ABORTED  (client gone: no further events)
#   any non-terminal stage → ERROR    (one error event, if still writable)
#
# Teardown (channel closed, which ends the response body and its pings) runs
# exactly once, in the `finally` of Orchestrator.run(), whichever terminal
# state is reached.
#
# DEPENDENCIES:
# The snapshot provider, LLM provider and settings are constructed once at
# process start (app/main.py) and injected here. The compiled graph is built
# once per Orchestrator and shared by every request.
# =============================================================================

from __future__ import annotations

import enum
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.classifier import Classification, classify_question
from app.agents.errors import AdvisorError, ClientGoneError
from app.agents.executor import ExpertResult, run_experts
from app.agents.experts import ExpertKind, get_expert_spec
from app.agents.router import route_to_experts
from app.agents.synthesizer import synthesize
from app.config import Settings
from app.models.events import (
    AgentCompleteEvent,
    AgentStartEvent,
    CompleteEvent,
    DeltaEvent,
    ErrorEvent,
    StatusEvent,
)
from app.services.channel import CancellationToken, SessionChannel
from app.services.llm import LLMProvider
from app.services.snapshot import FinancialSnapshot, SnapshotProvider

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong while preparing your answer."


# ---------------------------------------------------------------------------
# Session State
# ---------------------------------------------------------------------------


class PipelineStage(str, enum.Enum):
    INIT = "init"
    SNAPSHOT = "snapshot"
    CLASSIFY = "classify"
    ROUTE = "route"
    EXPERTS = "experts"
    SYNTHESIZE = "synthesize"
    DONE = "done"
    ABORTED = "aborted"
    ERROR = "error"


TERMINAL_STAGES = frozenset(
    {PipelineStage.DONE, PipelineStage.ABORTED, PipelineStage.ERROR}
)


@dataclass
class SessionState:
    """Per-request bookkeeping owned by the orchestrator."""

    account_id: str
    stage: PipelineStage = PipelineStage.INIT
    aborted: bool = False
    error: str | None = None
    answer: str = ""
    experts: tuple[ExpertKind, ...] = ()
    stage_timings: dict[str, int] = field(default_factory=dict)
    history: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.INIT])

    def enter(self, stage: PipelineStage) -> None:
        if self.stage in TERMINAL_STAGES:
            raise RuntimeError(
                f"Cannot enter {stage.value} from terminal stage {self.stage.value}"
            )
        self.stage = stage
        self.history.append(stage)
        if stage == PipelineStage.ABORTED:
            self.aborted = True


class PipelineState(TypedDict, total=False):
    """
    State that flows through the LangGraph graph.

    Uses total=False so nodes only need to return the keys they update.
    Holds live objects (channel, token, session); safe because the graph
    has no checkpointer.
    """

    # --- Input (set by run) ---
    question: str
    account_id: str
    session: SessionState
    channel: SessionChannel
    token: CancellationToken

    # --- Intermediate (set by nodes) ---
    snapshot: FinancialSnapshot
    classification: Classification
    experts: tuple[ExpertKind, ...]
    expert_results: list[ExpertResult]

    # --- Output (set by synthesize) ---
    answer: str
    completed: bool


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """
    Runs the advisory pipeline for one request at a time per call.

    Args:
        snapshot_provider: Loads the account snapshot.
        llm: Completion capability shared by every stage.
        settings: Models, budgets, caps and timeouts.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        llm: LLMProvider,
        settings: Settings,
    ) -> None:
        self._snapshot_provider = snapshot_provider
        self._llm = llm
        self._settings = settings
        self._graph = self._build_graph()

    # ------------------------------------------------------------------
    # Graph Assembly
    # ------------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(PipelineState)
        builder.add_node("snapshot", self._snapshot_node)
        builder.add_node("classify", self._classify_node)
        builder.add_node("route", self._route_node)
        builder.add_node("experts", self._experts_node)
        builder.add_node("synthesize", self._synthesize_node)

        order = [START, "snapshot", "classify", "route", "experts", "synthesize"]
        for source, target in zip(order, order[1:]):
            builder.add_conditional_edges(source, _gate(target), [target, END])
        builder.add_edge("synthesize", END)

        return builder.compile()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        question: str,
        account_id: str,
        channel: SessionChannel,
    ) -> SessionState:
        """
        Drive one request from INIT to a terminal stage.

        Never raises for pipeline failures: they are reported on the channel
        and recorded on the returned SessionState.
        """
        session = SessionState(account_id=account_id)
        token = channel.token
        started = time.monotonic()

        logger.info(
            "Advisory run started: account=%s, question='%s'",
            account_id,
            question[:80],
        )

        try:
            await channel.send(
                StatusEvent(
                    stage="initial",
                    message="📊 Analyzing your financial data...",
                )
            )

            result = await self._graph.ainvoke(
                {
                    "question": question,
                    "account_id": account_id,
                    "session": session,
                    "channel": channel,
                    "token": token,
                }
            )

            if result.get("completed"):
                session.answer = result.get("answer", "")
                session.enter(PipelineStage.DONE)
            else:
                session.enter(PipelineStage.ABORTED)

        except ClientGoneError:
            session.enter(PipelineStage.ABORTED)
        except Exception as e:
            self._fail(session, e, token)
            if session.stage == PipelineStage.ERROR and channel.writable:
                message = session.error or GENERIC_ERROR_MESSAGE
                await channel.send(ErrorEvent(message=message))
        finally:
            channel.close()
            session.stage_timings["total"] = _elapsed_ms(started)
            logger.info(
                "Advisory run finished: account=%s, stage=%s, timings=%s",
                account_id,
                session.stage.value,
                session.stage_timings,
            )

        return session

    def _fail(
        self,
        session: SessionState,
        error: Exception,
        token: CancellationToken,
    ) -> None:
        """Record a failure as ERROR, or as ABORTED if the client already left."""
        if session.stage in TERMINAL_STAGES:
            logger.exception("Failure after terminal stage %s", session.stage.value)
            return
        if token.cancelled:
            logger.info(
                "Discarding failure in %s after client disconnect: %s",
                session.stage.value,
                error,
            )
            session.enter(PipelineStage.ABORTED)
            return

        if isinstance(error, AdvisorError) and error.user_visible:
            logger.error("Advisory run failed in %s: %s", session.stage.value, error)
            session.error = str(error)
        else:
            logger.exception("Unexpected failure in %s", session.stage.value)
            session.error = GENERIC_ERROR_MESSAGE
        session.enter(PipelineStage.ERROR)

    # ------------------------------------------------------------------
    # Node Functions
    # ------------------------------------------------------------------
    # Each node receives the full state and returns a partial update dict.
    # ------------------------------------------------------------------

    async def _snapshot_node(self, state: PipelineState) -> dict:
        session = state["session"]
        with _stage(session, PipelineStage.SNAPSHOT):
            snapshot = await self._snapshot_provider.get_snapshot(state["account_id"])
        return {"snapshot": snapshot}

    async def _classify_node(self, state: PipelineState) -> dict:
        session = state["session"]
        with _stage(session, PipelineStage.CLASSIFY):
            classification = await classify_question(
                state["question"],
                state["snapshot"].totals,
                self._llm,
                model=self._settings.classifier_model,
                max_tokens=self._settings.classifier_max_tokens,
                timeout=self._settings.classifier_timeout_seconds,
            )
        await state["channel"].send(
            StatusEvent(
                stage="classified",
                message="🧭 Question understood, bringing in the right experts...",
            )
        )
        return {"classification": classification}

    async def _route_node(self, state: PipelineState) -> dict:
        session = state["session"]
        with _stage(session, PipelineStage.ROUTE):
            experts = route_to_experts(
                state["classification"],
                state["snapshot"],
                max_experts=self._settings.max_experts,
            )
        session.experts = experts
        return {"experts": experts}

    async def _experts_node(self, state: PipelineState) -> dict:
        session = state["session"]
        channel = state["channel"]

        async def on_start(expert: ExpertKind) -> None:
            await channel.send(
                AgentStartEvent(
                    agent=expert.value,
                    message=get_expert_spec(expert).start_message,
                )
            )

        async def on_complete(result: ExpertResult) -> None:
            await channel.send(
                AgentCompleteEvent(
                    agent=result.expert_id.value,
                    message=get_expert_spec(result.expert_id).complete_message,
                    degraded=result.degraded,
                )
            )

        s = self._settings
        snapshot = state["snapshot"]
        with _stage(session, PipelineStage.EXPERTS):
            results = await run_experts(
                state["experts"],
                question=state["question"],
                classification=state["classification"],
                snapshot=snapshot,
                llm=self._llm,
                concurrency=s.expert_concurrency,
                model=s.expert_model,
                max_tokens=s.expert_max_tokens,
                snapshot_payload=snapshot.compact(
                    fixed_costs_top_n=s.snapshot_fixed_costs_top_n,
                    incomes_top_n=s.snapshot_incomes_top_n,
                    assets_top_n=s.snapshot_assets_top_n,
                    liabilities_top_n=s.snapshot_liabilities_top_n,
                    spending_top_n=s.snapshot_spending_top_n,
                ),
                on_start=on_start,
                on_complete=on_complete,
            )
        return {"expert_results": results}

    async def _synthesize_node(self, state: PipelineState) -> dict:
        session = state["session"]
        channel = state["channel"]
        token = state["token"]

        with _stage(session, PipelineStage.SYNTHESIZE):
            await channel.send(
                StatusEvent(
                    stage="synthesizing",
                    message=get_expert_spec(ExpertKind.PERSUASION_COACH).start_message,
                )
            )
            stream = synthesize(
                state["snapshot"],
                state["question"],
                state["classification"],
                state["expert_results"],
                self._llm,
                model=self._settings.synthesizer_model,
                temperature=self._settings.synthesizer_temperature,
                max_tokens=self._settings.synthesizer_max_tokens,
            )
            async for fragment in stream:
                if token.cancelled:
                    await stream.aclose()
                    break
                await channel.send(DeltaEvent(delta=fragment))

        if token.cancelled:
            raise ClientGoneError("Client disconnected during synthesis")

        answer = stream.text
        await channel.send(CompleteEvent(answer=answer))
        return {"answer": answer, "completed": True}


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _gate(next_node: str):
    """Conditional edge: continue to `next_node` unless cancelled."""

    def route(state: PipelineState) -> str:
        if state["token"].cancelled:
            logger.info("Client gone, not starting %s", next_node)
            return END
        return next_node

    return route


@contextmanager
def _stage(session: SessionState, stage: PipelineStage):
    """Enter a stage and record how long it took."""
    session.enter(stage)
    started = time.monotonic()
    try:
        yield
    finally:
        session.stage_timings[stage.value] = _elapsed_ms(started)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
