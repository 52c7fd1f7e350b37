"""Per-session orchestrator for Mira conversations.

Agent architecture:
1. AdvisorAgent - the single conversational voice (streams text)
2. AnalysisAgent - optional LLM reading of each user turn (USE_LLM_ANALYSIS)
3. SynthesisAgent - optional personalisation of the closing synthesis

Flow per turn:
User -> signals (heuristic, optionally AnalysisAgent)
     -> decide()                      (pure, deterministic)
     -> build_system_prompt()         (pure, deterministic)
     -> AdvisorAgent (streaming)
     -> validate reply (one regeneration, closing fallback)
     -> record reply in memory and variety trackers -> User
"""

import logging
from typing import Any, AsyncIterator

from agents.advisor_agent import AdvisorAgent, build_user_prompt
from agents.analysis_agent import AnalysisAgent
from agents.synthesis_agent import SynthesisAgent
from config import Config
from memory.conversation_memory import record_assistant_turn
from memory.variety_tracker import record_used_patterns
from orchestrator.decision_engine import decide
from orchestrator.overlays import OverlayLibrary
from orchestrator.prompt_composer import SECTION_SEPARATOR, build_system_prompt
from orchestrator.response_validator import (
    CRITICAL_CLOSING_ACTIONS,
    build_correction_prompt,
    closing_fallback,
    validate_response,
)
from orchestrator.signals import TurnSignals, extract_signals
from orchestrator.state import Action, ConversationState, OrchestratorDecision

logger = logging.getLogger(__name__)


OPENING_MESSAGE = (
    "Hi, I'm Mira. I help business owners find the one thing that's really holding their business "
    "back, so the effort goes where it counts. To start, tell me a little about your business: "
    "who do you serve?"
)


def record_assistant_reply(state: ConversationState, reply: str) -> ConversationState:
    """Copy of state with the reply recorded in the memory and variety trackers."""
    new_state = state.model_copy(deep=True)
    record_used_patterns(new_state.variety_tracker, reply)
    record_assistant_turn(new_state.conversation_memory, reply)
    return new_state


class Orchestrator:
    """
    One Mira conversation.

    Holds the current ConversationState and message history. All decisions
    are made by decide(); this class wires signals, prompt composition, the
    advisor agent and reply validation together.

    API:
    - start() -> opening message
    - arespond_stream(user_input) -> stream_start / stream_delta / stream_end events
    - arespond(user_input) -> final stream_end payload
    """

    def __init__(
        self,
        session_id: str | None = None,
        state: ConversationState | None = None,
        history: list[dict[str, str]] | None = None,
        advisor: AdvisorAgent | None = None,
        analysis_agent: AnalysisAgent | None = None,
        synthesis_agent: SynthesisAgent | None = None,
        overlay_library: OverlayLibrary | None = None,
        version: int = 1,
    ):
        self.session_id = session_id
        self.state = state or ConversationState()
        self.history: list[dict[str, str]] = list(history or [])
        self.version = version
        self.advisor = advisor or AdvisorAgent()
        if analysis_agent is None and Config.USE_LLM_ANALYSIS:
            analysis_agent = AnalysisAgent()
        self.analysis_agent = analysis_agent
        self.synthesis_agent = synthesis_agent
        self.overlay_library = overlay_library
        self.last_decision: OrchestratorDecision | None = None

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self) -> dict[str, Any]:
        """Opening message for a new conversation."""
        self.history.append({"role": "assistant", "content": OPENING_MESSAGE})
        return {
            "reply": OPENING_MESSAGE,
            "phase": self.state.phase.value,
            "complete": False,
        }

    # ------------------------------------------------------------------
    # Turn pipeline
    # ------------------------------------------------------------------

    async def _analyse(self, user_input: str) -> TurnSignals:
        signals = extract_signals(user_input, self.state)
        if self.analysis_agent is None:
            return signals
        try:
            return await self.analysis_agent.aanalyse(user_input, self.state, self.history, signals)
        except Exception as e:
            logger.warning("AnalysisAgent failed, using heuristic signals: %s", e)
            return signals

    async def _enrich_synthesis(self, state: ConversationState) -> None:
        """Personalise the closing synthesis on the turn the closing sequence starts."""
        sequence = state.closing_sequence
        if self.synthesis_agent is None or sequence.synthesis is None:
            return
        try:
            sequence.synthesis = await self.synthesis_agent.asynthesize(state, self.history, sequence.synthesis)
        except Exception as e:
            logger.warning("SynthesisAgent failed, keeping default synthesis: %s", e)

    async def _finalise_reply(
        self,
        decision: OrchestratorDecision,
        state: ConversationState,
        instructions: str,
        user_prompt: str,
        draft: str,
    ) -> tuple[str, bool]:
        """
        Validate the streamed reply; regenerate once, then fall back.

        Returns (reply, replaced) where replaced means the streamed text was
        not the final reply.
        """
        result = validate_response(draft, decision.action)
        if result.valid:
            return draft, False

        correction = build_correction_prompt(result.violations, decision.action)
        retry = await self.advisor.arespond(instructions + SECTION_SEPARATOR + correction, user_prompt)
        if validate_response(retry, decision.action).valid:
            return retry, True

        if decision.action in CRITICAL_CLOSING_ACTIONS:
            fallback = closing_fallback(
                decision.action,
                state.constraint_hypothesis,
                state.closing_sequence.offer_declined,
                state.closing_sequence.offer_accepted,
            )
            logger.warning("Regenerated reply still invalid for %s, using fallback template", decision.action.value)
            return fallback, True

        logger.warning("Regenerated reply still invalid for %s, sending it anyway", decision.action.value)
        return retry, True

    async def arespond_stream(self, user_input: str) -> AsyncIterator[dict[str, Any]]:
        """
        Stream a response to the user. Yields:
        - {"type": "stream_start", "phase": ..., "action": ...}
        - {"type": "stream_delta", "delta": ...} (multiple)
        - {"type": "stream_end", ...} (final reply and turn metadata)

        State is committed only after the reply is final.
        """
        signals = await self._analyse(user_input)
        was_closing = self.state.closing_sequence.active
        decision, new_state = decide(self.state, user_input, signals)
        if new_state.closing_sequence.active and not was_closing:
            await self._enrich_synthesis(new_state)

        instructions = build_system_prompt(new_state, decision, self.overlay_library)
        user_prompt = build_user_prompt(user_input, self.history)

        yield {"type": "stream_start", "phase": new_state.phase.value, "action": decision.action.value}

        chunks = []
        async for delta in self.advisor.astream(instructions, user_prompt):
            chunks.append(delta)
            yield {"type": "stream_delta", "delta": delta}

        reply, replaced = await self._finalise_reply(
            decision, new_state, instructions, user_prompt, "".join(chunks).strip()
        )

        # A completed conversation is frozen; post-completion replies leave no trace in state
        if decision.action != Action.POST_COMPLETION:
            self.state = record_assistant_reply(new_state, reply)
        self.last_decision = decision
        self.history.append({"role": "user", "content": user_input})
        self.history.append({"role": "assistant", "content": reply})

        yield {"type": "stream_end", **self._build_result(decision, reply, replaced)}

    async def arespond(self, user_input: str) -> dict[str, Any]:
        """Non-streaming turn; returns the stream_end payload."""
        result: dict[str, Any] = {}
        async for event in self.arespond_stream(user_input):
            if event["type"] == "stream_end":
                result = event
        return result

    # ------------------------------------------------------------------
    # Result builders
    # ------------------------------------------------------------------

    def _build_result(self, decision: OrchestratorDecision, reply: str, replaced: bool) -> dict[str, Any]:
        return {
            "reply": reply,
            "replaced": replaced,
            "action": decision.action.value,
            "phase": self.state.phase.value,
            "turn": self.state.turns_total,
            "complete": self.state.is_complete,
        }

    def get_summary(self) -> dict[str, Any]:
        """Session summary for the REST API."""
        state = self.state
        return {
            "session_id": self.session_id,
            "phase": state.phase.value,
            "turns_total": state.turns_total,
            "constraint_hypothesis": state.constraint_hypothesis.value if state.constraint_hypothesis else None,
            "hypothesis_validated": state.hypothesis_validated,
            "closing_phase": state.closing_sequence.phase.value,
            "complete": state.is_complete,
            "last_action": state.last_action.value if state.last_action else None,
        }
