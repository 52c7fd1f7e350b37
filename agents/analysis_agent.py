"""
AnalysisAgent - LLM reading of one user turn.

Produces the same TurnSignals model as the heuristic extractor in
orchestrator/signals.py, so the decision engine is indifferent to which one
ran. The heuristic reading is included in the prompt as a starting point.
Enabled with USE_LLM_ANALYSIS; the orchestrator falls back to the heuristic
signals whenever this agent fails.
"""

import json
from pathlib import Path
from typing import Any

from agno.agent import Agent
from agno.models.openai import OpenAIChat

from config import Config
from orchestrator.signals import TurnSignals
from orchestrator.state import ConversationState


TRANSCRIPT_WINDOW = 6


class AnalysisAgent:
    """Structured signal extraction with an LLM."""

    def __init__(self, model_id: str | None = None):
        self.model_id = model_id or Config.ANALYSIS_MODEL_ID
        self._agent: Agent | None = None
        self._prompt_template: str | None = None

    def _load_prompt(self) -> str:
        if self._prompt_template is None:
            prompt_path = Path(__file__).parent.parent / "prompts" / "analysis_agent_prompt.txt"
            self._prompt_template = prompt_path.read_text()
        return self._prompt_template

    def _ensure_agent(self, instructions: str) -> Agent:
        if not self._agent:
            kwargs: dict[str, Any] = dict(
                model=OpenAIChat(id=self.model_id),
                instructions=instructions,
                output_schema=TurnSignals,
                markdown=False,
                debug_mode=False,
                use_json_mode=True,
            )
            self._agent = Agent(**kwargs)
        else:
            self._agent.instructions = instructions
        return self._agent

    def _build_prompt(
        self,
        user_message: str,
        state: ConversationState,
        history: list[dict[str, str]],
        heuristic: TurnSignals,
    ) -> str:
        transcript = "\n".join(
            f"{message.get('role', 'user')}: {message.get('content', '')}"
            for message in history[-TRANSCRIPT_WINDOW:]
        )
        return self._load_prompt().format(
            phase=state.phase.value,
            hypothesis=state.constraint_hypothesis.value if state.constraint_hypothesis else "none",
            hypothesis_validated=state.hypothesis_validated,
            last_action=state.last_action.value if state.last_action else "none",
            transcript=transcript or "(no earlier messages)",
            heuristic_signals=heuristic.model_dump_json(indent=2),
            user_message=user_message,
        )

    @staticmethod
    def _coerce(result: Any) -> TurnSignals:
        if isinstance(result, TurnSignals):
            return result
        if isinstance(result, str):
            return TurnSignals(**json.loads(result))
        raise ValueError(f"Unexpected analysis response type: {type(result).__name__}")

    def analyse(
        self,
        user_message: str,
        state: ConversationState,
        history: list[dict[str, str]],
        heuristic: TurnSignals,
    ) -> TurnSignals:
        agent = self._ensure_agent(self._build_prompt(user_message, state, history, heuristic))
        return self._coerce(agent.run("Analyse the latest user message.").content)

    async def aanalyse(
        self,
        user_message: str,
        state: ConversationState,
        history: list[dict[str, str]],
        heuristic: TurnSignals,
    ) -> TurnSignals:
        """Async version of analyse."""
        agent = self._ensure_agent(self._build_prompt(user_message, state, history, heuristic))
        response = await agent.arun("Analyse the latest user message.")
        return self._coerce(response.content)

    def cleanup(self) -> None:
        """Release agent resources."""
        self._agent = None
