"""
SynthesisAgent - Personalises the closing synthesis.

Runs once, when the closing sequence starts. It receives the deterministic
synthesis built from state plus the transcript, and rewrites the fields in
the user's own language. The orchestrator keeps the deterministic version if
this agent fails.
"""

import json
from pathlib import Path
from typing import Any

from agno.agent import Agent
from agno.models.openai import OpenAIChat

from config import Config
from orchestrator.state import ClosingSynthesis, ConversationState


TRANSCRIPT_WINDOW = 30


class SynthesisAgent:
    def __init__(self, model_id: str | None = None):
        self.model_id = model_id or Config.MODEL_ID
        self._agent: Agent | None = None
        self._prompt_template: str | None = None

    def _load_prompt(self) -> str:
        if self._prompt_template is None:
            prompt_path = Path(__file__).parent.parent / "prompts" / "synthesis_agent_prompt.txt"
            self._prompt_template = prompt_path.read_text()
        return self._prompt_template

    def _ensure_agent(self, instructions: str) -> Agent:
        if not self._agent:
            kwargs: dict[str, Any] = dict(
                model=OpenAIChat(id=self.model_id),
                instructions=instructions,
                output_schema=ClosingSynthesis,
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
        state: ConversationState,
        history: list[dict[str, str]],
        draft: ClosingSynthesis,
    ) -> str:
        transcript = "\n".join(
            f"{message.get('role', 'user')}: {message.get('content', '')}"
            for message in history[-TRANSCRIPT_WINDOW:]
        )
        return self._load_prompt().format(
            constraint=state.constraint_hypothesis.value if state.constraint_hypothesis else "unconfirmed",
            branch=state.closing_sequence.branch.value if state.closing_sequence.branch else "standard",
            insights="; ".join(state.insights) or "none recorded",
            transcript=transcript or "(no transcript)",
            draft=draft.model_dump_json(indent=2),
        )

    async def asynthesize(
        self,
        state: ConversationState,
        history: list[dict[str, str]],
        draft: ClosingSynthesis,
    ) -> ClosingSynthesis:
        agent = self._ensure_agent(self._build_prompt(state, history, draft))
        response = await agent.arun("Write the closing synthesis.")
        result = response.content
        if isinstance(result, ClosingSynthesis):
            return result
        if isinstance(result, str):
            return ClosingSynthesis(**json.loads(result))
        raise ValueError(f"Unexpected synthesis response type: {type(result).__name__}")

    def cleanup(self) -> None:
        """Release agent resources."""
        self._agent = None
