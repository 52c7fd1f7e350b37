"""
AdvisorAgent - The single conversational voice of Mira.

The orchestrator decides WHAT to do each turn and composes the system
prompt; this agent only speaks. Instructions are replaced every turn, and
conversation history is passed in the user prompt by the orchestrator so
that persisted sessions can be resumed on any process.
"""

from typing import Any, AsyncIterator

from agno.agent import Agent
from agno.models.openai import OpenAIChat

from config import Config


# Messages of history included in each prompt
HISTORY_WINDOW = 20

SPEAKER_LABELS = {"user": "User", "assistant": "Mira"}


def build_user_prompt(user_message: str, history: list[dict[str, str]]) -> str:
    """Recent transcript plus the latest message, as the agent's user prompt."""
    lines = []
    recent = history[-HISTORY_WINDOW:]
    if recent:
        lines.append("Conversation so far:")
        for message in recent:
            speaker = SPEAKER_LABELS.get(message.get("role", ""), "User")
            lines.append(f"{speaker}: {message.get('content', '')}")
        lines.append("")
    lines.append("Latest message from the user:")
    lines.append(user_message)
    lines.append("")
    lines.append("Reply as Mira, following the system instructions for this turn.")
    return "\n".join(lines)


class AdvisorAgent:
    """Plain-text conversational agent driven by per-turn instructions."""

    def __init__(self, model_id: str | None = None):
        self.model_id = model_id or Config.MODEL_ID
        self._agent: Agent | None = None

    def _ensure_agent(self, instructions: str) -> Agent:
        if not self._agent:
            kwargs: dict[str, Any] = dict(
                model=OpenAIChat(id=self.model_id),
                instructions=instructions,
                markdown=False,
                debug_mode=False,
            )
            self._agent = Agent(**kwargs)
        else:
            self._agent.instructions = instructions
        return self._agent

    async def arespond(self, instructions: str, user_prompt: str) -> str:
        """Run the agent and return the full reply text."""
        agent = self._ensure_agent(instructions)
        response = await agent.arun(user_prompt)
        return (response.content or "").strip()

    async def astream(self, instructions: str, user_prompt: str) -> AsyncIterator[str]:
        """Yield reply text deltas as they arrive."""
        agent = self._ensure_agent(instructions)
        stream = agent.arun(user_prompt, stream=True)

        async for event in stream:
            chunk_text = ""
            if hasattr(event, "content") and isinstance(event.content, str) and event.content:
                chunk_text = event.content
            elif hasattr(event, "delta") and event.delta:
                chunk_text = event.delta
            if chunk_text:
                yield chunk_text

    def cleanup(self) -> None:
        """Release agent resources."""
        self._agent = None
