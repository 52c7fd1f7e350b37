"""
Agents module for Mira.

Agents:
1. AdvisorAgent - The conversational voice, driven by per-turn instructions
2. AnalysisAgent - Optional LLM reading of a user turn into TurnSignals
3. SynthesisAgent - Personalises the closing synthesis once per conversation

The decision of what to do each turn is never made by an agent; it belongs
to the decision engine in orchestrator/decision_engine.py.
"""

from agents.advisor_agent import AdvisorAgent, build_user_prompt
from agents.analysis_agent import AnalysisAgent
from agents.synthesis_agent import SynthesisAgent

__all__ = [
    "AdvisorAgent",
    "AnalysisAgent",
    "SynthesisAgent",
    "build_user_prompt",
]
