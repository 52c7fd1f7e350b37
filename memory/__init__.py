"""Memory module for topic coverage and phrasing variety."""

from memory.conversation_memory import ConversationMemory
from memory.variety_tracker import VarietyTracker

__all__ = ["ConversationMemory", "VarietyTracker"]
