"""
VarietyTracker - Keeps the assistant's phrasing from going formulaic.

Tracks:
- Which insight openers/connectors/validation prompts were already used
- Which question, acknowledgment and exploration patterns appeared in replies
- How many full "insight reflection" pauses the conversation has had
- Structural tics ("Here's what I'm seeing...", bolded sentences)

Selection is deterministic: the tracker lists the unused phrases in their
fixed order instead of sampling, so the same state always produces the same
prompt text.
"""

import re

from pydantic import BaseModel, Field


INSIGHT_OPENERS = [
    "I want to pause for a second, because you just said something important...",
    "Hold on. Did you catch what you just said?",
    "That's worth sitting with for a moment.",
    "You just put your finger on something.",
    "Okay, that's significant.",
    "Let me reflect that back, because it matters...",
]

INSIGHT_CONNECTORS = [
    "There it is.",
    "That's exactly it.",
    "That's the shift.",
    "Now we're getting somewhere.",
    "That's real clarity.",
    "You just named it.",
]

VALIDATION_PROMPTS = [
    "Does that resonate?",
    "Is that what's actually going on?",
    "Does that land for you?",
    "Am I tracking this right?",
    "How does that feel to say out loud?",
]

BRIEF_ACKNOWLEDGMENTS = [
    "That's another important realization.",
    "Good. You're getting clear on this.",
    "That's the pattern.",
    "You see it.",
]

QUESTION_PATTERNS = [
    "What does that look like for you?",
    "Tell me more about...",
    "How does that feel when you say it?",
    "What comes up when you think about...?",
    "What do you think is behind that?",
    "Where does that come from?",
    "What would need to change for that to be different?",
    "How long has this been going on?",
]

ACKNOWLEDGMENT_PATTERNS = [
    "I hear you.",
    "That makes sense.",
    "I can see that.",
    "Got it.",
    "Okay, so...",
    "Right, so...",
    "I'm noticing...",
    "It sounds like...",
]

EXPLORATION_OPENERS = [
    "I'm curious about...",
    "Tell me more about...",
    "Earlier you mentioned...",
    "I want to come back to...",
    "You said something interesting about...",
    "Let's dig into that a bit...",
    "That's interesting...",
    "I'm picking up on...",
]

MAX_REFLECTIONS = 3
MIN_TURNS_BETWEEN_REFLECTIONS = 3

# Rotation: once this many indices are used, keep only the last two
MAX_TRACKED = 6
KEEP_AFTER_ROTATION = 2

MAX_HERES_WHAT = 2
MAX_BOLD_SENTENCES = 4

_HERES_WHAT_PATTERN = re.compile(
    r"here'?s what i'?m (seeing|noticing|hearing|curious about|picking up on)",
    re.IGNORECASE,
)
_BOLD_SENTENCE_PATTERN = re.compile(r"\*\*[^*]{10,}\*\*")


class VarietyTracker(BaseModel):
    """Phrase usage record carried in ConversationState."""
    insight_openers_used: list[int] = Field(default_factory=list)
    connectors_used: list[int] = Field(default_factory=list)
    validations_used: list[int] = Field(default_factory=list)
    question_patterns_used: list[int] = Field(default_factory=list)
    acknowledgment_patterns_used: list[int] = Field(default_factory=list)
    exploration_openers_used: list[int] = Field(default_factory=list)

    total_reflections: int = 0
    last_reflection_turn: int | None = None
    brief_acknowledgments_given: int = 0

    heres_what_count: int = 0
    bold_sentence_count: int = 0


def _available(phrases: list[str], used: list[int]) -> list[str]:
    return [phrase for index, phrase in enumerate(phrases) if index not in used]


def _pattern_key(phrase: str) -> str:
    return phrase.lower().replace("...", "").rstrip("?").strip()


def _record_matches(response_lower: str, phrases: list[str], used: list[int]) -> None:
    for index, phrase in enumerate(phrases):
        if index not in used and _pattern_key(phrase) in response_lower:
            used.append(index)


def _rotate(used: list[int]) -> list[int]:
    if len(used) >= MAX_TRACKED:
        return used[-KEEP_AFTER_ROTATION:]
    return used


def should_skip_reflection(tracker: VarietyTracker, current_turn: int) -> bool:
    """True when the reflection cap is hit or the last one was too recent."""
    if tracker.total_reflections >= MAX_REFLECTIONS:
        return True
    if tracker.last_reflection_turn is None:
        return False
    return current_turn - tracker.last_reflection_turn < MIN_TURNS_BETWEEN_REFLECTIONS


def reflection_cap_reached(tracker: VarietyTracker) -> bool:
    return tracker.total_reflections >= MAX_REFLECTIONS


def record_reflection(tracker: VarietyTracker, current_turn: int) -> None:
    tracker.total_reflections += 1
    tracker.last_reflection_turn = current_turn


def brief_acknowledgment(tracker: VarietyTracker) -> str:
    """Next brief acknowledgment in rotation (used once reflections are capped)."""
    return BRIEF_ACKNOWLEDGMENTS[tracker.brief_acknowledgments_given % len(BRIEF_ACKNOWLEDGMENTS)]


def record_used_patterns(tracker: VarietyTracker, response: str) -> None:
    """
    Detect which tracked patterns appear in an assistant reply and mark them used.

    Mutates the tracker in place; callers pass a copy they own.
    """
    response_lower = response.lower()

    _record_matches(response_lower, QUESTION_PATTERNS, tracker.question_patterns_used)
    _record_matches(response_lower, ACKNOWLEDGMENT_PATTERNS, tracker.acknowledgment_patterns_used)
    _record_matches(response_lower, EXPLORATION_OPENERS, tracker.exploration_openers_used)
    _record_matches(response_lower, INSIGHT_OPENERS, tracker.insight_openers_used)
    _record_matches(response_lower, INSIGHT_CONNECTORS, tracker.connectors_used)
    _record_matches(response_lower, VALIDATION_PROMPTS, tracker.validations_used)

    tracker.heres_what_count += len(_HERES_WHAT_PATTERN.findall(response))
    tracker.bold_sentence_count += len(_BOLD_SENTENCE_PATTERN.findall(response))

    tracker.question_patterns_used = _rotate(tracker.question_patterns_used)
    tracker.acknowledgment_patterns_used = _rotate(tracker.acknowledgment_patterns_used)
    tracker.exploration_openers_used = _rotate(tracker.exploration_openers_used)
    tracker.connectors_used = _rotate(tracker.connectors_used)
    tracker.insight_openers_used = _rotate(tracker.insight_openers_used)
    tracker.validations_used = _rotate(tracker.validations_used)


def _quoted(phrases: list[str], limit: int) -> str:
    return " | ".join(f'"{phrase}"' for phrase in phrases[:limit])


def _bulleted(phrases: list[str], limit: int) -> str:
    return "\n".join(f'- "{phrase}"' for phrase in phrases[:limit])


def build_variety_guidance(tracker: VarietyTracker, current_turn: int) -> str:
    """Build the response-variety block for the prompt context section."""
    since_last = (
        "none yet" if tracker.last_reflection_turn is None
        else str(current_turn - tracker.last_reflection_turn)
    )
    lines = [
        "## Response Variety",
        "Vary both your wording and your structure. Do not reuse patterns from earlier turns.",
        "",
        f"Reflections used: {tracker.total_reflections}/{MAX_REFLECTIONS}",
        f"Turns since last reflection: {since_last}",
    ]

    if tracker.heres_what_count >= MAX_HERES_WHAT:
        lines.append(
            f"STRUCTURE: \"Here's what I'm [seeing/noticing]\" has been used "
            f"{tracker.heres_what_count} times (max {MAX_HERES_WHAT}). Do not use it again."
        )
    if tracker.bold_sentence_count > MAX_BOLD_SENTENCES:
        lines.append(
            f"BOLD: {tracker.bold_sentence_count} sentences have been bolded so far. "
            "Use no bold text for the next several turns."
        )

    if reflection_cap_reached(tracker):
        lines.append(
            "Reflection limit reached: acknowledge briefly (e.g. "
            f"\"{brief_acknowledgment(tracker)}\") and move the conversation forward."
        )
    elif should_skip_reflection(tracker, current_turn):
        lines.append("Skip a full reflection pause this turn: the last one was too recent.")
    else:
        openers = _available(INSIGHT_OPENERS, tracker.insight_openers_used)
        connectors = _available(INSIGHT_CONNECTORS, tracker.connectors_used)
        if openers:
            lines.append("")
            lines.append("For reflection moments, use fresh phrasing:")
            lines.append(f"Openers: {_quoted(openers, 3)}")
            if connectors:
                lines.append(f"Connectors: {_quoted(connectors, 3)}")

    lines.extend([
        "",
        "Questions (rotate, do not repeat):",
        _bulleted(_available(QUESTION_PATTERNS, tracker.question_patterns_used), 4),
        "",
        "Acknowledgments (vary how you show you're listening):",
        _bulleted(_available(ACKNOWLEDGMENT_PATTERNS, tracker.acknowledgment_patterns_used), 4),
        "",
        "Exploration openers:",
        _bulleted(_available(EXPLORATION_OPENERS, tracker.exploration_openers_used), 4),
    ])

    used_categories = []
    if tracker.insight_openers_used:
        used_categories.append("insight openers: " + _quoted(
            [INSIGHT_OPENERS[i] for i in tracker.insight_openers_used], MAX_TRACKED))
    if tracker.connectors_used:
        used_categories.append("connectors: " + _quoted(
            [INSIGHT_CONNECTORS[i] for i in tracker.connectors_used], MAX_TRACKED))
    if used_categories:
        lines.append("")
        lines.append("Already used, avoid:")
        lines.extend(f"- {item}" for item in used_categories)

    return "\n".join(lines)
