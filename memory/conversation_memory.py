"""
ConversationMemory - Record of what the conversation has already covered.

Stores:
- Topics explored (append-only, ordered, no duplicates)
- Recent topic mentions and question themes (rolling windows)
- Clarity history for trend detection
- Cross-mapping language markers seen so far

Used by the decision engine to stop deepening exhausted topics, and by the
prompt composer to warn the model about circular questioning.
"""

import re

from pydantic import BaseModel, Field


MAX_TOPIC_MENTIONS = 10
MAX_QUESTIONS_TRACKED = 10
MAX_CLARITY_HISTORY = 6

# A topic mentioned this many times in the recent window is exhausted
TOPIC_EXHAUSTION_MENTIONS = 3

GENERAL_TOPIC = "general response"

TOPIC_PATTERNS = [
    re.compile(r"what'?s (stopping|preventing|holding|in the way)", re.IGNORECASE),
    re.compile(r"why (haven't|don't|can't|won't)", re.IGNORECASE),
    re.compile(r"\b(pipeline|marketing|clients|leads|sales)\b", re.IGNORECASE),
    re.compile(r"\b(systems|processes|automation|delegation|team)\b", re.IGNORECASE),
    re.compile(r"\b(time|capacity|bandwidth)\b", re.IGNORECASE),
    re.compile(r"\b(energy|motivation|burnout)\b", re.IGNORECASE),
    re.compile(r"\b(clarity|direction|focus|positioning|niche|offer)\b", re.IGNORECASE),
    re.compile(r"\b(pricing|revenue|money|income)\b", re.IGNORECASE),
    re.compile(r"\b(fear|confidence|doubt|imposter)\b", re.IGNORECASE),
    re.compile(r"\b(goals?|vision|future)\b", re.IGNORECASE),
]

QUESTION_THEMES = [
    (re.compile(r"what'?s (stopping|preventing|holding|blocking)", re.IGNORECASE), "blockers"),
    (re.compile(r"why (haven't|don't|can't)", re.IGNORECASE), "root cause"),
    (re.compile(r"what would (it|things) look like", re.IGNORECASE), "vision"),
    (re.compile(r"how (do|would|could) you", re.IGNORECASE), "approach"),
    (re.compile(r"tell me (more )?about", re.IGNORECASE), "elaboration"),
    (re.compile(r"what'?s (different|changed)", re.IGNORECASE), "change"),
    (re.compile(r"when did (this|you)", re.IGNORECASE), "timeline"),
    (re.compile(r"what have you tried", re.IGNORECASE), "past attempts"),
    (re.compile(r"does that (resonate|land|feel)", re.IGNORECASE), "validation"),
]

# Topic families that count toward ground covered
KEY_AREAS = {
    "business context": ("clients", "leads", "sales", "pricing", "revenue", "money", "income", "marketing", "pipeline"),
    "challenges": ("time", "capacity", "bandwidth", "energy", "burnout", "motivation"),
    "blockers": ("stopping", "preventing", "holding", "in the way", "fear", "doubt", "imposter", "confidence"),
    "past attempts": ("why", "systems", "processes", "automation", "delegation", "team"),
    "goals": ("goal", "vision", "future", "clarity", "direction", "focus", "positioning", "niche", "offer"),
}

PRIORITY_DIRECTIONS = [
    ("validation", "Move toward validating the hypothesis"),
    ("vision", "Ask what success looks like"),
    ("blockers", "Explore specific blockers"),
    ("past attempts", "Ask what they have tried"),
]

_LEVEL_ORDER = {"low": 0, "medium": 1, "high": 2}


class ConversationMemory(BaseModel):
    """Rolling memory of topics, question themes and clarity."""
    topics_explored: list[str] = Field(default_factory=list)
    topic_mentions: list[str] = Field(default_factory=list)
    questions_asked: list[str] = Field(default_factory=list)
    clarity_history: list[str] = Field(default_factory=list)
    language_markers: list[str] = Field(default_factory=list)
    ground_covered_score: float = 0.0


def extract_topic(message: str) -> str:
    """First matching topic phrase in a message, lowercased."""
    for pattern in TOPIC_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(0).lower()
    return GENERAL_TOPIC


def extract_question_theme(assistant_message: str) -> str:
    """Classify the kind of question the assistant asked."""
    for pattern, theme in QUESTION_THEMES:
        if pattern.search(assistant_message):
            return theme
    return "exploration"


def _word_overlap(first: str, second: str) -> float:
    words_a = {w for w in first.split() if len(w) > 3}
    words_b = {w for w in second.split() if len(w) > 3}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def _similar(topic: str, other: str) -> bool:
    topic, other = topic.lower(), other.lower()
    return topic in other or other in topic or _word_overlap(topic, other) > 0.5


def calculate_ground_covered(memory: ConversationMemory, hypothesis: str | None) -> float:
    """
    Score 0-1 for how much conversational ground has been covered.

    Topic breadth contributes up to 0.5, holding a hypothesis adds 0.2 and
    key-area coverage contributes up to 0.3.
    """
    topic_score = min(len(memory.topics_explored) / 8, 0.5)
    hypothesis_bonus = 0.2 if hypothesis else 0.0

    topics = [t.lower() for t in memory.topics_explored]
    areas_covered = sum(
        1 for keywords in KEY_AREAS.values()
        if any(keyword in topic for topic in topics for keyword in keywords)
    )
    area_score = areas_covered / len(KEY_AREAS) * 0.3

    return round(min(topic_score + hypothesis_bonus + area_score, 1.0), 2)


def _next_direction(memory: ConversationMemory) -> str:
    covered = set(memory.questions_asked)
    for theme, suggestion in PRIORITY_DIRECTIONS:
        if theme not in covered:
            return suggestion
    return "Enough exploration. Move toward diagnosis"


def detect_circular_exploration(memory: ConversationMemory, current_topic: str) -> tuple[bool, str]:
    """
    Detect the conversation circling back to covered ground.

    Returns (is_circular, suggestion).
    """
    if current_topic == GENERAL_TOPIC:
        similar_count = 0
    else:
        similar_count = sum(1 for topic in memory.topic_mentions if _similar(topic, current_topic))
    if similar_count >= 2:
        return True, _next_direction(memory)

    theme = extract_question_theme(current_topic)
    if memory.questions_asked.count(theme) >= 2:
        return True, f'Move past "{theme}" questions. That type has been asked several times'

    return False, ""


def is_topic_exhausted(memory: ConversationMemory, topic: str | None = None) -> bool:
    """True when the latest (or given) topic has been mentioned too often recently."""
    if topic is None:
        if not memory.topic_mentions:
            return False
        topic = memory.topic_mentions[-1]
    if topic == GENERAL_TOPIC:
        return False
    mentions = sum(1 for mention in memory.topic_mentions if _similar(mention, topic))
    return mentions >= TOPIC_EXHAUSTION_MENTIONS


def detect_clarity_trend(memory: ConversationMemory) -> str:
    """increasing, decreasing or stable, from the last four clarity readings."""
    history = memory.clarity_history
    if len(history) < 3:
        return "stable"

    levels = [_LEVEL_ORDER.get(level, 1) for level in history[-4:]]
    increasing = sum(1 for prev, cur in zip(levels, levels[1:]) if cur > prev)
    decreasing = sum(1 for prev, cur in zip(levels, levels[1:]) if cur < prev)

    if increasing >= 2 and decreasing == 0:
        return "increasing"
    if decreasing >= 2 and increasing == 0:
        return "decreasing"
    return "stable"


def record_user_turn(
    memory: ConversationMemory,
    user_message: str,
    clarity: str,
    hypothesis: str | None,
    markers: list[str] | None = None,
) -> str:
    """
    Record one user message in memory (mutates the memory passed in).

    Returns the extracted topic.
    """
    topic = extract_topic(user_message)
    if topic != GENERAL_TOPIC and topic not in memory.topics_explored:
        memory.topics_explored.append(topic)
    memory.topic_mentions = (memory.topic_mentions + [topic])[-MAX_TOPIC_MENTIONS:]
    memory.clarity_history = (memory.clarity_history + [clarity])[-MAX_CLARITY_HISTORY:]
    for marker in markers or []:
        if marker not in memory.language_markers:
            memory.language_markers.append(marker)
    memory.ground_covered_score = calculate_ground_covered(memory, hypothesis)
    return topic


def record_assistant_turn(memory: ConversationMemory, assistant_message: str) -> str:
    """Record the question theme of an assistant reply. Returns the theme."""
    theme = extract_question_theme(assistant_message)
    memory.questions_asked = (memory.questions_asked + [theme])[-MAX_QUESTIONS_TRACKED:]
    return theme


def build_memory_context(memory: ConversationMemory) -> str:
    """Memory block injected into the prompt context section."""
    lines = [
        "**Conversation Memory:**",
        f"- Topics explored: {', '.join(memory.topics_explored) or 'None yet'}",
    ]
    if memory.questions_asked:
        themes = list(dict.fromkeys(memory.questions_asked))
        lines.append(f"- Question types already asked: {', '.join(themes)}")
    lines.append(f"- Ground covered: {round(memory.ground_covered_score * 100)}%")
    lines.append(f"- Clarity trend: {detect_clarity_trend(memory)}")

    if memory.topic_mentions:
        is_circular, suggestion = detect_circular_exploration(memory, memory.topic_mentions[-1])
        if is_circular:
            lines.extend([
                "",
                "**WARNING: circular exploration detected.**",
                "This territory is already covered. Do NOT ask similar questions again.",
                f"Suggestion: {suggestion}",
            ])
    return "\n".join(lines)
