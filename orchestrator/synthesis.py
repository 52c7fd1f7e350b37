"""
Closing synthesis.

Built once, when the closing sequence starts, from what the conversation has
established: the confirmed constraint, the user's own words about the future
they want and what is at stake, and what they have already tried. Every
closing step is grounded in this block. The SynthesisAgent can rewrite it
with an LLM; the deterministic version here is always available.
"""

from orchestrator.state import (
    ClosingBranch,
    ClosingSynthesis,
    ConstraintCategory,
    ConversationState,
    Disposition,
    EmotionalCharge,
    Level,
)


CONSTRAINT_DESCRIPTIONS = {
    ConstraintCategory.STRATEGY: {
        "confirmed_constraint": "A strategy constraint: the direction is not yet clear enough to commit effort to one path",
        "capability_gap": "An outside view that helps choose one focus and say no to the rest",
        "why_self_resolution_fails": "From inside the business every option looks reasonable, so the choice keeps getting deferred",
        "recommended_support_category": "strategic clarity support",
        "stakes": "Effort keeps getting spread across options, so none of them gets the momentum to work",
    },
    ConstraintCategory.EXECUTION: {
        "confirmed_constraint": "An execution constraint: the plan is there but the capacity and systems to carry it out are not",
        "capability_gap": "Structure that takes work off their plate and makes progress repeatable",
        "why_self_resolution_fails": "The person who would build the systems is the same person already at capacity",
        "recommended_support_category": "implementation and systems support",
        "stakes": "Growth stays capped at what one person can personally carry",
    },
    ConstraintCategory.PSYCHOLOGY: {
        "confirmed_constraint": "A psychology constraint: they know what to do, and something internal keeps them from doing it",
        "capability_gap": "A safe place to work through the pattern so action stops feeling like a risk",
        "why_self_resolution_fails": "The pattern protects itself; more information or more effort does not dissolve it",
        "recommended_support_category": "mindset and confidence support",
        "stakes": "The same pattern shows up at every new level, no matter how good the plan is",
    },
}

SELF_DIRECTED_SUPPORT = "one small self-directed step they can take this week"

_GENTLE_CHARGES = {EmotionalCharge.DEPLETED, EmotionalCharge.OVERWHELMED, EmotionalCharge.ANXIOUS}


def _emotional_tone(state: ConversationState) -> str:
    if state.emotional_charge in _GENTLE_CHARGES:
        return "gentle"
    if state.emotional_charge == EmotionalCharge.FRUSTRATED:
        return "matter-of-fact"
    if state.emotional_charge == EmotionalCharge.POSITIVE:
        return "warm and energised"
    return "steady"


def _pacing(state: ConversationState) -> str:
    if state.readiness.capacity == Level.LOW:
        return "slow, one idea per message"
    if state.relationship.disposition == Disposition.DIRECT_PRAGMATIST:
        return "brisk"
    return "measured"


def _compression(state: ConversationState) -> str:
    if state.relationship.disposition == Disposition.DIRECT_PRAGMATIST:
        return "high"
    if state.relationship.disposition == Disposition.EMOTIONAL_PROCESSOR:
        return "low"
    return "moderate"


def _directness(state: ConversationState) -> str:
    if state.relationship.disposition in (Disposition.DIRECT_PRAGMATIST, Disposition.SKEPTIC):
        return "very direct"
    if state.readiness.confidence == Level.LOW:
        return "gentle but clear"
    return "direct"


def build_default_synthesis(state: ConversationState, branch: ClosingBranch | None = None) -> ClosingSynthesis:
    """Deterministic closing synthesis from the current state."""
    category = state.constraint_hypothesis or ConstraintCategory.STRATEGY
    description = CONSTRAINT_DESCRIPTIONS[category]
    branch = branch or state.closing_sequence.branch or ClosingBranch.STANDARD

    if branch == ClosingBranch.SELF_DIRECTED:
        support = SELF_DIRECTED_SUPPORT
    else:
        support = description["recommended_support_category"]

    return ClosingSynthesis(
        confirmed_constraint=description["confirmed_constraint"],
        user_stated_future=state.stated_future,
        user_stated_stakes=state.stated_stakes,
        attempted_solutions=list(state.attempted_solutions),
        capability_gap=description["capability_gap"],
        why_self_resolution_fails=description["why_self_resolution_fails"],
        recommended_support_category=support,
        stakes_to_foreground=state.stated_stakes or description["stakes"],
        emotional_tone=_emotional_tone(state),
        pacing_approach=_pacing(state),
        language_compression=_compression(state),
        directness=_directness(state),
    )


def format_synthesis_for_prompt(synthesis: ClosingSynthesis) -> str:
    lines = [
        "## CLOSING SYNTHESIS",
        "Ground every closing turn in this. Use their words where you have them.",
        "",
        f"- Confirmed constraint: {synthesis.confirmed_constraint}",
    ]
    if synthesis.user_stated_future:
        lines.append(f'- The future they described: "{synthesis.user_stated_future}"')
    if synthesis.user_stated_stakes:
        lines.append(f'- What they said is at stake: "{synthesis.user_stated_stakes}"')
    if synthesis.attempted_solutions:
        tried = "; ".join(f'"{item}"' for item in synthesis.attempted_solutions)
        lines.append(f"- What they have already tried: {tried}")
    lines.extend([
        f"- Capability gap: {synthesis.capability_gap}",
        f"- Why working it out alone keeps failing: {synthesis.why_self_resolution_fails}",
        f"- Support category: {synthesis.recommended_support_category}",
        f"- Stakes to foreground: {synthesis.stakes_to_foreground}",
        "",
        "**Delivery:**",
        f"- Tone: {synthesis.emotional_tone}",
        f"- Pacing: {synthesis.pacing_approach}",
        f"- Compression: {synthesis.language_compression}",
        f"- Directness: {synthesis.directness}",
    ])
    return "\n".join(lines)
