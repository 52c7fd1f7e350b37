"""
Prompt composer.

Turns (state, decision) into the system prompt for the advisor model. Section
order is fixed:

1. base identity
2. overlays named by the decision, in order
3. conversation context (phase, hypothesis, readiness, emotion, memory, variety)
4. decision guidance for the chosen action
5. closing synthesis, while a closing sequence is running
6. anti-repetition guard, when the user just confirmed our understanding
7. language register for the current constraint hypothesis

Composition is deterministic: the same state and decision always produce the
same prompt.
"""

import logging

from config import Config, DISCOVERY_AREAS, get_discovery_area_names
from memory.conversation_memory import build_memory_context
from memory.variety_tracker import brief_acknowledgment, build_variety_guidance
from orchestrator import closing
from orchestrator.decision_engine import BRIEF_ACKNOWLEDGMENT_FOCUS, PIVOT_FOCUS
from orchestrator.exceptions import UnmappedActionError
from orchestrator.overlays import OverlayLibrary, get_overlay_library
from orchestrator.state import (
    Action,
    ComplexityLevel,
    ConstraintCategory,
    ConversationState,
    EmotionalCharge,
    Level,
    OrchestratorDecision,
    Phase,
)
from orchestrator.synthesis import build_default_synthesis, format_synthesis_for_prompt

logger = logging.getLogger(__name__)


SECTION_SEPARATOR = "\n\n---\n\n"
GUIDANCE_HEADER = "## DECISION GUIDANCE"


ACTION_GUIDANCE: dict[Action, str] = {
    Action.CONTAIN: (
        "Slow everything down. Acknowledge how much they are carrying in one or two short sentences. "
        "Do not analyse, diagnose or offer solutions this turn. Ask one gentle question about what "
        "feels most pressing right now, or simply check how they are doing."
    ),
    Action.VALIDATE: (
        "Reflect the pattern you are seeing back to them in plain words and check whether it fits. "
        "Name it as a possibility, not a verdict. End by asking whether that matches their experience."
    ),
    Action.DIAGNOSE: (
        "They have agreed to hear your read. Name the core constraint clearly and specifically, "
        "connect it to two or three things they told you, and explain briefly why it keeps the "
        "business stuck. Keep it to one short paragraph, then ask how it lands."
    ),
    Action.STRESS_TEST: (
        "Test the hypothesis before committing to it. Offer one plausible alternative explanation "
        "and ask which feels more true, or ask what would have to be true for the hypothesis to be wrong."
    ),
    Action.CROSS_MAP: (
        "The surface problem may have an upstream cause. Gently offer the connection between what "
        "they described and the deeper pattern, then ask whether that link feels real to them."
    ),
    Action.DEEPEN: (
        "Go one layer beneath their last answer. Ask about a specific recent example, what it cost "
        "them, or what they felt in that moment. One question only."
    ),
    Action.EXPLORE: (
        "Keep exploring. Acknowledge what they just said briefly and specifically, then ask one "
        "open question that moves the conversation to ground not yet covered."
    ),
    Action.REFLECT_INSIGHT: (
        "They just saw something important. Reflect their insight back in their own words, briefly "
        "name why it matters, and ask what it opens up for them. Let them own it."
    ),
    Action.SURFACE_CONTRADICTION: (
        "They hold two positions that pull against each other. Name both without judgment and ask "
        "which one is truer right now, or what it would mean if both were true."
    ),
    Action.BUILD_CRITERIA: (
        "Before any solution, ask them what a real fix would have to do for them. Help them name "
        "two or three criteria in their own words."
    ),
    Action.PRE_COMMITMENT_CHECK: (
        "Check their willingness to act on what they find. Ask, without pressure, whether they would "
        "be open to doing something about it if the picture becomes clear."
    ),
    Action.REQUEST_DIAGNOSIS_CONSENT: (
        "Ask permission before sharing your read of what is really going on. Make it easy to say "
        "not yet. Do not share the diagnosis in this message."
    ),
    Action.CHECK_BLOCKERS: (
        "Ask what might get in the way of acting on this. Listen for time, money, fear or other "
        "people. Do not solve the blockers yet."
    ),
    Action.EXPLORE_READINESS: (
        "Gauge readiness. Ask how ready they feel to move on this now, on a scale or in their own "
        "words, and what would make them more ready."
    ),
    Action.COMPLETE_WITH_HANDOFF: (
        "Wrap up the conversation warmly. Summarise in one or two sentences what you explored "
        "together and leave the door open. Do not introduce new topics or questions that require "
        "an answer."
    ),
    Action.CLOSING_REFLECT_IMPLICATION: (
        "Reflect what the confirmed constraint implies for the future they described. Use their "
        "words. Help them see the connection between the constraint and what they want."
    ),
    Action.CLOSING_REFLECT_STAKES: (
        "Reflect the stakes of leaving this unresolved, grounded in what they said matters. Be "
        "honest and calm, never alarmist. Let the statement sit; do not ask anything."
    ),
    Action.CLOSING_NAME_CAPABILITY_GAP: (
        "Name the capability gap: what it would take to resolve this constraint and why working it "
        "out alone keeps failing, referencing what they have already tried."
    ),
    Action.CLOSING_ASSERT_AND_ALIGN: (
        "State plainly the kind of support that closes this gap, as a category, and check whether "
        "that matches what they feel they need."
    ),
    Action.CLOSING_OFFER_SOLUTION: (
        "Make the offer. Describe in two or three sentences how a conversation with the team would "
        "address the constraint you identified together, then ask whether they would like that."
    ),
    Action.CLOSING_FACILITATE: (
        "Respond to what they actually said about the offer. Do not assume they accepted it and do "
        "not push the session again. Mention once, lightly, that the option to talk with the team "
        "stays open, and ask what they want to take away from this conversation."
    ),
    Action.CLOSING_SELF_DIRECTED_REFLECT: (
        "Reflect what the confirmed constraint means for them, with care for their limited "
        "resources right now. Make clear that progress is possible on their own terms."
    ),
    Action.CLOSING_SELF_DIRECTED_ACTION: (
        "Give them one small, concrete action they can take on their own this week that addresses "
        "the constraint. Keep it realistic for their current capacity."
    ),
    Action.REDIRECT_FROM_TACTICAL: (
        "They keep asking for tactics. Acknowledge the request briefly, then connect it to the "
        "underlying constraint and ask a question that returns to it. Do not hand out the tactic."
    ),
    Action.PROBE_DEEPER: (
        "Their answer stayed on the surface. Gently name that and invite one layer more, with a "
        "specific and easy-to-answer question."
    ),
    Action.PUSH_BACK_ON_LOW_EFFORT: (
        "Their replies are getting very short. Without blame, name it lightly and make answering "
        "easier: offer two concrete options or a simpler question."
    ),
    Action.SET_BOUNDARY: (
        "Set a calm, short boundary about how you are being spoken to. Do not mirror the hostility "
        "and do not lecture. Offer to continue if they want to."
    ),
    Action.BOUNDARY_CLOSE: (
        "End the conversation calmly and briefly. State that you are ending it here and wish them "
        "well. No questions."
    ),
    Action.ACKNOWLEDGE_FRUSTRATION: (
        "Acknowledge their frustration directly and own your part in it. Ask what would make this "
        "conversation more useful for them right now."
    ),
    Action.POST_COMPLETION: (
        "The conversation has already been wrapped up. Reply briefly and kindly. Do not restart the "
        "diagnostic process or make a new offer."
    ),
}

OFFER_ACCEPTED_GUIDANCE = (
    "They accepted the offer. Confirm warmly and simply, tell them the option to book is "
    "available in the interface, and ask if there is anything they want to bring to that call."
)

OFFER_DECLINED_GUIDANCE = (
    "They declined the offer. Respect that fully: acknowledge their choice without persuading, "
    "leave them with one useful thought about the constraint they can act on alone, and ask "
    "whether there is anything else they want to reflect on before you finish."
)

PIVOT_GUIDANCE = (
    "Your earlier read did not fit. Say so plainly and without defensiveness, let go of it, and ask "
    "an open question about what they see as the real issue."
)

ANTI_REPETITION_GUARD = (
    "## ANTI-REPETITION GUARD\n"
    "They just confirmed your understanding. Do not summarise or restate what they said again. "
    "Build on it and move the conversation forward."
)

CONSTRAINT_REGISTERS = {
    ConstraintCategory.STRATEGY: (
        "## LANGUAGE REGISTER: STRATEGY\n"
        "Speak in terms of direction, focus, choice and trade-offs. Useful words: clarity, focus, "
        "choosing, positioning, saying no. Avoid therapy language and avoid operational detail."
    ),
    ConstraintCategory.EXECUTION: (
        "## LANGUAGE REGISTER: EXECUTION\n"
        "Speak in terms of capacity, systems and flow of work. Useful words: bottleneck, structure, "
        "leverage, hand-off, repeatable. Stay concrete and practical."
    ),
    ConstraintCategory.PSYCHOLOGY: (
        "## LANGUAGE REGISTER: PSYCHOLOGY\n"
        "Speak in terms of patterns, safety and permission. Useful words: pattern, self-trust, "
        "protecting, allowed, ready. Be warm and unhurried; never pathologise."
    ),
}

EMOTION_NOTES = {
    EmotionalCharge.ANXIOUS: "They sound anxious. Keep the pace calm and reassuring.",
    EmotionalCharge.FRUSTRATED: "They sound frustrated. Be direct and skip filler.",
    EmotionalCharge.OVERWHELMED: "They are overwhelmed. Short sentences, one idea at a time.",
    EmotionalCharge.DEPLETED: "They sound depleted. Ask little of them this turn.",
    EmotionalCharge.HOSTILE: "They are hostile. Stay calm and do not escalate.",
    EmotionalCharge.POSITIVE: "They are energised. Match their energy without overselling.",
}


def _select_guidance(decision: OrchestratorDecision, state: ConversationState, strict: bool) -> str:
    action = decision.action
    if action == Action.CLOSING_FACILITATE:
        if state.closing_sequence.offer_declined:
            return OFFER_DECLINED_GUIDANCE
        if state.closing_sequence.offer_accepted:
            return OFFER_ACCEPTED_GUIDANCE
    if decision.focus_area == PIVOT_FOCUS:
        return PIVOT_GUIDANCE

    guidance = ACTION_GUIDANCE.get(action)
    if guidance is not None:
        return guidance
    if strict:
        raise UnmappedActionError(
            f"No decision guidance mapped for action '{action.value}'",
            data={"action": action.value},
        )
    logger.error("No decision guidance mapped for action %s, using explore guidance", action.value)
    return ACTION_GUIDANCE[Action.EXPLORE]


def build_guidance_section(
    state: ConversationState,
    decision: OrchestratorDecision,
    strict: bool | None = None,
) -> str:
    if strict is None:
        strict = Config.ORCHESTRATOR_STRICT

    parts = [GUIDANCE_HEADER, _select_guidance(decision, state, strict)]

    details = []
    if decision.hypothesis_to_validate:
        details.append(f"- Working hypothesis: {decision.hypothesis_to_validate} constraint")
    if decision.redirect_to:
        details.append(f"- Redirect toward: {decision.redirect_to}")
    if decision.focus_area == BRIEF_ACKNOWLEDGMENT_FOCUS:
        details.append(
            f'- Acknowledge their insight with a brief phrase such as "{brief_acknowledgment(state.variety_tracker)}" '
            "and move on without a full reflection"
        )
    elif decision.focus_area and not decision.action.is_closing_step and decision.focus_area != PIVOT_FOCUS:
        details.append(f"- Focus: {decision.focus_area.replace('_', ' ')}")
    if details:
        parts.append("\n".join(details))

    step = closing.step_for_action(decision.action)
    if step is not None:
        parts.append(closing.build_step_rules(step))

    return "\n\n".join(parts)


def build_context_section(state: ConversationState) -> str:
    lines = [
        "## CONVERSATION CONTEXT",
        f"- Phase: {state.phase.value} (turn {state.turns_total}, {state.turns_in_phase} in this phase)",
    ]

    if state.constraint_hypothesis is not None:
        status = "validated by the user" if state.hypothesis_validated else "not yet validated"
        lines.append(
            f"- Working hypothesis: {state.constraint_hypothesis.value} "
            f"(confidence {state.hypothesis.confidence:.2f}, {status})"
        )
    else:
        lines.append("- Working hypothesis: none yet")

    readiness = state.readiness
    lines.append(
        f"- Readiness: clarity {readiness.clarity.value}, confidence {readiness.confidence.value}, "
        f"capacity {readiness.capacity.value}"
    )
    if readiness.capacity == Level.LOW:
        lines.append("- Capacity is low: keep anything you suggest small.")
    if readiness.confidence == Level.LOW:
        lines.append("- Self-confidence is low: affirm what they already see clearly.")

    if state.insights:
        lines.append("- Insights they have named: " + "; ".join(f'"{insight}"' for insight in state.insights))

    lines.append(f"- Emotional state: {state.emotional_charge.value}")
    note = EMOTION_NOTES.get(state.emotional_charge)
    if note:
        lines.append(f"  {note}")

    if state.complexity_level == ComplexityLevel.COMPLEX:
        lines.append("- Complexity: several interlocking issues. Take them one at a time.")

    if state.phase == Phase.CONTEXT:
        missing = [
            DISCOVERY_AREAS[area]["description"].lower()
            for area in get_discovery_area_names()
            if area not in state.discovery_covered
        ]
        if missing:
            lines.append(f"- Still unknown about the business: {', '.join(missing)}")

    return "\n".join(lines) + "\n\n" + build_memory_context(state.conversation_memory) + "\n\n" + build_variety_guidance(
        state.variety_tracker, state.turns_total
    )


def _closing_in_progress(state: ConversationState, decision: OrchestratorDecision) -> bool:
    if decision.action.is_closing_step:
        return True
    return state.closing_sequence.active and state.phase == Phase.CLOSING


def compose_sections(
    state: ConversationState,
    decision: OrchestratorDecision,
    library: OverlayLibrary | None = None,
    strict: bool | None = None,
) -> list[str]:
    """Ordered prompt sections for one turn."""
    library = library or get_overlay_library()
    sections = []

    if library.base_identity:
        sections.append(library.base_identity)

    for key in decision.prompt_overlays:
        overlay = library.get(key)
        if overlay is None:
            logger.warning("Unknown overlay key %r skipped", key)
            continue
        sections.append(overlay)

    sections.append(build_context_section(state))
    sections.append(build_guidance_section(state, decision, strict))

    if _closing_in_progress(state, decision):
        synthesis = state.closing_sequence.synthesis or build_default_synthesis(state)
        sections.append(format_synthesis_for_prompt(synthesis))

    if state.learner_state.last_turn_confirmed_understanding:
        sections.append(ANTI_REPETITION_GUARD)

    if state.constraint_hypothesis is not None:
        sections.append(CONSTRAINT_REGISTERS[state.constraint_hypothesis])

    return sections


def build_system_prompt(
    state: ConversationState,
    decision: OrchestratorDecision,
    library: OverlayLibrary | None = None,
    strict: bool | None = None,
) -> str:
    return SECTION_SEPARATOR.join(compose_sections(state, decision, library, strict))
