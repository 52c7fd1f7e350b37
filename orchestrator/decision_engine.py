"""
Decision engine.

decide() is the single entry point: it takes the current ConversationState,
the user's latest message and (optionally) pre-computed TurnSignals, and
returns the action for this turn plus the next state. It never mutates the
state it was given.

A turn runs in three steps:
1. apply_signals   - fold the turn's signals into a copy of the state
2. select_action   - walk the priority cascade, first matching rule wins
3. apply_decision  - record what the chosen action commits to (flags,
                     counters, phase transitions, closing pointer)

The cascade order is the behaviour: safety and relationship repair outrank
everything, the closing script outranks hypothesis work, and the context
phase never reaches hypothesis actions.
"""

import logging
from typing import Callable

from config import (
    Config,
    DISCOVERY_MIN_AREAS,
    DISCOVERY_MIN_TURNS,
    DISCOVERY_SUFFICIENT_AREAS,
    get_discovery_area_names,
)
from memory.conversation_memory import (
    GENERAL_TOPIC,
    ConversationMemory,
    is_topic_exhausted,
    record_user_turn,
)
from memory.variety_tracker import (
    reflection_cap_reached,
    record_reflection,
    should_skip_reflection,
)
from orchestrator import closing
from orchestrator.signals import TurnSignals, extract_signals
from orchestrator.state import (
    Action,
    ClosingPhase,
    ComplexityLevel,
    ConstraintCategory,
    ConversationState,
    Disposition,
    FrustrationLevel,
    HypothesisTracking,
    Level,
    OrchestratorDecision,
    Phase,
    TrustLevel,
)
from orchestrator.synthesis import build_default_synthesis

logger = logging.getLogger(__name__)


# Hypothesis confidence
MAX_CONFIDENCE = 0.95
CONFIDENCE_BASE = 0.3
MIN_REINFORCEMENT = 0.1
RESISTANCE_DECAY = 0.15
CONFIDENCE_FLOOR = 0.3
VALIDATED_CONFIDENCE = 0.85
PIVOT_RESISTANCE = 2

# Hypothesis progression thresholds
VALIDATE_CONFIDENCE = 0.6
VALIDATE_MIN_TURNS = 2
VALIDATE_CONFIDENCE_EARLY = 0.75
CRITERIA_CONFIDENCE = 0.7
CRITERIA_MIN_TURNS = 5
CONSENT_CONFIDENCE = 0.8
CONSENT_FALLBACK_TURNS = 15
ACCELERATION_COVERAGE = 0.5
GROUND_COVERED_THRESHOLD = 0.6
CROSS_MAP_MIN_TURNS = 4
DEEPEN_MIN_TURNS = 3
MAX_PRE_DIAGNOSIS_READINESS = 1
MAX_POST_DIAGNOSIS_READINESS = 1

# Relationship
HOSTILE_CLOSE_TURNS = 3
MAX_FRUSTRATION_ACKNOWLEDGMENTS = 3
MAX_PUSHBACKS = 3
LOW_EFFORT_EXIT_CONSECUTIVE = 5
MIN_TURNS_AFTER_CONTAINMENT = 2

# Tactical drift
TACTICAL_CONSECUTIVE = 3
TACTICAL_TOTAL = 8
REDIRECT_SPACING = 4
MAX_REDIRECTS = 2

# Insight work
MIN_TURNS_FOR_REFLECTION = 3
MAX_CONTRADICTIONS = 2

MAX_CAPTURED_STATEMENTS = 5

BRIEF_ACKNOWLEDGMENT_FOCUS = "brief_acknowledgment"
PIVOT_FOCUS = "hypothesis_pivot"
OFFER_DECLINED_FOCUS = "offer_declined"

PUSHBACK_OVERLAYS = ["low_effort_pushback", "low_effort_pushback_2", "low_effort_pushback_3"]

DISPOSITION_OVERLAYS = {
    Disposition.DIRECT_PRAGMATIST: "direct_communication_style",
    Disposition.SKEPTIC: "skeptical_user_style",
    Disposition.EMOTIONAL_PROCESSOR: "emotional_processing_style",
}

# Cross-mapping: when the surface constraint's language points upstream.
# (surface category, required markers (all), upstream category)
CROSS_MAP_RULES = [
    (ConstraintCategory.EXECUTION, ("scattered",), ConstraintCategory.STRATEGY),
    (ConstraintCategory.STRATEGY, ("paralysis", "identity"), ConstraintCategory.PSYCHOLOGY),
    (ConstraintCategory.STRATEGY, ("fear", "identity"), ConstraintCategory.PSYCHOLOGY),
    (ConstraintCategory.PSYCHOLOGY, ("capacity_overload", "systems"), ConstraintCategory.EXECUTION),
]

_TRUST_UPGRADE = {
    TrustLevel.ESTABLISHING: TrustLevel.BUILDING,
    TrustLevel.BUILDING: TrustLevel.ESTABLISHED,
    TrustLevel.ESTABLISHED: TrustLevel.ESTABLISHED,
    TrustLevel.DAMAGED: TrustLevel.BUILDING,
}


def decide(
    state: ConversationState,
    user_message: str,
    signals: TurnSignals | None = None,
) -> tuple[OrchestratorDecision, ConversationState]:
    """
    Choose the action for this turn and compute the next state.

    Pure with respect to its inputs: the state passed in is never modified.
    Once the conversation is complete every call returns post_completion and
    an unchanged copy of the state.
    """
    if state.phase == Phase.COMPLETE:
        decision = OrchestratorDecision(
            action=Action.POST_COMPLETION,
            reasoning="Conversation already complete; reply warmly without reopening it",
            prompt_overlays=["post_completion"],
        )
        return decision, state.model_copy(deep=True)

    if signals is None:
        signals = extract_signals(user_message, state)

    new_state = state.model_copy(deep=True)
    apply_signals(new_state, user_message, signals)
    decision = select_action(new_state, signals)
    apply_decision(new_state, decision)

    logger.info(
        "Turn %d: action=%s phase=%s overlays=%s | %s",
        new_state.turns_total,
        decision.action.value,
        new_state.phase.value,
        decision.prompt_overlays,
        decision.reasoning,
    )
    return decision, new_state


# =============================================================================
# STEP 1: FOLD SIGNALS INTO STATE
# =============================================================================

def apply_signals(state: ConversationState, user_message: str, signals: TurnSignals) -> None:
    """Update counters and trackers from this turn's signals (mutates state)."""
    state.turns_total += 1
    state.turns_in_phase += 1
    if state.turns_since_containment is not None:
        state.turns_since_containment += 1

    state.learner_state.last_turn_confirmed_understanding = signals.confirmed_understanding
    state.emotional_charge = signals.emotional_charge
    state.overwhelm_detected = signals.overwhelm
    if signals.complexity is not None:
        state.complexity_level = signals.complexity

    _update_readiness(state, signals)
    _update_relationship(state, signals)
    _update_effort_tracking(state, signals)
    _update_discovery(state, signals)
    _update_hypothesis(state, signals)
    _update_closing_responses(state, signals)
    _capture_user_statements(state, signals)

    hypothesis = state.constraint_hypothesis.value if state.constraint_hypothesis else None
    record_user_turn(
        state.conversation_memory,
        user_message,
        state.readiness.clarity.value,
        hypothesis,
        signals.language_markers,
    )


def _update_readiness(state: ConversationState, signals: TurnSignals) -> None:
    for dimension in ("clarity", "confidence", "capacity"):
        level = getattr(signals.readiness, dimension)
        if level is not None:
            setattr(state.readiness, dimension, level)


def _update_relationship(state: ConversationState, signals: TurnSignals) -> None:
    relationship = state.relationship
    relationship.frustration_level = signals.frustration

    if signals.hostile:
        relationship.hostile_turns += 1
        relationship.trust_level = TrustLevel.DAMAGED
    elif signals.frustration == FrustrationLevel.SIGNIFICANT:
        relationship.trust_level = TrustLevel.DAMAGED
    elif signals.alignment or signals.breakthrough:
        relationship.trust_level = _TRUST_UPGRADE[relationship.trust_level]
    elif (
        relationship.trust_level == TrustLevel.ESTABLISHING
        and state.turns_total >= 4
        and not signals.low_effort
    ):
        relationship.trust_level = TrustLevel.BUILDING

    if signals.disposition is not None:
        relationship.disposition = signals.disposition
    if signals.engagement is not None:
        relationship.engagement = signals.engagement


def _update_effort_tracking(state: ConversationState, signals: TurnSignals) -> None:
    low_effort = state.low_effort
    if signals.low_effort:
        low_effort.consecutive += 1
        low_effort.total += 1
    else:
        # Re-engagement restarts the pushback ladder
        low_effort.consecutive = 0
        low_effort.pushback_count = 0

    tactical = state.tactical
    if signals.tactical_request:
        tactical.consecutive += 1
        tactical.total += 1
    else:
        tactical.consecutive = 0

    if signals.financial_constraint or signals.severe_depletion:
        state.resource_constraint_detected = True


def _update_discovery(state: ConversationState, signals: TurnSignals) -> None:
    for area in signals.discovery_areas:
        if area not in state.discovery_covered:
            state.discovery_covered.append(area)


def _update_hypothesis(state: ConversationState, signals: TurnSignals) -> None:
    tracking = state.hypothesis
    held = state.constraint_hypothesis

    if signals.resistance and held is not None:
        tracking.resistance_count += 1
        tracking.confidence = max(CONFIDENCE_FLOOR, round(tracking.confidence - RESISTANCE_DECAY, 2))
        if state.last_action == Action.STRESS_TEST:
            tracking.stress_test_passed = False
        return

    category = signals.hypothesis_category
    if category is not None:
        if held is None:
            state.constraint_hypothesis = category
            tracking.confidence = min(MAX_CONFIDENCE, round(CONFIDENCE_BASE + signals.hypothesis_strength, 2))
            logger.debug("Adopted hypothesis %s at %.2f", category.value, tracking.confidence)
        elif category == held:
            boost = max(MIN_REINFORCEMENT, signals.hypothesis_strength / 2)
            tracking.confidence = min(MAX_CONFIDENCE, round(tracking.confidence + boost, 2))

    if state.constraint_hypothesis is None:
        return

    if signals.alignment:
        if state.last_action == Action.VALIDATE and not state.hypothesis_validated:
            state.hypothesis_validated = True
            tracking.validation_turn = state.turns_total
            tracking.confidence = max(tracking.confidence, VALIDATED_CONFIDENCE)
        elif state.last_action == Action.STRESS_TEST:
            tracking.stress_test_passed = True
            state.hypothesis_validated = True
            if tracking.validation_turn is None:
                tracking.validation_turn = state.turns_total

    if signals.consent and state.last_action == Action.REQUEST_DIAGNOSIS_CONSENT:
        tracking.consent_confirmed = True


def _update_closing_responses(state: ConversationState, signals: TurnSignals) -> None:
    sequence = state.closing_sequence
    if not sequence.active:
        return
    if sequence.phase == ClosingPhase.OFFER_SOLUTION:
        if signals.declined_offering:
            sequence.offer_declined = True
        elif signals.agreed_to_offering or signals.alignment:
            sequence.offer_accepted = True
            sequence.alignment_detected = True
    elif sequence.phase == ClosingPhase.ASSERT_AND_ALIGN:
        if signals.alignment or signals.agreed_to_offering:
            sequence.alignment_detected = True


def _capture_user_statements(state: ConversationState, signals: TurnSignals) -> None:
    if signals.stated_future and state.stated_future is None:
        state.stated_future = signals.stated_future
    if signals.stated_stakes and state.stated_stakes is None:
        state.stated_stakes = signals.stated_stakes
    if signals.attempted_solution and signals.attempted_solution not in state.attempted_solutions:
        state.attempted_solutions = (state.attempted_solutions + [signals.attempted_solution])[-MAX_CAPTURED_STATEMENTS:]
    if signals.insight and signals.insight not in state.insights:
        state.insights = (state.insights + [signals.insight])[-MAX_CAPTURED_STATEMENTS:]


# =============================================================================
# STEP 2: PRIORITY CASCADE
# =============================================================================

Rule = Callable[[ConversationState, TurnSignals], OrchestratorDecision | None]


def _decision(action: Action, reasoning: str, overlays: list[str], **kwargs) -> OrchestratorDecision:
    return OrchestratorDecision(action=action, reasoning=reasoning, prompt_overlays=overlays, **kwargs)


def _hypothesis_label(state: ConversationState) -> str | None:
    return state.constraint_hypothesis.value if state.constraint_hypothesis else None


def _turn_limit(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.turns_total < Config.MAX_CONVERSATION_TURNS:
        return None
    return _decision(
        Action.COMPLETE_WITH_HANDOFF,
        f"Hard turn limit reached ({state.turns_total} turns)",
        ["closing_handoff", "turn_limit_close"],
    )


def _exit_intent(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not signals.exit_intent:
        return None
    if signals.frustration in (FrustrationLevel.SIGNIFICANT, FrustrationLevel.HOSTILE):
        return _decision(
            Action.COMPLETE_WITH_HANDOFF,
            "User wants to leave and is frustrated; close gracefully",
            ["frustration_close"],
        )
    return _decision(
        Action.COMPLETE_WITH_HANDOFF,
        "User signalled they want to end the conversation",
        ["graceful_exit"],
    )


def _overwhelm(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not state.overwhelm_detected:
        return None
    return _decision(
        Action.CONTAIN,
        "User is overwhelmed; slow down and contain before anything else",
        ["containment"],
        focus_area="emotional_safety",
    )


def _hostility(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not signals.hostile:
        return None
    hostile_turns = state.relationship.hostile_turns
    if hostile_turns >= HOSTILE_CLOSE_TURNS:
        return _decision(
            Action.BOUNDARY_CLOSE,
            f"Hostility continued after the boundary ({hostile_turns} hostile turns); ending the conversation",
            ["boundary_close"],
        )
    return _decision(
        Action.SET_BOUNDARY,
        f"Hostile message ({hostile_turns} so far); set a calm boundary",
        ["rudeness_boundary"],
    )


def _frustration(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if signals.frustration != FrustrationLevel.SIGNIFICANT:
        return None
    acknowledged = state.relationship.frustration_acknowledgments
    if acknowledged >= MAX_FRUSTRATION_ACKNOWLEDGMENTS:
        return _decision(
            Action.COMPLETE_WITH_HANDOFF,
            f"Frustration persists after {acknowledged} acknowledgments; close with care",
            ["frustration_close"],
        )
    return _decision(
        Action.ACKNOWLEDGE_FRUSTRATION,
        "Significant frustration; acknowledge and repair before continuing",
        ["frustration_repair"],
    )


def _low_engagement_exit(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not signals.low_effort:
        return None
    low_effort = state.low_effort
    relationship = state.relationship
    exhausted_pushbacks = (
        low_effort.pushback_count >= MAX_PUSHBACKS
        and low_effort.consecutive >= 1
        and state.last_action == Action.PUSH_BACK_ON_LOW_EFFORT
    )
    long_disengagement = (
        low_effort.consecutive >= LOW_EFFORT_EXIT_CONSECUTIVE
        and relationship.trust_level == TrustLevel.ESTABLISHING
        and relationship.engagement != Level.HIGH
    )
    if not (exhausted_pushbacks or long_disengagement):
        return None
    return _decision(
        Action.COMPLETE_WITH_HANDOFF,
        f"Sustained low engagement ({low_effort.consecutive} consecutive, {low_effort.pushback_count} pushbacks); offer an exit",
        ["low_engagement_exit"],
    )


def _tactical_drift(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tactical = state.tactical
    if not signals.tactical_request or state.closing_sequence.active:
        return None
    if tactical.redirect_count >= MAX_REDIRECTS:
        return None
    if tactical.consecutive < TACTICAL_CONSECUTIVE and tactical.total < TACTICAL_TOTAL:
        return None
    if (
        tactical.last_redirect_turn is not None
        and state.turns_total - tactical.last_redirect_turn < REDIRECT_SPACING
    ):
        return None
    return _decision(
        Action.REDIRECT_FROM_TACTICAL,
        f"Tactical drift ({tactical.consecutive} in a row, {tactical.total} total); redirect to the underlying constraint",
        ["tactical_redirect"],
        redirect_to=_hypothesis_label(state) or "what the request says about the real constraint",
    )


def _hypothesis_pivot(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.closing_sequence.active or state.constraint_hypothesis is None:
        return None
    if not signals.resistance or state.hypothesis.resistance_count < PIVOT_RESISTANCE:
        return None
    return _decision(
        Action.EXPLORE,
        f"Repeated resistance to the {state.constraint_hypothesis.value} hypothesis; drop it and re-explore",
        ["hypothesis_pivot"],
        focus_area=PIVOT_FOCUS,
    )


def _continue_closing(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    sequence = state.closing_sequence
    if not sequence.active or state.phase != Phase.CLOSING:
        return None
    step = closing.next_step(sequence)
    if step is None:
        return None
    focus = OFFER_DECLINED_FOCUS if sequence.offer_declined and step.action == Action.CLOSING_FACILITATE else step.phase.value
    return _decision(
        step.action,
        f"Closing sequence continues: {sequence.phase.value} -> {step.phase.value}",
        [step.overlay],
        focus_area=focus,
    )


def _low_effort_pushback(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    low_effort = state.low_effort
    if not signals.low_effort or low_effort.consecutive < 1:
        return None
    if low_effort.pushback_count >= MAX_PUSHBACKS:
        return None
    if state.relationship.disposition == Disposition.DIRECT_PRAGMATIST:
        return None
    level = low_effort.pushback_count
    return _decision(
        Action.PUSH_BACK_ON_LOW_EFFORT,
        f"Low-effort reply; pushback level {level + 1}",
        [PUSHBACK_OVERLAYS[level]],
    )


def _safety_net(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.turns_total < Config.SAFETY_NET_TURNS:
        return None
    if state.closing_sequence.active or state.hypothesis.diagnosis_delivered:
        return None
    return _decision(
        Action.COMPLETE_WITH_HANDOFF,
        f"Safety net: {state.turns_total} turns without reaching a diagnosis",
        ["closing_handoff"],
    )


def _context_phase(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.phase != Phase.CONTEXT:
        return None
    missing = [area for area in get_discovery_area_names() if area not in state.discovery_covered]
    return _decision(
        Action.EXPLORE,
        f"Context phase: {len(state.discovery_covered)} discovery areas covered",
        ["context_gathering"],
        focus_area=missing[0] if missing else None,
    )


def _probe_deeper(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not signals.surface_deflection or state.last_action == Action.PROBE_DEEPER:
        return None
    return _decision(
        Action.PROBE_DEEPER,
        "Surface-level deflection; probe underneath it once",
        ["probe_deeper"],
    )


def _reflect_insight(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not (signals.breakthrough and signals.ownership):
        return None
    if state.turns_total < MIN_TURNS_FOR_REFLECTION:
        return None
    since_containment = state.turns_since_containment
    if since_containment is not None and since_containment < MIN_TURNS_AFTER_CONTAINMENT:
        return None

    tracker = state.variety_tracker
    if should_skip_reflection(tracker, state.turns_total):
        if reflection_cap_reached(tracker):
            return _decision(
                Action.EXPLORE,
                "Breakthrough, but the reflection cap is reached; acknowledge briefly and move on",
                ["exploration"],
                focus_area=BRIEF_ACKNOWLEDGMENT_FOCUS,
            )
        return None
    return _decision(
        Action.REFLECT_INSIGHT,
        "User articulated and owned a breakthrough; reflect it back",
        ["reflect_insight"],
    )


def _surface_contradiction(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if not signals.contradiction or state.hypothesis.contradictions_surfaced >= MAX_CONTRADICTIONS:
        return None
    return _decision(
        Action.SURFACE_CONTRADICTION,
        "User holds two conflicting positions; name the tension",
        ["surface_contradiction"],
        focus_area=signals.contradiction,
    )


def _validate_decision(state: ConversationState, reasoning: str) -> OrchestratorDecision:
    return _decision(
        Action.VALIDATE,
        reasoning,
        ["validation"],
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _consent_decision(state: ConversationState, reasoning: str) -> OrchestratorDecision:
    return _decision(
        Action.REQUEST_DIAGNOSIS_CONSENT,
        reasoning,
        ["diagnosis_consent"],
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _acceleration(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not signals.asked_for_next_steps or state.constraint_hypothesis is None:
        return None
    if tracking.diagnosis_delivered:
        return None
    if state.conversation_memory.ground_covered_score < ACCELERATION_COVERAGE or tracking.confidence < CONSENT_CONFIDENCE:
        return None
    if not state.hypothesis_validated:
        return _validate_decision(state, "User asked for next steps with a strong hypothesis; validate now")
    if not tracking.consent_confirmed:
        return _consent_decision(state, "User asked for next steps; ask permission to share the diagnosis")
    return _decision(
        Action.DIAGNOSE,
        "User asked for next steps and consent is confirmed; deliver the diagnosis",
        ["diagnosis_delivery"],
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _build_criteria(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not state.hypothesis_validated or tracking.criteria_built:
        return None
    if tracking.confidence < CRITERIA_CONFIDENCE or state.turns_total < CRITERIA_MIN_TURNS:
        return None
    return _decision(
        Action.BUILD_CRITERIA,
        "Hypothesis validated; have the user define what a good solution must do",
        ["build_criteria"],
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _stress_test(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not state.hypothesis_validated or tracking.stress_test_done:
        return None
    if tracking.validation_turn is None or state.turns_total - tracking.validation_turn < 1:
        return None
    return _decision(
        Action.STRESS_TEST,
        "Stress-test the validated hypothesis before committing to it",
        ["stress_test"],
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _pre_commitment(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not state.hypothesis_validated or not tracking.stress_test_done or tracking.pre_commitment_checked:
        return None
    return _decision(
        Action.PRE_COMMITMENT_CHECK,
        "Check the user is willing to act on what they find before diagnosing",
        ["pre_commitment"],
    )


def _readiness_before_diagnosis(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not state.hypothesis_validated or not tracking.pre_commitment_checked:
        return None
    if tracking.consent_requested or tracking.readiness_turns_pre >= MAX_PRE_DIAGNOSIS_READINESS:
        return None
    return _decision(
        Action.EXPLORE_READINESS,
        "Gauge readiness before asking to share the diagnosis",
        ["explore_readiness"],
    )


def _request_consent(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not state.hypothesis_validated or tracking.consent_confirmed or tracking.diagnosis_delivered:
        return None
    if tracking.confidence < CONSENT_CONFIDENCE or state.last_action == Action.REQUEST_DIAGNOSIS_CONSENT:
        return None
    if not (tracking.stress_test_done or tracking.pre_commitment_checked or state.turns_total >= CONSENT_FALLBACK_TURNS):
        return None
    return _consent_decision(state, "Hypothesis validated and tested; ask permission to share the diagnosis")


def _diagnose(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not tracking.consent_confirmed or tracking.diagnosis_delivered:
        return None
    if state.constraint_hypothesis is None or not state.hypothesis_validated:
        return None
    return _decision(
        Action.DIAGNOSE,
        "Consent confirmed; deliver the diagnosis",
        ["diagnosis_delivery"],
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _check_blockers(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not tracking.diagnosis_delivered or tracking.blockers_checked:
        return None
    return _decision(
        Action.CHECK_BLOCKERS,
        "Diagnosis delivered; check what could stop them acting on it",
        ["blocker_check"],
    )


def _readiness_after_diagnosis(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not tracking.diagnosis_delivered or not tracking.blockers_checked:
        return None
    if tracking.readiness_turns_post >= MAX_POST_DIAGNOSIS_READINESS:
        return None
    return _decision(
        Action.EXPLORE_READINESS,
        "Gauge readiness to act before closing",
        ["explore_readiness"],
    )


def _enter_closing(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if not tracking.diagnosis_delivered or not tracking.blockers_checked:
        return None
    if state.closing_sequence.active:
        return None
    branch = closing.select_branch(state)
    step = closing.next_step(state.closing_sequence, branch)
    return _decision(
        step.action,
        f"Diagnosis delivered and blockers checked; start the {branch.value} closing sequence",
        [step.overlay],
        focus_area=step.phase.value,
    )


def _validate(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.constraint_hypothesis is None or state.hypothesis_validated:
        return None
    if state.last_action == Action.VALIDATE:
        return None
    confidence = state.hypothesis.confidence
    ready = confidence >= VALIDATE_CONFIDENCE_EARLY or (
        confidence >= VALIDATE_CONFIDENCE and state.turns_in_phase >= VALIDATE_MIN_TURNS
    )
    if not ready:
        return None
    return _validate_decision(
        state,
        f"Hypothesis {state.constraint_hypothesis.value} at {confidence:.2f}; check it with the user",
    )


def find_cross_map(state: ConversationState) -> ConstraintCategory | None:
    """Upstream constraint suggested by the language seen so far, if any."""
    markers = set(state.conversation_memory.language_markers)
    for surface, required, upstream in CROSS_MAP_RULES:
        if state.constraint_hypothesis == surface and markers.issuperset(required):
            return upstream
    return None


def _cross_map(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    tracking = state.hypothesis
    if state.constraint_hypothesis is None or tracking.cross_map_applied:
        return None
    if state.phase != Phase.EXPLORATION:
        return None
    upstream = find_cross_map(state)
    if upstream is None:
        return None
    exhausted = is_topic_exhausted(state.conversation_memory)
    if state.turns_in_phase < CROSS_MAP_MIN_TURNS and not exhausted:
        return None
    return _decision(
        Action.CROSS_MAP,
        f"{state.constraint_hypothesis.value} symptoms with {upstream.value} language; test the upstream constraint",
        ["cross_map"],
        redirect_to=upstream.value,
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _exhausted_topic(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.constraint_hypothesis is None or state.phase != Phase.EXPLORATION:
        return None
    if not is_topic_exhausted(state.conversation_memory):
        return None
    if not state.hypothesis_validated:
        if state.last_action == Action.VALIDATE:
            return None
        return _validate_decision(state, "Topic exhausted with no upstream signal; check the hypothesis instead of circling")
    if not state.hypothesis.consent_confirmed and state.last_action != Action.REQUEST_DIAGNOSIS_CONSENT:
        return _consent_decision(state, "Topic exhausted; ask permission to share the diagnosis")
    return None


def _deepen(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.constraint_hypothesis is None or state.readiness.clarity == Level.HIGH:
        return None
    if state.turns_in_phase < DEEPEN_MIN_TURNS:
        return None
    memory = state.conversation_memory
    if is_topic_exhausted(memory):
        return None
    topic = memory.topic_mentions[-1] if memory.topic_mentions else None
    return _decision(
        Action.DEEPEN,
        "Hypothesis forming but clarity is not there yet; go one layer deeper",
        ["depth_inquiry"],
        focus_area=topic,
        hypothesis_to_validate=_hypothesis_label(state),
    )


def _ground_covered(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision | None:
    if state.constraint_hypothesis is None:
        return None
    if state.conversation_memory.ground_covered_score < GROUND_COVERED_THRESHOLD:
        return None
    if not state.hypothesis_validated:
        if state.last_action == Action.VALIDATE:
            return None
        return _validate_decision(state, "Enough ground covered; move to validating the hypothesis")
    if not state.hypothesis.consent_confirmed and state.last_action != Action.REQUEST_DIAGNOSIS_CONSENT:
        return _consent_decision(state, "Enough ground covered; ask permission to share the diagnosis")
    return None


def _fresh_topic(memory: ConversationMemory) -> str | None:
    """Most recent specific topic that is not yet exhausted."""
    for topic in reversed(memory.topic_mentions):
        if topic != GENERAL_TOPIC and not is_topic_exhausted(memory, topic):
            return topic
    return None


def _explore(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision:
    relationship = state.relationship
    overlays = ["exploration"]
    if state.complexity_level == ComplexityLevel.COMPLEX:
        overlays.append("depth_inquiry")
    if (
        state.constraint_hypothesis is not None
        and state.hypothesis.confidence > 0.5
        and relationship.trust_level != TrustLevel.ESTABLISHING
    ):
        overlays.append("hypothesis_forming")
    style = DISPOSITION_OVERLAYS.get(relationship.disposition)
    if style:
        overlays.append(style)
    if relationship.frustration_level == FrustrationLevel.MILD:
        overlays.append("frustration_aware")
    if relationship.trust_level == TrustLevel.DAMAGED:
        overlays.append("trust_repair")

    return _decision(
        Action.EXPLORE,
        "No stronger signal this turn; keep exploring",
        overlays,
        focus_area=_fresh_topic(state.conversation_memory),
    )


CASCADE: list[Rule] = [
    _turn_limit,
    _hostility,
    _exit_intent,
    _overwhelm,
    _frustration,
    _low_engagement_exit,
    _tactical_drift,
    _hypothesis_pivot,
    _continue_closing,
    _low_effort_pushback,
    _safety_net,
    _context_phase,
    _probe_deeper,
    _reflect_insight,
    _surface_contradiction,
    _acceleration,
    _build_criteria,
    _stress_test,
    _pre_commitment,
    _readiness_before_diagnosis,
    _request_consent,
    _diagnose,
    _check_blockers,
    _readiness_after_diagnosis,
    _enter_closing,
    _validate,
    _cross_map,
    _exhausted_topic,
    _deepen,
    _ground_covered,
]


def select_action(state: ConversationState, signals: TurnSignals) -> OrchestratorDecision:
    """Walk the priority cascade; the first rule that fires decides the turn."""
    for rule in CASCADE:
        decision = rule(state, signals)
        if decision is not None:
            return decision
    return _explore(state, signals)


# =============================================================================
# STEP 3: COMMIT THE DECISION
# =============================================================================

def _transition(state: ConversationState, phase: Phase) -> None:
    if state.phase == phase:
        return
    logger.info("Phase transition: %s -> %s (turn %d)", state.phase.value, phase.value, state.turns_total)
    state.phase = phase
    state.turns_in_phase = 0


def _context_complete(state: ConversationState) -> bool:
    covered = len(state.discovery_covered)
    if covered >= DISCOVERY_SUFFICIENT_AREAS:
        return True
    return covered >= DISCOVERY_MIN_AREAS and state.turns_in_phase >= DISCOVERY_MIN_TURNS


def _pivot(state: ConversationState) -> None:
    dropped = state.constraint_hypothesis
    tracking = state.hypothesis
    state.constraint_hypothesis = None
    state.hypothesis_validated = False
    state.hypothesis = HypothesisTracking(
        pivot_count=tracking.pivot_count + 1,
        contradictions_surfaced=tracking.contradictions_surfaced,
        insight_milestones=tracking.insight_milestones,
    )
    if state.phase == Phase.DIAGNOSIS:
        _transition(state, Phase.EXPLORATION)
    logger.info("Hypothesis pivot: dropped %s (pivot #%d)", dropped.value if dropped else None, state.hypothesis.pivot_count)


def _start_closing(state: ConversationState) -> None:
    sequence = state.closing_sequence
    sequence.branch = closing.select_branch(state)
    sequence.synthesis = build_default_synthesis(state, sequence.branch)
    logger.info("Closing sequence started on %s branch", sequence.branch.value)


def apply_decision(state: ConversationState, decision: OrchestratorDecision) -> None:
    """Record the commitments the chosen action makes (mutates state)."""
    action = decision.action
    tracking = state.hypothesis
    relationship = state.relationship

    if action == Action.CONTAIN:
        state.turns_since_containment = 0
    elif action == Action.SET_BOUNDARY:
        relationship.boundary_set = True
    elif action == Action.ACKNOWLEDGE_FRUSTRATION:
        relationship.frustration_acknowledgments += 1
    elif action == Action.PUSH_BACK_ON_LOW_EFFORT:
        state.low_effort.pushback_count += 1
        state.low_effort.consecutive = 0
    elif action == Action.REDIRECT_FROM_TACTICAL:
        state.tactical.redirect_count += 1
        state.tactical.last_redirect_turn = state.turns_total
        state.tactical.consecutive = 0
    elif action == Action.REFLECT_INSIGHT:
        record_reflection(state.variety_tracker, state.turns_total)
        tracking.insight_milestones += 1
    elif action == Action.SURFACE_CONTRADICTION:
        tracking.contradictions_surfaced += 1
        tracking.pending_contradiction = decision.focus_area
    elif action == Action.BUILD_CRITERIA:
        tracking.criteria_built = True
    elif action == Action.STRESS_TEST:
        tracking.stress_test_done = True
    elif action == Action.PRE_COMMITMENT_CHECK:
        tracking.pre_commitment_checked = True
    elif action == Action.EXPLORE_READINESS:
        if tracking.diagnosis_delivered:
            tracking.readiness_turns_post += 1
        else:
            tracking.readiness_turns_pre += 1
    elif action == Action.REQUEST_DIAGNOSIS_CONSENT:
        tracking.consent_requested = True
    elif action == Action.DIAGNOSE:
        tracking.diagnosis_delivered = True
        _transition(state, Phase.DIAGNOSIS)
    elif action == Action.CHECK_BLOCKERS:
        tracking.blockers_checked = True
    elif action == Action.CROSS_MAP:
        tracking.cross_map_applied = True

    if decision.focus_area == BRIEF_ACKNOWLEDGMENT_FOCUS:
        state.variety_tracker.brief_acknowledgments_given += 1
    if decision.focus_area == PIVOT_FOCUS:
        _pivot(state)

    step = closing.step_for_action(action)
    if step is not None:
        if not state.closing_sequence.active:
            _start_closing(state)
        state.closing_sequence.phase = step.phase
        _transition(state, Phase.CLOSING)
        if closing.is_terminal(step.phase):
            _transition(state, Phase.COMPLETE)

    if action in (Action.COMPLETE_WITH_HANDOFF, Action.BOUNDARY_CLOSE):
        _transition(state, Phase.COMPLETE)

    if state.phase == Phase.CONTEXT and _context_complete(state):
        _transition(state, Phase.EXPLORATION)

    state.last_action = action
