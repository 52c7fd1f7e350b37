"""
Conversation state and decision models.

ConversationState is the single persisted record of a session. It is passed
into the decision engine and a new copy is returned; nothing in the
orchestrator mutates a caller's state in place.
"""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from memory.conversation_memory import ConversationMemory
from memory.variety_tracker import VarietyTracker

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    CONTEXT = "context"
    EXPLORATION = "exploration"
    DIAGNOSIS = "diagnosis"
    CLOSING = "closing"
    COMPLETE = "complete"


class ConstraintCategory(str, Enum):
    STRATEGY = "strategy"
    EXECUTION = "execution"
    PSYCHOLOGY = "psychology"


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EmotionalCharge(str, Enum):
    NEUTRAL = "neutral"
    POSITIVE = "positive"
    ANXIOUS = "anxious"
    FRUSTRATED = "frustrated"
    OVERWHELMED = "overwhelmed"
    DEPLETED = "depleted"
    HOSTILE = "hostile"


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    COMPLEX = "complex"


class FrustrationLevel(str, Enum):
    NONE = "none"
    MILD = "mild"
    SIGNIFICANT = "significant"
    HOSTILE = "hostile"


class TrustLevel(str, Enum):
    ESTABLISHING = "establishing"
    BUILDING = "building"
    ESTABLISHED = "established"
    DAMAGED = "damaged"


class Disposition(str, Enum):
    NEUTRAL = "neutral"
    DIRECT_PRAGMATIST = "direct_pragmatist"
    SKEPTIC = "skeptic"
    EMOTIONAL_PROCESSOR = "emotional_processor"


class ClosingPhase(str, Enum):
    NOT_STARTED = "not_started"
    REFLECT_IMPLICATION = "reflect_implication"
    REFLECT_STAKES = "reflect_stakes"
    NAME_CAPABILITY_GAP = "name_capability_gap"
    ASSERT_AND_ALIGN = "assert_and_align"
    OFFER_SOLUTION = "offer_solution"
    FACILITATE = "facilitate"
    SELF_DIRECTED_REFLECT = "self_directed_reflect"
    SELF_DIRECTED_ACTION = "self_directed_action"


class ClosingBranch(str, Enum):
    STANDARD = "standard"
    SELF_DIRECTED = "self_directed"


class Action(str, Enum):
    """Closed set of conversational actions the decision engine can choose."""
    CONTAIN = "contain"
    VALIDATE = "validate"
    DIAGNOSE = "diagnose"
    STRESS_TEST = "stress_test"
    CROSS_MAP = "cross_map"
    DEEPEN = "deepen"
    EXPLORE = "explore"
    REFLECT_INSIGHT = "reflect_insight"
    SURFACE_CONTRADICTION = "surface_contradiction"
    BUILD_CRITERIA = "build_criteria"
    PRE_COMMITMENT_CHECK = "pre_commitment_check"
    REQUEST_DIAGNOSIS_CONSENT = "request_diagnosis_consent"
    CHECK_BLOCKERS = "check_blockers"
    EXPLORE_READINESS = "explore_readiness"
    COMPLETE_WITH_HANDOFF = "complete_with_handoff"

    CLOSING_REFLECT_IMPLICATION = "closing_reflect_implication"
    CLOSING_REFLECT_STAKES = "closing_reflect_stakes"
    CLOSING_NAME_CAPABILITY_GAP = "closing_name_capability_gap"
    CLOSING_ASSERT_AND_ALIGN = "closing_assert_and_align"
    CLOSING_OFFER_SOLUTION = "closing_offer_solution"
    CLOSING_FACILITATE = "closing_facilitate"
    CLOSING_SELF_DIRECTED_REFLECT = "closing_self_directed_reflect"
    CLOSING_SELF_DIRECTED_ACTION = "closing_self_directed_action"

    REDIRECT_FROM_TACTICAL = "redirect_from_tactical"
    PROBE_DEEPER = "probe_deeper"
    PUSH_BACK_ON_LOW_EFFORT = "push_back_on_low_effort"

    SET_BOUNDARY = "set_boundary"
    BOUNDARY_CLOSE = "boundary_close"
    ACKNOWLEDGE_FRUSTRATION = "acknowledge_frustration"
    POST_COMPLETION = "post_completion"

    @property
    def is_closing_step(self) -> bool:
        return self.value.startswith("closing_")


# Actions that move toward or deliver a diagnosis; never chosen in the context phase
HYPOTHESIS_ACTIONS = {
    Action.VALIDATE,
    Action.DIAGNOSE,
    Action.STRESS_TEST,
    Action.CROSS_MAP,
    Action.DEEPEN,
    Action.BUILD_CRITERIA,
    Action.PRE_COMMITMENT_CHECK,
    Action.REQUEST_DIAGNOSIS_CONSENT,
    Action.CHECK_BLOCKERS,
}


class Readiness(BaseModel):
    clarity: Level = Level.MEDIUM
    confidence: Level = Level.MEDIUM
    capacity: Level = Level.MEDIUM


class HypothesisTracking(BaseModel):
    """Bookkeeping for forming, testing and delivering the hypothesis."""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    resistance_count: int = 0
    pivot_count: int = 0
    validation_turn: int | None = None
    stress_test_done: bool = False
    stress_test_passed: bool = False
    criteria_built: bool = False
    pre_commitment_checked: bool = False
    consent_requested: bool = False
    consent_confirmed: bool = False
    diagnosis_delivered: bool = False
    blockers_checked: bool = False
    readiness_turns_pre: int = 0
    readiness_turns_post: int = 0
    cross_map_applied: bool = False
    contradictions_surfaced: int = 0
    pending_contradiction: str | None = None
    insight_milestones: int = 0


class RelationshipState(BaseModel):
    trust_level: TrustLevel = TrustLevel.ESTABLISHING
    disposition: Disposition = Disposition.NEUTRAL
    engagement: Level = Level.MEDIUM
    frustration_level: FrustrationLevel = FrustrationLevel.NONE
    frustration_acknowledgments: int = 0
    boundary_set: bool = False
    hostile_turns: int = 0


class LowEffortTracking(BaseModel):
    consecutive: int = 0
    total: int = 0
    pushback_count: int = 0


class TacticalTracking(BaseModel):
    consecutive: int = 0
    total: int = 0
    redirect_count: int = 0
    last_redirect_turn: int | None = None


class LearnerState(BaseModel):
    last_turn_confirmed_understanding: bool = False


class ClosingSynthesis(BaseModel):
    """Personalised summary that grounds every closing turn."""
    confirmed_constraint: str
    user_stated_future: str | None = None
    user_stated_stakes: str | None = None
    attempted_solutions: list[str] = Field(default_factory=list)
    capability_gap: str
    why_self_resolution_fails: str
    recommended_support_category: str
    stakes_to_foreground: str
    emotional_tone: str = "steady"
    pacing_approach: str = "measured"
    language_compression: str = "moderate"
    directness: str = "direct"


class ClosingSequence(BaseModel):
    phase: ClosingPhase = ClosingPhase.NOT_STARTED
    branch: ClosingBranch | None = None
    synthesis: ClosingSynthesis | None = None
    offer_declined: bool = False
    offer_accepted: bool = False
    alignment_detected: bool = False

    @field_validator("phase", mode="before")
    @classmethod
    def _reset_unknown_phase(cls, value: Any) -> Any:
        if isinstance(value, ClosingPhase):
            return value
        try:
            return ClosingPhase(value)
        except ValueError:
            logger.warning("Unrecognised closing phase %r, resetting to not_started", value)
            return ClosingPhase.NOT_STARTED

    @property
    def active(self) -> bool:
        return self.phase != ClosingPhase.NOT_STARTED


class ConversationState(BaseModel):
    """
    Full dialogue state for one session.

    Created at session start (phase=context, turns=0), replaced every turn
    by decide(), frozen in practice once phase=complete.
    """
    phase: Phase = Phase.CONTEXT
    turns_total: int = Field(default=0, ge=0)
    turns_in_phase: int = Field(default=0, ge=0)

    constraint_hypothesis: ConstraintCategory | None = None
    hypothesis_validated: bool = False
    hypothesis: HypothesisTracking = Field(default_factory=HypothesisTracking)

    readiness: Readiness = Field(default_factory=Readiness)
    emotional_charge: EmotionalCharge = EmotionalCharge.NEUTRAL
    overwhelm_detected: bool = False
    complexity_level: ComplexityLevel = ComplexityLevel.SIMPLE

    relationship: RelationshipState = Field(default_factory=RelationshipState)
    low_effort: LowEffortTracking = Field(default_factory=LowEffortTracking)
    tactical: TacticalTracking = Field(default_factory=TacticalTracking)

    discovery_covered: list[str] = Field(default_factory=list)
    resource_constraint_detected: bool = False
    stated_future: str | None = None
    stated_stakes: str | None = None
    attempted_solutions: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)

    closing_sequence: ClosingSequence = Field(default_factory=ClosingSequence)
    learner_state: LearnerState = Field(default_factory=LearnerState)
    conversation_memory: ConversationMemory = Field(default_factory=ConversationMemory)
    variety_tracker: VarietyTracker = Field(default_factory=VarietyTracker)

    last_action: Action | None = None
    turns_since_containment: int | None = None

    @property
    def is_complete(self) -> bool:
        return self.phase == Phase.COMPLETE


class OrchestratorDecision(BaseModel):
    """One turn's decision. Logged for observability, never shown to the user."""
    action: Action
    reasoning: str
    prompt_overlays: list[str] = Field(default_factory=list)
    hypothesis_to_validate: str | None = None
    redirect_to: str | None = None
    focus_area: str | None = None
