"""
Signal extraction for one user turn.

TurnSignals is the interface between the user's message and the decision
engine. The heuristic extractor below is regex-based and deterministic; the
AnalysisAgent (agents/analysis_agent.py) can produce the same model with an
LLM when enabled in config.
"""

import re

from pydantic import BaseModel, Field

from config import DISCOVERY_AREAS
from orchestrator.state import (
    ClosingPhase,
    ComplexityLevel,
    ConstraintCategory,
    ConversationState,
    Disposition,
    EmotionalCharge,
    FrustrationLevel,
    Level,
)


class ReadinessSignals(BaseModel):
    clarity: Level | None = Field(default=None, description="Clarity about the problem, if expressed")
    confidence: Level | None = Field(default=None, description="Self-confidence, if expressed")
    capacity: Level | None = Field(default=None, description="Time/energy capacity, if expressed")


class TurnSignals(BaseModel):
    """Everything the decision engine needs to know about the latest user turn."""
    word_count: int = 0
    emotional_charge: EmotionalCharge = EmotionalCharge.NEUTRAL
    overwhelm: bool = Field(default=False, description="User is overwhelmed and needs containment")
    frustration: FrustrationLevel = FrustrationLevel.NONE
    exit_intent: bool = Field(default=False, description="User wants to end the conversation")
    low_effort: bool = Field(default=False, description="Minimal reply with no substance or emotion")
    tactical_request: bool = Field(default=False, description="Asks for tactics/tools instead of reflection")
    asked_for_next_steps: bool = False
    financial_constraint: bool = Field(default=False, description="Explicitly cannot afford outside help")
    severe_depletion: bool = Field(default=False, description="Burned out to the point of no capacity")

    hypothesis_category: ConstraintCategory | None = None
    hypothesis_strength: float = Field(default=0.0, ge=0.0, le=1.0)
    resistance: bool = Field(default=False, description="Pushes back on the current hypothesis")
    alignment: bool = Field(default=False, description="Agrees with what was reflected back")
    consent: bool = Field(default=False, description="Explicit yes to hearing the diagnosis")
    declined_offering: bool = False
    agreed_to_offering: bool = False

    breakthrough: bool = False
    ownership: bool = False
    contradiction: str | None = None
    surface_deflection: bool = False
    confirmed_understanding: bool = False

    discovery_areas: list[str] = Field(default_factory=list)
    language_markers: list[str] = Field(default_factory=list)
    disposition: Disposition | None = None
    engagement: Level | None = None
    readiness: ReadinessSignals = Field(default_factory=ReadinessSignals)
    complexity: ComplexityLevel | None = None

    stated_future: str | None = None
    stated_stakes: str | None = None
    attempted_solution: str | None = None
    insight: str | None = Field(default=None, description="Sentence where the user named an insight themselves")

    @property
    def hostile(self) -> bool:
        return self.frustration == FrustrationLevel.HOSTILE


def _rx(*patterns: str) -> re.Pattern:
    return re.compile("|".join(patterns), re.IGNORECASE)


HOSTILE = _rx(
    r"\bf+u+c*k+(ing)?\b",
    r"\bshut up\b",
    r"\bscrew (you|this)\b",
    r"\byou('re| are) (so |really )?(stupid|useless|pathetic|worthless|a joke|an idiot)\b",
    r"\b(idiot|moron|dumbass)\b",
)
FRUSTRATION_SIGNIFICANT = _rx(
    r"this is (pointless|useless|going nowhere|a waste)",
    r"you('re| are) not (listening|helping|getting it)",
    r"i (already|just) (told|said)",
    r"stop asking",
    r"what'?s the point",
    r"waste of (my )?time",
    r"(so|really) annoying",
)
FRUSTRATION_MILD = _rx(r"\bfrustrat(ed|ing)\b", r"\bannoy(ed|ing)\b", r"\bugh\b", r"\bwhatever\b")

OVERWHELM = _rx(
    r"\boverwhelm(ed|ing)?\b", r"\bdrowning\b", r"\btoo much\b", r"can'?t handle",
    r"\bso many things\b", r"\bbreaking down\b",
)
SEVERE_DEPLETION = _rx(
    r"\bburn(ed|t) out\b", r"running on empty", r"nothing left",
    r"completely (drained|exhausted|depleted)", r"can'?t keep going", r"\bgive up\b",
)
FINANCIAL_CONSTRAINT = _rx(
    r"can'?t afford", r"cannot afford", r"\bno (money|budget)\b", r"(money|cash) is (really )?tight",
    r"tight budget", r"\bbroke\b", r"don'?t have the (money|budget|funds)", r"out of money",
    r"can'?t (pay|spend) (for|on) (help|coaching|support)",
)
EXIT_INTENT = _rx(
    r"\b(i'?ve|i have) got to go\b", r"\bgotta go\b", r"\bi (need|have) to go\b",
    r"\blet'?s (stop|end) (here|this|now)\b", r"\bi'?m done( here| with this)?\b",
    r"\bend (the|this) (chat|conversation)\b", r"\bgoodbye\b", r"^\s*bye\b",
    r"that'?s all for (now|today)", r"i'?ll come back later",
)
NEXT_STEPS = _rx(
    r"what('?s| are) (the |my )?next steps?", r"what do i do (now|next)",
    r"how do (i|we) (start|begin)", r"where do i (start|begin)", r"what should i do\b",
    r"\bwhat'?s next\b", r"let'?s (do this|move forward)",
)
TACTICAL = _rx(
    r"\bhow (do|can|should) i (get|grow|find|write|price|post|run|set up|build)\b",
    r"what('?s| is) the best (way|tool|platform|software|app)",
    r"which (tool|software|platform|app|crm)",
    r"give me (some )?(tips|a script|a template|steps|tactics)",
    r"can you (write|make|create|draft) (me )?(a|an|my)",
    r"should i (use|try|post on) (instagram|linkedin|tiktok|facebook|ads|youtube)",
    r"\b(hacks?|tactics?|templates?|scripts?)\b",
)
EMOTIONAL_WORDS = _rx(
    r"\b(overwhelm\w*|exhaust\w*|frustrat\w*|stuck|drain\w*|scared|afraid|anxious|worried|tired|sad|angry|hurt\w*|lost|alone)\b",
)
BREAKTHROUGH = _rx(
    r"\boh!", r"\baha!?", r"i see (it )?now", r"that'?s exactly it", r"that makes sense",
    r"i hadn'?t thought of it that way", r"now i understand", r"that clicks", r"that resonates",
    r"i (just )?realized", r"wait[,.]?\s*i\b", r"actually[,.]?\s*(the|i|my)\b",
)
INSIGHT_ARTICULATED = _rx(
    r"i (just )?realized", r"it'?s (really )?about", r"the (real )?issue is", r"what i'?m (really )?seeing",
)
OWNERSHIP = _rx(
    r"that'?s (exactly )?it", r"\bi know\b", r"\bdefinitely\b", r"\bclearly\b",
    r"i see (it|that) now", r"\bexactly\b", r"\bprecisely\b",
)
VALIDATION_SEEKING = _rx(r"right\?", r"does that make sense", r"am i wrong", r"is that correct")
CONTRADICTION = _rx(
    r"but (also|at the same time)", r"on one hand.*on the other",
    r"i (want|need) to.*but i (can'?t|don'?t)",
)
RESISTANCE = _rx(
    r"i don'?t (think|know if) (that|it'?s|so)", r"i'?m not sure (that'?s|if|about that)",
    r"but (what about|isn'?t)", r"\byes,? but\b", r"that'?s not (it|right|really it|the problem)",
    r"\bi disagree\b", r"\bno,? (it'?s|that'?s) not\b",
)
ALIGNMENT = _rx(
    r"that (really )?fits", r"that'?s accurate", r"that (really )?resonates",
    r"yes,? (exactly|that'?s right|that'?s it)", r"that makes sense", r"i can see that",
    r"you'?re (right|spot on)", r"\bspot on\b", r"that'?s (exactly )?it\b", r"^\s*exactly\b",
)
CONSENT_GRADUAL = [
    re.compile(p, re.IGNORECASE) for p in (
        r"hmm.*on track", r"hmm.*right", r"hmm.*yes", r"hmm.*resonates",
        r"think.*on track", r"think.*right", r"actually.*yes", r"maybe.*right",
    )
]
CONSENT_AFFIRMATIVES = (
    "yes", "sure", "go ahead", "please", "tell me", "i'd love to", "i want to hear",
    "absolutely", "definitely", "let's do it", "i'm ready", "that resonates",
    "you're on track", "you are on track", "that's right", "that's accurate",
    "you might be right", "i think so", "makes sense",
)
CONSENT_NEGATIVES = (
    "not yet", "hold on", "wait", "let me think", "i'm not sure", "maybe later",
    "doesn't feel right", "not seeing it",
)
DECLINED_OFFERING = _rx(
    r"\bno,? thanks\b", r"\bno thank you\b", r"\bnot interested\b", r"\bi'?ll pass\b",
    r"\bnot for me\b", r"i'?ll (figure|do|work) (it|this) out (myself|on my own)",
    r"i'?ll (do|handle) it (myself|on my own)", r"\bmaybe later\b",
    r"not ready to (commit|invest|spend)", r"i don'?t (want|need) (help|a call|support|that)",
)
# Plain refusals; only read as a decline in reply to the offer itself
OFFER_REFUSAL = _rx(
    r"^\s*(no|nope|nah|not (now|really|right now|at the moment))\b",
    r"\b(i'?ll|i will|i'?m going to|gonna) pass\b", r"\bpass on (that|this|it)\b",
    r"\bi don'?t (want|need) (to|it|this|that)\b", r"\bnot (something|what) i (want|need)\b",
)
AGREED_TO_OFFERING = _rx(
    r"\byes,? (please|let'?s|i'?d (like|love))", r"\bsign me up\b", r"\bi'?m in\b",
    r"\bcount me in\b", r"\blet'?s do (it|this)\b", r"\bsounds good\b",
    r"\bi('?d| would) (like|love) (that|to)\b", r"how do i (book|sign up|get started)",
)
SURFACE_DEFLECTION = _rx(
    r"\bit'?s fine\b", r"\bi'?m fine\b", r"\bit'?s okay\b", r"not a big deal",
    r"doesn'?t (really )?matter", r"\bno idea\b", r"\bjust busy\b", r"it is what it is",
    r"\bnothing really\b",
)
CONFIRMED_UNDERSTANDING = _rx(
    r"^\s*(yes|yeah|yep|right|exactly|correct|got it|makes sense|that'?s (right|correct|it))\b",
)
DIRECT_PRAGMATIST = _rx(
    r"(get|cut) to the point", r"bottom line", r"be (direct|straight)( with me)?",
    r"give it to me straight", r"just tell me", r"skip the (fluff|small talk)",
)
SKEPTIC = _rx(
    r"i'?m (a bit |very )?skeptical", r"prove it", r"how (do|would) you know",
    r"sounds like a (sales )?pitch", r"is this (a|some) (sales|pitch)", r"not convinced",
    r"i doubt (that|it)",
)
EMOTIONAL_PROCESSOR = _rx(r"\bi feel\b", r"\bit feels\b", r"\bfeeling\b", r"\bashamed\b", r"\bcry(ing)?\b")
POSITIVE = _rx(
    r"\bexcited\b", r"oh wow", r"\bconfident\b", r"that clicks", r"\bi'?m ready\b", r"\bthrilled\b",
)
ANXIOUS = _rx(r"\banxious\b", r"\bworried\b", r"\bnervous\b", r"\bscared\b", r"\bafraid\b")
COMPLEX = _rx(
    r"\bmultiple\b", r"several (things|issues|problems)", r"on top of (that|everything)",
    r"at the same time", r"\band also\b",
)

CLARITY_LOW = _rx(r"kind of", r"sort of", r"\bmaybe\b", r"\bi guess\b", r"not sure", r"\bno idea\b", r"i don'?t know")
CLARITY_HIGH = _rx(r"i know exactly", r"it'?s clear (to me|now)", r"\bclearly\b", r"i see (it|that) now")
CAPACITY_LOW = _rx(
    r"\bno time\b", r"too busy", r"burned out", r"can'?t handle", r"don'?t have (the )?bandwidth",
    r"\bexhausted\b", r"stretched (too )?thin",
)
CAPACITY_HIGH = _rx(r"i have (the )?time", r"i'?m ready", r"ready to (go|start|commit)", r"have (the )?capacity")

STATED_FUTURE = _rx(
    r"\bi want\b", r"\bi'?d love\b", r"\bmy goal\b", r"\bi hope\b", r"\bi dream\b",
    r"\bin (a|one|two|three|five) years?\b",
)
STATED_STAKES = _rx(
    r"if (this|nothing) (doesn'?t )?change", r"if i don'?t", r"i('?ll| will) have to",
    r"\bat stake\b", r"i could lose", r"can'?t keep (doing|going)",
)
ATTEMPTED_SOLUTION = _rx(r"\bi('?ve| have) (tried|hired|bought|taken|used)\b", r"\bi tried\b")

LANGUAGE_MARKERS = {
    "scattered": _rx(
        r"all over the place", r"too many (ideas|offers|things)", r"shiny object", r"\bscattered\b",
        r"don'?t know (what|which) to focus", r"jumping between", r"spread (too )?thin",
    ),
    "paralysis": _rx(
        r"paralyz", r"\bfrozen\b", r"can'?t (decide|start|commit)", r"keep putting (it )?off",
        r"procrastinat", r"overthink",
    ),
    "fear": _rx(r"\bafraid\b", r"\bscared\b", r"\bfear\b", r"\bterrified\b", r"what if (i|it|they) fail", r"\bjudged\b"),
    "identity": _rx(r"imposter", r"who am i to", r"not good enough", r"self[- ]doubt", r"don'?t deserve", r"\bpermission\b"),
    "capacity_overload": _rx(
        r"\bno time\b", r"too busy", r"doing everything", r"can'?t keep up", r"\bdrowning\b",
        r"no bandwidth", r"\bstretched\b",
    ),
    "systems": _rx(r"\bsystems?\b", r"\bprocess(es)?\b", r"automat", r"delegat", r"\bhir(e|ing)\b", r"outsourc", r"workflow"),
}

CONSTRAINT_KEYWORDS = {
    ConstraintCategory.STRATEGY: (
        "unclear", "undefined", "don't know what", "which offer", "which path", "positioning",
        "who to serve", "niche", "messaging", "clarity", "audience", "market", "service offering",
    ),
    ConstraintCategory.EXECUTION: (
        "doing everything", "bottleneck", "no team", "can't delegate", "no systems",
        "falling through", "overwhelmed with tasks", "need help", "can't scale",
        "too much on my plate", "no process",
    ),
    ConstraintCategory.PSYCHOLOGY: (
        "burnout", "burned out", "depleted", "can't sustain", "boundary", "over-giving", "drained",
        "fear", "afraid", "imposter", "self-doubt", "who am i", "permission", "judged",
        "judgment", "scared", "avoidance", "avoiding",
    ),
}

LOW_EFFORT_MAX_WORDS = 5

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def _sentences(message: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(message) if s.strip()]


def _first_sentence_matching(message: str, pattern: re.Pattern) -> str | None:
    for sentence in _sentences(message):
        if pattern.search(sentence):
            return sentence
    return None


def detect_frustration(message: str) -> FrustrationLevel:
    if HOSTILE.search(message):
        return FrustrationLevel.HOSTILE
    if FRUSTRATION_SIGNIFICANT.search(message):
        return FrustrationLevel.SIGNIFICANT
    if FRUSTRATION_MILD.search(message):
        return FrustrationLevel.MILD
    return FrustrationLevel.NONE


def detect_constraint(message: str) -> tuple[ConstraintCategory | None, float]:
    """
    Map a message onto a constraint category by keyword hits.

    Returns (category, strength). Psychology wins ties because knowing what
    to do but not doing it out of fear is a psychology constraint.
    """
    lower = message.lower()
    hits = {
        category: sum(1 for keyword in keywords if keyword in lower)
        for category, keywords in CONSTRAINT_KEYWORDS.items()
    }
    best = max(hits.values())
    if best == 0:
        return None, 0.0
    for category in (ConstraintCategory.PSYCHOLOGY, ConstraintCategory.EXECUTION, ConstraintCategory.STRATEGY):
        if hits[category] == best:
            return category, min(0.2 * best, 0.4)
    return None, 0.0


def detect_consent(message: str) -> bool:
    """Conservative consent check: only clear affirmatives count."""
    lower = message.lower().strip()
    if any(pattern.search(lower) for pattern in CONSENT_GRADUAL):
        return True
    if any(negative in lower for negative in CONSENT_NEGATIVES):
        return False
    return any(re.search(rf"\b{re.escape(a)}\b", lower) for a in CONSENT_AFFIRMATIVES)


def detect_discovery_areas(message: str) -> list[str]:
    areas = []
    for area_name, area in DISCOVERY_AREAS.items():
        if any(re.search(pattern, message, re.IGNORECASE) for pattern in area["patterns"]):
            areas.append(area_name)
    return areas


def detect_language_markers(message: str) -> list[str]:
    return [name for name, pattern in LANGUAGE_MARKERS.items() if pattern.search(message)]


def detect_offer_declined(message: str, awaiting_offer_reply: bool = False) -> bool:
    """
    Whether the user turned down the offer.

    Explicit declines always count. In reply to the offer itself, a plain
    refusal, a hesitation or push-back counts too, unless they also agreed.
    """
    if DECLINED_OFFERING.search(message):
        return True
    if not awaiting_offer_reply or AGREED_TO_OFFERING.search(message):
        return False
    lower = message.lower()
    return bool(
        OFFER_REFUSAL.search(message)
        or RESISTANCE.search(message)
        or any(negative in lower for negative in CONSENT_NEGATIVES)
    )


def _readiness(message: str, ownership: bool, depleted: bool) -> ReadinessSignals:
    readiness = ReadinessSignals()
    if CLARITY_LOW.search(message):
        readiness.clarity = Level.LOW
    elif CLARITY_HIGH.search(message) or ownership:
        readiness.clarity = Level.HIGH

    if VALIDATION_SEEKING.search(message):
        readiness.confidence = Level.LOW
    elif ownership:
        readiness.confidence = Level.HIGH

    if depleted or CAPACITY_LOW.search(message):
        readiness.capacity = Level.LOW
    elif CAPACITY_HIGH.search(message):
        readiness.capacity = Level.HIGH
    return readiness


def _emotional_charge(
    message: str,
    frustration: FrustrationLevel,
    overwhelm: bool,
    depleted: bool,
) -> EmotionalCharge:
    if frustration == FrustrationLevel.HOSTILE:
        return EmotionalCharge.HOSTILE
    if overwhelm:
        return EmotionalCharge.OVERWHELMED
    if depleted:
        return EmotionalCharge.DEPLETED
    if frustration in (FrustrationLevel.SIGNIFICANT, FrustrationLevel.MILD):
        return EmotionalCharge.FRUSTRATED
    if ANXIOUS.search(message):
        return EmotionalCharge.ANXIOUS
    if POSITIVE.search(message):
        return EmotionalCharge.POSITIVE
    return EmotionalCharge.NEUTRAL


def extract_signals(message: str, state: ConversationState | None = None) -> TurnSignals:
    """
    Heuristic signal extraction for one user message.

    Deterministic: the same message and state always produce the same
    signals. State is only consulted to decide whether resistance and
    consent are meaningful on this turn.
    """
    text = message.strip()
    word_count = len(text.split())

    frustration = detect_frustration(text)
    overwhelm = bool(OVERWHELM.search(text))
    depleted = bool(SEVERE_DEPLETION.search(text))
    exit_intent = bool(EXIT_INTENT.search(text))
    next_steps = bool(NEXT_STEPS.search(text))
    discovery = detect_discovery_areas(text)
    category, strength = detect_constraint(text)

    breakthrough = any(
        len(sentence) >= 15 and BREAKTHROUGH.search(sentence) for sentence in _sentences(text)
    ) or bool(INSIGHT_ARTICULATED.search(text))
    ownership = bool(OWNERSHIP.search(text))

    resistance = bool(RESISTANCE.search(text))
    if state is not None and state.constraint_hypothesis is None:
        resistance = False
    alignment = bool(ALIGNMENT.search(text)) and not resistance
    consent = detect_consent(text)
    awaiting_offer_reply = state is not None and state.closing_sequence.phase == ClosingPhase.OFFER_SOLUTION
    declined = detect_offer_declined(text, awaiting_offer_reply)
    agreed = bool(AGREED_TO_OFFERING.search(text)) and not declined

    low_effort = (
        0 < word_count < LOW_EFFORT_MAX_WORDS
        and not EMOTIONAL_WORDS.search(text)
        and not re.search(r"\d", text)
        and not discovery
        and not (alignment or consent or declined or agreed or exit_intent or next_steps)
        and frustration == FrustrationLevel.NONE
    )
    if word_count == 0:
        low_effort = True

    if DIRECT_PRAGMATIST.search(text):
        disposition = Disposition.DIRECT_PRAGMATIST
    elif SKEPTIC.search(text):
        disposition = Disposition.SKEPTIC
    elif len(EMOTIONAL_PROCESSOR.findall(text)) >= 2:
        disposition = Disposition.EMOTIONAL_PROCESSOR
    else:
        disposition = None

    if low_effort:
        engagement = Level.LOW
    elif word_count >= 40 or breakthrough:
        engagement = Level.HIGH
    else:
        engagement = Level.MEDIUM

    complexity = None
    if word_count > 80 or COMPLEX.search(text):
        complexity = ComplexityLevel.COMPLEX

    contradiction = _first_sentence_matching(text, CONTRADICTION)

    return TurnSignals(
        word_count=word_count,
        emotional_charge=_emotional_charge(text, frustration, overwhelm, depleted),
        overwhelm=overwhelm,
        frustration=frustration,
        exit_intent=exit_intent,
        low_effort=low_effort,
        tactical_request=bool(TACTICAL.search(text)) and not next_steps,
        asked_for_next_steps=next_steps,
        financial_constraint=bool(FINANCIAL_CONSTRAINT.search(text)),
        severe_depletion=depleted,
        hypothesis_category=category,
        hypothesis_strength=strength,
        resistance=resistance,
        alignment=alignment,
        consent=consent,
        declined_offering=declined,
        agreed_to_offering=agreed,
        breakthrough=breakthrough,
        ownership=ownership,
        contradiction=contradiction,
        surface_deflection=bool(SURFACE_DEFLECTION.search(text)) and word_count < 15,
        confirmed_understanding=bool(CONFIRMED_UNDERSTANDING.search(text)) and word_count <= 8,
        discovery_areas=discovery,
        language_markers=detect_language_markers(text),
        disposition=disposition,
        engagement=engagement,
        readiness=_readiness(text, ownership, depleted),
        complexity=complexity,
        stated_future=_first_sentence_matching(text, STATED_FUTURE),
        stated_stakes=_first_sentence_matching(text, STATED_STAKES),
        attempted_solution=_first_sentence_matching(text, ATTEMPTED_SOLUTION),
        insight=_first_sentence_matching(text, INSIGHT_ARTICULATED) if breakthrough else None,
    )
