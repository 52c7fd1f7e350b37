"""
Response validator.

Checks the advisor's reply against what the chosen action requires: question
endings, sentence limits, and language that must not appear at that point in
the conversation (farewells mid-closing, booking language before the offer,
placeholder text). A failed reply gets one regeneration with a correction
prompt; critical closing turns fall back to fixed templates after that.
"""

import logging
import re

from pydantic import BaseModel, Field

from orchestrator.state import Action, ConstraintCategory

logger = logging.getLogger(__name__)


GOODBYE_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"good luck", r"take care", r"best of luck", r"you'?ve got this", r"you got this",
        r"i hope you find", r"best wishes", r"all the best", r"farewell", r"\bgoodbye\b",
    )
]

CTA_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"book (a|your) (call|time|session)", r"schedule a (call|time|session)", r"clarity call",
        r"click (below|here|the button)", r"\[book", r"calendly", r"see your summary",
        r"i'?ve put together a summary", r"explore working together", r"work with me",
        r"my (coaching )?program", r"i'?m sending", r"i'?ll send", r"send.*to your email",
    )
]

SELF_AS_COACH_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"that'?s (exactly )?what i help (people )?(work through|with)", r"that'?s what i do",
        r"i can help you (work through|with)", r"i help people (work through|with)",
        r"i specialize in", r"i work with people", r"someone (from |on )?(our|the) team",
        r"\bour (team|staff|specialists?|experts?)\b", r"what working together",
    )
]

FACILITATION_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"your (breakthrough )?summary is ready", r"i'?ve captured everything", r"i'?ve put together",
        r"you'?ll see (that|your|the) (summary|next)", r"click below", r"click the button",
        r"book a call", r"schedule a call", r"take the next step", r"see your personali[sz]ed",
    )
]

PLACEHOLDER_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\[[^\]]*summary[^\]]*\]", r"\[[^\]]*click[^\]]*\]", r"\[[^\]]*book[^\]]*\]",
        r"\[[^\]]*next steps[^\]]*\]", r"\[[^\]]*button[^\]]*\]", r"\[[^\]]*\bcta\b[^\]]*\]",
        r"\[[^\]]*call to action[^\]]*\]", r"\[your personali[sz]ed", r"\[(see|view) your",
    )
]

# Farewells belong only to the last turn of a conversation
NO_GOODBYE_ACTIONS = {
    Action.CLOSING_REFLECT_IMPLICATION,
    Action.CLOSING_REFLECT_STAKES,
    Action.CLOSING_NAME_CAPABILITY_GAP,
    Action.CLOSING_ASSERT_AND_ALIGN,
    Action.CLOSING_OFFER_SOLUTION,
    Action.CLOSING_SELF_DIRECTED_REFLECT,
    Action.REFLECT_INSIGHT,
    Action.EXPLORE,
    Action.DEEPEN,
    Action.VALIDATE,
    Action.DIAGNOSE,
    Action.CHECK_BLOCKERS,
    Action.STRESS_TEST,
    Action.REQUEST_DIAGNOSIS_CONSENT,
    Action.EXPLORE_READINESS,
    Action.CONTAIN,
    Action.CROSS_MAP,
    Action.BUILD_CRITERIA,
    Action.PRE_COMMITMENT_CHECK,
}

# Booking and selling language is never allowed before the offer is made
NO_CTA_ACTIONS = {
    Action.EXPLORE,
    Action.DEEPEN,
    Action.REFLECT_INSIGHT,
    Action.SURFACE_CONTRADICTION,
    Action.VALIDATE,
    Action.DIAGNOSE,
    Action.CHECK_BLOCKERS,
    Action.STRESS_TEST,
    Action.BUILD_CRITERIA,
    Action.PRE_COMMITMENT_CHECK,
    Action.REQUEST_DIAGNOSIS_CONSENT,
    Action.EXPLORE_READINESS,
    Action.CONTAIN,
    Action.CROSS_MAP,
    Action.PROBE_DEEPER,
    Action.PUSH_BACK_ON_LOW_EFFORT,
    Action.REDIRECT_FROM_TACTICAL,
    Action.CLOSING_REFLECT_IMPLICATION,
    Action.CLOSING_REFLECT_STAKES,
    Action.CLOSING_NAME_CAPABILITY_GAP,
    Action.CLOSING_ASSERT_AND_ALIGN,
    Action.CLOSING_SELF_DIRECTED_REFLECT,
}

CLOSING_BEFORE_FACILITATION = {
    Action.CLOSING_REFLECT_IMPLICATION,
    Action.CLOSING_REFLECT_STAKES,
    Action.CLOSING_NAME_CAPABILITY_GAP,
    Action.CLOSING_ASSERT_AND_ALIGN,
    Action.CLOSING_OFFER_SOLUTION,
}

# Turns whose structure is guaranteed by a template if the model fails twice
CRITICAL_CLOSING_ACTIONS = {
    Action.CLOSING_ASSERT_AND_ALIGN,
    Action.CLOSING_OFFER_SOLUTION,
    Action.CLOSING_FACILITATE,
}

HANDOFF_MAX_SENTENCES = 15
SENTENCE_WARNING_SLACK = 2


class ActionRequirement(BaseModel):
    must_end_with_question: bool = False
    no_questions: bool = False
    max_sentences: int | None = None
    purpose: str | None = None


ACTION_REQUIREMENTS: dict[Action, ActionRequirement] = {
    Action.EXPLORE: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.REFLECT_INSIGHT: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.SURFACE_CONTRADICTION: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.VALIDATE: ActionRequirement(
        must_end_with_question=True, max_sentences=6,
        purpose="Check whether the pattern you see fits their experience",
    ),
    Action.DIAGNOSE: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.CHECK_BLOCKERS: ActionRequirement(must_end_with_question=True, max_sentences=4),
    Action.STRESS_TEST: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.BUILD_CRITERIA: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.PRE_COMMITMENT_CHECK: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.REQUEST_DIAGNOSIS_CONSENT: ActionRequirement(
        must_end_with_question=True, max_sentences=3,
        purpose="Ask permission to share your read; do not share it yet",
    ),
    Action.EXPLORE_READINESS: ActionRequirement(must_end_with_question=True, max_sentences=4),
    Action.CONTAIN: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.DEEPEN: ActionRequirement(must_end_with_question=True, max_sentences=4),
    Action.CROSS_MAP: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.PROBE_DEEPER: ActionRequirement(must_end_with_question=True, max_sentences=4),
    Action.PUSH_BACK_ON_LOW_EFFORT: ActionRequirement(must_end_with_question=True, max_sentences=4),
    Action.REDIRECT_FROM_TACTICAL: ActionRequirement(must_end_with_question=True, max_sentences=5),
    Action.COMPLETE_WITH_HANDOFF: ActionRequirement(max_sentences=10),
    Action.CLOSING_REFLECT_IMPLICATION: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.CLOSING_REFLECT_STAKES: ActionRequirement(
        no_questions=True, max_sentences=4,
        purpose="Let the stakes land as statements",
    ),
    Action.CLOSING_NAME_CAPABILITY_GAP: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.CLOSING_ASSERT_AND_ALIGN: ActionRequirement(
        must_end_with_question=True, max_sentences=5,
        purpose="Name the kind of support needed and check it fits, without making the offer",
    ),
    Action.CLOSING_OFFER_SOLUTION: ActionRequirement(
        must_end_with_question=True, max_sentences=6,
        purpose="Make the offer and ask whether they want it",
    ),
    Action.CLOSING_FACILITATE: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.CLOSING_SELF_DIRECTED_REFLECT: ActionRequirement(must_end_with_question=True, max_sentences=6),
    Action.CLOSING_SELF_DIRECTED_ACTION: ActionRequirement(must_end_with_question=True, max_sentences=6),
}


class ValidationResult(BaseModel):
    valid: bool
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def count_sentences(text: str) -> int:
    return len([s for s in re.split(r"[.!?]+", text) if s.strip()])


def ends_with_question(text: str) -> bool:
    return text.strip().endswith("?")


def _matches(text: str, patterns: list[re.Pattern]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def validate_response(response: str, action: Action) -> ValidationResult:
    """Check a reply against the structure its action requires."""
    violations: list[str] = []
    warnings: list[str] = []

    if _matches(response, PLACEHOLDER_PATTERNS):
        violations.append(
            'Response contains bracketed placeholder text such as "[Click below]"; the interface '
            "renders those elements, never write them"
        )
    if action in NO_GOODBYE_ACTIONS and _matches(response, GOODBYE_PATTERNS):
        violations.append(
            'Response contains farewell language ("good luck", "take care") but this is not the final turn'
        )
    if action in NO_CTA_ACTIONS and _matches(response, CTA_PATTERNS):
        violations.append(
            'Response contains booking or call-to-action language ("book a call", "click below") '
            "before the offer has been made"
        )
    if action in NO_CTA_ACTIONS and _matches(response, SELF_AS_COACH_PATTERNS):
        violations.append(
            'Response presents Mira or "our team" as the solution; at this point Mira only diagnoses'
        )
    if action in CLOSING_BEFORE_FACILITATION and _matches(response, FACILITATION_PATTERNS):
        violations.append(
            f"Response contains summary or booking content that belongs to the final closing turn, not {action.value}"
        )

    requirement = ACTION_REQUIREMENTS.get(action)
    if requirement is not None:
        if requirement.must_end_with_question and not ends_with_question(response):
            violations.append(f"Response must end with a question for {action.value}")
        if requirement.no_questions and "?" in response:
            violations.append(f"Response must use statements only for {action.value}")
        if requirement.max_sentences:
            sentences = count_sentences(response)
            if action == Action.COMPLETE_WITH_HANDOFF:
                if sentences > HANDOFF_MAX_SENTENCES:
                    violations.append(
                        f"Closing response too long ({sentences} sentences, max {HANDOFF_MAX_SENTENCES})"
                    )
            elif sentences > requirement.max_sentences + SENTENCE_WARNING_SLACK:
                warnings.append(f"Response is {sentences} sentences (recommended: {requirement.max_sentences})")

    if violations:
        logger.warning(
            "Response failed validation for %s: %s | preview=%r",
            action.value, violations, response[:100],
        )
    return ValidationResult(valid=not violations, violations=violations, warnings=warnings)


def build_correction_prompt(violations: list[str], action: Action) -> str:
    """Correction instructions appended to the system prompt for one regeneration."""
    requirement = ACTION_REQUIREMENTS.get(action)
    parts = [
        f"Your previous response didn't match the expected structure for {action.value}.",
        "",
        "Issues:",
        *[f"- {violation}" for violation in violations],
        "",
        "Please regenerate your response:",
    ]
    if requirement is not None:
        if requirement.must_end_with_question:
            parts.append("- Your response MUST end with a question mark (?)")
        if requirement.no_questions:
            parts.append("- Do not ask any question; use statements only")
        if requirement.max_sentences:
            parts.append(f"- Keep your response to {requirement.max_sentences} sentences or fewer")
        if requirement.purpose:
            parts.append(f"- Remember: {requirement.purpose}")
    return "\n".join(parts)


SUPPORT_DESCRIPTIONS = {
    ConstraintCategory.STRATEGY: "strategic clarity, working out exactly who you serve and what sets you apart",
    ConstraintCategory.EXECUTION: "operational systems, building the processes and structure to grow without carrying it all",
    ConstraintCategory.PSYCHOLOGY: "working through the internal patterns that keep showing up even when you know what to do",
}


def closing_fallback(
    action: Action,
    constraint: ConstraintCategory | None,
    offer_declined: bool = False,
    offer_accepted: bool = False,
) -> str | None:
    """Template reply for a critical closing turn, or None for other actions."""
    if action == Action.CLOSING_ASSERT_AND_ALIGN:
        description = SUPPORT_DESCRIPTIONS.get(constraint, "this kind of focused support")
        return (
            "Based on everything we've talked through, what you need is focused support with "
            f"{description}. There are people whose whole focus is exactly this kind of work.\n\n"
            "Does that match what you feel you need?"
        )
    if action == Action.CLOSING_OFFER_SOLUTION:
        return (
            "You could find someone on your own who does this kind of work. We also have specialists "
            "who focus on exactly this, and a free exploratory conversation with them costs nothing "
            "and commits you to nothing.\n\n"
            "Would you like to have that conversation?"
        )
    if action == Action.CLOSING_FACILITATE:
        if offer_declined:
            return (
                "That's completely fine, and it's your call to make. Keep coming back to the pattern we "
                "named today, because seeing it clearly is already half the work.\n\n"
                "Is there anything else you want to think through before we finish?"
            )
        if offer_accepted:
            return (
                "Great. The option to book that conversation is right there in the chat whenever you're "
                "ready, and everything we uncovered today will travel with you.\n\n"
                "Is there anything you'd like to make sure gets covered on that call?"
            )
        return (
            "Thank you for thinking this through with me. The option to talk it over with the team "
            "stays open whenever it feels right, and what we uncovered today is yours either way.\n\n"
            "What is the one thing you want to hold on to from this conversation?"
        )
    return None
