"""
Closing sequence controller.

The closing sequence is a fixed multi-turn script entered once the diagnosis
has been delivered and blockers checked:

    reflect_implication -> reflect_stakes -> name_capability_gap
        -> assert_and_align -> offer_solution -> facilitate

Resource-constrained users get the short self-directed branch instead:

    self_directed_reflect -> self_directed_action

The branch is chosen once, when the sequence starts. The sequence advances
exactly one step per turn; interrupts (containment, boundaries) leave the
pointer where it is so the next normal turn resumes the script.
"""

import logging
from dataclasses import dataclass

from orchestrator.state import (
    Action,
    ClosingBranch,
    ClosingPhase,
    ClosingSequence,
    ConversationState,
)

logger = logging.getLogger(__name__)


QUESTION_REQUIREMENT = "End your response with a question that invites them to reply."
STATEMENT_REQUIREMENT = "Use statements only. Do not ask any question this turn."

CTA_LANGUAGE = [
    'booking or scheduling language ("book a call", "schedule a time")',
    '"click below", "click the button" or any link',
    '"see your summary", "I\'ve put together"',
    '"working together", "I can help", "our team"',
    '"next steps" or "path forward" framing',
]
LINK_LANGUAGE = [
    "links, URLs or bracketed button text",
    '"click below" or "click the button"',
]
FAREWELL_LANGUAGE = [
    '"good luck", "take care", "best of luck", "all the best"',
    "goodbye or any other farewell",
]
OFFERING_LANGUAGE = [
    "any specific offering, free session or complimentary call",
]
OUTSIDE_HELP_LANGUAGE = [
    "outside help, calls, services or programs",
]
FINAL_TURN_LANGUAGE = [
    "bracketed placeholders",
    "claims that you will send an email",
]
URGENCY_LANGUAGE = [
    'urgency ("don\'t wait", "book now", "limited spots")',
    "references to interface elements",
]


@dataclass(frozen=True)
class ClosingStep:
    phase: ClosingPhase
    action: Action
    overlay: str
    prohibited: tuple[str, ...]
    requires_question: bool = True


CLOSING_STEPS: dict[ClosingPhase, ClosingStep] = {
    ClosingPhase.REFLECT_IMPLICATION: ClosingStep(
        ClosingPhase.REFLECT_IMPLICATION,
        Action.CLOSING_REFLECT_IMPLICATION,
        "closing_reflect_implication",
        tuple(CTA_LANGUAGE + FAREWELL_LANGUAGE),
    ),
    ClosingPhase.REFLECT_STAKES: ClosingStep(
        ClosingPhase.REFLECT_STAKES,
        Action.CLOSING_REFLECT_STAKES,
        "closing_reflect_stakes",
        tuple(CTA_LANGUAGE + FAREWELL_LANGUAGE),
        requires_question=False,
    ),
    ClosingPhase.NAME_CAPABILITY_GAP: ClosingStep(
        ClosingPhase.NAME_CAPABILITY_GAP,
        Action.CLOSING_NAME_CAPABILITY_GAP,
        "closing_name_capability_gap",
        tuple(CTA_LANGUAGE + FAREWELL_LANGUAGE),
    ),
    ClosingPhase.ASSERT_AND_ALIGN: ClosingStep(
        ClosingPhase.ASSERT_AND_ALIGN,
        Action.CLOSING_ASSERT_AND_ALIGN,
        "closing_assert_and_align",
        tuple(CTA_LANGUAGE + OFFERING_LANGUAGE + FAREWELL_LANGUAGE),
    ),
    ClosingPhase.OFFER_SOLUTION: ClosingStep(
        ClosingPhase.OFFER_SOLUTION,
        Action.CLOSING_OFFER_SOLUTION,
        "closing_offer_solution",
        tuple(LINK_LANGUAGE + FAREWELL_LANGUAGE),
    ),
    ClosingPhase.FACILITATE: ClosingStep(
        ClosingPhase.FACILITATE,
        Action.CLOSING_FACILITATE,
        "closing_facilitate",
        tuple(FINAL_TURN_LANGUAGE),
    ),
    ClosingPhase.SELF_DIRECTED_REFLECT: ClosingStep(
        ClosingPhase.SELF_DIRECTED_REFLECT,
        Action.CLOSING_SELF_DIRECTED_REFLECT,
        "closing_self_directed_reflect",
        tuple(CTA_LANGUAGE + OUTSIDE_HELP_LANGUAGE + FAREWELL_LANGUAGE),
    ),
    ClosingPhase.SELF_DIRECTED_ACTION: ClosingStep(
        ClosingPhase.SELF_DIRECTED_ACTION,
        Action.CLOSING_SELF_DIRECTED_ACTION,
        "closing_self_directed_action",
        tuple(URGENCY_LANGUAGE + LINK_LANGUAGE),
    ),
}

BRANCH_SEQUENCES: dict[ClosingBranch, list[ClosingPhase]] = {
    ClosingBranch.STANDARD: [
        ClosingPhase.REFLECT_IMPLICATION,
        ClosingPhase.REFLECT_STAKES,
        ClosingPhase.NAME_CAPABILITY_GAP,
        ClosingPhase.ASSERT_AND_ALIGN,
        ClosingPhase.OFFER_SOLUTION,
        ClosingPhase.FACILITATE,
    ],
    ClosingBranch.SELF_DIRECTED: [
        ClosingPhase.SELF_DIRECTED_REFLECT,
        ClosingPhase.SELF_DIRECTED_ACTION,
    ],
}

TERMINAL_PHASES = {ClosingPhase.FACILITATE, ClosingPhase.SELF_DIRECTED_ACTION}

_STEP_BY_ACTION = {step.action: step for step in CLOSING_STEPS.values()}


def select_branch(state: ConversationState) -> ClosingBranch:
    """One-time branch choice made when the closing sequence starts."""
    if state.resource_constraint_detected:
        return ClosingBranch.SELF_DIRECTED
    return ClosingBranch.STANDARD


def branch_for_phase(phase: ClosingPhase) -> ClosingBranch | None:
    for branch, sequence in BRANCH_SEQUENCES.items():
        if phase in sequence:
            return branch
    return None


def next_step(closing: ClosingSequence, branch: ClosingBranch | None = None) -> ClosingStep | None:
    """
    Step to deliver on this turn.

    Returns the first step of the branch when the sequence has not started,
    the step after the current one otherwise, and None once a terminal step
    has been delivered.
    """
    branch = closing.branch or branch
    if branch is None:
        branch = branch_for_phase(closing.phase) or ClosingBranch.STANDARD
    sequence = BRANCH_SEQUENCES[branch]

    if not closing.active:
        return CLOSING_STEPS[sequence[0]]
    if closing.phase in TERMINAL_PHASES:
        return None
    if closing.phase not in sequence:
        logger.warning(
            "Closing phase %s does not belong to branch %s, restarting branch",
            closing.phase.value, branch.value,
        )
        return CLOSING_STEPS[sequence[0]]
    return CLOSING_STEPS[sequence[sequence.index(closing.phase) + 1]]


def step_for_action(action: Action) -> ClosingStep | None:
    return _STEP_BY_ACTION.get(action)


def is_terminal(phase: ClosingPhase) -> bool:
    return phase in TERMINAL_PHASES


def build_step_rules(step: ClosingStep) -> str:
    """
    Prohibited-language block for one closing step.

    The last line is always the question/statement requirement so that the
    guidance section ends with it.
    """
    lines = ["PROHIBITED THIS TURN:"]
    lines.extend(f"- {item}" for item in step.prohibited)
    lines.append("")
    lines.append(QUESTION_REQUIREMENT if step.requires_question else STATEMENT_REQUIREMENT)
    return "\n".join(lines)
