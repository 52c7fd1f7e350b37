import unittest

from config import Config
from memory.conversation_memory import ConversationMemory
from memory.variety_tracker import VarietyTracker
from orchestrator.decision_engine import (
    BRIEF_ACKNOWLEDGMENT_FOCUS,
    PIVOT_FOCUS,
    decide,
    find_cross_map,
)
from orchestrator.signals import TurnSignals
from orchestrator.state import (
    HYPOTHESIS_ACTIONS,
    Action,
    ClosingBranch,
    ClosingPhase,
    ConstraintCategory,
    ConversationState,
    Disposition,
    FrustrationLevel,
    HypothesisTracking,
    LowEffortTracking,
    Phase,
    RelationshipState,
    TacticalTracking,
    TrustLevel,
)


ALL_AREAS = ["who_they_serve", "scale", "acquisition_channel", "trajectory"]


def neutral() -> TurnSignals:
    return TurnSignals(word_count=12)


def low_effort() -> TurnSignals:
    return TurnSignals(word_count=1, low_effort=True)


def exploring(**overrides) -> ConversationState:
    values = dict(
        phase=Phase.EXPLORATION,
        turns_total=6,
        turns_in_phase=2,
        discovery_covered=list(ALL_AREAS),
    )
    values.update(overrides)
    return ConversationState(**values)


def run(state: ConversationState, turns: list[TurnSignals]) -> tuple[list[Action], ConversationState]:
    actions = []
    for signals in turns:
        decision, state = decide(state, "I run a small design studio.", signals)
        actions.append(decision.action)
    return actions, state


class TestDecidePurity(unittest.TestCase):
    def test_input_state_is_not_mutated(self):
        state = exploring()
        before = state.model_dump()

        _, new_state = decide(state, "Things are okay I guess.", neutral())

        self.assertEqual(state.model_dump(), before)
        self.assertEqual(new_state.turns_total, state.turns_total + 1)
        self.assertIsNot(new_state, state)

    def test_same_inputs_give_same_outputs(self):
        state = exploring(constraint_hypothesis=ConstraintCategory.EXECUTION)
        signals = TurnSignals(word_count=20, hypothesis_category=ConstraintCategory.EXECUTION, hypothesis_strength=0.2)

        first = decide(state, "I'm doing everything myself.", signals)
        second = decide(state, "I'm doing everything myself.", signals)

        self.assertEqual(first[0], second[0])
        self.assertEqual(first[1].model_dump(), second[1].model_dump())

    def test_complete_conversation_returns_post_completion(self):
        state = ConversationState(phase=Phase.COMPLETE, turns_total=12)

        decision, new_state = decide(state, "One more thing...", neutral())

        self.assertEqual(decision.action, Action.POST_COMPLETION)
        self.assertEqual(decision.prompt_overlays, ["post_completion"])
        self.assertEqual(new_state.model_dump(), state.model_dump())


class TestContextPhase(unittest.TestCase):
    def test_context_phase_never_reaches_hypothesis_actions(self):
        eager = TurnSignals(
            word_count=30,
            hypothesis_category=ConstraintCategory.PSYCHOLOGY,
            hypothesis_strength=0.4,
            alignment=True,
            consent=True,
            asked_for_next_steps=True,
        )
        actions, state = run(ConversationState(), [eager, eager, eager])

        self.assertEqual(state.phase, Phase.CONTEXT)
        for action in actions:
            self.assertNotIn(action, HYPOTHESIS_ACTIONS)
            self.assertFalse(action.is_closing_step)

    def test_context_asks_about_first_missing_area(self):
        decision, _ = decide(ConversationState(), "Hi", TurnSignals(word_count=1, discovery_areas=["who_they_serve"]))

        self.assertEqual(decision.action, Action.EXPLORE)
        self.assertEqual(decision.prompt_overlays, ["context_gathering"])
        self.assertEqual(decision.focus_area, "scale")

    def test_three_areas_need_a_second_turn(self):
        three = TurnSignals(word_count=40, discovery_areas=["who_they_serve", "scale", "trajectory"])

        _, state = decide(ConversationState(), "...", three)
        self.assertEqual(state.phase, Phase.CONTEXT)

        _, state = decide(state, "...", neutral())
        self.assertEqual(state.phase, Phase.EXPLORATION)
        self.assertEqual(state.turns_in_phase, 0)

    def test_four_areas_move_to_exploration_immediately(self):
        _, state = decide(ConversationState(), "...", TurnSignals(word_count=60, discovery_areas=ALL_AREAS))

        self.assertEqual(state.phase, Phase.EXPLORATION)


class TestSafetyAndRelationship(unittest.TestCase):
    def test_overwhelm_contains(self):
        state = exploring(constraint_hypothesis=ConstraintCategory.EXECUTION, hypothesis=HypothesisTracking(confidence=0.9))

        decision, new_state = decide(state, "I'm so overwhelmed.", TurnSignals(word_count=3, overwhelm=True))

        self.assertEqual(decision.action, Action.CONTAIN)
        self.assertIn("containment", decision.prompt_overlays)
        self.assertEqual(new_state.turns_since_containment, 0)

    def test_exit_intent_closes(self):
        decision, state = decide(exploring(), "I have to go.", TurnSignals(word_count=4, exit_intent=True))

        self.assertEqual(decision.action, Action.COMPLETE_WITH_HANDOFF)
        self.assertEqual(decision.prompt_overlays, ["graceful_exit"])
        self.assertEqual(state.phase, Phase.COMPLETE)

    def test_first_hostile_message_sets_boundary(self):
        hostile = TurnSignals(word_count=3, frustration=FrustrationLevel.HOSTILE)

        decision, state = decide(exploring(), "...", hostile)

        self.assertEqual(decision.action, Action.SET_BOUNDARY)
        self.assertTrue(state.relationship.boundary_set)
        self.assertEqual(state.phase, Phase.EXPLORATION)

    def test_hostile_message_that_also_leaves_gets_boundary(self):
        both = TurnSignals(word_count=5, frustration=FrustrationLevel.HOSTILE, exit_intent=True)

        decision, state = decide(exploring(), "...", both)
        self.assertEqual(decision.action, Action.SET_BOUNDARY)
        self.assertEqual(state.phase, Phase.EXPLORATION)

        decision, _ = decide(exploring(), "Screw this, I'm done.")
        self.assertEqual(decision.action, Action.SET_BOUNDARY)

    def test_hostility_after_two_hostile_turns_ends_conversation(self):
        state = exploring(relationship=RelationshipState(hostile_turns=2, boundary_set=True))
        hostile = TurnSignals(word_count=3, frustration=FrustrationLevel.HOSTILE)

        decision, state = decide(state, "...", hostile)

        self.assertEqual(decision.action, Action.BOUNDARY_CLOSE)
        self.assertEqual(state.phase, Phase.COMPLETE)

        decision, _ = decide(state, "hello?", neutral())
        self.assertEqual(decision.action, Action.POST_COMPLETION)

    def test_frustration_is_acknowledged_then_closed(self):
        frustrated = TurnSignals(word_count=6, frustration=FrustrationLevel.SIGNIFICANT)

        decision, state = decide(exploring(), "...", frustrated)
        self.assertEqual(decision.action, Action.ACKNOWLEDGE_FRUSTRATION)
        self.assertEqual(state.relationship.frustration_acknowledgments, 1)

        worn_out = exploring(relationship=RelationshipState(frustration_acknowledgments=3))
        decision, state = decide(worn_out, "...", frustrated)
        self.assertEqual(decision.action, Action.COMPLETE_WITH_HANDOFF)
        self.assertEqual(decision.prompt_overlays, ["frustration_close"])

    def test_low_effort_escalates_to_meta_check_in_then_exit(self):
        actions = []
        overlays = []
        state = exploring()
        for _ in range(4):
            decision, state = decide(state, "ok", low_effort())
            actions.append(decision.action)
            overlays.append(decision.prompt_overlays)

        self.assertEqual(actions[:3], [Action.PUSH_BACK_ON_LOW_EFFORT] * 3)
        self.assertEqual(
            overlays[:3],
            [["low_effort_pushback"], ["low_effort_pushback_2"], ["low_effort_pushback_3"]],
        )
        self.assertEqual(actions[3], Action.COMPLETE_WITH_HANDOFF)
        self.assertEqual(overlays[3], ["low_engagement_exit"])
        self.assertEqual(state.phase, Phase.COMPLETE)

    def test_engaged_reply_resets_pushback_ladder(self):
        state = exploring(low_effort=LowEffortTracking(pushback_count=2))

        _, state = decide(state, "We mostly get work through referrals from past clients.", neutral())
        self.assertEqual(state.low_effort.pushback_count, 0)

        decision, _ = decide(state, "ok", low_effort())
        self.assertEqual(decision.action, Action.PUSH_BACK_ON_LOW_EFFORT)
        self.assertEqual(decision.prompt_overlays, ["low_effort_pushback"])

    def test_long_disengagement_exit_needs_establishing_trust(self):
        pragmatist = RelationshipState(disposition=Disposition.DIRECT_PRAGMATIST, trust_level=TrustLevel.BUILDING)
        state = exploring(relationship=pragmatist, low_effort=LowEffortTracking(consecutive=4, total=4))

        decision, _ = decide(state, "ok", low_effort())
        self.assertNotEqual(decision.action, Action.COMPLETE_WITH_HANDOFF)

        state.relationship.trust_level = TrustLevel.ESTABLISHING
        decision, new_state = decide(state, "ok", low_effort())
        self.assertEqual(decision.action, Action.COMPLETE_WITH_HANDOFF)
        self.assertEqual(decision.prompt_overlays, ["low_engagement_exit"])
        self.assertEqual(new_state.phase, Phase.COMPLETE)

    def test_turn_limit(self):
        state = exploring(turns_total=Config.MAX_CONVERSATION_TURNS - 1)

        decision, new_state = decide(state, "...", neutral())

        self.assertEqual(decision.action, Action.COMPLETE_WITH_HANDOFF)
        self.assertIn("turn_limit_close", decision.prompt_overlays)
        self.assertEqual(new_state.phase, Phase.COMPLETE)

    def test_safety_net_without_diagnosis(self):
        state = exploring(turns_total=Config.SAFETY_NET_TURNS - 1)

        decision, _ = decide(state, "...", neutral())

        self.assertEqual(decision.action, Action.COMPLETE_WITH_HANDOFF)
        self.assertEqual(decision.prompt_overlays, ["closing_handoff"])


class TestHypothesisWork(unittest.TestCase):
    def test_full_path_to_closing(self):
        state = exploring(
            turns_total=8,
            turns_in_phase=3,
            constraint_hypothesis=ConstraintCategory.EXECUTION,
            hypothesis=HypothesisTracking(confidence=0.8),
        )
        turns = [
            neutral(),
            TurnSignals(word_count=8, alignment=True),
            neutral(),
            neutral(),
            neutral(),
            neutral(),
            TurnSignals(word_count=3, consent=True),
            neutral(),
            neutral(),
            neutral(),
        ]

        actions, state = run(state, turns)

        self.assertEqual(actions, [
            Action.VALIDATE,
            Action.BUILD_CRITERIA,
            Action.STRESS_TEST,
            Action.PRE_COMMITMENT_CHECK,
            Action.EXPLORE_READINESS,
            Action.REQUEST_DIAGNOSIS_CONSENT,
            Action.DIAGNOSE,
            Action.CHECK_BLOCKERS,
            Action.EXPLORE_READINESS,
            Action.CLOSING_REFLECT_IMPLICATION,
        ])
        self.assertTrue(state.hypothesis_validated)
        self.assertTrue(state.hypothesis.diagnosis_delivered)
        self.assertEqual(state.phase, Phase.CLOSING)
        self.assertEqual(state.closing_sequence.branch, ClosingBranch.STANDARD)
        self.assertIsNotNone(state.closing_sequence.synthesis)

    def test_no_validate_after_validation(self):
        state = exploring(
            turns_total=8,
            turns_in_phase=3,
            constraint_hypothesis=ConstraintCategory.STRATEGY,
            hypothesis=HypothesisTracking(confidence=0.8),
        )
        turns = [neutral(), TurnSignals(word_count=8, alignment=True)] + [neutral()] * 10

        actions, _ = run(state, turns)

        self.assertEqual(actions.count(Action.VALIDATE), 1)

    def test_validate_is_not_repeated_on_consecutive_turns(self):
        state = exploring(
            constraint_hypothesis=ConstraintCategory.STRATEGY,
            hypothesis=HypothesisTracking(confidence=0.8),
        )

        actions, state = run(state, [neutral(), neutral()])

        self.assertEqual(actions[0], Action.VALIDATE)
        self.assertNotEqual(actions[1], Action.VALIDATE)
        self.assertFalse(state.hypothesis_validated)

    def test_consent_only_counts_after_asking(self):
        state = exploring(
            constraint_hypothesis=ConstraintCategory.STRATEGY,
            hypothesis_validated=True,
            hypothesis=HypothesisTracking(confidence=0.9, validation_turn=4),
            last_action=Action.EXPLORE,
        )

        _, new_state = decide(state, "Yes", TurnSignals(word_count=1, consent=True))

        self.assertFalse(new_state.hypothesis.consent_confirmed)

    def test_repeated_resistance_pivots(self):
        state = exploring(
            constraint_hypothesis=ConstraintCategory.EXECUTION,
            hypothesis=HypothesisTracking(confidence=0.6, resistance_count=1, contradictions_surfaced=1),
        )

        decision, new_state = decide(state, "That's not it.", TurnSignals(word_count=3, resistance=True))

        self.assertEqual(decision.action, Action.EXPLORE)
        self.assertEqual(decision.focus_area, PIVOT_FOCUS)
        self.assertIsNone(new_state.constraint_hypothesis)
        self.assertFalse(new_state.hypothesis_validated)
        self.assertEqual(new_state.hypothesis.pivot_count, 1)
        self.assertEqual(new_state.hypothesis.contradictions_surfaced, 1)
        self.assertEqual(new_state.hypothesis.resistance_count, 0)

    def test_tactical_drift_redirects(self):
        state = exploring(
            constraint_hypothesis=ConstraintCategory.EXECUTION,
            tactical=TacticalTracking(consecutive=2, total=2),
        )

        decision, new_state = decide(state, "Which CRM should I use?", TurnSignals(word_count=5, tactical_request=True))

        self.assertEqual(decision.action, Action.REDIRECT_FROM_TACTICAL)
        self.assertEqual(decision.redirect_to, "execution")
        self.assertEqual(new_state.tactical.redirect_count, 1)
        self.assertEqual(new_state.tactical.consecutive, 0)

    def test_breakthrough_is_reflected(self):
        state = exploring(turns_total=5)

        decision, new_state = decide(
            state, "...", TurnSignals(word_count=20, breakthrough=True, ownership=True)
        )

        self.assertEqual(decision.action, Action.REFLECT_INSIGHT)
        self.assertEqual(new_state.variety_tracker.total_reflections, 1)
        self.assertEqual(new_state.hypothesis.insight_milestones, 1)

    def test_breakthrough_after_cap_gets_brief_acknowledgment(self):
        state = exploring(
            turns_total=12,
            variety_tracker=VarietyTracker(total_reflections=3, last_reflection_turn=5),
        )

        decision, new_state = decide(
            state, "...", TurnSignals(word_count=20, breakthrough=True, ownership=True)
        )

        self.assertEqual(decision.action, Action.EXPLORE)
        self.assertEqual(decision.focus_area, BRIEF_ACKNOWLEDGMENT_FOCUS)
        self.assertEqual(new_state.variety_tracker.brief_acknowledgments_given, 1)
        self.assertEqual(new_state.variety_tracker.total_reflections, 3)

    def test_cross_map_to_upstream_constraint(self):
        state = exploring(
            turns_in_phase=4,
            constraint_hypothesis=ConstraintCategory.EXECUTION,
            hypothesis=HypothesisTracking(confidence=0.5),
            conversation_memory=ConversationMemory(language_markers=["scattered"]),
        )
        self.assertEqual(find_cross_map(state), ConstraintCategory.STRATEGY)

        decision, new_state = decide(state, "...", neutral())

        self.assertEqual(decision.action, Action.CROSS_MAP)
        self.assertEqual(decision.redirect_to, "strategy")
        self.assertTrue(new_state.hypothesis.cross_map_applied)

    def test_exhausted_topic_moves_to_validation_instead_of_exploring_it(self):
        state = exploring(
            constraint_hypothesis=ConstraintCategory.EXECUTION,
            hypothesis=HypothesisTracking(confidence=0.4),
            conversation_memory=ConversationMemory(
                topics_explored=["marketing"],
                topic_mentions=["marketing", "marketing", "marketing"],
            ),
        )

        decision, new_state = decide(state, "The marketing still isn't landing.", neutral())

        self.assertLess(new_state.conversation_memory.ground_covered_score, 0.6)
        self.assertIn(decision.action, (Action.CROSS_MAP, Action.VALIDATE))
        self.assertNotEqual(decision.focus_area, "marketing")

    def test_exhausted_topic_is_never_the_explore_focus(self):
        state = exploring(
            conversation_memory=ConversationMemory(
                topics_explored=["pricing", "marketing"],
                topic_mentions=["pricing", "marketing", "marketing"],
            ),
        )

        decision, _ = decide(state, "Marketing, again.", neutral())

        self.assertEqual(decision.action, Action.EXPLORE)
        self.assertEqual(decision.focus_area, "pricing")

    def test_no_cross_map_without_matching_language(self):
        state = exploring(
            constraint_hypothesis=ConstraintCategory.PSYCHOLOGY,
            conversation_memory=ConversationMemory(language_markers=["systems"]),
        )

        self.assertIsNone(find_cross_map(state))


class TestClosingEntry(unittest.TestCase):
    def _diagnosed(self, **overrides) -> ConversationState:
        return exploring(
            phase=Phase.DIAGNOSIS,
            turns_total=14,
            constraint_hypothesis=ConstraintCategory.EXECUTION,
            hypothesis_validated=True,
            hypothesis=HypothesisTracking(
                confidence=0.9,
                validation_turn=9,
                criteria_built=True,
                stress_test_done=True,
                pre_commitment_checked=True,
                consent_requested=True,
                consent_confirmed=True,
                diagnosis_delivered=True,
                blockers_checked=True,
                readiness_turns_pre=1,
                readiness_turns_post=1,
            ),
            **overrides,
        )

    def test_standard_sequence_runs_once_in_order(self):
        actions, state = run(self._diagnosed(), [neutral()] * 8)

        self.assertEqual(actions[:6], [
            Action.CLOSING_REFLECT_IMPLICATION,
            Action.CLOSING_REFLECT_STAKES,
            Action.CLOSING_NAME_CAPABILITY_GAP,
            Action.CLOSING_ASSERT_AND_ALIGN,
            Action.CLOSING_OFFER_SOLUTION,
            Action.CLOSING_FACILITATE,
        ])
        self.assertEqual(actions[6:], [Action.POST_COMPLETION] * 2)
        self.assertEqual(state.phase, Phase.COMPLETE)
        self.assertEqual(state.closing_sequence.phase, ClosingPhase.FACILITATE)

    def test_financial_constraint_takes_self_directed_branch(self):
        broke = TurnSignals(word_count=10, financial_constraint=True)

        actions, state = run(self._diagnosed(), [broke, neutral(), neutral()])

        self.assertEqual(actions, [
            Action.CLOSING_SELF_DIRECTED_REFLECT,
            Action.CLOSING_SELF_DIRECTED_ACTION,
            Action.POST_COMPLETION,
        ])
        self.assertNotIn(Action.CLOSING_ASSERT_AND_ALIGN, actions)
        self.assertNotIn(Action.CLOSING_OFFER_SOLUTION, actions)
        self.assertEqual(state.closing_sequence.branch, ClosingBranch.SELF_DIRECTED)
        self.assertEqual(state.phase, Phase.COMPLETE)

    def test_declined_offer_reaches_facilitate_with_decline_focus(self):
        state = self._diagnosed()
        actions, state = run(state, [neutral()] * 5)
        self.assertEqual(actions[-1], Action.CLOSING_OFFER_SOLUTION)

        decision, state = decide(state, "No thanks, I'll figure it out myself.", TurnSignals(word_count=8, declined_offering=True))

        self.assertEqual(decision.action, Action.CLOSING_FACILITATE)
        self.assertEqual(decision.focus_area, "offer_declined")
        self.assertTrue(state.closing_sequence.offer_declined)
        self.assertEqual(state.phase, Phase.COMPLETE)

    def test_single_low_effort_reply_after_old_pushbacks_does_not_end_closing(self):
        _, state = run(self._diagnosed(), [neutral()])
        self.assertEqual(state.closing_sequence.phase, ClosingPhase.REFLECT_IMPLICATION)
        state.low_effort = LowEffortTracking(total=3, pushback_count=3)

        decision, new_state = decide(state, "idk", low_effort())

        self.assertEqual(decision.action, Action.CLOSING_REFLECT_STAKES)
        self.assertEqual(new_state.phase, Phase.CLOSING)

    def test_plain_no_at_the_offer_is_read_as_a_decline(self):
        for message in ("No.", "No, I don't want to do that.", "No, I'm going to pass on that."):
            with self.subTest(message=message):
                _, state = run(self._diagnosed(), [neutral()] * 5)
                self.assertEqual(state.closing_sequence.phase, ClosingPhase.OFFER_SOLUTION)

                decision, state = decide(state, message)

                self.assertEqual(decision.action, Action.CLOSING_FACILITATE)
                self.assertEqual(decision.focus_area, "offer_declined")
                self.assertTrue(state.closing_sequence.offer_declined)
                self.assertFalse(state.closing_sequence.offer_accepted)

    def test_acceptance_at_the_offer_is_recorded(self):
        _, state = run(self._diagnosed(), [neutral()] * 5)

        decision, state = decide(state, "Yes, let's do it.")

        self.assertEqual(decision.action, Action.CLOSING_FACILITATE)
        self.assertTrue(state.closing_sequence.offer_accepted)
        self.assertFalse(state.closing_sequence.offer_declined)


if __name__ == "__main__":
    unittest.main()
