import unittest

from orchestrator.response_validator import (
    CRITICAL_CLOSING_ACTIONS,
    build_correction_prompt,
    closing_fallback,
    count_sentences,
    validate_response,
)
from orchestrator.state import Action, ConstraintCategory


class TestValidateResponse(unittest.TestCase):
    def test_valid_explore_reply(self):
        result = validate_response("That sounds heavy. What part of it weighs on you most?", Action.EXPLORE)

        self.assertTrue(result.valid)
        self.assertEqual(result.violations, [])

    def test_explore_must_end_with_question(self):
        result = validate_response("That sounds heavy.", Action.EXPLORE)

        self.assertFalse(result.valid)
        self.assertIn("Response must end with a question for explore", result.violations)

    def test_farewell_mid_conversation(self):
        result = validate_response("Good luck with all of it. What's next for you?", Action.EXPLORE)

        self.assertFalse(result.valid)
        self.assertTrue(any("farewell" in v for v in result.violations))

    def test_booking_language_before_offer(self):
        result = validate_response("You should book a call with us. Does that fit?", Action.VALIDATE)

        self.assertFalse(result.valid)
        self.assertTrue(any("call-to-action" in v for v in result.violations))

    def test_presenting_self_as_the_solution(self):
        result = validate_response(
            "That's exactly what I help people work through. What feels hardest?", Action.EXPLORE
        )

        self.assertFalse(result.valid)
        self.assertTrue(any("our team" in v for v in result.violations))

    def test_placeholder_text(self):
        result = validate_response("[Click below to book] Does that work for you?", Action.CLOSING_FACILITATE)

        self.assertFalse(result.valid)
        self.assertTrue(any("placeholder" in v for v in result.violations))

    def test_stakes_are_statements_only(self):
        with self.assertLogs("orchestrator.response_validator", level="WARNING"):
            asked = validate_response("If nothing changes, where does that leave you?", Action.CLOSING_REFLECT_STAKES)
        told = validate_response(
            "If nothing changes, another year looks like this one. That cost is real.",
            Action.CLOSING_REFLECT_STAKES,
        )

        self.assertIn("Response must use statements only for closing_reflect_stakes", asked.violations)
        self.assertTrue(told.valid)

    def test_summary_language_before_facilitation(self):
        result = validate_response("I've put together your summary. Does that match?", Action.CLOSING_ASSERT_AND_ALIGN)

        self.assertFalse(result.valid)
        self.assertTrue(any("final closing turn" in v for v in result.violations))

    def test_handoff_length(self):
        self.assertFalse(validate_response("Thanks. " * 16, Action.COMPLETE_WITH_HANDOFF).valid)

        result = validate_response("Thanks. " * 12, Action.COMPLETE_WITH_HANDOFF)
        self.assertTrue(result.valid)
        self.assertEqual(result.warnings, [])

    def test_long_reply_only_warns(self):
        result = validate_response("It is. " * 7 + "Why?", Action.EXPLORE)

        self.assertTrue(result.valid)
        self.assertEqual(result.warnings, ["Response is 8 sentences (recommended: 5)"])

    def test_count_sentences(self):
        self.assertEqual(count_sentences("One. Two! Three? "), 3)
        self.assertEqual(count_sentences(""), 0)


class TestCorrectionPrompt(unittest.TestCase):
    def test_correction_lists_violations_and_requirements(self):
        prompt = build_correction_prompt(["Response must end with a question for validate"], Action.VALIDATE)

        self.assertIn("expected structure for validate", prompt)
        self.assertIn("- Response must end with a question for validate", prompt)
        self.assertIn("MUST end with a question mark", prompt)
        self.assertIn("6 sentences or fewer", prompt)
        self.assertIn("- Remember: Check whether the pattern you see fits their experience", prompt)

    def test_statement_only_correction(self):
        prompt = build_correction_prompt(["x"], Action.CLOSING_REFLECT_STAKES)

        self.assertIn("Do not ask any question", prompt)
        self.assertNotIn("MUST end with a question mark", prompt)


class TestClosingFallback(unittest.TestCase):
    def test_fallbacks_pass_their_own_validation(self):
        for action in CRITICAL_CLOSING_ACTIONS:
            for declined, accepted in ((False, False), (True, False), (False, True)):
                reply = closing_fallback(
                    action, ConstraintCategory.EXECUTION, offer_declined=declined, offer_accepted=accepted
                )
                self.assertTrue(reply.endswith("?"), action)
                self.assertTrue(validate_response(reply, action).valid, action)

    def test_assert_fallback_names_the_support(self):
        reply = closing_fallback(Action.CLOSING_ASSERT_AND_ALIGN, ConstraintCategory.EXECUTION)

        self.assertIn("operational systems", reply)

    def test_declined_facilitate_fallback(self):
        reply = closing_fallback(Action.CLOSING_FACILITATE, None, offer_declined=True)

        self.assertIn("completely fine", reply)
        self.assertNotIn("book", reply)

    def test_facilitate_fallback_does_not_assume_acceptance(self):
        reply = closing_fallback(Action.CLOSING_FACILITATE, ConstraintCategory.STRATEGY)

        self.assertNotIn("Great", reply)
        self.assertNotIn("that call", reply)
        self.assertIn("stays open", reply)

    def test_accepted_facilitate_fallback(self):
        reply = closing_fallback(Action.CLOSING_FACILITATE, ConstraintCategory.STRATEGY, offer_accepted=True)

        self.assertTrue(reply.startswith("Great."))
        self.assertIn("book", reply)

    def test_no_fallback_for_other_actions(self):
        self.assertIsNone(closing_fallback(Action.EXPLORE, ConstraintCategory.STRATEGY))


if __name__ == "__main__":
    unittest.main()
