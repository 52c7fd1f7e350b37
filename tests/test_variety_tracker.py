import unittest

from memory.variety_tracker import (
    ACKNOWLEDGMENT_PATTERNS,
    BRIEF_ACKNOWLEDGMENTS,
    MAX_REFLECTIONS,
    QUESTION_PATTERNS,
    VarietyTracker,
    brief_acknowledgment,
    build_variety_guidance,
    record_reflection,
    record_used_patterns,
    reflection_cap_reached,
    should_skip_reflection,
)


class TestPatternTracking(unittest.TestCase):
    def test_records_used_patterns(self):
        tracker = VarietyTracker()

        record_used_patterns(tracker, "I hear you. What does that look like for you?")

        self.assertEqual(tracker.acknowledgment_patterns_used, [ACKNOWLEDGMENT_PATTERNS.index("I hear you.")])
        self.assertEqual(tracker.question_patterns_used, [0])

    def test_rotation_keeps_last_two(self):
        tracker = VarietyTracker()
        reply = " ".join(QUESTION_PATTERNS[:6])

        record_used_patterns(tracker, reply)

        self.assertEqual(tracker.question_patterns_used, [4, 5])

    def test_structural_tics_are_counted(self):
        tracker = VarietyTracker()

        record_used_patterns(tracker, "Here's what I'm seeing: **you are carrying every role yourself**.")

        self.assertEqual(tracker.heres_what_count, 1)
        self.assertEqual(tracker.bold_sentence_count, 1)


class TestReflections(unittest.TestCase):
    def test_spacing_between_reflections(self):
        tracker = VarietyTracker()
        self.assertFalse(should_skip_reflection(tracker, 4))

        record_reflection(tracker, 5)

        self.assertTrue(should_skip_reflection(tracker, 6))
        self.assertFalse(should_skip_reflection(tracker, 8))

    def test_reflection_cap(self):
        tracker = VarietyTracker()
        for turn in (3, 7, 11):
            record_reflection(tracker, turn)

        self.assertEqual(tracker.total_reflections, MAX_REFLECTIONS)
        self.assertTrue(reflection_cap_reached(tracker))
        self.assertTrue(should_skip_reflection(tracker, 30))

    def test_brief_acknowledgment_rotates(self):
        self.assertEqual(brief_acknowledgment(VarietyTracker()), BRIEF_ACKNOWLEDGMENTS[0])
        self.assertEqual(
            brief_acknowledgment(VarietyTracker(brief_acknowledgments_given=len(BRIEF_ACKNOWLEDGMENTS) + 1)),
            BRIEF_ACKNOWLEDGMENTS[1],
        )


class TestVarietyGuidance(unittest.TestCase):
    def test_guidance_is_deterministic(self):
        tracker = VarietyTracker(question_patterns_used=[0, 1])

        self.assertEqual(build_variety_guidance(tracker, 6), build_variety_guidance(tracker.model_copy(), 6))

    def test_used_patterns_are_not_offered(self):
        guidance = build_variety_guidance(VarietyTracker(question_patterns_used=[0]), 2)

        self.assertNotIn(QUESTION_PATTERNS[0], guidance)
        self.assertIn(QUESTION_PATTERNS[1], guidance)
        self.assertIn("Reflections used: 0/3", guidance)

    def test_cap_and_structure_warnings(self):
        tracker = VarietyTracker(total_reflections=3, last_reflection_turn=9, heres_what_count=2)

        guidance = build_variety_guidance(tracker, 12)

        self.assertIn("Reflection limit reached", guidance)
        self.assertIn(BRIEF_ACKNOWLEDGMENTS[0], guidance)
        self.assertIn("Do not use it again", guidance)


if __name__ == "__main__":
    unittest.main()
