import unittest

from memory.conversation_memory import (
    GENERAL_TOPIC,
    MAX_CLARITY_HISTORY,
    MAX_TOPIC_MENTIONS,
    ConversationMemory,
    build_memory_context,
    calculate_ground_covered,
    detect_circular_exploration,
    detect_clarity_trend,
    extract_question_theme,
    extract_topic,
    is_topic_exhausted,
    record_assistant_turn,
    record_user_turn,
)


class TestTopics(unittest.TestCase):
    def test_extract_topic(self):
        self.assertEqual(extract_topic("Our Pipeline has been empty since March"), "pipeline")
        self.assertEqual(extract_topic("Honestly I just feel stuck"), GENERAL_TOPIC)

    def test_topics_explored_is_append_only_without_duplicates(self):
        memory = ConversationMemory()
        for message in ("Our pipeline is thin", "We have no systems", "The pipeline again"):
            record_user_turn(memory, message, "medium", None)

        self.assertEqual(memory.topics_explored, ["pipeline", "systems"])
        self.assertEqual(memory.topic_mentions, ["pipeline", "systems", "pipeline"])

    def test_general_responses_are_not_topics(self):
        memory = ConversationMemory()

        topic = record_user_turn(memory, "Hmm, hard to say", "low", None)

        self.assertEqual(topic, GENERAL_TOPIC)
        self.assertEqual(memory.topics_explored, [])
        self.assertEqual(memory.topic_mentions, [GENERAL_TOPIC])

    def test_rolling_windows(self):
        memory = ConversationMemory()
        for _ in range(MAX_TOPIC_MENTIONS + 3):
            record_user_turn(memory, "Sales are down", "low", None)

        self.assertEqual(len(memory.topic_mentions), MAX_TOPIC_MENTIONS)
        self.assertEqual(len(memory.clarity_history), MAX_CLARITY_HISTORY)

    def test_language_markers_accumulate_once(self):
        memory = ConversationMemory()
        record_user_turn(memory, "...", "medium", None, ["scattered"])
        record_user_turn(memory, "...", "medium", None, ["scattered", "fear"])

        self.assertEqual(memory.language_markers, ["scattered", "fear"])

    def test_topic_exhaustion(self):
        memory = ConversationMemory()
        self.assertFalse(is_topic_exhausted(memory))

        for _ in range(2):
            record_user_turn(memory, "Marketing is the problem", "medium", None)
        self.assertFalse(is_topic_exhausted(memory))

        record_user_turn(memory, "It's the marketing", "medium", None)
        self.assertTrue(is_topic_exhausted(memory))
        self.assertFalse(is_topic_exhausted(memory, GENERAL_TOPIC))


class TestGroundCovered(unittest.TestCase):
    def test_empty_memory(self):
        self.assertEqual(calculate_ground_covered(ConversationMemory(), None), 0.0)
        self.assertEqual(calculate_ground_covered(ConversationMemory(), "strategy"), 0.2)

    def test_broad_coverage_caps_at_one(self):
        memory = ConversationMemory(topics_explored=["pipeline", "time", "fear", "systems", "goals"])

        self.assertEqual(calculate_ground_covered(memory, "execution"), 1.0)

    def test_score_updated_on_record(self):
        memory = ConversationMemory()

        record_user_turn(memory, "Our clients come from referrals", "medium", "strategy")

        self.assertGreater(memory.ground_covered_score, 0.2)


class TestQuestionsAndTrends(unittest.TestCase):
    def test_question_themes(self):
        self.assertEqual(extract_question_theme("What's stopping you from raising prices?"), "blockers")
        self.assertEqual(extract_question_theme("What have you tried so far?"), "past attempts")
        self.assertEqual(extract_question_theme("Interesting."), "exploration")

    def test_record_assistant_turn(self):
        memory = ConversationMemory()

        theme = record_assistant_turn(memory, "Does that resonate with you?")

        self.assertEqual(theme, "validation")
        self.assertEqual(memory.questions_asked, ["validation"])

    def test_clarity_trend(self):
        self.assertEqual(detect_clarity_trend(ConversationMemory(clarity_history=["low", "high"])), "stable")
        self.assertEqual(
            detect_clarity_trend(ConversationMemory(clarity_history=["low", "medium", "high"])), "increasing"
        )
        self.assertEqual(
            detect_clarity_trend(ConversationMemory(clarity_history=["high", "medium", "low"])), "decreasing"
        )

    def test_circular_exploration(self):
        memory = ConversationMemory(topic_mentions=["pipeline", "pipeline"])

        is_circular, suggestion = detect_circular_exploration(memory, "pipeline")

        self.assertTrue(is_circular)
        self.assertEqual(suggestion, "Move toward validating the hypothesis")

    def test_repeated_question_theme_is_circular(self):
        memory = ConversationMemory(questions_asked=["elaboration", "elaboration"])

        is_circular, suggestion = detect_circular_exploration(memory, "tell me about the launch")

        self.assertTrue(is_circular)
        self.assertIn("elaboration", suggestion)

    def test_memory_context_warns_when_circular(self):
        memory = ConversationMemory(
            topics_explored=["pipeline"],
            topic_mentions=["pipeline", "pipeline", "pipeline"],
        )

        context = build_memory_context(memory)

        self.assertIn("Topics explored: pipeline", context)
        self.assertIn("circular exploration detected", context)


if __name__ == "__main__":
    unittest.main()
