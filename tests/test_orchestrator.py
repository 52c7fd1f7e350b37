import asyncio
import unittest

from orchestrator.main import OPENING_MESSAGE, Orchestrator
from orchestrator.state import (
    Action,
    ClosingBranch,
    ClosingPhase,
    ClosingSequence,
    ConstraintCategory,
    ConversationState,
    Phase,
)


DEFAULT_REPLY = "That sounds like a lot to hold. Who do you work with most?"


class FakeAdvisor:
    """Advisor double: streams queued replies in two chunks, then a default."""

    def __init__(self, replies=None, retries=None):
        self.replies = list(replies or [])
        self.retries = list(retries or [])
        self.instructions = []

    async def astream(self, instructions, user_prompt):
        self.instructions.append(instructions)
        reply = self.replies.pop(0) if self.replies else DEFAULT_REPLY
        middle = len(reply) // 2
        yield reply[:middle]
        yield reply[middle:]

    async def arespond(self, instructions, user_prompt):
        self.instructions.append(instructions)
        return self.retries.pop(0) if self.retries else DEFAULT_REPLY


class FailingAnalysis:
    async def aanalyse(self, user_input, state, history, signals):
        raise RuntimeError("model unavailable")


def collect(orchestrator, message):
    async def run():
        return [event async for event in orchestrator.arespond_stream(message)]
    return asyncio.run(run())


class TestOrchestratorTurn(unittest.TestCase):
    def test_start(self):
        orchestrator = Orchestrator(advisor=FakeAdvisor())

        result = orchestrator.start()

        self.assertEqual(result, {"reply": OPENING_MESSAGE, "phase": "context", "complete": False})
        self.assertEqual(orchestrator.history, [{"role": "assistant", "content": OPENING_MESSAGE}])

    def test_stream_events(self):
        orchestrator = Orchestrator(advisor=FakeAdvisor())
        orchestrator.start()

        events = collect(orchestrator, "I help coaches with their marketing")

        self.assertEqual(
            [e["type"] for e in events],
            ["stream_start", "stream_delta", "stream_delta", "stream_end"],
        )
        self.assertEqual(events[0], {"type": "stream_start", "phase": "context", "action": "explore"})
        self.assertEqual("".join(e["delta"] for e in events[1:3]), DEFAULT_REPLY)
        end = events[-1]
        self.assertEqual(end["reply"], DEFAULT_REPLY)
        self.assertFalse(end["replaced"])
        self.assertEqual(end["turn"], 1)
        self.assertFalse(end["complete"])
        self.assertEqual(orchestrator.last_decision.action, Action.EXPLORE)
        self.assertEqual(len(orchestrator.history), 3)

    def test_state_committed_after_reply(self):
        orchestrator = Orchestrator(advisor=FakeAdvisor())

        async def run():
            turns_seen = []
            async for event in orchestrator.arespond_stream("We run a small bakery"):
                turns_seen.append((event["type"], orchestrator.state.turns_total))
            return turns_seen

        turns_seen = asyncio.run(run())

        self.assertEqual(turns_seen[0], ("stream_start", 0))
        self.assertEqual(turns_seen[-1], ("stream_end", 1))

    def test_invalid_reply_is_regenerated(self):
        advisor = FakeAdvisor(replies=["Thanks for sharing that."])
        orchestrator = Orchestrator(advisor=advisor)

        with self.assertLogs("orchestrator.response_validator", level="WARNING"):
            end = collect(orchestrator, "We run a small bakery")[-1]

        self.assertTrue(end["replaced"])
        self.assertEqual(end["reply"], DEFAULT_REPLY)
        self.assertIn("must end with a question", advisor.instructions[-1])
        self.assertEqual(orchestrator.history[-1]["content"], DEFAULT_REPLY)

    def test_closing_fallback_after_failed_retry(self):
        state = ConversationState(
            phase=Phase.CLOSING,
            turns_total=20,
            constraint_hypothesis=ConstraintCategory.STRATEGY,
            hypothesis_validated=True,
            closing_sequence=ClosingSequence(
                phase=ClosingPhase.NAME_CAPABILITY_GAP,
                branch=ClosingBranch.STANDARD,
            ),
        )
        advisor = FakeAdvisor(replies=["Good luck out there."], retries=["Take care now."])
        orchestrator = Orchestrator(state=state, advisor=advisor)

        end = collect(orchestrator, "Yes, that's exactly it.")[-1]

        self.assertEqual(orchestrator.last_decision.action, Action.CLOSING_ASSERT_AND_ALIGN)
        self.assertTrue(end["replaced"])
        self.assertIn("strategic clarity", end["reply"])
        self.assertTrue(end["reply"].endswith("?"))

    def test_analysis_failure_falls_back_to_heuristics(self):
        orchestrator = Orchestrator(advisor=FakeAdvisor(), analysis_agent=FailingAnalysis())

        with self.assertLogs("orchestrator.main", level="WARNING") as logs:
            end = collect(orchestrator, "I help coaches with their marketing")[-1]

        self.assertIn("AnalysisAgent failed", logs.output[0])
        self.assertEqual(end["reply"], DEFAULT_REPLY)

    def test_completed_conversation_stays_complete(self):
        state = ConversationState(phase=Phase.COMPLETE, turns_total=22)
        orchestrator = Orchestrator(state=state, advisor=FakeAdvisor(replies=["It was good talking with you."]))

        end = asyncio.run(orchestrator.arespond("one more thing"))

        self.assertEqual(orchestrator.last_decision.action, Action.POST_COMPLETION)
        self.assertTrue(end["complete"])
        self.assertEqual(end["turn"], 22)
        self.assertEqual(end["reply"], "It was good talking with you.")

    def test_post_completion_reply_leaves_state_untouched(self):
        state = ConversationState(phase=Phase.COMPLETE, turns_total=22)
        before = state.model_dump()
        orchestrator = Orchestrator(
            state=state,
            advisor=FakeAdvisor(replies=["Glad it helped. What would you like to take with you from today?"]),
        )

        asyncio.run(orchestrator.arespond("Actually, what else could I try?"))

        self.assertEqual(orchestrator.state.model_dump(), before)
        self.assertEqual(orchestrator.state.variety_tracker, state.variety_tracker)
        self.assertEqual(orchestrator.state.conversation_memory.questions_asked, [])
        self.assertEqual(len(orchestrator.history), 2)

    def test_summary(self):
        orchestrator = Orchestrator(session_id="abc", advisor=FakeAdvisor())
        collect(orchestrator, "We run a small bakery")

        summary = orchestrator.get_summary()

        self.assertEqual(summary["session_id"], "abc")
        self.assertEqual(summary["turns_total"], 1)
        self.assertEqual(summary["last_action"], "explore")


if __name__ == "__main__":
    unittest.main()
