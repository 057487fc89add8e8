import sys
import os
import unittest
from types import SimpleNamespace

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from parliament import coverage
from parliament.phases import PhaseStep, next_step, record_exploration_round, complete_final_response
from parliament.transcript import format_transcript
from parliament.state import (
    ChatMessage,
    ConversationPhase,
    ConversationStore,
    ExpertContentAnalysis,
    QuestionType,
    ensure_store,
)


class TestConversationStore(unittest.TestCase):

    def setUp(self):
        self.store = ConversationStore()

    def test_unknown_session_reads_return_defaults(self):
        self.assertIsNone(self.store.get("missing"))
        self.assertEqual(self.store.messages("missing"), [])
        self.assertEqual(self.store.round_number("missing"), 0)
        self.assertEqual(self.store.phase("missing"), ConversationPhase.EXPLORATION)
        self.assertIsNone(self.store.source_question("missing"))
        self.assertFalse(self.store.future_goal_answered("missing"))
        self.assertIsNone(self.store.external_domain("missing"))
        # Reads never create
        self.assertEqual(self.store.list_ids(), [])

    def test_unknown_session_write_creates_it(self):
        self.store.append("s1", ChatMessage(speaker="user", role="user", content="hello there"))
        self.assertEqual(self.store.list_ids(), ["s1"])
        self.assertEqual(len(self.store.messages("s1")), 1)

    def test_append_preserves_order_and_touches_timestamp(self):
        session = self.store.get_or_create("s1")
        session.last_updated = "2000-01-01T00:00:00"
        for i in range(3):
            self.store.append("s1", ChatMessage(speaker="user", role="user", content=f"message {i}"))
        self.assertEqual([m.content for m in self.store.messages("s1")], ["message 0", "message 1", "message 2"])
        self.assertNotEqual(self.store.get("s1").last_updated, "2000-01-01T00:00:00")

    def test_messages_returns_a_copy(self):
        self.store.append("s1", ChatMessage(speaker="user", role="user", content="first message"))
        snapshot = self.store.messages("s1")
        snapshot.append(ChatMessage(speaker="x", content="not stored"))
        self.assertEqual(len(self.store.messages("s1")), 1)

    def test_source_question_is_never_overwritten(self):
        self.assertEqual(self.store.set_source_question("s1", "original"), "original")
        self.assertEqual(self.store.set_source_question("s1", "something later"), "original")
        self.assertEqual(self.store.source_question("s1"), "original")

    def test_count_user_messages_ignores_short_and_assistant(self):
        self.store.append("s1", ChatMessage(speaker="user", role="user", content="ok"))
        self.store.append("s1", ChatMessage(speaker="user", role="user", content="this one is long enough"))
        self.store.append("s1", ChatMessage(speaker="Parliament", content="a long assistant question?"))
        self.assertEqual(self.store.count_user_messages("s1"), 1)

    def test_delete_and_recycle(self):
        self.store.append("s1", ChatMessage(speaker="user", role="user", content="hello there"))
        self.store.set_phase("s1", ConversationPhase.FINAL_RESPONSE)
        fresh = self.store.recycle("s1")
        self.assertEqual(fresh.phase, ConversationPhase.EXPLORATION)
        self.assertEqual(fresh.messages, [])
        self.assertTrue(self.store.delete("s1"))
        self.assertFalse(self.store.delete("s1"))

    def test_external_domain_approval(self):
        self.store.set_external_domain_detected("s1", "legal", "Legal")
        self.assertIsNone(self.store.external_domain("s1").user_approved)
        self.assertIsNone(self.store.active_external_domain("s1"))

        self.store.set_external_domain_approval("s1", True)
        self.assertTrue(self.store.external_domain("s1").specialist_added)
        self.assertEqual(self.store.active_external_domain("s1"), "legal")

        self.store.clear_external_domain("s1")
        self.assertIsNone(self.store.external_domain("s1"))

    def test_verify(self):
        self.assertEqual(self.store.verify("s1"), {"exists": False, "message_count": 0})
        self.store.append("s1", ChatMessage(speaker="user", role="user", content="hello there"))
        self.assertEqual(self.store.verify("s1"), {"exists": True, "message_count": 1})

    def test_new_topic_resets(self):
        self.store.set_source_question("s1", "first topic")
        self.store.set_expert_content_analyses("s1", [
            ExpertContentAnalysis(agent_id="cbt", agent_name="CBT", school_name="CBT", analysis="text"),
        ])
        self.store.clear_source_question("s1")
        self.store.clear_expert_content_analyses("s1")
        self.assertIsNone(self.store.expert_content_analyses("s1"))
        self.assertEqual(self.store.set_source_question("s1", "second topic"), "second topic")

    def test_lock_is_per_session(self):
        self.assertIs(self.store.lock("a"), self.store.lock("a"))
        self.assertIsNot(self.store.lock("a"), self.store.lock("b"))

    def test_unused_locks_are_released(self):
        held = self.store.lock("a")
        self.store.lock("b")
        self.assertIn("a", self.store._locks)
        self.assertNotIn("b", self.store._locks)
        self.assertIs(self.store.lock("a"), held)
        del held
        self.assertEqual(len(self.store._locks), 0)


class TestEnsureStore(unittest.TestCase):

    def test_ensure_store_is_idempotent(self):
        app = SimpleNamespace(state=SimpleNamespace())
        first = ensure_store(app)
        second = ensure_store(app)
        self.assertIs(first, second)
        self.assertIs(app.state.store, first)

    def test_separate_apps_get_separate_stores(self):
        a = ensure_store(SimpleNamespace(state=SimpleNamespace()))
        b = ensure_store(SimpleNamespace(state=SimpleNamespace()))
        self.assertIsNot(a, b)
        self.assertNotEqual(a.store_id, b.store_id)


class TestCoverage(unittest.TestCase):

    def setUp(self):
        self.store = ConversationStore()

    def test_missing_follows_priority_order(self):
        self.assertEqual(
            coverage.missing(self.store, "s1"),
            [QuestionType.CONTEXT, QuestionType.MOTIVATION, QuestionType.PATTERN],
        )
        coverage.mark_asked(self.store, "s1", QuestionType.PATTERN)
        self.assertEqual(coverage.missing(self.store, "s1"), [QuestionType.CONTEXT, QuestionType.MOTIVATION])

    def test_marks_are_monotonic_until_reset(self):
        coverage.mark_asked(self.store, "s1", QuestionType.CONTEXT)
        coverage.mark_asked(self.store, "s1", QuestionType.CONTEXT)
        coverage.mark_asked(self.store, "s1", QuestionType.PATTERN)
        self.assertTrue(self.store.question_type_coverage("s1").context)
        self.assertTrue(self.store.question_type_coverage("s1").pattern)

        coverage.mark_asked(self.store, "s1", QuestionType.MOTIVATION)
        self.assertTrue(coverage.all_asked(self.store, "s1"))

        coverage.reset(self.store, "s1")
        self.assertEqual(len(coverage.missing(self.store, "s1")), 3)

    def test_coverage_frozen_in_final_response(self):
        self.store.set_phase("s1", ConversationPhase.FINAL_RESPONSE)
        coverage.mark_asked(self.store, "s1", QuestionType.MOTIVATION)
        self.assertFalse(self.store.question_type_coverage("s1").motivation)


class TestPhaseMachine(unittest.TestCase):

    def setUp(self):
        self.store = ConversationStore()

    def test_deep_analysis_entered_exactly_at_round_three(self):
        phases = []
        for _ in range(3):
            record_exploration_round(self.store, "s1")
            phases.append(self.store.phase("s1"))
        self.assertEqual(phases, [
            ConversationPhase.EXPLORATION,
            ConversationPhase.EXPLORATION,
            ConversationPhase.DEEP_ANALYSIS,
        ])
        self.assertEqual(self.store.round_number("s1"), 3)

    def test_round_frozen_outside_exploration(self):
        for _ in range(5):
            record_exploration_round(self.store, "s1")
        self.assertEqual(self.store.round_number("s1"), 3)

        complete_final_response(self.store, "s1")
        record_exploration_round(self.store, "s1")
        self.assertEqual(self.store.round_number("s1"), 3)
        self.assertEqual(self.store.phase("s1"), ConversationPhase.FINAL_RESPONSE)

    def test_next_step(self):
        session = self.store.get_or_create("s1")
        self.assertEqual(next_step(session), PhaseStep.ASK_NEXT)

        session.round_number = 2
        self.assertEqual(next_step(session), PhaseStep.ENTER_DEEP_ANALYSIS)

        session.phase = ConversationPhase.DEEP_ANALYSIS
        self.assertEqual(next_step(session), PhaseStep.AWAIT_DEEP_ANALYSIS)

        session.future_goal_answered = True
        self.assertEqual(next_step(session), PhaseStep.FINAL_ANSWER)

        session.phase = ConversationPhase.FINAL_RESPONSE
        self.assertEqual(next_step(session), PhaseStep.SESSION_COMPLETED)

    def test_future_goal_short_circuits_in_exploration(self):
        session = self.store.get_or_create("s1")
        session.future_goal_answered = True
        self.assertEqual(next_step(session), PhaseStep.FINAL_ANSWER)


class TestTranscript(unittest.TestCase):

    def test_bracketed_user_text_is_dialogue(self):
        messages = [
            ChatMessage(speaker="user", role="user", content="[Update] my partner left and I keep avoiding calls"),
            ChatMessage(speaker="CBT", content="[Internal] Position: avoidance"),
            ChatMessage(speaker="Parliament", content="What happens when the phone rings?"),
        ]
        self.assertEqual(
            format_transcript(messages),
            "User: [Update] my partner left and I keep avoiding calls\n"
            "Parliament: What happens when the phone rings?",
        )
        self.assertIn("[Internal]", format_transcript(messages, include_internal=True))

    def test_truncation_keeps_the_tail(self):
        messages = [ChatMessage(speaker="user", role="user", content="x" * 50 + "end")]
        self.assertEqual(format_transcript(messages, max_chars=3), "...end")


if __name__ == '__main__':
    unittest.main()
