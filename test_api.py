import sys
import os
import unittest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from parliament.chair import ChairSynthesisError
from parliament.main import app
from parliament.models import OTHER_OPTION, SynthesizedQuestion
from parliament.state import ConversationPhase, ConversationStore, QuestionType, ensure_store

FIRST_QUESTION = SynthesizedQuestion(
    question="When the talk comes up, what happens inside you?",
    options=["I freeze", "I postpone", "I get angry", OTHER_OPTION],
    question_type=QuestionType.PATTERN,
)


class TestParliamentAPI(unittest.TestCase):

    def setUp(self):
        # Fresh store per test
        app.state.store = ConversationStore()
        self.store = app.state.store
        self.client = TestClient(app)

    def start(self, session_id="s1"):
        with patch('parliament.orchestrator.generate_first_question', new_callable=AsyncMock) as mock_first:
            mock_first.return_value = FIRST_QUESTION
            return self.client.post(
                f"/api/sessions/{session_id}/messages",
                json={"message": "I keep avoiding hard conversations with my partner"},
            )

    def test_health_reports_store(self):
        for path in ("/", "/api/health"):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["store_id"], self.store.store_id)

    def test_store_attached_once(self):
        self.assertIs(ensure_store(app), self.store)

    def test_start_conversation(self):
        response = self.start()
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["mode"], "NEXT_QUESTION")
        self.assertEqual(body["next_question"]["question_type"], "pattern")
        self.assertEqual(body["next_question"]["options"][-1], OTHER_OPTION)
        self.assertNotIn("error", body)

        snapshot = self.client.get("/api/sessions/s1").json()
        self.assertEqual(snapshot["source_question"], "I keep avoiding hard conversations with my partner")
        self.assertTrue(snapshot["question_type_coverage"]["pattern"])
        self.assertEqual(self.client.get("/api/sessions").json(), {"sessions": ["s1"]})

    def test_invalid_bodies_do_not_touch_state(self):
        self.assertEqual(self.client.post("/api/sessions/s1/messages", json={}).status_code, 422)
        self.assertEqual(self.client.post("/api/sessions/s1/messages", json={"message": ""}).status_code, 422)
        self.assertEqual(self.client.post("/api/sessions/s1/messages", json={"message": "   "}).status_code, 422)
        self.assertEqual(self.client.post("/api/sessions/s1/answer", json={"selected_options": []}).status_code, 422)
        self.assertEqual(self.client.post("/api/sessions/s1/answer", json={"action": "MAYBE"}).status_code, 422)
        self.assertEqual(self.client.post("/api/sessions/s1/choice", json={"choice": "maybe"}).status_code, 422)
        self.assertEqual(self.store.count(), 0)

    def test_unknown_session(self):
        self.assertEqual(self.client.get("/api/sessions/nope").status_code, 404)
        self.assertEqual(self.client.delete("/api/sessions/nope").status_code, 404)

    def test_delete_session(self):
        self.start()
        self.assertEqual(self.client.delete("/api/sessions/s1").json(), {"status": "deleted"})
        self.assertEqual(self.client.get("/api/sessions/s1").status_code, 404)

    def test_answer_after_final_is_conflict(self):
        self.start()
        self.store.set_phase("s1", ConversationPhase.FINAL_RESPONSE)
        response = self.client.post("/api/sessions/s1/answer", json={"free_text": "one more thing to say"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "SESSION_COMPLETED")
        self.assertFalse(response.json()["retryable"])

    def test_deep_analysis_not_ready(self):
        self.start()
        response = self.client.post("/api/sessions/s1/deep-analysis")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "NOT_READY")

    def test_external_domain_flow(self):
        self.start()
        detected = self.client.post(
            "/api/sessions/s1/answer",
            json={"free_text": "We already spoke to a lawyer about it"},
        )
        self.assertEqual(detected.status_code, 200)
        self.assertEqual(detected.json()["mode"], "EXTERNAL_DOMAIN_DETECTED")
        self.assertEqual(detected.json()["external_domain_question"]["domain"], "legal")

        with patch('parliament.orchestrator.collect_parliament_proposals', new_callable=AsyncMock) as mock_collect, \
                patch('parliament.orchestrator.synthesize_question', new_callable=AsyncMock) as mock_synth:
            mock_collect.return_value = []
            mock_synth.return_value = SynthesizedQuestion(
                question="Where else does this show up?",
                options=["Work", "Family", OTHER_OPTION],
                question_type=QuestionType.CONTEXT,
            )
            response = self.client.post("/api/sessions/s1/external-domain", json={"approved": False})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["mode"], "NEXT_QUESTION")
        self.assertFalse(self.client.get("/api/sessions/s1").json()["external_domain"]["user_approved"])

    def test_external_decision_without_detection(self):
        self.start()
        response = self.client.post("/api/sessions/s1/external-domain", json={"approved": True})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "NO_EXTERNAL_DOMAIN")

    @patch('parliament.orchestrator.synthesize_chair_summary', new_callable=AsyncMock)
    @patch('parliament.orchestrator.collect_expert_content_analyses', new_callable=AsyncMock)
    @patch('parliament.orchestrator.select_relevant_experts', new_callable=AsyncMock)
    def test_chair_failure_is_bad_gateway(self, mock_select, mock_collect, mock_chair):
        self.start()
        session = self.store.get("s1")
        for text in ("Answer: I freeze every time", "Answer: it happens at work too"):
            self.store.append("s1", session.messages[0].model_copy(update={"content": text}))
        self.store.set_phase("s1", ConversationPhase.DEEP_ANALYSIS)
        mock_select.return_value = []
        mock_collect.return_value = []
        mock_chair.side_effect = ChairSynthesisError("unparseable")

        response = self.client.post("/api/sessions/s1/chair-summary")

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "CHAIR_FAILED")
        self.assertTrue(response.json()["retryable"])
        self.assertEqual(self.store.phase("s1"), ConversationPhase.DEEP_ANALYSIS)

    def test_choice(self):
        response = self.client.post("/api/sessions/s1/choice", json={"choice": "continue"})
        self.assertEqual(response.json(), {"session_id": "s1", "continue_refining": True})


if __name__ == '__main__':
    unittest.main()
