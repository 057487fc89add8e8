import json
import sys
import os
import unittest
from unittest.mock import AsyncMock, patch

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from parliament.llm import GenerationTimeout
from parliament.models import ExpertProposal, OTHER_OPTION
from parliament.state import QuestionType
from parliament.synthesizer import (
    SynthesisError,
    generate_first_question,
    normalize_options,
    synthesize_question,
)

PROPOSALS = [
    ExpertProposal(
        agent_id="cbt",
        agent_name="The Cognitive-Behavioural Voice",
        school_name="CBT",
        position="Avoidance keeps the fear going.",
        proposed_question="What do you tell yourself right before the talk?",
        answer_options=["That it will go badly", "That I will be blamed", "That it's pointless"],
    ),
    ExpertProposal(
        agent_id="modern-stoic",
        agent_name="The Stoic Voice",
        school_name="Modern Stoic",
        position="The outcome is not in their control; the attempt is.",
        proposed_question="Which part of the conversation feels out of your hands?",
        answer_options=["Their reaction", "My own feelings", "The timing"],
    ),
]


def synthesizer_reply(question_type="pattern", options=None, question="When you avoid the talk, what happens next?"):
    return json.dumps({
        "tensions": ["control vs. fear"],
        "questionType": question_type,
        "question": question,
        "options": options if options is not None else [
            "I feel relieved at first",
            "I tend to replay it later",
            "Usually I end up snapping",
            "Something else: ____",
        ],
    })


class TestSynthesizer(unittest.IsolatedAsyncioTestCase):

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_missing_type_overrides_model_choice(self, mock_generate):
        mock_generate.return_value = synthesizer_reply(question_type="pattern")
        result = await synthesize_question(
            PROPOSALS, "User: ...", "Answer: I avoid it",
            [QuestionType.CONTEXT, QuestionType.MOTIVATION],
        )
        self.assertEqual(result.question_type, QuestionType.CONTEXT)

        prompt = mock_generate.call_args[0][0]
        self.assertIn('MUST be of type "context"', prompt)

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_model_type_kept_when_nothing_missing(self, mock_generate):
        mock_generate.return_value = synthesizer_reply(question_type="motivation")
        result = await synthesize_question(PROPOSALS, "s", "a", [])
        self.assertEqual(result.question_type, QuestionType.MOTIVATION)

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_last_option_is_escape_hatch(self, mock_generate):
        mock_generate.return_value = synthesizer_reply(options=[
            "Other: please explain",
            "I go quiet",
            "I change the subject",
            "I make a joke",
            "I leave the room",
            "I call a friend",
        ])
        result = await synthesize_question(PROPOSALS, "s", "a", [QuestionType.PATTERN])

        self.assertEqual(result.options[-1], OTHER_OPTION)
        self.assertTrue(3 <= len(result.options) <= 5)
        self.assertEqual(result.options[:4], ["I go quiet", "I change the subject", "I make a joke", "I leave the room"])

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_malformed_json_raises(self, mock_generate):
        mock_generate.return_value = "Here is a question: how do you feel?"
        with self.assertRaises(SynthesisError):
            await synthesize_question(PROPOSALS, "s", "a", [QuestionType.CONTEXT])

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_empty_question_raises(self, mock_generate):
        mock_generate.return_value = synthesizer_reply(question="")
        with self.assertRaises(SynthesisError):
            await synthesize_question(PROPOSALS, "s", "a", [])

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_too_few_options_raises(self, mock_generate):
        mock_generate.return_value = synthesizer_reply(options=["I go quiet", "Something else: ____"])
        with self.assertRaises(SynthesisError):
            await synthesize_question(PROPOSALS, "s", "a", [])

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_timeout_raises_synthesis_error(self, mock_generate):
        mock_generate.side_effect = GenerationTimeout("slow")
        with self.assertRaises(SynthesisError):
            await synthesize_question(PROPOSALS, "s", "a", [])

    @patch('parliament.synthesizer.generate', new_callable=AsyncMock)
    async def test_first_question_is_pattern(self, mock_generate):
        mock_generate.return_value = json.dumps({
            "question": "When the talk comes up, what do you do?",
            "options": ["I freeze", "I postpone it", "I get angry"],
        })
        result = await generate_first_question("lead prompt", "User: I avoid talks")
        self.assertEqual(result.question_type, QuestionType.PATTERN)
        self.assertEqual(result.options, ["I freeze", "I postpone it", "I get angry", OTHER_OPTION])


class TestNormalizeOptions(unittest.TestCase):

    def test_options_starting_with_other_words_are_kept(self):
        options = normalize_options(["Other people decide for me", "I decide", "something else"])
        self.assertEqual(options, ["Other people decide for me", "I decide", OTHER_OPTION])


if __name__ == '__main__':
    unittest.main()
