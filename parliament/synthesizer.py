"""Merge expert proposals into the single next question shown to the user."""

import re
from typing import List, Optional

from .config import FAST_MODEL, FAST_MODEL_MAX_TOKENS, DEFAULT_TEMPERATURE
from .llm import generate
from .models import ExpertProposal, SynthesizedQuestion, OTHER_OPTION
from .parsing import parse_json_object, clean_string_list, clean_text
from .state import QuestionType

MIN_OPTIONS = 3
MAX_OPTIONS = 5

QUESTION_TYPE_GUIDES = {
    QuestionType.PATTERN: 'pattern in the here and now ("When [X] happens, what best describes what goes on inside you or what you do?")',
    QuestionType.CONTEXT: 'wider context ("Where else does this pattern show up for you: work, relationships, money, family?")',
    QuestionType.MOTIVATION: 'motivation ("What makes you want to deal with this now? If it improved in six months, what would be different?")',
}

_ESCAPE_HATCH = re.compile(r"^\s*(something else\b|other\s*(:|\(|$))", re.IGNORECASE)


class SynthesisError(Exception):
    """The synthesizer produced no usable question."""


def normalize_options(raw_options: List[str]) -> List[str]:
    """Keep the content options and close the list with the literal escape hatch."""
    content = [option for option in raw_options if not _ESCAPE_HATCH.match(option)]
    return content[:MAX_OPTIONS - 1] + [OTHER_OPTION]


def _coerce_question_type(value: object) -> QuestionType:
    try:
        return QuestionType(str(value).strip().lower())
    except ValueError:
        return QuestionType.PATTERN


def _format_proposals(proposals: List[ExpertProposal]) -> str:
    return "\n\n".join(
        f"**{p.school_name}**\n"
        f"Position: {p.position}\n"
        f'Proposed question: "{p.proposed_question}"\n'
        f"Answer options: {' | '.join(p.answer_options)}"
        for p in proposals
    )


def build_system_prompt(missing_question_types: List[QuestionType]) -> str:
    priority = ""
    if missing_question_types:
        target = missing_question_types[0]
        priority = f"""
<required_question_type>
These question types have NOT been asked yet: {", ".join(qt.value for qt in missing_question_types)}.
The next question MUST be of type "{target.value}": {QUESTION_TYPE_GUIDES[target]}
</required_question_type>
"""

    return f"""You are the Question Synthesizer of a parliament of experts.

<hard_constraints>
- No generic questions that could fit anyone.
- Never invent details about the user's life that were not mentioned.
- Every question must reference something the user said.
- No professional terms or school names visible to the user.
</hard_constraints>
{priority}
<role>
1. Read and compare ALL expert positions (internally).
2. Identify 2-3 key tensions between them and let them shape the question. Do not mention them.
3. Choose ONE question type: pattern, context or motivation.
4. Write 4-5 answer options: first person, everyday patterns, 1-2 sentences each.
   The last option MUST be exactly "{OTHER_OPTION}".
</role>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "tensions": ["internal note 1", "internal note 2"],
  "questionType": "pattern" | "context" | "motivation",
  "question": "...",
  "options": ["I feel that...", "I tend to...", "Usually I...", "{OTHER_OPTION}"]
}}
</output_format>"""


async def synthesize_question(
    proposals: List[ExpertProposal],
    conversation_summary: str,
    user_answer: str,
    missing_question_types: Optional[List[QuestionType]] = None,
) -> SynthesizedQuestion:
    """
    Produce exactly one next question with 3-5 options.

    When categories are missing, the returned question_type is the first
    missing one no matter what the model reports.

    Raises:
        SynthesisError: no content, unparseable JSON, empty question or
            fewer than 3 usable options
    """
    missing_types = [QuestionType(qt) for qt in (missing_question_types or [])]
    user_prompt = (
        f"Conversation history:\n{conversation_summary}\n\n"
        f"User's answer:\n{user_answer}\n\n"
        f"Parliament member proposals:\n{_format_proposals(proposals)}\n\n"
        f"Missing question types: {', '.join(qt.value for qt in missing_types) or 'none'}\n\n"
        "Create ONE final question with 3-4 answer options plus the closing option. "
        "Do not repeat a question that was already asked."
    )

    try:
        content = await generate(
            build_system_prompt(missing_types),
            [{"role": "user", "content": user_prompt}],
            model=FAST_MODEL,
            temperature=DEFAULT_TEMPERATURE,
            max_tokens=FAST_MODEL_MAX_TOKENS,
            expect_json=True,
        )
    except Exception as e:
        raise SynthesisError(f"Question synthesizer call failed: {e}") from e

    data = parse_json_object(content)
    if data is None:
        raise SynthesisError("Question synthesizer returned malformed JSON")

    question = clean_text(data.get("question"))
    raw_options = clean_string_list(data.get("options"))
    if not question or len(raw_options) < MIN_OPTIONS:
        raise SynthesisError("Question synthesizer needs a question and at least 3 options")

    options = normalize_options(raw_options)
    if len(options) < MIN_OPTIONS:
        raise SynthesisError("Question synthesizer returned fewer than 3 usable options")

    question_type = _coerce_question_type(data.get("questionType"))
    if missing_types and question_type != missing_types[0]:
        print(f"Overriding synthesized question type {question_type.value} -> {missing_types[0].value}")
        question_type = missing_types[0]

    print(f"Synthesized {question_type.value} question: {question[:50]}...")
    return SynthesizedQuestion(question=question, options=options, question_type=question_type)


def build_first_question_prompt(conversation_summary: str) -> str:
    return f"""<conversation_so_far>
{conversation_summary}
</conversation_so_far>

<task>
This is the start of the conversation. Ask ONE focused question about the pattern the user describes:
what happens inside them, or what they do, when the situation comes up.
- Refer to the user's own words. Do not invent details.
- 3-4 first-person answer options in everyday language, then "{OTHER_OPTION}" as the last option.
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "question": "...",
  "options": ["I feel that...", "I tend to...", "Usually I...", "{OTHER_OPTION}"]
}}
</output_format>"""


async def generate_first_question(persona_system_prompt: str, conversation_summary: str) -> SynthesizedQuestion:
    """
    Ask the lead expert for the opening "pattern" question.

    Transport failures propagate as GenerationError. Unusable output raises
    SynthesisError so the caller can decide on a fallback.
    """
    content = await generate(
        persona_system_prompt,
        [{"role": "user", "content": build_first_question_prompt(conversation_summary)}],
        model=FAST_MODEL,
        temperature=DEFAULT_TEMPERATURE,
        max_tokens=FAST_MODEL_MAX_TOKENS,
        expect_json=True,
    )

    data = parse_json_object(content)
    if data is None:
        raise SynthesisError("First question was not valid JSON")

    question = clean_text(data.get("question"))
    options = normalize_options(clean_string_list(data.get("options")))
    if not question or len(options) < MIN_OPTIONS:
        raise SynthesisError("First question needs a question and at least 3 options")

    return SynthesizedQuestion(question=question, options=options, question_type=QuestionType.PATTERN)
