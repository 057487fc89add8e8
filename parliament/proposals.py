"""Parallel collection of expert proposals for the next exploration question."""

import asyncio
from typing import Any, Dict, List, Optional

from .config import FAST_MODEL, FAST_MODEL_MAX_TOKENS, DEFAULT_TEMPERATURE
from .llm import generate
from .models import ExpertProposal, OTHER_OPTION
from .parsing import parse_json_object, clean_string_list, clean_text
from .personas import Persona, get_personas, get_external_specialist

MIN_ANSWER_OPTIONS = 3
MAX_ANSWER_OPTIONS = 5


class NoProposalsError(Exception):
    """Every expert failed to return a usable proposal."""


def build_member_prompt(last_question: str, user_answer: str, conversation_summary: str) -> str:
    return f"""<last_question>{last_question or "(not available)"}</last_question>

<user_answer>
{user_answer}
</user_answer>

<conversation_so_far>
{conversation_summary}
</conversation_so_far>

<task>
1. From your school's point of view write a "position": 2-4 sentences on what is really going on here. This part is internal; professional terms are allowed.
2. Propose ONE follow-up question ("proposedQuestion") that starts from something the user actually said.
3. Propose 4-5 answer options ("answerOptions"):
   - first person: "I feel that...", "I tend to...", "Usually I..."
   - everyday patterns, not theory
   - the last option is always "{OTHER_OPTION}"
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "position": "2-4 sentences",
  "proposedQuestion": "When [what the user described], what best describes what happens for you?",
  "answerOptions": ["I feel that...", "I tend to...", "Usually I...", "{OTHER_OPTION}"]
}}
</output_format>"""


def build_specialist_prompt(persona: Persona, last_question: str, user_answer: str, conversation_summary: str) -> str:
    return f"""<last_question>{last_question or "(not available)"}</last_question>

<user_answer>
{user_answer}
</user_answer>

<conversation_so_far>
{conversation_summary}
</conversation_so_far>

<task>
You are {persona.display_name}, a guest specialist ({persona.expertise_area}).
1. Write a "position": 2-4 sentences on how your field may be relevant to what the user describes. You do not diagnose and do not give specific advice. Internal; professional terms allowed.
2. If information is missing that a real specialist should gather, say so in the position.
3. Propose ONE follow-up question ("proposedQuestion") that helps tell whether your field is more or less relevant.
4. Propose 3-4 short first-person answer options ("answerOptions") in everyday language.
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "position": "...",
  "proposedQuestion": "...",
  "answerOptions": ["I feel that...", "It seems to me that...", "Usually I..."]
}}
</output_format>"""


def parse_proposal(persona: Persona, content: Optional[str]) -> Optional[ExpertProposal]:
    """Turn one model reply into a proposal, or None if any required field is unusable."""
    data: Optional[Dict[str, Any]] = parse_json_object(content or "")
    if not data:
        return None

    position = clean_text(data.get("position"))
    proposed_question = clean_text(data.get("proposedQuestion") or data.get("proposed_question"))
    answer_options = clean_string_list(
        data.get("answerOptions") or data.get("answer_options"),
        limit=MAX_ANSWER_OPTIONS,
    )

    if not position or not proposed_question or len(answer_options) < MIN_ANSWER_OPTIONS:
        return None

    return ExpertProposal(
        agent_id=persona.id,
        agent_name=persona.display_name,
        school_name=persona.school_name,
        position=position,
        proposed_question=proposed_question,
        answer_options=answer_options,
    )


async def _request_proposal(persona: Persona, prompt: str) -> str:
    return await generate(
        persona.system_prompt,
        [{"role": "user", "content": prompt}],
        model=FAST_MODEL,
        temperature=DEFAULT_TEMPERATURE,
        max_tokens=FAST_MODEL_MAX_TOKENS,
        expect_json=True,
    )


async def collect_parliament_proposals(
    last_question: str,
    user_answer: str,
    conversation_summary: str,
    external_domain: Optional[str] = None,
    personas: Optional[List[Persona]] = None,
) -> List[ExpertProposal]:
    """
    Ask every roster expert (plus the external specialist, if one was approved)
    for a position, a follow-up question and answer options, all in parallel.

    Experts that error, time out or return an invalid structure are dropped.

    Raises:
        NoProposalsError: when no expert produced a valid proposal
    """
    members = list(personas) if personas is not None else get_personas()
    member_prompt = build_member_prompt(last_question, user_answer, conversation_summary)
    requests = [(persona, member_prompt) for persona in members]

    if external_domain:
        specialist = get_external_specialist(external_domain)
        print(f"Including external specialist {specialist.display_name} in proposals")
        requests.append((
            specialist,
            build_specialist_prompt(specialist, last_question, user_answer, conversation_summary),
        ))

    tasks = [_request_proposal(persona, prompt) for persona, prompt in requests]
    responses = await asyncio.gather(*tasks, return_exceptions=True)

    proposals: List[ExpertProposal] = []
    for (persona, _), response in zip(requests, responses):
        if isinstance(response, BaseException):
            print(f"Dropping proposal from {persona.id}: {response}")
            continue
        proposal = parse_proposal(persona, response)
        if proposal is None:
            print(f"Dropping proposal from {persona.id}: invalid structure")
            continue
        proposals.append(proposal)

    print(f"Collected {len(proposals)}/{len(requests)} expert proposals")
    if not proposals:
        raise NoProposalsError("Failed to collect expert opinions")
    return proposals
