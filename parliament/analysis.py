"""
Full-transcript expert analyses.

Two kinds of analysis are produced here, both by fanning out one call per
expert and keeping whatever succeeds:

- deep analysis: every roster expert returns interpretation / insights /
  suggestions once exploration is over;
- content analysis: the experts chosen for the chair write a free-text
  reading of the whole conversation, cached on the session.
"""

import asyncio
from typing import List, Optional

from .config import (
    FAST_MODEL,
    DEEP_MODEL,
    DEEP_MODEL_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    CONTENT_ANALYSIS_MAX_TOKENS,
    CHAIR_EXPERT_COUNT,
)
from .llm import generate
from .models import MemberAnalysis
from .parsing import parse_json_object, clean_string_list, clean_text
from .personas import Persona, PERSONAS, ACTIVE_PERSONA_IDS, get_personas
from .state import ExpertContentAnalysis


def build_selection_prompt(conversation_summary: str) -> str:
    roster = "\n".join(f"- {p.id}: {p.school_name} ({p.expertise_area})" for p in PERSONAS)
    return f"""<experts>
{roster}
</experts>

<conversation>
{conversation_summary}
</conversation>

<task>
Choose the {CHAIR_EXPERT_COUNT} experts whose way of seeing is most relevant to this conversation.
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{"ids": ["expert-id", "expert-id", "expert-id"]}}
</output_format>"""


async def select_relevant_experts(conversation_summary: str) -> List[Persona]:
    """
    Pick CHAIR_EXPERT_COUNT roster experts for the chair.

    Unknown ids are ignored and a short list is padded in roster order, so
    the result always has exactly CHAIR_EXPERT_COUNT personas.
    """
    chosen: List[str] = []
    try:
        content = await generate(
            "You are the chair of a parliament of experts, deciding whose view matters most.",
            [{"role": "user", "content": build_selection_prompt(conversation_summary)}],
            model=FAST_MODEL,
            temperature=0.3,
            max_tokens=100,
            expect_json=True,
        )
        data = parse_json_object(content) or {}
        for persona_id in clean_string_list(data.get("ids")):
            if persona_id in ACTIVE_PERSONA_IDS and persona_id not in chosen:
                chosen.append(persona_id)
    except Exception as e:
        print(f"Expert selection failed, using roster order: {e}")

    for persona_id in ACTIVE_PERSONA_IDS:
        if len(chosen) >= CHAIR_EXPERT_COUNT:
            break
        if persona_id not in chosen:
            chosen.append(persona_id)

    chosen = chosen[:CHAIR_EXPERT_COUNT]
    print(f"Selected experts for the chair: {', '.join(chosen)}")
    return get_personas(chosen)


def build_content_analysis_prompt(conversation_summary: str) -> str:
    return f"""<conversation>
{conversation_summary}
</conversation>

<task>
Read the whole conversation and write your real professional analysis of it (150-250 words):
- what you think is really going on, in the terms of your school;
- which of the user's own words support that reading;
- one thing you would want the user to try or notice.
Plain prose, no JSON, no headings.
</task>"""


async def _request_content_analysis(persona: Persona, prompt: str) -> str:
    return await generate(
        persona.system_prompt,
        [{"role": "user", "content": prompt}],
        model=DEEP_MODEL,
        temperature=DEFAULT_TEMPERATURE,
        max_tokens=CONTENT_ANALYSIS_MAX_TOKENS,
    )


async def collect_expert_content_analyses(
    conversation_summary: str,
    personas: List[Persona],
) -> List[ExpertContentAnalysis]:
    """Free-text analysis of the entire transcript from each given expert; failures are dropped."""
    prompt = build_content_analysis_prompt(conversation_summary)
    responses = await asyncio.gather(
        *[_request_content_analysis(persona, prompt) for persona in personas],
        return_exceptions=True,
    )

    analyses: List[ExpertContentAnalysis] = []
    for persona, response in zip(personas, responses):
        if isinstance(response, BaseException):
            print(f"Dropping content analysis from {persona.id}: {response}")
            continue
        text = clean_text(response)
        if not text:
            print(f"Dropping content analysis from {persona.id}: empty")
            continue
        analyses.append(ExpertContentAnalysis(
            agent_id=persona.id,
            agent_name=persona.display_name,
            school_name=persona.school_name,
            analysis=text,
        ))

    print(f"Collected {len(analyses)}/{len(personas)} expert content analyses")
    return analyses


def build_deep_analysis_prompt(conversation_summary: str) -> str:
    return f"""<conversation>
{conversation_summary}
</conversation>

<task>
The exploration is over. From your school's point of view:
1. "interpretation": 3-5 sentences on what is going on.
2. "insights": 2-3 short observations grounded in what the user said.
3. "suggestions": 2-3 concrete things the user could try.
Everything here is shown to the user: everyday language, no jargon.
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "interpretation": "...",
  "insights": ["...", "..."],
  "suggestions": ["...", "..."]
}}
</output_format>"""


def parse_member_analysis(persona: Persona, content: Optional[str]) -> Optional[MemberAnalysis]:
    data = parse_json_object(content or "")
    if not data:
        return None
    interpretation = clean_text(data.get("interpretation"))
    if not interpretation:
        return None
    return MemberAnalysis(
        agent_id=persona.id,
        agent_name=persona.display_name,
        interpretation=interpretation,
        insights=clean_string_list(data.get("insights"), limit=3),
        suggestions=clean_string_list(data.get("suggestions"), limit=3),
    )


async def _request_member_analysis(persona: Persona, prompt: str) -> str:
    return await generate(
        persona.system_prompt,
        [{"role": "user", "content": prompt}],
        model=DEEP_MODEL,
        temperature=DEFAULT_TEMPERATURE,
        max_tokens=DEEP_MODEL_MAX_TOKENS,
        expect_json=True,
    )


async def collect_member_analyses(
    conversation_summary: str,
    personas: Optional[List[Persona]] = None,
) -> List[MemberAnalysis]:
    """Deep analysis from every roster expert in parallel. Returns only the valid ones."""
    members = list(personas) if personas is not None else get_personas()
    prompt = build_deep_analysis_prompt(conversation_summary)
    responses = await asyncio.gather(
        *[_request_member_analysis(persona, prompt) for persona in members],
        return_exceptions=True,
    )

    analyses: List[MemberAnalysis] = []
    for persona, response in zip(members, responses):
        if isinstance(response, BaseException):
            print(f"Dropping deep analysis from {persona.id}: {response}")
            continue
        analysis = parse_member_analysis(persona, response)
        if analysis is None:
            print(f"Dropping deep analysis from {persona.id}: invalid structure")
            continue
        analyses.append(analysis)

    print(f"Collected {len(analyses)}/{len(members)} deep analyses")
    return analyses
