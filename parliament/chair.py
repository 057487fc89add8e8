"""
Chair synthesis.

The chair reads the transcript (and, for the final answer, the selected
experts' content analyses) and returns one structured recommendation.
Models have answered in two JSON shapes over time:

    structured: pattern_name / reflection / selected_experts / action_plan / resistance_note
    legacy:     mechanism / expertVoices / understanding / steps / resistance / closing

Both are normalized into a single ChairSummary right here; nothing past
this module sees the raw payload.
"""

import re
from typing import Any, Dict, List, Optional

from .config import DEEP_MODEL, CHAIR_EXPERT_COUNT, CHAIR_TEMPERATURE, CHAIR_MAX_TOKENS, TRAINING_MAX_TOKENS
from .llm import generate
from .models import ActionStep, ChairSummary, SelectedExpert, TrainingPlan
from .parsing import parse_json_object, clean_string_list, clean_text
from .personas import CHAIR_EXPERT_IDS, DEFAULT_CHAIR_EXPERT_ID, get_persona
from .state import ChatMessage, ExpertContentAnalysis

STRUCTURED_SCHEMA = "structured"
LEGACY_SCHEMA = "legacy"
MIN_STEPS = 2
MAX_STEPS = 3

CHAIR_SPEAKER = "Chair"

FUTURE_GOAL_QUESTION = (
    "Before I sum up: what would you like to happen in the next week or two? "
    "Even one small change is enough."
)

USER_UNSURE_MESSAGE = (
    "It sounds like it is hard to put this into words right now, and that is completely fine. "
    "Instead of a full summary, let's pick one small moment from the coming days and notice "
    "what happens inside you when it comes up. We can pick up from there whenever you are ready."
)

INSUFFICIENT_HISTORY_MESSAGE = (
    "I want my summary to rest on what you have actually told us, and I don't have enough yet. "
    + FUTURE_GOAL_QUESTION
)

_FUTURE_WINDOW = re.compile(
    r"\b(next (week|two weeks|few weeks|few days|month)|coming (days|weeks)|week or two|"
    r"near future|two weeks)\b",
    re.IGNORECASE,
)
_DESIRED_OUTCOME = re.compile(
    r"\b(want(ed)? to (happen|see|change)|would (you )?like|like to (happen|see)|hope|wish)\b",
    re.IGNORECASE,
)
_DONT_KNOW = re.compile(
    r"\b(i\s*don'?t know|dont know|not sure|no idea|idk|hard to say|can'?t tell)\b",
    re.IGNORECASE,
)


class ChairSynthesisError(Exception):
    """The chair call failed or its output could not be parsed."""


class TrainingPlanError(Exception):
    """The training-process call returned no usable plan."""


def is_future_goal_question(question: str) -> bool:
    """True for questions about what the user wants to happen in the near future."""
    if not question:
        return False
    return bool(_FUTURE_WINDOW.search(question) and _DESIRED_OUTCOME.search(question))


def has_dont_know_pattern(messages: List[ChatMessage]) -> bool:
    """At least 2 of the last 3 user messages are "I don't know" or nearly empty."""
    recent = [msg.content.replace("’", "'") for msg in messages if msg.role == "user"][-3:]
    unsure = sum(1 for text in recent if len(text.strip()) < 5 or _DONT_KNOW.search(text))
    return unsure >= 2


# ---- prompt -----------------------------------------------------------------

def _format_analyses(analyses: List[ExpertContentAnalysis]) -> str:
    return "\n\n".join(f"**{a.agent_name} ({a.school_name})**\n{a.analysis}" for a in analyses)


def build_chair_prompt(
    conversation_summary: str,
    source_question: Optional[str],
    analyses: List[ExpertContentAnalysis],
    external_domain_display_name: Optional[str],
    final: bool,
) -> str:
    analyses_block = ""
    if analyses:
        analyses_block = f"""
<expert_analyses>
{_format_analyses(analyses)}
</expert_analyses>
"""
    external_block = ""
    if external_domain_display_name:
        external_block = f"""
<external_domain>
The user approved an external specialist ({external_domain_display_name}). Add an
"external_domain_note": one or two sentences on when to consult a real professional in that field.
</external_domain>
"""
    if final:
        task = """Give the final answer. Do not ask further questions.
1. "original_question": restate the user's question in one sentence.
2. "pattern_name": a plain-language name for the pattern (3-6 words).
3. "reflection": an empathetic summary of what the user shared.
4. "user_friendly_explanation": how the pattern works, in everyday words.
5. "selected_experts": exactly 3 blocks {"id", "name", "insight"}; id is one of """ + ", ".join(CHAIR_EXPERT_IDS) + """.
6. "action_plan": 2-3 steps {"title", "description", "success_criteria"}; each criterion must be measurable.
7. "resistance_note": a compassionate guess at which step will be hardest and why.
8. "closing": one optional warm line, no questions.
9. "offer_training_question": one sentence offering a guided training process."""
    else:
        task = """Give an interim summary of what the parliament has understood so far.
Use the same fields as a final answer, with 2 steps at most, and leave "closing" empty."""

    return f"""<original_question>{source_question or "(not captured)"}</original_question>

<conversation>
{conversation_summary}
</conversation>
{analyses_block}{external_block}
<task>
{task}
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "original_question": "...",
  "pattern_name": "...",
  "reflection": "...",
  "user_friendly_explanation": "...",
  "selected_experts": [{{"id": "cbt", "name": "...", "insight": "..."}}],
  "action_plan": [{{"title": "...", "description": "...", "success_criteria": "..."}}],
  "resistance_note": "...",
  "external_domain_note": null,
  "closing": "",
  "offer_training_question": "..."
}}
</output_format>"""


CHAIR_SYSTEM_PROMPT = (
    "You are the chair of a parliament of experts. You weigh the experts' views, "
    "speak to the user warmly and plainly, and never invent details the user did not share. "
    "Return valid JSON only."
)


# ---- parsing / normalization ------------------------------------------------

def parse_chair_payload(text: Optional[str]) -> Dict[str, Any]:
    data = parse_json_object(text or "")
    if data is None:
        raise ChairSynthesisError("Chair response could not be parsed as JSON")
    return data


def _optional_text(value: Any) -> Optional[str]:
    return clean_text(value) or None


def coerce_expert_id(value: Any) -> str:
    """Map a model-supplied expert id onto the fixed chair id set."""
    if isinstance(value, str):
        if value in CHAIR_EXPERT_IDS:
            return value
        persona = get_persona(value)
        if persona and persona.chair_id in CHAIR_EXPERT_IDS:
            return persona.chair_id
    return DEFAULT_CHAIR_EXPERT_ID


def parse_action_steps(value: Any, limit: int = MAX_STEPS) -> List[ActionStep]:
    if not isinstance(value, list):
        return []
    steps = []
    for item in value:
        if not isinstance(item, dict):
            continue
        step = ActionStep(
            title=clean_text(item.get("title")),
            description=clean_text(item.get("description")),
            success_criteria=clean_text(item.get("success_criteria") or item.get("successCriteria")),
        )
        if step.title or step.description:
            steps.append(step)
    return steps[:limit]


def step_text(step: ActionStep) -> str:
    text = f"{step.title}: {step.description}" if step.title else step.description
    if step.success_criteria:
        text += f" (success criterion: {step.success_criteria})"
    return text.strip()


def _legacy_steps(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    steps = []
    for item in value:
        if isinstance(item, dict):
            parsed = parse_action_steps([item])
            if parsed:
                steps.append(step_text(parsed[0]))
        else:
            text = clean_text(item)
            if text:
                steps.append(text)
    return steps[:MAX_STEPS]


def is_structured_payload(data: Dict[str, Any]) -> bool:
    return bool(data.get("pattern_name") or data.get("action_plan"))


def normalize_chair_payload(data: Dict[str, Any], final: bool = True) -> ChairSummary:
    """Collapse either response shape into the canonical ChairSummary."""
    if is_structured_payload(data):
        experts = []
        for raw in data.get("selected_experts") or []:
            if not isinstance(raw, dict):
                continue
            expert = SelectedExpert(
                id=coerce_expert_id(raw.get("id")),
                name=clean_text(raw.get("name")),
                insight=clean_text(raw.get("insight")),
            )
            if expert.name and expert.insight:
                experts.append(expert)
        experts = experts[:CHAIR_EXPERT_COUNT]

        action_plan = parse_action_steps(data.get("action_plan"))
        voices = [f"{e.name}: {e.insight}" for e in experts] or clean_string_list(data.get("expert_voices"))

        return ChairSummary(
            schema_version=STRUCTURED_SCHEMA,
            final=final,
            original_question=_optional_text(data.get("original_question")),
            pattern_name=_optional_text(data.get("pattern_name")),
            reflection=_optional_text(data.get("reflection")),
            explanation=_optional_text(data.get("user_friendly_explanation")),
            understanding=_optional_text(data.get("understanding")),
            expert_voices=voices,
            selected_experts=experts,
            action_plan=action_plan,
            steps=[step_text(step) for step in action_plan],
            resistance_note=_optional_text(data.get("resistance_note")),
            external_domain_note=_optional_text(data.get("external_domain_note") or data.get("medical_note")),
            offer_expert_view=_optional_text(data.get("offer_expert_view")),
            offer_training_question=_optional_text(data.get("offer_training_question")),
            closing=clean_text(data.get("closing")),
        )

    return ChairSummary(
        schema_version=LEGACY_SCHEMA,
        final=final,
        explanation=_optional_text(data.get("mechanism")),
        understanding=_optional_text(data.get("understanding")),
        chair_leaning_toward=_optional_text(data.get("chairLeaningToward")),
        expert_voices=clean_string_list(data.get("expertVoices")),
        steps=_legacy_steps(data.get("steps")),
        resistance_note=_optional_text(data.get("resistance")),
        external_domain_note=_optional_text(data.get("externalDomainNote")),
        closing=clean_text(data.get("closing")),
    )


def has_recommendation(summary: ChairSummary) -> bool:
    """A final summary needs an action plan and a reading of the pattern; an interim one needs either."""
    body = summary.pattern_name or summary.explanation or summary.reflection or summary.understanding
    if summary.final:
        return bool(body and summary.steps)
    return bool(body or summary.steps or summary.expert_voices)


def pad_selected_experts(summary: ChairSummary, analyses: List[ExpertContentAnalysis]) -> None:
    """Top up a structured summary to CHAIR_EXPERT_COUNT experts from the analyses it was built on."""
    if summary.schema_version != STRUCTURED_SCHEMA:
        return
    chosen = {expert.id for expert in summary.selected_experts}
    for analysis in analyses:
        if len(summary.selected_experts) >= CHAIR_EXPERT_COUNT:
            break
        expert_id = coerce_expert_id(analysis.agent_id)
        insight = clean_text(analysis.analysis).split("\n")[0]
        if expert_id in chosen or not insight:
            continue
        expert = SelectedExpert(id=expert_id, name=analysis.agent_name, insight=insight)
        summary.selected_experts.append(expert)
        summary.expert_voices.append(f"{expert.name}: {expert.insight}")
        chosen.add(expert_id)


def render_chair_message(summary: ChairSummary) -> str:
    """Plain-text chair message stored in the transcript."""
    blocks = []
    if summary.pattern_name:
        blocks.append(summary.pattern_name)
    if summary.reflection:
        blocks.append(summary.reflection)
    if summary.explanation:
        blocks.append(summary.explanation)
    if summary.expert_voices:
        blocks.append("Voices of the parliament:\n" + "\n".join(f"- {voice}" for voice in summary.expert_voices))
    if summary.chair_leaning_toward:
        blocks.append(summary.chair_leaning_toward)
    if summary.understanding:
        blocks.append(f"Overall understanding:\n{summary.understanding}")
    if summary.steps:
        blocks.append("Action plan:\n" + "\n".join(f"{i}. {step}" for i, step in enumerate(summary.steps, 1)))
    if summary.resistance_note:
        blocks.append(f"What may be hardest:\n{summary.resistance_note}")
    if summary.external_domain_note:
        blocks.append(f"About the external field:\n{summary.external_domain_note}")
    if summary.final and summary.closing:
        blocks.append(summary.closing)
    if summary.final and summary.offer_training_question:
        blocks.append(summary.offer_training_question)
    return "\n\n".join(blocks).strip()


async def synthesize_chair_summary(
    conversation_summary: str,
    source_question: Optional[str],
    analyses: Optional[List[ExpertContentAnalysis]] = None,
    external_domain_display_name: Optional[str] = None,
    final: bool = True,
) -> ChairSummary:
    """
    One structured chair call, normalized.

    Raises:
        ChairSynthesisError: transport failure, unparseable output, or a
            response with nothing to recommend
    """
    prompt = build_chair_prompt(
        conversation_summary,
        source_question,
        analyses or [],
        external_domain_display_name,
        final,
    )
    try:
        content = await generate(
            CHAIR_SYSTEM_PROMPT,
            [{"role": "user", "content": prompt}],
            model=DEEP_MODEL,
            temperature=CHAIR_TEMPERATURE,
            max_tokens=CHAIR_MAX_TOKENS,
            expect_json=True,
        )
    except Exception as e:
        raise ChairSynthesisError(f"Chair call failed: {e}") from e

    summary = normalize_chair_payload(parse_chair_payload(content), final=final)
    if not has_recommendation(summary):
        raise ChairSynthesisError("Chair response carried no recommendation")

    pad_selected_experts(summary, analyses or [])
    if summary.schema_version == STRUCTURED_SCHEMA and len(summary.selected_experts) < CHAIR_EXPERT_COUNT:
        print(f"Chair named only {len(summary.selected_experts)} experts")
    if final and len(summary.steps) < MIN_STEPS:
        print(f"Chair action plan has only {len(summary.steps)} step(s)")
    if not summary.original_question and source_question:
        summary.original_question = source_question
    print(f"Chair summary ready ({summary.schema_version}, final={final})")
    return summary


# ---- training process -------------------------------------------------------

def build_training_prompt(
    conversation_summary: str,
    source_question: Optional[str],
    analyses: List[ExpertContentAnalysis],
) -> str:
    return f"""<original_question>{source_question or "(not captured)"}</original_question>

<conversation>
{conversation_summary}
</conversation>

<expert_analyses>
{_format_analyses(analyses)}
</expert_analyses>

<task>
Build a short training process that combines coaching, CBT and DBT tools:
- "action_plan": 2-3 steps {{"title", "description", "success_criteria"}}, concrete enough to start this week;
- "resistance_note": which step will probably be hardest, and a kind way through it.
</task>

<output_format>
Respond with a valid JSON object ONLY:
{{
  "action_plan": [{{"title": "...", "description": "...", "success_criteria": "..."}}],
  "resistance_note": "..."
}}
</output_format>"""


async def generate_training_plan(
    conversation_summary: str,
    source_question: Optional[str],
    analyses: List[ExpertContentAnalysis],
) -> TrainingPlan:
    """
    Raises:
        GenerationError: transport failure
        TrainingPlanError: unparseable output or no usable steps
    """
    content = await generate(
        CHAIR_SYSTEM_PROMPT,
        [{"role": "user", "content": build_training_prompt(conversation_summary, source_question, analyses)}],
        model=DEEP_MODEL,
        temperature=CHAIR_TEMPERATURE,
        max_tokens=TRAINING_MAX_TOKENS,
        expect_json=True,
    )
    data = parse_json_object(content)
    if data is None:
        raise TrainingPlanError("Training plan could not be parsed as JSON")

    steps = parse_action_steps(data.get("action_plan"))
    if not steps:
        raise TrainingPlanError("Training plan has no usable steps")
    return TrainingPlan(action_plan=steps, resistance_note=clean_text(data.get("resistance_note")))


def render_training_message(plan: TrainingPlan) -> str:
    lines = ["Training process:"]
    lines.extend(f"{i}. {step_text(step)}" for i, step in enumerate(plan.action_plan, 1))
    text = "\n".join(lines)
    if plan.resistance_note:
        text += f"\n\nWhat may be hardest:\n{plan.resistance_note}"
    return text
