"""Typed results passed between the orchestration steps and returned to callers."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .state import ExpertContentAnalysis, QuestionType

# Final answer option of every generated question
OTHER_OPTION = "Something else: ____"


class ResponseMode(str, Enum):
    NEXT_QUESTION = "NEXT_QUESTION"
    EXTERNAL_DOMAIN_DETECTED = "EXTERNAL_DOMAIN_DETECTED"
    REQUIRES_DEEP_ANALYSIS = "REQUIRES_DEEP_ANALYSIS"
    REQUIRES_FINAL_ANSWER = "REQUIRES_FINAL_ANSWER"
    FULL_SUMMARY = "FULL_SUMMARY"
    USER_UNSURE = "USER_UNSURE"
    INSUFFICIENT_HISTORY = "INSUFFICIENT_HISTORY"
    TRAINING_PLAN = "TRAINING_PLAN"
    ERROR = "ERROR"


class ErrorCode(str, Enum):
    SESSION_COMPLETED = "SESSION_COMPLETED"
    NOT_READY = "NOT_READY"
    NO_HISTORY = "NO_HISTORY"
    NO_EXTERNAL_DOMAIN = "NO_EXTERNAL_DOMAIN"
    GENERATION_FAILED = "GENERATION_FAILED"
    NO_PROPOSALS = "NO_PROPOSALS"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    NO_ANALYSES = "NO_ANALYSES"
    CHAIR_FAILED = "CHAIR_FAILED"
    TRAINING_FAILED = "TRAINING_FAILED"


class ExpertProposal(BaseModel):
    agent_id: str
    agent_name: str
    school_name: str
    position: str
    proposed_question: str
    answer_options: List[str]


class SynthesizedQuestion(BaseModel):
    question: str
    options: List[str]
    question_type: QuestionType


class QuestionWithOptions(BaseModel):
    question_id: str
    question: str
    source_question: Optional[str] = None
    question_type: Optional[QuestionType] = None
    agent_id: str
    options: List[str]


class ExternalDomainOption(BaseModel):
    id: str
    label: str


class ExternalDomainQuestion(BaseModel):
    detected: bool
    domain: Optional[str] = None
    domain_display_name: Optional[str] = None
    trigger_words: List[str] = Field(default_factory=list)
    clarification_question: Optional[str] = None
    options: List[ExternalDomainOption] = Field(default_factory=list)


class MemberAnalysis(BaseModel):
    agent_id: str
    agent_name: str
    interpretation: str
    insights: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class ActionStep(BaseModel):
    title: str = ""
    description: str = ""
    success_criteria: str = ""


class SelectedExpert(BaseModel):
    id: str
    name: str
    insight: str


class ChairSummary(BaseModel):
    """Canonical chair output, whichever response shape the model used."""

    schema_version: str
    final: bool = True
    original_question: Optional[str] = None
    pattern_name: Optional[str] = None
    reflection: Optional[str] = None
    explanation: Optional[str] = None
    understanding: Optional[str] = None
    chair_leaning_toward: Optional[str] = None
    expert_voices: List[str] = Field(default_factory=list)
    selected_experts: List[SelectedExpert] = Field(default_factory=list)
    action_plan: List[ActionStep] = Field(default_factory=list)
    steps: List[str] = Field(default_factory=list)
    resistance_note: Optional[str] = None
    external_domain_note: Optional[str] = None
    offer_expert_view: Optional[str] = None
    offer_training_question: Optional[str] = None
    closing: str = ""


class TrainingPlan(BaseModel):
    action_plan: List[ActionStep]
    resistance_note: str = ""


class ParliamentResponse(BaseModel):
    mode: ResponseMode
    round_number: Optional[int] = None
    next_question: Optional[QuestionWithOptions] = None
    expert_proposals: Optional[List[ExpertProposal]] = None
    external_domain_question: Optional[ExternalDomainQuestion] = None
    analyses: Optional[List[MemberAnalysis]] = None
    expert_content_analyses: Optional[List[ExpertContentAnalysis]] = None
    summary: Optional[ChairSummary] = None
    chair_message: Optional[str] = None
    training_plan: Optional[TrainingPlan] = None
    specialist_name: Optional[str] = None
    code: Optional[ErrorCode] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None

    @classmethod
    def failure(cls, code: ErrorCode, error: str, retryable: bool, round_number: Optional[int] = None) -> "ParliamentResponse":
        return cls(
            mode=ResponseMode.ERROR,
            code=code,
            error=error,
            retryable=retryable,
            round_number=round_number,
        )
