"""
Conversation orchestration.

Every public method is one user-facing operation on a session. They all
follow the same rule: model calls first, state changes after. A failed
collaborator call returns an ERROR response and leaves the session exactly
as it was, so the client can retry the same request.
"""

import uuid
from typing import List, Optional

from . import coverage
from .analysis import collect_expert_content_analyses, collect_member_analyses, select_relevant_experts
from .chair import (
    CHAIR_SPEAKER,
    INSUFFICIENT_HISTORY_MESSAGE,
    USER_UNSURE_MESSAGE,
    ChairSynthesisError,
    TrainingPlanError,
    generate_training_plan,
    has_dont_know_pattern,
    is_future_goal_question,
    render_chair_message,
    render_training_message,
    synthesize_chair_summary,
)
from .config import (
    FIRST_QUESTION_HISTORY_MESSAGES,
    FIRST_QUESTION_SUMMARY_CHARS,
    PROPOSAL_HISTORY_MESSAGES,
    PROPOSAL_SUMMARY_CHARS,
    SYNTHESIS_SUMMARY_CHARS,
    DEEP_ANALYSIS_SUMMARY_CHARS,
    CHAIR_SUMMARY_CHARS,
    EXPERT_SELECTION_SUMMARY_CHARS,
    CONTENT_ANALYSIS_SUMMARY_CHARS,
    MIN_MEANINGFUL_USER_MESSAGES,
)
from .domains import detect_external_domain, clarification_question
from .llm import GenerationError
from .models import (
    OTHER_OPTION,
    ErrorCode,
    ExternalDomainOption,
    ExternalDomainQuestion,
    ParliamentResponse,
    QuestionWithOptions,
    ResponseMode,
    SynthesizedQuestion,
)
from .personas import LEAD_PERSONA_ID, get_persona, get_external_specialist
from .phases import (
    PhaseStep,
    complete_final_response,
    final_response_authorized,
    is_completed,
    next_step,
    record_exploration_round,
)
from .proposals import NoProposalsError, collect_parliament_proposals
from .state import ChatMessage, ConversationStore, ExpertContentAnalysis, QuestionType
from .synthesizer import SynthesisError, generate_first_question, synthesize_question
from .transcript import format_transcript, last_question, last_user_message, user_text

PARLIAMENT_SPEAKER = "Parliament"

ADD_EXTERNAL_SPECIALIST = "ADD_EXTERNAL_SPECIALIST"
CONTINUE_WITHOUT_EXTERNAL = "CONTINUE_WITHOUT_EXTERNAL"

CHOICE_CONTINUE = "continue"
CHOICE_OPINION = "opinion"

# Used only when the lead expert answers but its output is unusable
FALLBACK_FIRST_QUESTION = SynthesizedQuestion(
    question="When this situation comes up, what usually happens for you in that moment?",
    options=[
        "I feel a strong emotion and find it hard to think clearly",
        "I tend to avoid it or put it off",
        "I try to handle it but end up doubting myself",
        OTHER_OPTION,
    ],
    question_type=QuestionType.PATTERN,
)


def summarize_answer(selected_options: Optional[List[str]], free_text: Optional[str]) -> str:
    """Collapse the chosen options and free text into one user message."""
    options = [opt.strip() for opt in (selected_options or []) if opt and opt.strip()]
    text = (free_text or "").strip()
    if not options and not text:
        raise ValueError("An answer needs at least one selected option or free text")
    if options and text:
        return f"Selected answers: {'; '.join(options)} | Free text: {text}"
    if options:
        return f"Answer: {'; '.join(options)}"
    return f"Answer: {text}"


def _user_message(content: str) -> ChatMessage:
    return ChatMessage(speaker="user", role="user", content=content)


class ParliamentOrchestrator:
    """Runs the conversation operations against one ConversationStore."""

    def __init__(self, store: ConversationStore):
        self.store = store

    # ---- first message -------------------------------------------------------

    async def start_conversation(self, session_id: str, message: str, start_fresh: bool = False) -> ParliamentResponse:
        message = (message or "").strip()
        if not message:
            raise ValueError("Message must not be empty")

        async with self.store.lock(session_id):
            session = self.store.get(session_id)
            if start_fresh or (session is not None and is_completed(session)):
                print(f"Recycling session {session_id}")
                self.store.recycle(session_id)

            pending = _user_message(message)
            history = self.store.recent_messages(session_id, FIRST_QUESTION_HISTORY_MESSAGES) + [pending]
            summary = format_transcript(history, FIRST_QUESTION_SUMMARY_CHARS)
            lead = get_persona(LEAD_PERSONA_ID)

            try:
                question = await generate_first_question(lead.system_prompt, summary)
            except GenerationError as e:
                print(f"Error generating first question for {session_id}: {e}")
                return ParliamentResponse.failure(
                    ErrorCode.GENERATION_FAILED, "Failed to generate the first question", retryable=True
                )
            except SynthesisError as e:
                print(f"First question unusable for {session_id}, using fallback: {e}")
                question = FALLBACK_FIRST_QUESTION

            self.store.append(session_id, pending)
            source = self.store.set_source_question(session_id, message)
            coverage.mark_asked(self.store, session_id, question.question_type)
            self.store.append(session_id, ChatMessage(speaker=lead.display_name, content=question.question))

            return ParliamentResponse(
                mode=ResponseMode.NEXT_QUESTION,
                round_number=self.store.round_number(session_id),
                next_question=QuestionWithOptions(
                    question_id=str(uuid.uuid4()),
                    question=question.question,
                    source_question=source,
                    question_type=question.question_type,
                    agent_id=lead.id,
                    options=question.options,
                ),
            )

    # ---- answers ---------------------------------------------------------------

    async def submit_answer(
        self,
        session_id: str,
        selected_options: Optional[List[str]] = None,
        free_text: Optional[str] = None,
        question: Optional[str] = None,
        action: Optional[str] = None,
    ) -> ParliamentResponse:
        if action is not None:
            if action not in (ADD_EXTERNAL_SPECIALIST, CONTINUE_WITHOUT_EXTERNAL):
                raise ValueError(f"Unknown action: {action}")
            return await self.resolve_external_domain(session_id, action == ADD_EXTERNAL_SPECIALIST)

        answer = summarize_answer(selected_options, free_text)

        async with self.store.lock(session_id):
            session = self.store.get_or_create(session_id)
            if is_completed(session):
                return self._completed(session_id)

            history = self.store.messages(session_id)
            asked = question or last_question(history)

            if is_future_goal_question(asked):
                print(f"Future goal answered in {session_id}")
                self.store.set_future_goal_answered(session_id, True)

            state = self.store.external_domain(session_id)
            if state is None or not state.detected or state.user_approved is None:
                detection = detect_external_domain(user_text(history) + "\n" + answer)
                if detection.detected:
                    print(f"External domain '{detection.domain}' detected in {session_id}: {detection.trigger_words}")
                    self.store.append(session_id, _user_message(answer))
                    self.store.set_external_domain_detected(
                        session_id, detection.domain, detection.domain_display_name
                    )
                    return ParliamentResponse(
                        mode=ResponseMode.EXTERNAL_DOMAIN_DETECTED,
                        round_number=self.store.round_number(session_id),
                        external_domain_question=ExternalDomainQuestion(
                            detected=True,
                            domain=detection.domain,
                            domain_display_name=detection.domain_display_name,
                            trigger_words=detection.trigger_words,
                            clarification_question=clarification_question(detection),
                            options=[
                                ExternalDomainOption(id="add_external_specialist", label="Yes, add the specialist"),
                                ExternalDomainOption(id="continue_without", label="No, continue without"),
                            ],
                        ),
                    )

            return await self._advance(session_id, asked, answer, answer_recorded=False)

    async def resolve_external_domain(self, session_id: str, approved: bool) -> ParliamentResponse:
        """Apply the user's decision on the detected domain, then continue the normal flow."""
        async with self.store.lock(session_id):
            session = self.store.get(session_id)
            if session is not None and is_completed(session):
                return self._completed(session_id)

            state = self.store.external_domain(session_id)
            if state is None or not state.detected or state.user_approved is not None:
                return ParliamentResponse.failure(
                    ErrorCode.NO_EXTERNAL_DOMAIN, "No external domain is pending for this session", retryable=False
                )

            self.store.set_external_domain_approval(session_id, approved)
            if approved:
                specialist = get_external_specialist(state.domain)
                print(f"External specialist approved for {session_id}: {specialist.id}")
                self.store.append(session_id, ChatMessage(
                    speaker="System",
                    role="system",
                    content=f"[System] {specialist.display_name} joined the parliament",
                ))
            else:
                print(f"External specialist declined for {session_id}")

            history = self.store.messages(session_id)
            answered = last_user_message(history)
            answer = answered.content if answered else ""
            response = await self._advance(session_id, last_question(history), answer, answer_recorded=True)
            if approved and response.mode == ResponseMode.NEXT_QUESTION:
                response.specialist_name = get_external_specialist(state.domain).display_name
            return response

    async def _advance(self, session_id: str, asked: str, answer: str, answer_recorded: bool) -> ParliamentResponse:
        """Move the session one step forward after an answer. Caller holds the session lock."""
        session = self.store.get_or_create(session_id)
        step = next_step(session)
        print(f"Session {session_id} round {session.round_number} -> {step.value}")

        if step == PhaseStep.SESSION_COMPLETED:
            return self._completed(session_id)

        pending = _user_message(answer)
        if step != PhaseStep.ASK_NEXT:
            if not answer_recorded:
                self.store.append(session_id, pending)
            if step == PhaseStep.ENTER_DEEP_ANALYSIS:
                record_exploration_round(self.store, session_id)
            mode = ResponseMode.REQUIRES_FINAL_ANSWER if step == PhaseStep.FINAL_ANSWER else ResponseMode.REQUIRES_DEEP_ANALYSIS
            return ParliamentResponse(mode=mode, round_number=self.store.round_number(session_id))

        history = self.store.messages(session_id)
        if not answer_recorded:
            history.append(pending)
        missing_types = coverage.missing(self.store, session_id)

        try:
            proposals = await collect_parliament_proposals(
                asked,
                answer,
                format_transcript(history[-PROPOSAL_HISTORY_MESSAGES:], PROPOSAL_SUMMARY_CHARS),
                external_domain=self.store.active_external_domain(session_id),
            )
        except NoProposalsError as e:
            print(f"Error collecting proposals for {session_id}: {e}")
            return ParliamentResponse.failure(
                ErrorCode.NO_PROPOSALS, "Failed to collect expert opinions", retryable=True,
                round_number=session.round_number,
            )

        try:
            synthesized = await synthesize_question(
                proposals,
                format_transcript(history, SYNTHESIS_SUMMARY_CHARS),
                answer,
                missing_types,
            )
        except SynthesisError as e:
            print(f"Error synthesizing question for {session_id}: {e}")
            return ParliamentResponse.failure(
                ErrorCode.SYNTHESIS_FAILED, "Failed to build the next question", retryable=True,
                round_number=session.round_number,
            )

        if not answer_recorded:
            self.store.append(session_id, pending)
        round_number = record_exploration_round(self.store, session_id)
        for proposal in proposals:
            self.store.append(session_id, ChatMessage(
                speaker=proposal.agent_name,
                content=f"[Internal] Position: {proposal.position}",
            ))
        coverage.mark_asked(self.store, session_id, synthesized.question_type)
        self.store.append(session_id, ChatMessage(speaker=PARLIAMENT_SPEAKER, content=synthesized.question))

        return ParliamentResponse(
            mode=ResponseMode.NEXT_QUESTION,
            round_number=round_number,
            next_question=QuestionWithOptions(
                question_id=str(uuid.uuid4()),
                question=synthesized.question,
                source_question=self.store.source_question(session_id),
                question_type=synthesized.question_type,
                agent_id="parliament",
                options=synthesized.options,
            ),
            expert_proposals=proposals,
        )

    # ---- binary choice ---------------------------------------------------------

    async def record_choice(self, session_id: str, choice: str) -> bool:
        """`continue` keeps refining, `opinion` asks for the verdict. Returns the new flag."""
        if choice not in (CHOICE_CONTINUE, CHOICE_OPINION):
            raise ValueError(f"Unknown choice: {choice}")
        async with self.store.lock(session_id):
            value = choice == CHOICE_CONTINUE
            self.store.set_continue_refining(session_id, value)
            return value

    # ---- deep analysis ---------------------------------------------------------

    async def request_deep_analysis(self, session_id: str) -> ParliamentResponse:
        async with self.store.lock(session_id):
            session = self.store.get(session_id)
            if session is None or not session.messages:
                return ParliamentResponse.failure(ErrorCode.NO_HISTORY, "No conversation to analyse", retryable=False)
            if is_completed(session):
                return self._completed(session_id)
            if not final_response_authorized(session):
                return ParliamentResponse.failure(
                    ErrorCode.NOT_READY, "Deep analysis is available after the exploration rounds",
                    retryable=False, round_number=session.round_number,
                )

            summary = format_transcript(session.messages, DEEP_ANALYSIS_SUMMARY_CHARS)
            analyses = await collect_member_analyses(summary)
            if not analyses:
                return ParliamentResponse.failure(
                    ErrorCode.NO_ANALYSES, "Failed to collect expert analyses", retryable=True,
                    round_number=session.round_number,
                )

            for analysis in analyses:
                self.store.append(session_id, ChatMessage(
                    speaker=analysis.agent_name,
                    content=f"[Internal] Analysis: {analysis.interpretation}",
                ))

            return ParliamentResponse(
                mode=ResponseMode.REQUIRES_FINAL_ANSWER,
                round_number=session.round_number,
                analyses=analyses,
            )

    # ---- chair -------------------------------------------------------------------

    async def _content_analyses(self, session_id: str) -> List[ExpertContentAnalysis]:
        """Cached expert content analyses, computed and cached on first use."""
        cached = self.store.expert_content_analyses(session_id)
        if cached:
            print(f"Using {len(cached)} cached content analyses for {session_id}")
            return cached

        messages = self.store.messages(session_id)
        experts = await select_relevant_experts(format_transcript(messages, EXPERT_SELECTION_SUMMARY_CHARS))
        analyses = await collect_expert_content_analyses(
            format_transcript(messages, CONTENT_ANALYSIS_SUMMARY_CHARS), experts
        )
        if analyses:
            self.store.set_expert_content_analyses(session_id, analyses)
        return analyses

    async def request_chair_summary(self, session_id: str) -> ParliamentResponse:
        async with self.store.lock(session_id):
            session = self.store.get(session_id)
            if session is None or self.store.count_user_messages(session_id) == 0:
                return ParliamentResponse.failure(ErrorCode.NO_HISTORY, "No conversation to summarize", retryable=False)
            if is_completed(session):
                return self._completed(session_id)

            if not session.future_goal_answered:
                if has_dont_know_pattern(session.messages):
                    return self._canned_chair(session_id, ResponseMode.USER_UNSURE, USER_UNSURE_MESSAGE)
                if self.store.count_user_messages(session_id) < MIN_MEANINGFUL_USER_MESSAGES:
                    return self._canned_chair(session_id, ResponseMode.INSUFFICIENT_HISTORY, INSUFFICIENT_HISTORY_MESSAGE)

            final = final_response_authorized(session)
            analyses: List[ExpertContentAnalysis] = []
            if final:
                analyses = await self._content_analyses(session_id)

            external = self.store.external_domain(session_id)
            external_name = external.domain_display_name if external and external.specialist_added else None

            try:
                summary = await synthesize_chair_summary(
                    format_transcript(session.messages, CHAIR_SUMMARY_CHARS),
                    session.source_question,
                    analyses,
                    external_name,
                    final=final,
                )
            except ChairSynthesisError as e:
                print(f"Error in chair synthesis for {session_id}: {e}")
                return ParliamentResponse.failure(
                    ErrorCode.CHAIR_FAILED, "Failed to produce the chair summary", retryable=True,
                    round_number=session.round_number,
                )

            chair_message = render_chair_message(summary)
            self.store.append(session_id, ChatMessage(speaker=CHAIR_SPEAKER, content=chair_message))
            if final:
                complete_final_response(self.store, session_id)

            return ParliamentResponse(
                mode=ResponseMode.FULL_SUMMARY,
                round_number=session.round_number,
                summary=summary,
                chair_message=chair_message,
                expert_content_analyses=analyses or None,
            )

    def _canned_chair(self, session_id: str, mode: ResponseMode, message: str) -> ParliamentResponse:
        self.store.append(session_id, ChatMessage(speaker=CHAIR_SPEAKER, content=message))
        return ParliamentResponse(mode=mode, round_number=self.store.round_number(session_id), chair_message=message)

    # ---- training process ------------------------------------------------------

    async def request_training_process(self, session_id: str) -> ParliamentResponse:
        async with self.store.lock(session_id):
            session = self.store.get(session_id)
            if session is None or self.store.count_user_messages(session_id) == 0:
                return ParliamentResponse.failure(ErrorCode.NO_HISTORY, "No conversation to build on", retryable=False)

            analyses = await self._content_analyses(session_id)
            if not analyses:
                return ParliamentResponse.failure(
                    ErrorCode.NO_ANALYSES, "Failed to collect expert analyses", retryable=True,
                    round_number=session.round_number,
                )

            try:
                plan = await generate_training_plan(
                    format_transcript(session.messages, CHAIR_SUMMARY_CHARS),
                    session.source_question,
                    analyses,
                )
            except (GenerationError, TrainingPlanError) as e:
                print(f"Error generating training process for {session_id}: {e}")
                return ParliamentResponse.failure(
                    ErrorCode.TRAINING_FAILED, "Failed to build the training process", retryable=True,
                    round_number=session.round_number,
                )

            message = render_training_message(plan)
            self.store.append(session_id, ChatMessage(speaker=CHAIR_SPEAKER, content=message))
            return ParliamentResponse(
                mode=ResponseMode.TRAINING_PLAN,
                round_number=session.round_number,
                training_plan=plan,
                chair_message=message,
                expert_content_analyses=analyses,
            )

    # ---- reset -------------------------------------------------------------------

    async def clear_session(self, session_id: str) -> bool:
        async with self.store.lock(session_id):
            deleted = self.store.delete(session_id)
            print(f"Cleared session {session_id}: {deleted}")
            return deleted

    def _completed(self, session_id: str) -> ParliamentResponse:
        return ParliamentResponse.failure(
            ErrorCode.SESSION_COMPLETED,
            "This conversation has concluded. Start a new conversation to continue.",
            retryable=False,
            round_number=self.store.round_number(session_id),
        )
