"""
In-memory conversation store.

The store is the single source of truth for every session's transcript and
derived flags. One instance is attached to the application at startup
(`ensure_store`) and handed to every request handler.
"""

import asyncio
import uuid
import weakref
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .config import MAX_EXPLORATION_ROUNDS


def _now() -> str:
    return datetime.utcnow().isoformat()


class ConversationPhase(str, Enum):
    EXPLORATION = "exploration"
    DEEP_ANALYSIS = "deep_analysis"
    FINAL_RESPONSE = "final_response"


class QuestionType(str, Enum):
    PATTERN = "pattern"
    CONTEXT = "context"
    MOTIVATION = "motivation"


# Order in which missing categories are targeted by the synthesizer
QUESTION_TYPE_PRIORITY = [QuestionType.CONTEXT, QuestionType.MOTIVATION, QuestionType.PATTERN]


class ChatMessage(BaseModel):
    speaker: str
    role: str = "assistant"
    content: str
    timestamp: str = Field(default_factory=_now)


class QuestionTypeCoverage(BaseModel):
    pattern: bool = False
    context: bool = False
    motivation: bool = False


class ExternalDomainState(BaseModel):
    detected: bool = False
    domain: Optional[str] = None
    domain_display_name: Optional[str] = None
    user_approved: Optional[bool] = None
    specialist_added: bool = False


class ExpertContentAnalysis(BaseModel):
    agent_id: str
    agent_name: str
    school_name: str
    analysis: str


class ChatSession(BaseModel):
    session_id: str
    messages: List[ChatMessage] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now)
    last_updated: str = Field(default_factory=_now)
    round_number: int = 0
    continue_refining: bool = False
    future_goal_answered: bool = False
    phase: ConversationPhase = ConversationPhase.EXPLORATION
    source_question: Optional[str] = None
    question_type_coverage: QuestionTypeCoverage = Field(default_factory=QuestionTypeCoverage)
    external_domain: Optional[ExternalDomainState] = None
    expert_content_analyses: Optional[List[ExpertContentAnalysis]] = None

    def touch(self) -> None:
        self.last_updated = _now()


class ConversationStore:
    """Process-wide map of session id -> ChatSession."""

    def __init__(self):
        self.store_id = f"store-{uuid.uuid4().hex[:12]}"
        self._sessions: Dict[str, ChatSession] = {}
        # Entries vanish once no request holds or awaits the lock
        self._locks = weakref.WeakValueDictionary()
        print(f"Created conversation store {self.store_id}")

    # ---- lifecycle -------------------------------------------------------

    def create(self, session_id: str) -> ChatSession:
        session = ChatSession(session_id=session_id)
        self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> ChatSession:
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        return self.create(session_id)

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def recycle(self, session_id: str) -> ChatSession:
        """Drop whatever is stored under the id and start a fresh session."""
        self.delete(session_id)
        return self.create(session_id)

    def list_ids(self) -> List[str]:
        return list(self._sessions.keys())

    def count(self) -> int:
        return len(self._sessions)

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def verify(self, session_id: str) -> Dict[str, Any]:
        session = self.get(session_id)
        return {
            "exists": session is not None,
            "message_count": len(session.messages) if session else 0,
        }

    # ---- transcript ------------------------------------------------------

    def append(self, session_id: str, message: ChatMessage) -> None:
        session = self.get_or_create(session_id)
        session.messages.append(message)
        session.touch()

    def messages(self, session_id: str) -> List[ChatMessage]:
        session = self.get(session_id)
        return list(session.messages) if session else []

    def recent_messages(self, session_id: str, limit: int = 20) -> List[ChatMessage]:
        return self.messages(session_id)[-limit:]

    def count_user_messages(self, session_id: str) -> int:
        return sum(
            1 for msg in self.messages(session_id)
            if msg.speaker == "user" and len(msg.content.strip()) > 10
        )

    # ---- round / phase ---------------------------------------------------

    def round_number(self, session_id: str) -> int:
        session = self.get(session_id)
        return session.round_number if session else 0

    def increment_round(self, session_id: str) -> int:
        """Count one exploration round. Outside exploration the counter is frozen."""
        session = self.get_or_create(session_id)
        if session.phase != ConversationPhase.EXPLORATION:
            return session.round_number
        session.round_number += 1
        session.touch()
        return session.round_number

    def phase(self, session_id: str) -> ConversationPhase:
        session = self.get(session_id)
        return session.phase if session else ConversationPhase.EXPLORATION

    def set_phase(self, session_id: str, phase: ConversationPhase) -> None:
        session = self.get_or_create(session_id)
        if session.phase != phase:
            print(f"Session {session_id} phase {session.phase.value} -> {phase.value}")
        session.phase = phase
        session.touch()

    def exploration_rounds_exhausted(self, session_id: str) -> bool:
        return self.round_number(session_id) >= MAX_EXPLORATION_ROUNDS

    # ---- flags -----------------------------------------------------------

    def continue_refining(self, session_id: str) -> bool:
        session = self.get(session_id)
        return session.continue_refining if session else False

    def set_continue_refining(self, session_id: str, value: bool) -> None:
        session = self.get_or_create(session_id)
        session.continue_refining = value
        session.touch()

    def future_goal_answered(self, session_id: str) -> bool:
        session = self.get(session_id)
        return session.future_goal_answered if session else False

    def set_future_goal_answered(self, session_id: str, value: bool) -> None:
        session = self.get_or_create(session_id)
        session.future_goal_answered = value
        session.touch()

    # ---- source question -------------------------------------------------

    def source_question(self, session_id: str) -> Optional[str]:
        session = self.get(session_id)
        return session.source_question if session else None

    def set_source_question(self, session_id: str, text: str) -> str:
        """Capture the user's original question. An existing value is kept."""
        session = self.get_or_create(session_id)
        if session.source_question is None:
            session.source_question = text
            session.touch()
        return session.source_question

    def clear_source_question(self, session_id: str) -> None:
        session = self.get(session_id)
        if session:
            session.source_question = None
            session.touch()

    # ---- question-type coverage -----------------------------------------

    def question_type_coverage(self, session_id: str) -> QuestionTypeCoverage:
        session = self.get(session_id)
        if session is None:
            return QuestionTypeCoverage()
        return session.question_type_coverage.model_copy()

    def mark_question_type(self, session_id: str, question_type: QuestionType) -> None:
        session = self.get_or_create(session_id)
        if session.phase == ConversationPhase.FINAL_RESPONSE:
            return
        setattr(session.question_type_coverage, QuestionType(question_type).value, True)
        session.touch()

    def reset_question_type_coverage(self, session_id: str) -> None:
        session = self.get(session_id)
        if session:
            session.question_type_coverage = QuestionTypeCoverage()
            session.touch()

    # ---- external domain -------------------------------------------------

    def external_domain(self, session_id: str) -> Optional[ExternalDomainState]:
        session = self.get(session_id)
        return session.external_domain if session else None

    def set_external_domain_detected(self, session_id: str, domain: str, display_name: str) -> None:
        session = self.get_or_create(session_id)
        session.external_domain = ExternalDomainState(
            detected=True,
            domain=domain,
            domain_display_name=display_name,
            user_approved=None,
            specialist_added=False,
        )
        session.touch()

    def set_external_domain_approval(self, session_id: str, approved: bool) -> None:
        session = self.get_or_create(session_id)
        if session.external_domain:
            session.external_domain.user_approved = approved
            session.external_domain.specialist_added = approved
        session.touch()

    def active_external_domain(self, session_id: str) -> Optional[str]:
        state = self.external_domain(session_id)
        if state and state.specialist_added:
            return state.domain
        return None

    def clear_external_domain(self, session_id: str) -> None:
        session = self.get(session_id)
        if session:
            session.external_domain = None
            session.touch()

    # ---- cached expert analyses -----------------------------------------

    def expert_content_analyses(self, session_id: str) -> Optional[List[ExpertContentAnalysis]]:
        session = self.get(session_id)
        return session.expert_content_analyses if session else None

    def set_expert_content_analyses(self, session_id: str, analyses: List[ExpertContentAnalysis]) -> None:
        session = self.get_or_create(session_id)
        session.expert_content_analyses = list(analyses)
        session.touch()

    def clear_expert_content_analyses(self, session_id: str) -> None:
        session = self.get(session_id)
        if session:
            session.expert_content_analyses = None
            session.touch()


def ensure_store(app: Any) -> ConversationStore:
    """Attach a store to `app.state` once; later calls return the same instance."""
    store = getattr(app.state, "store", None)
    if isinstance(store, ConversationStore):
        return store
    store = ConversationStore()
    app.state.store = store
    return store
