"""
Phase and round state machine.

    exploration --(answer, round < 3)--> exploration
    exploration --(answer, round reaches 3)--> deep_analysis
    deep_analysis --(chair summary stored)--> final_response
    any --(future goal answered)--> final answer requested

`final_response` is terminal for answers: the caller recycles the session.
"""

from enum import Enum

from .config import MAX_EXPLORATION_ROUNDS
from .state import ChatSession, ConversationPhase, ConversationStore


class PhaseStep(str, Enum):
    ASK_NEXT = "ask_next"
    ENTER_DEEP_ANALYSIS = "enter_deep_analysis"
    AWAIT_DEEP_ANALYSIS = "await_deep_analysis"
    FINAL_ANSWER = "final_answer"
    SESSION_COMPLETED = "session_completed"


def next_step(session: ChatSession) -> PhaseStep:
    """Decide what an answered question leads to. Reads only; commits nothing."""
    if session.phase == ConversationPhase.FINAL_RESPONSE:
        return PhaseStep.SESSION_COMPLETED
    if session.future_goal_answered:
        return PhaseStep.FINAL_ANSWER
    if session.phase == ConversationPhase.DEEP_ANALYSIS:
        return PhaseStep.AWAIT_DEEP_ANALYSIS
    if session.round_number + 1 >= MAX_EXPLORATION_ROUNDS:
        return PhaseStep.ENTER_DEEP_ANALYSIS
    return PhaseStep.ASK_NEXT


def record_exploration_round(store: ConversationStore, session_id: str) -> int:
    """Count an answered exploration question and move to deep analysis at the limit."""
    round_number = store.increment_round(session_id)
    if store.phase(session_id) == ConversationPhase.EXPLORATION and store.exploration_rounds_exhausted(session_id):
        store.set_phase(session_id, ConversationPhase.DEEP_ANALYSIS)
    return round_number


def final_response_authorized(session: ChatSession) -> bool:
    return session.future_goal_answered or session.phase in (
        ConversationPhase.DEEP_ANALYSIS,
        ConversationPhase.FINAL_RESPONSE,
    )


def complete_final_response(store: ConversationStore, session_id: str) -> None:
    """Close the session. Call only after the chair summary has been stored."""
    store.set_phase(session_id, ConversationPhase.FINAL_RESPONSE)


def is_completed(session: ChatSession) -> bool:
    return session.phase == ConversationPhase.FINAL_RESPONSE
