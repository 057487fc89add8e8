"""Tracking of the three mandatory question categories per session."""

from typing import List

from .state import ConversationStore, QuestionType, QUESTION_TYPE_PRIORITY


def mark_asked(store: ConversationStore, session_id: str, question_type: QuestionType) -> None:
    store.mark_question_type(session_id, QuestionType(question_type))
    print(f"Marked question type '{QuestionType(question_type).value}' as asked for {session_id}")


def missing(store: ConversationStore, session_id: str) -> List[QuestionType]:
    """Categories not yet asked, in the order the synthesizer should target them."""
    coverage = store.question_type_coverage(session_id)
    return [qt for qt in QUESTION_TYPE_PRIORITY if not getattr(coverage, qt.value)]


def all_asked(store: ConversationStore, session_id: str) -> bool:
    return not missing(store, session_id)


def reset(store: ConversationStore, session_id: str) -> None:
    store.reset_question_type_coverage(session_id)
