import asyncio
import json
import os
import sys

sys.path.insert(0, ".")

from parliament.models import ResponseMode
from parliament.orchestrator import ParliamentOrchestrator
from parliament.state import ConversationStore


async def main():
    """Drive one session against the live model: opening, answers, then the chair."""
    opening = os.getenv(
        "PARLIAMENT_TEST_MESSAGE",
        "I keep avoiding hard conversations with my partner, even when something really bothers me.",
    )
    store = ConversationStore()
    orchestrator = ParliamentOrchestrator(store)
    session_id = "smoke-test"

    response = await orchestrator.start_conversation(session_id, opening)
    print(f"[{response.mode.value}] round {response.round_number}")

    while response.mode == ResponseMode.NEXT_QUESTION:
        question = response.next_question
        print(f"\nQ ({question.question_type.value}): {question.question}")
        for option in question.options:
            print(f"  - {option}")
        response = await orchestrator.submit_answer(session_id, selected_options=[question.options[0]])
        print(f"[{response.mode.value}] round {response.round_number}")

    if response.mode == ResponseMode.ERROR:
        print(json.dumps(response.model_dump(mode="json", exclude_none=True), indent=2))
        return

    if response.mode == ResponseMode.REQUIRES_DEEP_ANALYSIS:
        response = await orchestrator.request_deep_analysis(session_id)
        print(f"[{response.mode.value}] {len(response.analyses or [])} analyses")

    response = await orchestrator.request_chair_summary(session_id)
    print(f"\n[{response.mode.value}]")
    print(response.chair_message or response.error)


if __name__ == "__main__":
    asyncio.run(main())
