"""FastAPI backend for the Parliament of Experts."""

from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import CORS_ORIGINS
from .models import ErrorCode, ParliamentResponse, ResponseMode
from .orchestrator import ParliamentOrchestrator
from .state import ConversationStore, ensure_store

app = FastAPI(title="Parliament of Experts API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ensure_store(app)

# ERROR codes that describe the session's state rather than a failed model call
_CONFLICT_CODES = {ErrorCode.SESSION_COMPLETED, ErrorCode.NOT_READY, ErrorCode.NO_HISTORY}


class StartConversationRequest(BaseModel):
    message: str = Field(min_length=1)
    start_fresh: bool = False


class AnswerRequest(BaseModel):
    selected_options: List[str] = Field(default_factory=list)
    free_text: Optional[str] = None
    question: Optional[str] = None
    action: Optional[Literal["ADD_EXTERNAL_SPECIALIST", "CONTINUE_WITHOUT_EXTERNAL"]] = None


class ExternalDomainDecision(BaseModel):
    approved: bool


class ChoiceRequest(BaseModel):
    choice: Literal["continue", "opinion"]


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_orchestrator(store: ConversationStore = Depends(get_store)) -> ParliamentOrchestrator:
    return ParliamentOrchestrator(store)


def to_http(result: ParliamentResponse) -> JSONResponse:
    status_code = 200
    if result.mode == ResponseMode.ERROR:
        if result.code in _CONFLICT_CODES:
            status_code = 409
        elif result.code == ErrorCode.NO_EXTERNAL_DOMAIN:
            status_code = 400
        else:
            status_code = 502
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json", exclude_none=True))


@app.get("/")
@app.get("/api/health")
async def root(store: ConversationStore = Depends(get_store)):
    return {
        "status": "ok",
        "service": "Parliament of Experts API",
        "store_id": store.store_id,
        "sessions": store.count(),
    }


@app.get("/api/sessions")
async def list_sessions(store: ConversationStore = Depends(get_store)):
    return {"sessions": store.list_ids()}


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str, store: ConversationStore = Depends(get_store)):
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.model_dump(mode="json")


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, orchestrator: ParliamentOrchestrator = Depends(get_orchestrator)):
    if not await orchestrator.clear_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted"}


@app.post("/api/sessions/{session_id}/messages")
async def start_conversation(
    session_id: str,
    request: StartConversationRequest,
    orchestrator: ParliamentOrchestrator = Depends(get_orchestrator),
):
    """Submit the opening message and get the lead expert's first question."""
    if not request.message.strip():
        raise HTTPException(status_code=422, detail="Message must not be empty")
    result = await orchestrator.start_conversation(session_id, request.message, start_fresh=request.start_fresh)
    return to_http(result)


@app.post("/api/sessions/{session_id}/answer")
async def submit_answer(
    session_id: str,
    request: AnswerRequest,
    orchestrator: ParliamentOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.submit_answer(
            session_id,
            selected_options=request.selected_options,
            free_text=request.free_text,
            question=request.question,
            action=request.action,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return to_http(result)


@app.post("/api/sessions/{session_id}/external-domain")
async def resolve_external_domain(
    session_id: str,
    request: ExternalDomainDecision,
    orchestrator: ParliamentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.resolve_external_domain(session_id, request.approved)
    return to_http(result)


@app.post("/api/sessions/{session_id}/choice")
async def record_choice(
    session_id: str,
    request: ChoiceRequest,
    orchestrator: ParliamentOrchestrator = Depends(get_orchestrator),
):
    continue_refining = await orchestrator.record_choice(session_id, request.choice)
    return {"session_id": session_id, "continue_refining": continue_refining}


@app.post("/api/sessions/{session_id}/deep-analysis")
async def request_deep_analysis(session_id: str, orchestrator: ParliamentOrchestrator = Depends(get_orchestrator)):
    return to_http(await orchestrator.request_deep_analysis(session_id))


@app.post("/api/sessions/{session_id}/chair-summary")
async def request_chair_summary(session_id: str, orchestrator: ParliamentOrchestrator = Depends(get_orchestrator)):
    """Final (or interim, during exploration) chair recommendation."""
    return to_http(await orchestrator.request_chair_summary(session_id))


@app.post("/api/sessions/{session_id}/training-process")
async def request_training_process(session_id: str, orchestrator: ParliamentOrchestrator = Depends(get_orchestrator)):
    return to_http(await orchestrator.request_training_process(session_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("parliament.main:app", host="0.0.0.0", port=8001, reload=True)
