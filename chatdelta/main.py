"""FastAPI backend for ChatDelta."""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from typing import Any, AsyncIterator, Dict, List, Optional
import asyncio
import json

from .config import (
    KNOWN_MODELS, DeltaConfig, load_credentials, load_delta_config, save_delta_config
)
from .errors import ConfigurationError
from .metrics import MetricsRegistry
from .registry import PROVIDER_KINDS, build_clients, resolve_provider_name, select_summarizer
from .report import identity_to_dict, report_to_dict, result_to_dict
from .session import Session
from .types import DigestStarted, DispatchStarted, ReportReady, ResultArrived

app = FastAPI(title="ChatDelta API")

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:5174", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# In-memory sessions; one process, one owner per session
SESSIONS: Dict[str, Session] = {}
METRICS = MetricsRegistry()


class SendMessageRequest(BaseModel):
    """Request to send a prompt to every provider in a session."""
    content: str
    summarize: Optional[bool] = None


class SessionMetadata(BaseModel):
    """Session metadata for list view."""
    id: str
    created_at: str
    title: str
    turn_count: int
    providers: List[str]


class UpdateConfigRequest(BaseModel):
    """Request to update the ChatDelta configuration."""
    models: Dict[str, str] = {}
    summarizer: Optional[str] = None
    summarize: bool = True
    unit_timeout: Optional[float] = 60.0
    dispatch_deadline: Optional[float] = 90.0
    client: Dict[str, Any] = {}


def _session_metadata(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "created_at": session.created_at.isoformat(),
        "title": session.title,
        "turn_count": session.turns,
        "providers": [client.name for client in session.clients],
    }


def _get_session(session_id: str) -> Session:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _create_session() -> Session:
    config = load_delta_config()
    clients = build_clients(load_credentials(), config)
    try:
        summarizer = select_summarizer(clients, config.summarizer, enabled=config.summarize)
        return Session(clients, summarizer, config=config, metrics=METRICS)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "ChatDelta API"}


@app.get("/api/health")
async def health_check():
    """
    Doctor endpoint - checks which provider keys are configured and which
    provider would write the summary.
    """
    credentials = load_credentials()
    config = load_delta_config()

    api_keys = {}
    for kind in PROVIDER_KINDS:
        key = credentials.get(kind.name)
        api_keys[kind.name] = {
            "env_var": kind.env_var,
            "configured": bool(key),
            "key_preview": f"{key[:8]}..." if key else None,
            "model": config.model_for(kind.name),
        }

    clients = build_clients(credentials, config)
    summarizer_error = None
    try:
        summarizer = select_summarizer(clients, config.summarizer, enabled=config.summarize)
    except ConfigurationError as e:
        summarizer, summarizer_error = None, str(e)
    all_ready = all(entry["configured"] for entry in api_keys.values())

    if not clients:
        status = "unavailable"
    elif all_ready and summarizer_error is None:
        status = "healthy"
    else:
        status = "degraded"

    return {
        "status": status,
        "api_keys": api_keys,
        "active_providers": [identity_to_dict(client.identity) for client in clients],
        "summarizer": identity_to_dict(summarizer.identity) if summarizer else None,
        "summarizer_error": summarizer_error,
        "all_ready": all_ready,
    }


@app.get("/api/config")
async def get_config():
    """Get current configuration."""
    return load_delta_config().to_dict()


@app.post("/api/config")
async def update_config(request: UpdateConfigRequest):
    """Update configuration. Applies to sessions created afterwards."""
    try:
        config = DeltaConfig.from_dict(request.model_dump())
        if config.summarizer:
            resolve_provider_name(config.summarizer)
    except (TypeError, ValueError, ConfigurationError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    save_delta_config(config)
    return {"status": "ok", **config.to_dict()}


@app.get("/api/models")
async def list_models():
    """List known models per provider."""
    return {kind.name: {"label": kind.label, "models": KNOWN_MODELS[kind.name]} for kind in PROVIDER_KINDS}


@app.get("/api/metrics")
async def get_metrics():
    """Per-provider request metrics across all sessions."""
    return {"summary": METRICS.summary(), "providers": METRICS.snapshot()}


@app.get("/api/sessions", response_model=List[SessionMetadata])
async def list_sessions():
    """List all sessions (metadata only)."""
    return [_session_metadata(session) for session in SESSIONS.values()]


@app.post("/api/sessions", response_model=SessionMetadata)
async def create_session():
    """Create a new session over every provider with a configured key."""
    session = _create_session()
    SESSIONS[session.id] = session
    return _session_metadata(session)


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    """Get a session with every turn's report."""
    session = _get_session(session_id)
    return {
        **_session_metadata(session),
        "turns": [report_to_dict(report) for report in session.reports],
    }


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str):
    """Delete a session, cancelling its in-flight dispatch."""
    session = _get_session(session_id)
    session.cancel()
    del SESSIONS[session_id]
    return {"status": "ok", "deleted": session_id}


@app.post("/api/sessions/{session_id}/cancel")
async def cancel_session(session_id: str):
    """Cancel the in-flight dispatch; replies that already arrived are kept."""
    session = _get_session(session_id)
    return {"status": "ok", "cancelled": session.cancel()}


@app.post("/api/sessions/{session_id}/message")
async def send_message(session_id: str, request: SendMessageRequest):
    """
    Send a prompt to every provider and return the complete report,
    digest included.
    """
    session = _get_session(session_id)
    if not request.content.strip():
        raise HTTPException(status_code=422, detail="Prompt cannot be empty")

    report = await session.ask(request.content, summarize=request.summarize)
    return report_to_dict(report)


async def _drain(events: asyncio.Queue, task: asyncio.Task) -> AsyncIterator[Any]:
    """Yield events until the turn finishes; re-raise if it failed before reporting."""
    while True:
        getter = asyncio.ensure_future(events.get())
        done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            event = getter.result()
            yield event
            if isinstance(event, ReportReady):
                return
            continue
        getter.cancel()
        while not events.empty():
            yield events.get_nowait()
        task.result()
        return


@app.post("/api/sessions/{session_id}/message/stream")
async def send_message_stream(session_id: str, request: SendMessageRequest):
    """
    Send a prompt and stream each provider's result as soon as it resolves.
    Returns Server-Sent Events, ending with the full report.
    """
    session = _get_session(session_id)
    if not request.content.strip():
        raise HTTPException(status_code=422, detail="Prompt cannot be empty")

    async def event_generator():
        events: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(session.ask(request.content, events=events, summarize=request.summarize))
        try:
            async for event in _drain(events, task):
                if isinstance(event, DispatchStarted):
                    providers = [identity_to_dict(target) for target in event.request.targets]
                    yield _sse({'type': 'dispatch_start', 'data': {'providers': providers}})
                elif isinstance(event, ResultArrived):
                    yield _sse({'type': 'result', 'data': result_to_dict(event.result)})
                elif isinstance(event, DigestStarted):
                    yield _sse({'type': 'digest_start', 'data': {'summarizer': identity_to_dict(event.summarizer)}})
                elif isinstance(event, ReportReady):
                    yield _sse({'type': 'complete', 'data': report_to_dict(event.report)})

        except Exception as e:
            # Send error event
            yield _sse({'type': 'error', 'message': str(e)})
        finally:
            if not task.done():
                session.cancel()
                await asyncio.gather(task, return_exceptions=True)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
