"""API routers exposing the session registry and its inbound channels."""
from __future__ import annotations

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from reconciler.engine import ReconciliationEngine
from reconciler.models import SessionState, WorktreeInfo

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
projects_router = APIRouter(prefix="/api/projects", tags=["projects"])
terminals_router = APIRouter(prefix="/api/terminals", tags=["terminals"])


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


# ── Payloads ───────────────────────────────────────────────────────


class MutationResult(BaseModel):
    applied: bool


class EventsResult(BaseModel):
    applied: int


class RegistrySnapshot(BaseModel):
    sessions: dict[str, SessionState] = Field(default_factory=dict)
    activeSessionId: Optional[str] = None
    thinkingText: dict[str, str] = Field(default_factory=dict)
    lastEntryTypes: dict[str, Optional[str]] = Field(default_factory=dict)


class ActiveSessionPayload(BaseModel):
    sessionId: Optional[str] = None


class CreateSessionPayload(BaseModel):
    projectPath: str
    sessionId: str
    worktreePath: Optional[str] = None
    worktreeBranch: Optional[str] = None
    worktreeSessionId: Optional[str] = None


class SessionPatchPayload(BaseModel):
    name: Optional[str] = None
    selectedModel: Optional[str] = None


class EventsPayload(BaseModel):
    events: list[Any] = Field(default_factory=list)
    chunk: Optional[str] = None


class EntriesPayload(BaseModel):
    entries: list[Any] = Field(default_factory=list)
    mode: Literal["load", "append"] = "append"
    projectPath: Optional[str] = None


class UserMessagePayload(BaseModel):
    content: str


class ClosedPayload(BaseModel):
    exitCode: Optional[int] = None


class LastSessionResponse(BaseModel):
    projectPath: str
    sessionId: Optional[str] = None


class RegisterTerminalPayload(BaseModel):
    terminalId: str
    projectPath: str
    worktreePath: Optional[str] = None
    sessionId: Optional[str] = None


class SessionIdPayload(BaseModel):
    sessionId: str


class TerminalEntriesPayload(BaseModel):
    entries: list[Any] = Field(default_factory=list)


class TerminalSessionResponse(BaseModel):
    terminalId: str
    sessionId: Optional[str] = None


# ── Sessions ───────────────────────────────────────────────────────


@sessions_router.get("", response_model=list[SessionState])
async def list_sessions(
    project_path: Optional[str] = Query(None),
    engine: ReconciliationEngine = Depends(get_engine),
):
    registry = engine.registry
    if project_path:
        return registry.get_sessions_for_project(project_path)
    return sorted(registry.sessions.values(), key=lambda s: s.createdAt)


@sessions_router.get("/state", response_model=RegistrySnapshot)
async def get_registry_state(engine: ReconciliationEngine = Depends(get_engine)):
    registry = engine.registry
    return RegistrySnapshot(
        sessions=registry.sessions,
        activeSessionId=registry.active_session_id,
        thinkingText=registry.thinking_text,
        lastEntryTypes=registry.last_entry_types,
    )


@sessions_router.get("/active", response_model=ActiveSessionPayload)
async def get_active_session(engine: ReconciliationEngine = Depends(get_engine)):
    return ActiveSessionPayload(sessionId=engine.registry.active_session_id)


@sessions_router.put("/active", response_model=ActiveSessionPayload)
async def set_active_session(payload: ActiveSessionPayload, engine: ReconciliationEngine = Depends(get_engine)):
    engine.registry.set_active_session(payload.sessionId)
    return ActiveSessionPayload(sessionId=engine.registry.active_session_id)


@sessions_router.post("", response_model=SessionState)
async def create_session(payload: CreateSessionPayload, engine: ReconciliationEngine = Depends(get_engine)):
    worktree = None
    if payload.worktreePath or payload.worktreeBranch or payload.worktreeSessionId:
        worktree = WorktreeInfo(
            worktreePath=payload.worktreePath,
            worktreeBranch=payload.worktreeBranch,
            worktreeSessionId=payload.worktreeSessionId,
        )
    return engine.registry.create_session(payload.projectPath, payload.sessionId, worktree)


@sessions_router.get("/{session_id}", response_model=SessionState)
async def get_session(session_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    session = engine.registry.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@sessions_router.patch("/{session_id}", response_model=SessionState)
async def update_session(
    session_id: str,
    payload: SessionPatchPayload,
    engine: ReconciliationEngine = Depends(get_engine),
):
    registry = engine.registry
    if not registry.has_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    if payload.name is not None:
        registry.rename_session(session_id, payload.name)
    if "selectedModel" in payload.model_fields_set:
        registry.set_selected_model(session_id, payload.selectedModel)
    return registry.get_session(session_id)


@sessions_router.delete("/{session_id}", response_model=MutationResult)
async def delete_session(session_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    return MutationResult(applied=engine.remove_session(session_id))


@sessions_router.post("/{session_id}/events", response_model=EventsResult)
async def post_events(session_id: str, payload: EventsPayload, engine: ReconciliationEngine = Depends(get_engine)):
    applied = 0
    for event in payload.events:
        if engine.registry.process_event(session_id, event):
            applied += 1
    if payload.chunk:
        applied += engine.feed_stdout(session_id, payload.chunk)
    return EventsResult(applied=applied)


@sessions_router.post("/{session_id}/entries", response_model=MutationResult)
async def post_entries(session_id: str, payload: EntriesPayload, engine: ReconciliationEngine = Depends(get_engine)):
    registry = engine.registry
    if payload.mode == "load":
        existing = registry.get_session(session_id)
        project_path = payload.projectPath or (existing.projectPath if existing else None)
        if not project_path:
            raise HTTPException(status_code=400, detail="projectPath is required to load a new session")
        registry.load_entries(session_id, project_path, payload.entries)
        return MutationResult(applied=True)
    return MutationResult(applied=registry.append_entries(session_id, payload.entries))


@sessions_router.post("/{session_id}/messages", response_model=MutationResult)
async def post_user_message(
    session_id: str,
    payload: UserMessagePayload,
    engine: ReconciliationEngine = Depends(get_engine),
):
    return MutationResult(applied=engine.registry.add_user_message(session_id, payload.content))


@sessions_router.post("/{session_id}/closed", response_model=MutationResult)
async def post_process_closed(session_id: str, payload: ClosedPayload, engine: ReconciliationEngine = Depends(get_engine)):
    if not engine.registry.has_session(session_id):
        return MutationResult(applied=False)
    engine.close_stream(session_id, payload.exitCode)
    return MutationResult(applied=True)


# ── Projects ───────────────────────────────────────────────────────


@projects_router.get("/last-session", response_model=LastSessionResponse)
async def get_last_session(project_path: str = Query(...), engine: ReconciliationEngine = Depends(get_engine)):
    return LastSessionResponse(
        projectPath=project_path,
        sessionId=engine.registry.get_last_session_for_project(project_path),
    )


# ── Terminals ──────────────────────────────────────────────────────


@terminals_router.post("", response_model=TerminalSessionResponse)
async def register_terminal(payload: RegisterTerminalPayload, engine: ReconciliationEngine = Depends(get_engine)):
    await engine.register_terminal(payload.terminalId, payload.projectPath, payload.worktreePath, payload.sessionId)
    return TerminalSessionResponse(
        terminalId=payload.terminalId,
        sessionId=engine.router.session_for_terminal(payload.terminalId),
    )


@terminals_router.delete("/{terminal_id}", response_model=TerminalSessionResponse)
async def remove_terminal(terminal_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    session_id = await engine.remove_terminal(terminal_id)
    return TerminalSessionResponse(terminalId=terminal_id, sessionId=session_id)


def _require_terminal(engine: ReconciliationEngine, terminal_id: str) -> None:
    if engine.router.get_terminal(terminal_id) is None:
        raise HTTPException(status_code=404, detail="Terminal not found")


@terminals_router.post("/{terminal_id}/session-id", response_model=MutationResult)
async def post_terminal_session_id(
    terminal_id: str,
    payload: SessionIdPayload,
    engine: ReconciliationEngine = Depends(get_engine),
):
    _require_terminal(engine, terminal_id)
    return MutationResult(applied=await engine.on_session_id(terminal_id, payload.sessionId))


@terminals_router.post("/{terminal_id}/follow", response_model=TerminalSessionResponse)
async def follow_latest_transcript(terminal_id: str, engine: ReconciliationEngine = Depends(get_engine)):
    _require_terminal(engine, terminal_id)
    session_id = await engine.follow_latest(terminal_id)
    return TerminalSessionResponse(terminalId=terminal_id, sessionId=session_id)


@terminals_router.post("/{terminal_id}/entries", response_model=MutationResult)
async def post_terminal_entries(
    terminal_id: str,
    payload: TerminalEntriesPayload,
    engine: ReconciliationEngine = Depends(get_engine),
):
    return MutationResult(applied=engine.push_entries(terminal_id, payload.entries))


@terminals_router.post("/{terminal_id}/reset", response_model=MutationResult)
async def post_terminal_reset(
    terminal_id: str,
    payload: TerminalEntriesPayload,
    engine: ReconciliationEngine = Depends(get_engine),
):
    return MutationResult(applied=engine.push_reset(terminal_id, payload.entries))
