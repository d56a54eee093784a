"""Authoritative in-memory session registry.

Every mutation is a synchronous, total function over registry state:
operations on unknown session ids are logged no-ops and never raise.
Readers get snapshots; the only writer path for live events is
`process_event`.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Optional

from reconciler.date_utils import now_ms
from reconciler.models import SessionState, TextMessage, WorktreeInfo
from reconciler.observability import record_event, record_ingestion, start_span
from reconciler.parsers.entries import drop_materialized, new_message_id, parse_entries
from reconciler.reducer import apply_event

logger = logging.getLogger("reconciler.registry")


def _new_session(session_id: str, project_path: str, worktree: Optional[WorktreeInfo]) -> SessionState:
    session = SessionState(sessionId=session_id, projectPath=project_path, createdAt=now_ms())
    if worktree is not None:
        session = session.model_copy(update=worktree.model_dump())
    return session


def _event_type(raw: Any) -> str:
    if isinstance(raw, dict) and isinstance(raw.get("type"), str):
        return raw["type"]
    return "unknown"


class SessionRegistry:
    """Map of session id -> SessionState plus derived per-session bookkeeping."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}
        self._active_session_id: Optional[str] = None
        self._project_memory: dict[str, str] = {}
        self._thinking_text: dict[str, str] = {}
        self._last_entry_types: dict[str, Optional[str]] = {}

    # ── Read surface ───────────────────────────────────────────────

    @property
    def sessions(self) -> dict[str, SessionState]:
        return dict(self._sessions)

    @property
    def active_session_id(self) -> Optional[str]:
        return self._active_session_id

    @property
    def thinking_text(self) -> dict[str, str]:
        return dict(self._thinking_text)

    @property
    def last_entry_types(self) -> dict[str, Optional[str]]:
        return dict(self._last_entry_types)

    def get_session(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_sessions_for_project(self, project_path: str) -> list[SessionState]:
        return sorted(
            (s for s in self._sessions.values() if s.projectPath == project_path),
            key=lambda s: s.createdAt,
        )

    def get_last_session_for_project(self, project_path: str) -> Optional[str]:
        remembered = self._project_memory.get(project_path)
        if remembered and remembered in self._sessions:
            return remembered
        candidates = [
            (session.createdAt, idx, key)
            for idx, (key, session) in enumerate(self._sessions.items())
            if session.projectPath == project_path
        ]
        if not candidates:
            return None
        return max(candidates)[2]

    def snapshot(self) -> dict[str, Any]:
        return {
            "sessions": {key: s.model_dump() for key, s in self._sessions.items()},
            "activeSessionId": self._active_session_id,
            "thinkingText": dict(self._thinking_text),
            "lastEntryTypes": dict(self._last_entry_types),
        }

    # ── Lifecycle ──────────────────────────────────────────────────

    def create_session(
        self,
        project_path: str,
        session_id: str,
        worktree: Optional[WorktreeInfo] = None,
    ) -> SessionState:
        session = _new_session(session_id, project_path, worktree)
        self._sessions[session_id] = session
        self._active_session_id = session_id
        self._project_memory[project_path] = session_id
        logger.info("Created session %s for %s", session_id, project_path)
        return session

    def remove_session(self, session_id: str) -> bool:
        if self._sessions.pop(session_id, None) is None:
            logger.debug("remove_session: unknown session %s", session_id)
            return False
        self._thinking_text.pop(session_id, None)
        self._last_entry_types.pop(session_id, None)
        if self._active_session_id == session_id:
            self._active_session_id = None
        logger.info("Removed session %s", session_id)
        return True

    def rekey_session(self, old_id: str, new_id: str) -> bool:
        """Swap a session's identity key without discarding the session object."""
        session = self._sessions.get(old_id)
        if session is None or old_id == new_id or new_id in self._sessions:
            return False

        # Rebuild to keep insertion order, which breaks createdAt ties.
        rebuilt: dict[str, SessionState] = {}
        for key, value in self._sessions.items():
            if key == old_id:
                rebuilt[new_id] = session.model_copy(update={"sessionId": new_id})
            else:
                rebuilt[key] = value
        self._sessions = rebuilt
        for derived in (self._thinking_text, self._last_entry_types):
            if old_id in derived:
                derived[new_id] = derived.pop(old_id)
        if self._active_session_id == old_id:
            self._active_session_id = new_id
        for project_path, remembered in list(self._project_memory.items()):
            if remembered == old_id:
                self._project_memory[project_path] = new_id
        logger.info("Session identity superseded: %s -> %s", old_id, new_id)
        return True

    def set_active_session(self, session_id: Optional[str]) -> None:
        if not session_id:
            self._active_session_id = None
            return
        self._active_session_id = session_id
        session = self._sessions.get(session_id)
        if session is not None:
            self._project_memory[session.projectPath] = session_id

    # ── Transcript ingestion ───────────────────────────────────────

    def load_entries(
        self,
        session_id: str,
        project_path: str,
        entries: Iterable[Any],
        worktree: Optional[WorktreeInfo] = None,
    ) -> SessionState:
        """Full reparse: the transcript replaces the session's message list."""
        batch = list(entries)
        started = time.perf_counter()
        with start_span("registry.load_entries", {"session.id": session_id, "entries": len(batch)}):
            parsed = parse_entries(batch)

        existing = self._sessions.get(session_id)
        if existing is None:
            existing = self.create_session(project_path, session_id, worktree)

        session = existing.model_copy(
            update={
                "messages": drop_materialized((), parsed.messages),
                "model": parsed.detectedModel or existing.model,
            }
        )
        self._sessions[session_id] = session
        latest = parsed.latest_thinking
        self._thinking_text[session_id] = latest.text if latest else ""
        self._last_entry_types[session_id] = parsed.lastEntryType
        record_ingestion("load", len(batch), (time.perf_counter() - started) * 1000)
        logger.debug("Loaded %d entries into %s (%d messages)", len(batch), session_id, len(session.messages))
        return session

    def append_entries(self, session_id: str, entries: Iterable[Any]) -> bool:
        """Parse an incremental suffix and concatenate it onto the session."""
        existing = self._sessions.get(session_id)
        if existing is None:
            logger.debug("append_entries: unknown session %s, dropping batch", session_id)
            return False

        batch = list(entries)
        started = time.perf_counter()
        parsed = parse_entries(batch)
        if not parsed.messages and parsed.lastEntryType is None:
            return False

        self._sessions[session_id] = existing.model_copy(
            update={
                "messages": [*existing.messages, *drop_materialized(existing.messages, parsed.messages)],
                "model": parsed.detectedModel or existing.model,
            }
        )
        latest = parsed.latest_thinking
        if latest is not None:
            self._thinking_text[session_id] = latest.text
        elif parsed.lastEntryType == "user":
            self._thinking_text[session_id] = ""
        self._last_entry_types[session_id] = parsed.lastEntryType
        record_ingestion("append", len(batch), (time.perf_counter() - started) * 1000)
        return True

    # ── Live process channel ───────────────────────────────────────

    def process_event(self, session_id: str, event: Any) -> bool:
        """Single reducer entry point for live agent events."""
        session = self._sessions.get(session_id)
        event_type = _event_type(event)
        if session is None:
            logger.debug("process_event: unknown session %s (%s)", session_id, event_type)
            record_event(event_type, "ignored")
            return False
        updated = apply_event(session, event)
        if updated is None or updated is session:
            record_event(event_type, "noop")
            return False
        self._sessions[session_id] = updated
        record_event(event_type, "applied")
        return True

    def _patch(self, session_id: str, op: str, **changes: Any) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("%s: unknown session %s", op, session_id)
            return False
        self._sessions[session_id] = session.model_copy(update=changes)
        return True

    def add_user_message(self, session_id: str, content: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("add_user_message: unknown session %s", session_id)
            return False
        message = TextMessage(id=new_message_id("user"), role="user", content=content, timestamp=now_ms())
        return self._patch(session_id, "add_user_message", messages=[*session.messages, message])

    def set_processing(self, session_id: str, processing: bool) -> bool:
        return self._patch(session_id, "set_processing", isProcessing=processing)

    def set_error(self, session_id: str, error: Optional[str]) -> bool:
        return self._patch(session_id, "set_error", error=error)

    def mark_closed(self, session_id: str, exit_code: Optional[int]) -> bool:
        """Agent process exited; exits between turns are normal, non-zero codes are errors."""
        if not self.set_processing(session_id, False):
            return False
        if exit_code not in (0, None):
            self.set_error(session_id, f"Agent process exited with code {exit_code}")
        return True

    def set_selected_model(self, session_id: str, model: Optional[str]) -> bool:
        return self._patch(session_id, "set_selected_model", selectedModel=model)

    def rename_session(self, session_id: str, name: str) -> bool:
        return self._patch(session_id, "rename_session", name=name)
