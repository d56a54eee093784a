"""Reconciliation engine: wires the registry, identity router and watcher."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from reconciler.parsers.jsonl import JsonlLineBuffer
from reconciler.registry import SessionRegistry
from reconciler.router import IdentityRouter
from reconciler.watcher import TranscriptWatcher

logger = logging.getLogger("reconciler.engine")


class ReconciliationEngine:
    """Owns one registry and routes every inbound source into it."""

    def __init__(self, claude_dir: Optional[Path] = None, registry: Optional[SessionRegistry] = None) -> None:
        self.registry = registry or SessionRegistry()
        self.router = IdentityRouter(self.registry)
        self.watcher = TranscriptWatcher(self.router, claude_dir)
        self._stream_buffers: dict[str, JsonlLineBuffer] = {}

    async def register_terminal(
        self,
        terminal_id: str,
        project_path: str,
        worktree_path: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        """Register a terminal; pre-attach when its session id is already known."""
        self.router.register_terminal(terminal_id, project_path, worktree_path)
        if session_id:
            await self.on_session_id(terminal_id, session_id)

    async def on_session_id(self, terminal_id: str, session_id: str) -> bool:
        """Identity change notification. Duplicate notifications are no-ops."""
        if not self.router.on_session_id(terminal_id, session_id):
            return False
        binding = self.router.get_terminal(terminal_id)
        if binding is None:
            return False
        entries = await self.watcher.watch(terminal_id, session_id, binding.working_path)
        if entries:
            self.router.on_reset(terminal_id, entries)
        return True

    async def follow_latest(self, terminal_id: str) -> Optional[str]:
        """Attach a terminal with no known session id to the newest transcript."""
        binding = self.router.get_terminal(terminal_id)
        if binding is None:
            return None
        await self.watcher.watch(terminal_id, None, binding.working_path)
        return self.router.session_for_terminal(terminal_id)

    def push_entries(self, terminal_id: str, entries: Iterable[Any]) -> bool:
        return self.router.on_entries(terminal_id, entries)

    def push_reset(self, terminal_id: str, entries: Iterable[Any]) -> bool:
        return self.router.on_reset(terminal_id, entries)

    async def remove_terminal(self, terminal_id: str) -> Optional[str]:
        await self.watcher.unwatch(terminal_id)
        session_id = self.router.remove_terminal(terminal_id)
        if session_id:
            await self._hand_over(session_id)
        return session_id

    async def _hand_over(self, session_id: str) -> None:
        """Keep tailing a session another terminal is still bound to."""
        successor = self.router.hand_over(session_id)
        if successor is None or self.watcher.is_watching(successor):
            return
        binding = self.router.get_terminal(successor)
        entries = await self.watcher.watch(successor, session_id, binding.working_path)
        if entries:
            self.router.on_reset(successor, entries)

    def feed_stdout(self, session_id: str, chunk: str) -> int:
        """Decode a chunk of agent stdout and apply every complete event."""
        if not self.registry.has_session(session_id):
            logger.debug("feed_stdout: unknown session %s, dropping chunk", session_id)
            return 0
        buffer = self._stream_buffers.setdefault(session_id, JsonlLineBuffer())
        applied = 0
        for event in buffer.feed(chunk):
            if self.registry.process_event(session_id, event):
                applied += 1
        return applied

    def close_stream(self, session_id: str, exit_code: Optional[int]) -> None:
        buffer = self._stream_buffers.pop(session_id, None)
        if buffer is not None:
            for event in buffer.flush():
                self.registry.process_event(session_id, event)
        self.registry.mark_closed(session_id, exit_code)

    def remove_session(self, session_id: str) -> bool:
        self._stream_buffers.pop(session_id, None)
        return self.registry.remove_session(session_id)

    async def stop(self) -> None:
        await self.watcher.stop_all()
        self._stream_buffers.clear()
        logger.info("Reconciliation engine stopped")
