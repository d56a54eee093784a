"""Terminal -> session identity routing.

`on_session_id` is the single authoritative entry point for identity
changes. Both the terminal-creation path and the reactive listener may
call it for the same notification; only the first call attaches.

A session is tailed by at most one terminal at a time. Pushes from any
other terminal bound to the same session are dropped.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from reconciler.models import TerminalBinding, WorktreeInfo
from reconciler.registry import SessionRegistry

logger = logging.getLogger("reconciler.router")


class IdentityRouter:
    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry
        self._terminals: dict[str, TerminalBinding] = {}
        self._attached: dict[str, str] = {}  # session id -> terminal id

    # ── Terminal bindings ──────────────────────────────────────────

    def register_terminal(
        self,
        terminal_id: str,
        project_path: str,
        worktree_path: Optional[str] = None,
    ) -> TerminalBinding:
        binding = self._terminals.get(terminal_id)
        if binding is None:
            binding = TerminalBinding(id=terminal_id, projectPath=project_path, worktreePath=worktree_path)
            self._terminals[terminal_id] = binding
        else:
            binding.projectPath = project_path
            binding.worktreePath = worktree_path or binding.worktreePath
        return binding

    def set_terminal_worktree(self, terminal_id: str, worktree_path: str) -> bool:
        binding = self._terminals.get(terminal_id)
        if binding is None:
            return False
        binding.worktreePath = worktree_path
        return True

    def remove_terminal(self, terminal_id: str) -> Optional[str]:
        binding = self._terminals.pop(terminal_id, None)
        if binding is None:
            return None
        for session_id, owner in list(self._attached.items()):
            if owner == terminal_id:
                del self._attached[session_id]
        return binding.sessionId

    def get_terminal(self, terminal_id: str) -> Optional[TerminalBinding]:
        return self._terminals.get(terminal_id)

    def session_for_terminal(self, terminal_id: str) -> Optional[str]:
        binding = self._terminals.get(terminal_id)
        return binding.sessionId if binding else None

    def terminal_for_session(self, session_id: str) -> Optional[str]:
        for binding in self._terminals.values():
            if binding.sessionId == session_id:
                return binding.id
        return None

    # ── Identity changes ───────────────────────────────────────────

    def on_session_id(
        self,
        terminal_id: str,
        new_session_id: str,
        entries: Optional[Iterable[Any]] = None,
    ) -> bool:
        """Bind a terminal to a (possibly new) session identity.

        Returns True when the caller should attach a transcript watcher for
        `new_session_id`, False when this notification was already handled.
        """
        binding = self._terminals.get(terminal_id)
        if binding is None:
            logger.debug("Identity change for unknown terminal %s ignored", terminal_id)
            return False

        previous = binding.sessionId
        if previous == new_session_id:
            return False

        binding.sessionId = new_session_id
        # Only the tailing terminal may carry a session over to its new identity.
        owned_previous = bool(previous) and self._attached.get(previous, terminal_id) == terminal_id
        if previous and self._attached.get(previous) == terminal_id:
            del self._attached[previous]

        if not self.registry.has_session(new_session_id):
            if owned_previous and self.registry.has_session(previous):
                self.registry.rekey_session(previous, new_session_id)
            worktree = WorktreeInfo(worktreePath=binding.worktreePath) if binding.worktreePath else None
            self.registry.load_entries(new_session_id, binding.working_path, entries or [], worktree=worktree)
        logger.info("Terminal %s bound to session %s (was %s)", terminal_id, new_session_id, previous)
        return self._claim_attachment(new_session_id, terminal_id)

    def _claim_attachment(self, session_id: str, terminal_id: str) -> bool:
        owner = self._attached.get(session_id)
        if owner == terminal_id:
            return False
        if owner is not None:
            logger.debug("Session %s already tailed by terminal %s; %s not attached", session_id, owner, terminal_id)
            return False
        self._attached[session_id] = terminal_id
        return True

    def _owns(self, session_id: str, terminal_id: str) -> bool:
        owner = self._attached.get(session_id)
        if owner is None:
            self._attached[session_id] = terminal_id
            return True
        return owner == terminal_id

    def attached_terminal(self, session_id: str) -> Optional[str]:
        return self._attached.get(session_id)

    def hand_over(self, session_id: str) -> Optional[str]:
        """Move a released session's attachment to another terminal bound to it."""
        if session_id in self._attached:
            return None
        successor = self.terminal_for_session(session_id)
        if successor is None:
            return None
        self._attached[session_id] = successor
        logger.info("Session %s handed over to terminal %s", session_id, successor)
        return successor

    # ── Transcript pushes ──────────────────────────────────────────

    def on_entries(self, terminal_id: str, entries: Iterable[Any]) -> bool:
        session_id = self.session_for_terminal(terminal_id)
        if not session_id:
            logger.debug("Entries for terminal %s dropped: no session bound", terminal_id)
            return False
        if not self._owns(session_id, terminal_id):
            logger.debug("Entries for %s from non-owning terminal %s dropped", session_id, terminal_id)
            return False
        if self.registry.has_session(session_id):
            return self.registry.append_entries(session_id, entries)
        binding = self._terminals[terminal_id]
        self.registry.load_entries(session_id, binding.working_path, entries)
        return True

    def on_reset(self, terminal_id: str, entries: Iterable[Any]) -> bool:
        session_id = self.session_for_terminal(terminal_id)
        if not session_id:
            logger.debug("Reset for terminal %s dropped: no session bound", terminal_id)
            return False
        if not self._owns(session_id, terminal_id):
            logger.debug("Reset for %s from non-owning terminal %s dropped", session_id, terminal_id)
            return False
        binding = self._terminals[terminal_id]
        self.registry.load_entries(session_id, binding.working_path, entries)
        return True
