"""Transcript file watcher using watchfiles.

Tails agent transcript files per terminal and pushes incremental entries,
full resets and identity switches into the IdentityRouter.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from watchfiles import Change, awatch

from reconciler import config
from reconciler.parsers.jsonl import parse_lines
from reconciler.paths import TRANSCRIPT_SUFFIX, find_latest_transcript, project_dir, session_file_path
from reconciler.router import IdentityRouter

logger = logging.getLogger("reconciler.watcher")

_DIR_WAIT_STEP_SECONDS = 1.0


class TranscriptTail:
    """Byte-offset reader over an append-only JSONL file.

    Only complete lines are consumed; a partially written trailing line is
    left for the next read. A file that shrinks below the current offset
    was rewritten and is re-read from the start.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.offset = 0

    def read_all(self) -> list[dict[str, Any]]:
        self.offset = 0
        return self._read_from_offset()

    def poll(self) -> tuple[str, list[dict[str, Any]]]:
        """Return ("reset" | "entries" | "none", entries)."""
        try:
            size = self.path.stat().st_size
        except OSError:
            return "none", []
        if size < self.offset:
            logger.info("Transcript %s truncated, re-reading", self.path.name)
            return "reset", self.read_all()
        if size == self.offset:
            return "none", []
        return "entries", self._read_from_offset()

    def _read_from_offset(self) -> list[dict[str, Any]]:
        try:
            with self.path.open("rb") as fh:
                fh.seek(self.offset)
                data = fh.read()
        except OSError as exc:
            logger.warning("Error reading transcript %s: %s", self.path, exc)
            return []
        end = data.rfind(b"\n")
        if end < 0:
            return []
        self.offset += end + 1
        return parse_lines(data[: end + 1].decode("utf-8", errors="replace"))


@dataclass
class _WatchState:
    terminal_id: str
    directory: Path
    pinned: bool
    tail: Optional[TranscriptTail] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


def _transcript_filter(change: Change, path: str) -> bool:
    return path.endswith(TRANSCRIPT_SUFFIX)


class TranscriptWatcher:
    """Background transcript watchers, one asyncio task per terminal."""

    def __init__(self, router: IdentityRouter, claude_dir: Optional[Path] = None) -> None:
        self.router = router
        self.claude_dir = claude_dir
        self._watches: dict[str, _WatchState] = {}

    def is_watching(self, terminal_id: str) -> bool:
        return terminal_id in self._watches

    def read_all(self, session_id: str, project_path: str) -> list[dict[str, Any]]:
        path = session_file_path(session_id, project_path, self.claude_dir)
        if not path.exists():
            return []
        return TranscriptTail(path).read_all()

    def find_latest_session_id(self, project_path: str) -> Optional[str]:
        latest = find_latest_transcript(project_dir(project_path, self.claude_dir))
        return latest.stem if latest else None

    async def watch(self, terminal_id: str, session_id: Optional[str], project_path: str) -> list[dict[str, Any]]:
        """Start tailing a terminal's transcript and return its current entries.

        With a session id the watcher is pinned to that file. Without one it
        follows whichever transcript in the project directory was modified
        last, switching the terminal's identity when a newer one appears.
        """
        await self.unwatch(terminal_id)

        state = _WatchState(
            terminal_id=terminal_id,
            directory=project_dir(project_path, self.claude_dir),
            pinned=bool(session_id),
        )
        self._watches[terminal_id] = state

        initial: list[dict[str, Any]] = []
        if session_id:
            state.tail = TranscriptTail(session_file_path(session_id, project_path, self.claude_dir))
            if state.tail.path.exists():
                initial = state.tail.read_all()
        else:
            latest = find_latest_transcript(state.directory)
            if latest is not None:
                initial = self._switch(state, latest)

        state.task = asyncio.create_task(self._watch_loop(state))
        logger.info("Watching transcripts for terminal %s in %s", terminal_id, state.directory)
        return initial

    async def unwatch(self, terminal_id: str) -> None:
        state = self._watches.pop(terminal_id, None)
        if state is None:
            return
        state.stop_event.set()
        if state.task:
            state.task.cancel()
            try:
                await state.task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped watching transcripts for terminal %s", terminal_id)

    async def stop_all(self) -> None:
        for terminal_id in list(self._watches):
            await self.unwatch(terminal_id)

    async def _wait_for_directory(self, state: _WatchState) -> bool:
        waited = 0.0
        while not state.directory.is_dir():
            if state.stop_event.is_set():
                return False
            if waited >= config.FILE_WAIT_SECONDS:
                logger.warning(
                    "Gave up waiting for %s after %ss; chat for terminal %s will not update",
                    state.directory,
                    config.FILE_WAIT_SECONDS,
                    state.terminal_id,
                )
                return False
            await asyncio.sleep(_DIR_WAIT_STEP_SECONDS)
            waited += _DIR_WAIT_STEP_SECONDS
        return True

    async def _watch_loop(self, state: _WatchState) -> None:
        try:
            if not await self._wait_for_directory(state):
                return
            # Content written before the watcher was attached
            self._handle_changes(state)
            async for _changes in awatch(
                state.directory,
                watch_filter=_transcript_filter,
                stop_event=state.stop_event,
                force_polling=config.WATCH_FORCE_POLLING,
                poll_delay_ms=config.WATCH_POLL_INTERVAL_MS,
            ):
                try:
                    self._handle_changes(state)
                except Exception as e:
                    logger.error(f"Error applying transcript changes for {state.terminal_id}: {e}")
        except asyncio.CancelledError:
            logger.debug("Transcript watch task for %s cancelled", state.terminal_id)
            raise
        except Exception as e:
            logger.error(f"Transcript watcher error for {state.terminal_id}: {e}")

    def _handle_changes(self, state: _WatchState) -> None:
        if not state.pinned:
            latest = find_latest_transcript(state.directory)
            if latest is not None and (state.tail is None or latest != state.tail.path):
                self._switch(state, latest)
                return
        if state.tail is None:
            return
        kind, entries = state.tail.poll()
        if kind == "reset":
            self.router.on_reset(state.terminal_id, entries)
        elif entries:
            logger.debug("New entries for %s: %d", state.terminal_id, len(entries))
            self.router.on_entries(state.terminal_id, entries)

    def _switch(self, state: _WatchState, path: Path) -> list[dict[str, Any]]:
        logger.info("Terminal %s switching to transcript %s", state.terminal_id, path.stem)
        state.tail = TranscriptTail(path)
        entries = state.tail.read_all()
        self.router.on_session_id(state.terminal_id, path.stem)
        if entries:
            self.router.on_reset(state.terminal_id, entries)
        return entries
