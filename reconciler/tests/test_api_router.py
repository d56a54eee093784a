import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from fastapi import HTTPException

from reconciler.engine import ReconciliationEngine
from reconciler.routers import api as api_router
from reconciler.watcher import TranscriptWatcher


def _user(text: str) -> dict:
    return {"type": "user", "message": {"content": text}}


@patch.object(TranscriptWatcher, "_watch_loop", new=AsyncMock())
class SessionsApiRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = ReconciliationEngine(Path(self._tmp.name))

    async def asyncTearDown(self) -> None:
        await self.engine.stop()
        self._tmp.cleanup()

    async def test_create_get_and_list_sessions(self) -> None:
        created = await api_router.create_session(
            api_router.CreateSessionPayload(projectPath="/work/app", sessionId="S1", worktreeBranch="feat"),
            engine=self.engine,
        )
        self.assertEqual(created.worktreeBranch, "feat")

        fetched = await api_router.get_session("S1", engine=self.engine)
        self.assertEqual(fetched.sessionId, "S1")

        listed = await api_router.list_sessions(project_path="/work/app", engine=self.engine)
        self.assertEqual([s.sessionId for s in listed], ["S1"])
        self.assertEqual(await api_router.list_sessions(project_path="/elsewhere", engine=self.engine), [])

    async def test_missing_session_returns_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_session("nope", engine=self.engine)
        self.assertEqual(ctx.exception.status_code, 404)

        with self.assertRaises(HTTPException) as ctx:
            await api_router.update_session("nope", api_router.SessionPatchPayload(name="x"), engine=self.engine)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_patch_only_touches_provided_fields(self) -> None:
        self.engine.registry.create_session("/work/app", "S1")
        self.engine.registry.set_selected_model("S1", "opus")

        renamed = await api_router.update_session("S1", api_router.SessionPatchPayload(name="Auth"), engine=self.engine)
        self.assertEqual(renamed.name, "Auth")
        self.assertEqual(renamed.selectedModel, "opus")

        cleared = await api_router.update_session(
            "S1", api_router.SessionPatchPayload(selectedModel=None), engine=self.engine
        )
        self.assertIsNone(cleared.selectedModel)

    async def test_events_apply_to_known_sessions_only(self) -> None:
        self.engine.registry.create_session("/work/app", "S1")
        payload = api_router.EventsPayload(
            events=[
                {"type": "system", "subtype": "init", "claude_code_version": "2.1.0"},
                {"type": "bogus"},
            ],
            chunk='{"type":"result","num_turns":4}\n',
        )
        result = await api_router.post_events("S1", payload, engine=self.engine)
        self.assertEqual(result.applied, 2)
        session = self.engine.registry.get_session("S1")
        self.assertEqual(session.claudeVersion, "2.1.0")
        self.assertEqual(session.numTurns, 4)

        ignored = await api_router.post_events("nope", api_router.EventsPayload(events=[{"type": "result"}]), engine=self.engine)
        self.assertEqual(ignored.applied, 0)

    async def test_entries_load_then_append(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.post_entries("S1", api_router.EntriesPayload(mode="load"), engine=self.engine)
        self.assertEqual(ctx.exception.status_code, 400)

        loaded = await api_router.post_entries(
            "S1",
            api_router.EntriesPayload(entries=[_user("one")], mode="load", projectPath="/work/app"),
            engine=self.engine,
        )
        self.assertTrue(loaded.applied)
        appended = await api_router.post_entries(
            "S1", api_router.EntriesPayload(entries=[_user("two")]), engine=self.engine
        )
        self.assertTrue(appended.applied)
        self.assertEqual(len(self.engine.registry.get_session("S1").messages), 2)

        state = await api_router.get_registry_state(engine=self.engine)
        self.assertEqual(state.activeSessionId, "S1")
        self.assertEqual(state.lastEntryTypes, {"S1": "user"})

    async def test_user_message_close_and_delete(self) -> None:
        self.engine.registry.create_session("/work/app", "S1")
        self.assertTrue((await api_router.post_user_message("S1", api_router.UserMessagePayload(content="go"), engine=self.engine)).applied)

        closed = await api_router.post_process_closed("S1", api_router.ClosedPayload(exitCode=2), engine=self.engine)
        self.assertTrue(closed.applied)
        self.assertEqual(self.engine.registry.get_session("S1").error, "Agent process exited with code 2")
        self.assertFalse((await api_router.post_process_closed("nope", api_router.ClosedPayload(), engine=self.engine)).applied)

        self.assertTrue((await api_router.delete_session("S1", engine=self.engine)).applied)
        active = await api_router.get_active_session(engine=self.engine)
        self.assertIsNone(active.sessionId)

    async def test_active_session_and_last_session_for_project(self) -> None:
        self.engine.registry.create_session("/work/app", "S1")
        self.engine.registry.create_session("/work/app", "S2")
        await api_router.set_active_session(api_router.ActiveSessionPayload(sessionId="S1"), engine=self.engine)

        last = await api_router.get_last_session(project_path="/work/app", engine=self.engine)
        self.assertEqual(last.sessionId, "S1")
        missing = await api_router.get_last_session(project_path="/elsewhere", engine=self.engine)
        self.assertIsNone(missing.sessionId)


@patch.object(TranscriptWatcher, "_watch_loop", new=AsyncMock())
class TerminalsApiRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = ReconciliationEngine(Path(self._tmp.name))

    async def asyncTearDown(self) -> None:
        await self.engine.stop()
        self._tmp.cleanup()

    async def test_terminal_identity_flow(self) -> None:
        registered = await api_router.register_terminal(
            api_router.RegisterTerminalPayload(terminalId="T1", projectPath="/work/app"),
            engine=self.engine,
        )
        self.assertIsNone(registered.sessionId)

        dropped = await api_router.post_terminal_entries(
            "T1", api_router.TerminalEntriesPayload(entries=[_user("early")]), engine=self.engine
        )
        self.assertFalse(dropped.applied)

        first = await api_router.post_terminal_session_id("T1", api_router.SessionIdPayload(sessionId="S1"), engine=self.engine)
        again = await api_router.post_terminal_session_id("T1", api_router.SessionIdPayload(sessionId="S1"), engine=self.engine)
        self.assertTrue(first.applied)
        self.assertFalse(again.applied)

        pushed = await api_router.post_terminal_entries(
            "T1", api_router.TerminalEntriesPayload(entries=[_user("hi")]), engine=self.engine
        )
        self.assertTrue(pushed.applied)
        reset = await api_router.post_terminal_reset("T1", api_router.TerminalEntriesPayload(entries=[]), engine=self.engine)
        self.assertTrue(reset.applied)
        self.assertEqual(self.engine.registry.get_session("S1").messages, [])

        removed = await api_router.remove_terminal("T1", engine=self.engine)
        self.assertEqual(removed.sessionId, "S1")

    async def test_unknown_terminal_returns_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.post_terminal_session_id("T9", api_router.SessionIdPayload(sessionId="S1"), engine=self.engine)
        self.assertEqual(ctx.exception.status_code, 404)

        with self.assertRaises(HTTPException) as ctx:
            await api_router.follow_latest_transcript("T9", engine=self.engine)
        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == "__main__":
    unittest.main()
