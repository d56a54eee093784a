import unittest

from reconciler.models import TextMessage
from reconciler.registry import SessionRegistry
from reconciler.router import IdentityRouter


def _user(text: str) -> dict:
    return {"type": "user", "message": {"content": text}}


class IdentityRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = SessionRegistry()
        self.router = IdentityRouter(self.registry)
        self.router.register_terminal("T1", "/work/app")

    def test_repeated_notification_attaches_once(self) -> None:
        self.assertTrue(self.router.on_session_id("T1", "S1"))
        self.assertFalse(self.router.on_session_id("T1", "S1"))
        self.assertEqual(list(self.registry.sessions), ["S1"])

    def test_unknown_terminal_is_ignored(self) -> None:
        self.assertFalse(self.router.on_session_id("T9", "S1"))
        self.assertEqual(self.registry.sessions, {})

    def test_unseen_session_bootstraps_from_worktree_path(self) -> None:
        self.router.set_terminal_worktree("T1", "/work/app-wt")
        self.router.on_session_id("T1", "S1", [_user("hi")])
        session = self.registry.get_session("S1")
        self.assertEqual(session.projectPath, "/work/app-wt")
        self.assertEqual(session.worktreePath, "/work/app-wt")
        self.assertEqual([m.content for m in session.messages if isinstance(m, TextMessage)], ["hi"])

    def test_reset_supersedes_previous_identity(self) -> None:
        self.router.on_session_id("T1", "S1", [_user("before clear")])
        self.registry.rename_session("S1", "Auth work")

        self.assertTrue(self.router.on_session_id("T1", "S2"))
        self.assertFalse(self.registry.has_session("S1"))
        session = self.registry.get_session("S2")
        self.assertEqual(session.name, "Auth work")
        self.assertEqual(session.messages, [])
        self.assertEqual(self.router.session_for_terminal("T1"), "S2")
        self.assertEqual(self.router.terminal_for_session("S2"), "T1")

    def test_known_session_is_not_reloaded(self) -> None:
        self.registry.load_entries("S1", "/work/app", [_user("existing")])
        self.router.on_session_id("T1", "S1")
        self.assertEqual(len(self.registry.get_session("S1").messages), 1)

    def test_entries_without_session_are_dropped(self) -> None:
        self.assertFalse(self.router.on_entries("T1", [_user("early")]))
        self.assertFalse(self.router.on_reset("T1", [_user("early")]))
        self.assertEqual(self.registry.sessions, {})

    def test_entries_bootstrap_missing_session(self) -> None:
        self.router.on_session_id("T1", "S1")
        self.registry.remove_session("S1")
        self.assertTrue(self.router.on_entries("T1", [_user("recovered")]))
        self.assertEqual(len(self.registry.get_session("S1").messages), 1)

    def test_entries_append_and_reset_reloads(self) -> None:
        self.router.on_session_id("T1", "S1", [_user("one")])
        self.router.on_entries("T1", [_user("two")])
        self.assertEqual(len(self.registry.get_session("S1").messages), 2)
        self.router.on_reset("T1", [_user("rewritten")])
        self.assertEqual(len(self.registry.get_session("S1").messages), 1)

    def test_second_terminal_on_same_session_does_not_attach(self) -> None:
        self.router.register_terminal("T2", "/work/app")
        self.assertTrue(self.router.on_session_id("T1", "S1", [_user("one")]))
        self.assertFalse(self.router.on_session_id("T2", "S1"))
        self.assertEqual(self.router.attached_terminal("S1"), "T1")

        self.assertFalse(self.router.on_entries("T2", [_user("dup")]))
        self.assertFalse(self.router.on_reset("T2", [_user("dup")]))
        self.assertTrue(self.router.on_entries("T1", [_user("two")]))
        self.assertEqual(len(self.registry.get_session("S1").messages), 2)

    def test_non_owner_moving_on_keeps_owner_attachment(self) -> None:
        self.router.register_terminal("T2", "/work/app")
        self.router.on_session_id("T1", "S1")
        self.router.on_session_id("T2", "S1")
        self.router.on_session_id("T2", "S2")
        self.assertTrue(self.registry.has_session("S1"))
        self.assertTrue(self.registry.has_session("S2"))
        self.assertEqual(self.router.attached_terminal("S1"), "T1")
        self.assertEqual(self.router.attached_terminal("S2"), "T2")

    def test_hand_over_picks_remaining_bound_terminal(self) -> None:
        self.router.register_terminal("T2", "/work/app")
        self.router.on_session_id("T1", "S1")
        self.router.on_session_id("T2", "S1")
        self.assertIsNone(self.router.hand_over("S1"))
        self.router.remove_terminal("T1")
        self.assertEqual(self.router.hand_over("S1"), "T2")
        self.assertTrue(self.router.on_entries("T2", [_user("now owned")]))

    def test_remove_terminal_releases_attachment(self) -> None:
        self.router.on_session_id("T1", "S1")
        self.assertEqual(self.router.remove_terminal("T1"), "S1")
        self.assertIsNone(self.router.get_terminal("T1"))
        self.router.register_terminal("T1", "/work/app")
        self.assertTrue(self.router.on_session_id("T1", "S1"))


if __name__ == "__main__":
    unittest.main()
