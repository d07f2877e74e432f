import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from agent_gateway.domain.sessions import SessionMetadata
from agent_gateway.errors import InvalidSessionIdError
from agent_gateway.persistence.session_store import SessionStore
from agent_gateway.services.session_retention import SessionRetentionPolicy

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_700_000_000_000


def _meta(session_id: str, timestamp: int = NOW_MS, **kwargs) -> SessionMetadata:
    return SessionMetadata(id=session_id, timestamp=timestamp, operation_id=session_id, **kwargs)


class TestSessionStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "sessions"
        self.store = SessionStore(self.root, retention_days=7, clock=lambda: NOW_MS)

    def tearDown(self):
        self._tmp.cleanup()

    def test_generated_ids_are_valid_and_unique(self):
        ids = {self.store.generate_session_id() for _ in range(50)}
        self.assertEqual(len(ids), 50)
        for session_id in ids:
            self.assertEqual(self.store.session_path(session_id).parent, self.store.root)

    def test_traversal_ids_rejected_before_filesystem_access(self):
        bad_ids = ["../etc/passwd", "..", "ABCDEF" * 6, "a" * 31, "a" * 33, "g" * 32, "", "a" * 31 + "/"]
        with patch.object(Path, "read_text") as read_text, patch.object(Path, "mkdir") as mkdir:
            for bad in bad_ids:
                with self.assertRaises(InvalidSessionIdError):
                    self.store.get_prompt(bad)
                with self.assertRaises(ValueError):
                    self.store.save_response(bad, "x")
            read_text.assert_not_called()
            mkdir.assert_not_called()

    def test_create_and_read_back(self):
        session_id = self.store.generate_session_id()
        path = self.store.create_session(_meta(session_id, repo_full_name="octo/repo", issue_number=3))
        self.store.save_prompt(session_id, "prompt text")
        self.store.save_response(session_id, "response text")

        raw = json.loads((path / "metadata.json").read_text(encoding="utf-8"))
        self.assertEqual(raw["repoFullName"], "octo/repo")
        self.assertEqual(raw["operationId"], session_id)
        self.assertNotIn("branchName", raw)

        session = self.store.get_session(session_id)
        self.assertEqual(session.prompt, "prompt text")
        self.assertEqual(session.response, "response text")
        self.assertIsNone(session.trace_html_path)
        summary = session.summary()
        self.assertTrue(summary["hasPrompt"])
        self.assertFalse(summary["hasTraceJsonl"])

    def test_absent_artifacts_return_none(self):
        session_id = self.store.generate_session_id()
        self.assertIsNone(self.store.get_session(session_id))
        self.assertIsNone(self.store.get_prompt(session_id))
        self.store.create_session(_meta(session_id))
        self.assertIsNone(self.store.get_response(session_id))
        self.assertIsNone(self.store.get_trace_html(session_id))
        self.assertIsNone(self.store.get_trace_jsonl(session_id))

    def test_trace_artifacts(self):
        session_id = self.store.generate_session_id()
        self.store.create_session(_meta(session_id))
        self.store.save_trace_html(session_id, "<html></html>")
        self.store.save_trace_jsonl(session_id, '{"a": 1}\n')
        self.assertEqual(self.store.get_trace_html(session_id), "<html></html>")
        session = self.store.get_session(session_id)
        self.assertTrue(session.trace_jsonl_path.endswith("trace.jsonl"))

    def test_list_sessions_sorted_and_skips_corrupt(self):
        older, newer, corrupt = (self.store.generate_session_id() for _ in range(3))
        self.store.create_session(_meta(older, NOW_MS - 1000))
        self.store.create_session(_meta(newer, NOW_MS))
        (self.root / corrupt).mkdir()
        (self.root / corrupt / "metadata.json").write_text("{not json", encoding="utf-8")
        (self.root / "not-a-session").mkdir()

        with self.assertLogs("agent_gateway.persistence.session_store", level="WARNING"):
            listed = self.store.list_sessions()
        self.assertEqual([m.id for m in listed], [newer, older])

    def test_cleanup_removes_only_expired_sessions(self):
        old_id, fresh_id, corrupt_id = (self.store.generate_session_id() for _ in range(3))
        self.store.create_session(_meta(old_id, NOW_MS - 8 * DAY_MS))
        self.store.save_prompt(old_id, "old")
        self.store.create_session(_meta(fresh_id, NOW_MS - 6 * DAY_MS))
        (self.root / corrupt_id).mkdir()
        (self.root / corrupt_id / "metadata.json").write_text('{"id": 5}', encoding="utf-8")

        result = SessionRetentionPolicy(self.store).apply()

        self.assertEqual(result.pruned_old, 1)
        self.assertFalse((self.root / old_id).exists())
        self.assertTrue((self.root / fresh_id).exists())
        self.assertTrue((self.root / corrupt_id).exists())

    def test_delete_missing_session_is_false(self):
        self.assertFalse(self.store.delete_session(self.store.generate_session_id()))

    def test_directory_removed_mid_read_is_not_found(self):
        session_id = self.store.generate_session_id()
        self.store.create_session(_meta(session_id))
        self.store.delete_session(session_id)
        self.assertIsNone(self.store.get_prompt(session_id))
        self.assertIsNone(self.store.get_session(session_id))

    def test_save_after_sweep_does_not_recreate_session(self):
        session_id = self.store.generate_session_id()
        self.store.create_session(_meta(session_id, NOW_MS - 8 * DAY_MS))
        self.assertEqual(self.store.cleanup(), 1)

        with self.assertLogs("agent_gateway.persistence.session_store", level="WARNING"):
            saved = self.store.save_response(session_id, "late response")

        self.assertFalse(saved)
        self.assertFalse((self.root / session_id).exists())
        self.assertEqual(self.store.list_sessions(), [])


class TestSessionMetadata(unittest.TestCase):
    def test_round_trip_defaults_operation_id(self):
        meta = SessionMetadata.from_dict({"id": "a" * 32, "timestamp": 5})
        self.assertEqual(meta.operation_id, "a" * 32)
        self.assertEqual(meta.to_dict(), {"id": "a" * 32, "timestamp": 5, "operationId": "a" * 32})

    def test_rejects_missing_timestamp(self):
        with self.assertRaises(ValueError):
            SessionMetadata.from_dict({"id": "a" * 32, "timestamp": "yesterday"})


if __name__ == "__main__":
    unittest.main()
