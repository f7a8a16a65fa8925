import json
import os
import tempfile
import time
import unittest
from pathlib import Path

from ccwebui.errors import InvalidSessionIdError, ProjectNotFoundError
from ccwebui.parsers.conversations import collect_session_records, load_conversation


def _line(session_id: str, uuid: str, timestamp: str, text: str, kind: str = "user") -> dict:
    return {
        "type": kind,
        "sessionId": session_id,
        "uuid": uuid,
        "timestamp": timestamp,
        "message": {"role": kind, "content": text},
    }


class ConversationLoaderTests(unittest.IsolatedAsyncioTestCase):
    def _project_dir(self) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        return Path(tmpdir.name)

    def _write(self, directory: Path, name: str, lines: list[dict], mtime: float | None = None) -> Path:
        path = directory / name
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    async def test_missing_session_returns_none(self) -> None:
        project = self._project_dir()
        self.assertIsNone(await load_conversation(project, "nope"))

    async def test_invalid_session_id_raises(self) -> None:
        project = self._project_dir()
        with self.assertRaises(InvalidSessionIdError):
            await load_conversation(project, "../secrets")

    async def test_missing_project_raises(self) -> None:
        project = self._project_dir()
        with self.assertRaises(ProjectNotFoundError):
            await load_conversation(project / "gone", "s1")

    async def test_duplicate_uuid_across_files_is_kept_once(self) -> None:
        project = self._project_dir()
        now = time.time()
        self._write(
            project,
            "s1.jsonl",
            [
                _line("s1", "u1", "2026-02-16T10:00:00Z", "question"),
                _line("s1", "a1", "2026-02-16T10:00:05Z", "draft answer", kind="assistant"),
            ],
            mtime=now - 60,
        )
        self._write(
            project,
            "s2.jsonl",
            [
                _line("s1", "a1", "2026-02-16T10:00:05Z", "final answer", kind="assistant"),
                _line("s1", "u2", "2026-02-16T10:01:00Z", "follow up"),
                _line("s2", "z1", "2026-02-16T11:00:00Z", "unrelated"),
            ],
            mtime=now,
        )

        conversation = await load_conversation(project, "s1")

        assert conversation is not None
        uuids = [message["uuid"] for message in conversation.messages]
        self.assertEqual(uuids, ["u1", "a1", "u2"])
        self.assertEqual(conversation.messages[1]["message"]["content"], "final answer")
        self.assertEqual(conversation.metadata.messageCount, 3)
        self.assertEqual(conversation.metadata.startTime.isoformat(), "2026-02-16T10:00:00+00:00")
        self.assertEqual(conversation.metadata.endTime.isoformat(), "2026-02-16T10:01:00+00:00")

    async def test_malformed_lines_do_not_fail_the_load(self) -> None:
        project = self._project_dir()
        path = self._write(
            project,
            "s1.jsonl",
            [
                _line("s1", "u0", "0001-01-01T00:00:00+05:00", "odd timestamp"),
                _line("s1", "u1", "2026-02-16T10:00:00Z", "hello"),
            ],
        )
        with path.open("a", encoding="utf-8") as handle:
            handle.write("[" * 200000 + "\n")

        conversation = await load_conversation(project, "s1")

        assert conversation is not None
        self.assertEqual([message["uuid"] for message in conversation.messages], ["u0", "u1"])
        self.assertEqual(conversation.metadata.startTime.isoformat(), "2026-02-16T10:00:00+00:00")

    async def test_records_without_uuid_are_kept(self) -> None:
        project = self._project_dir()
        self._write(
            project,
            "s1.jsonl",
            [
                {"type": "summary", "summary": "Overview", "leafUuid": "u1"},
                _line("s1", "u1", "2026-02-16T10:00:00Z", "hello"),
            ],
        )

        records = await collect_session_records(project, "s1")

        self.assertEqual(len(records), 2)
        self.assertIsNone(records[0].uuid)

    async def test_only_requested_session_is_returned(self) -> None:
        project = self._project_dir()
        self._write(
            project,
            "mixed.jsonl",
            [
                _line("s1", "u1", "2026-02-16T10:00:00Z", "mine"),
                _line("s2", "u2", "2026-02-16T10:00:01Z", "theirs"),
            ],
        )

        conversation = await load_conversation(project, "s1")

        assert conversation is not None
        self.assertEqual([message["sessionId"] for message in conversation.messages], ["s1"])


if __name__ == "__main__":
    unittest.main()
