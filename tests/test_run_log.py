from __future__ import annotations

import json
import tempfile
import threading
import unittest
from pathlib import Path

from airshark.run_log import RunLogger


def _read(path: Path) -> list[dict[str, object]]:
    return [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines() if x.strip()]


class TestRunLogger(unittest.TestCase):
    def test_bound_context_and_levels(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "logs" / "run.log"
            with RunLogger.open(path, session_id="s1") as log:
                log.debug("hidden")
                child = log.bind(query="(airdrop sol)")
                child.warning("fetch_cycle_failed", failure_kind="transient")
                log.info("plain")

            records = _read(path)

        self.assertEqual([r["event"] for r in records], ["fetch_cycle_failed", "plain"])
        self.assertEqual(records[0]["level"], "WARN")
        self.assertEqual(records[0]["query"], "(airdrop sol)")
        self.assertEqual(records[0]["session_id"], "s1")
        self.assertEqual(records[0]["data"], {"failure_kind": "transient"})
        self.assertNotIn("query", records[1])
        self.assertNotIn("data", records[1])

    def test_exception_records_traceback(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "run.log"
            with RunLogger.open(path) as log:
                try:
                    raise ValueError("bad value")
                except ValueError as e:
                    log.exception("run_command_failed", exc=e)

            record = _read(path)[0]

        self.assertEqual(record["level"], "ERROR")
        data = record["data"]
        assert isinstance(data, dict)
        self.assertEqual(data["error"]["type"], "ValueError")
        self.assertIn("bad value", data["error"]["traceback"])

    def test_append_mode_and_concurrent_writers(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "run.log"
            with RunLogger.open(path) as log:
                log.info("first")

            with RunLogger.open(path, overwrite=False) as log:
                threads = [
                    threading.Thread(target=lambda i=i: log.info("tick", i=i)) for i in range(20)
                ]
                for t in threads:
                    t.start()
                for t in threads:
                    t.join()

            records = _read(path)

        self.assertEqual(records[0]["event"], "first")
        self.assertEqual(len(records), 21)


if __name__ == "__main__":
    unittest.main()
