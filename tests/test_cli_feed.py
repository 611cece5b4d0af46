from __future__ import annotations

import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from airshark import cli
from airshark.config import RuntimeSecrets
from airshark.offline import OfflineSearchClient


def _run_feed(cfg_path: Path, out_dir: Path, client: OfflineSearchClient) -> dict[str, object]:
    buf = io.StringIO()
    with mock.patch.object(cli, "resolve_runtime_secrets", return_value=RuntimeSecrets("test-key")), mock.patch.object(
        cli.TwitterSearchClient, "from_config", return_value=client
    ), contextlib.redirect_stdout(buf):
        code = cli.main(["feed", "--config", str(cfg_path), "--out", str(out_dir), "--refresh"])

    assert code == 0, buf.getvalue()
    return json.loads(buf.getvalue())


class TestFeedRefresh(unittest.TestCase):
    def test_second_refresh_within_interval_does_not_fetch(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text("querying:\n  queries: [\"first q\", \"second q\"]\n", encoding="utf-8")
            out_dir = Path(td) / "out"

            first = OfflineSearchClient()
            page = _run_feed(cfg_path, out_dir, first)
            self.assertEqual(first.calls, ["first q", "second q"])
            self.assertEqual(page["newly_accepted_count"], 4)

            second = OfflineSearchClient()
            page = _run_feed(cfg_path, out_dir, second)
            self.assertEqual(second.calls, [])
            self.assertEqual(page["newly_accepted_count"], 0)
            posts = page["posts"]
            assert isinstance(posts, list)
            self.assertEqual(len(posts), 4)

            events = [
                json.loads(ln)["event"]
                for ln in (out_dir / "run.log").read_text(encoding="utf-8").splitlines()
                if ln.strip()
            ]
            self.assertEqual(events.count("fetch_state_loaded"), 2)


if __name__ == "__main__":
    unittest.main()
