from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


def _env(repo_root: Path) -> dict[str, str]:
    env = dict(os.environ)
    env.pop("TWITTERAPI_IO_KEY", None)

    existing_pp = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(repo_root)
    return env


def _events(log_path: Path) -> list[dict[str, object]]:
    out: list[dict[str, object]] = []
    for ln in log_path.read_text(encoding="utf-8").splitlines():
        if not ln.strip():
            continue
        try:
            out.append(json.loads(ln))
        except json.JSONDecodeError:
            continue
    return out


class TestCommandsWriteLog(unittest.TestCase):
    def test_fetch_creates_run_log_on_config_error(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]

        with tempfile.TemporaryDirectory() as td:
            out_dir = Path(td) / "out"
            missing_cfg = Path(td) / "missing_config.yaml"

            proc = subprocess.run(
                [
                    sys.executable,
                    "-m",
                    "airshark",
                    "fetch",
                    "--config",
                    str(missing_cfg),
                    "--out",
                    str(out_dir),
                ],
                cwd=repo_root,
                env=_env(repo_root),
                capture_output=True,
                text=True,
            )

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)

            log_path = out_dir / "run.log"
            self.assertTrue(log_path.exists())
            events = [e.get("event") for e in _events(log_path)]

        self.assertIn("run_command_started", events)
        self.assertIn("run_command_failed", events)

    def test_fetch_without_api_key_is_config_error(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]

        with tempfile.TemporaryDirectory() as td:
            out_dir = Path(td) / "out"
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text("{}", encoding="utf-8")

            proc = subprocess.run(
                [sys.executable, "-m", "airshark", "fetch", "--config", str(cfg_path), "--out", str(out_dir)],
                cwd=repo_root,
                env=_env(repo_root),
                capture_output=True,
                text=True,
            )

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)
            self.assertIn("TWITTERAPI_IO_KEY", proc.stderr)
            self.assertTrue((out_dir / "state.sqlite").exists())
            records = _events(out_dir / "run.log")

        loaded = [r for r in records if r.get("event") == "config_loaded"]
        self.assertEqual(len(loaded), 1)
        data = loaded[0]["data"]
        assert isinstance(data, dict)
        self.assertEqual(len(str(data["config_sha256"])), 64)

    def test_feed_reads_empty_cache(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]

        with tempfile.TemporaryDirectory() as td:
            out_dir = Path(td) / "out"
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text("feed:\n  page_size: 5\n", encoding="utf-8")

            proc = subprocess.run(
                [
                    sys.executable,
                    "-m",
                    "airshark",
                    "feed",
                    "--config",
                    str(cfg_path),
                    "--out",
                    str(out_dir),
                    "--hide-scam",
                    "--sort",
                    "most_likes",
                ],
                cwd=repo_root,
                env=_env(repo_root),
                capture_output=True,
                text=True,
            )

        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["posts"], [])
        self.assertFalse(payload["has_more"])
        self.assertIsNone(payload["next_cursor"])
        self.assertEqual(payload["newly_accepted_count"], 0)


if __name__ == "__main__":
    unittest.main()
