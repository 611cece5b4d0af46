from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from airshark.config import config_sha256, load_config, resolve_runtime_secrets
from airshark.config_schema import DEFAULT_QUERIES, AppConfig
from airshark.errors import ConfigError


_VALID_YAML = """\
provider:
  api_key_env: TWITTERAPI_IO_KEY
  query_type: Top
  timeout_secs: 20
  max_calls_per_hour: 12

querying:
  queries:
    - "(airdrop solana)"
    - "(AIRDROP   SOLANA)"
    - "(sol token airdrop)"

scheduling:
  fetch_interval_minutes: 15
  max_incremental_cycles: 5
  sweep_interval_minutes: 30

retention:
  staleness_days: 3
  retention_days: 30
  keep_unknown_tokens: false

feed:
  page_size: 50
"""


def _write(td: str, text: str) -> Path:
    path = Path(td) / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestConfig(unittest.TestCase):
    def test_load_config_ok(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = load_config(_write(td, _VALID_YAML))

        self.assertEqual(cfg.provider.query_type, "Top")
        self.assertEqual(cfg.provider.max_calls_per_hour, 12)
        self.assertEqual(cfg.querying.queries, ["(airdrop solana)", "(sol token airdrop)"])
        self.assertEqual(cfg.scheduling.fetch_interval_minutes, 15)
        self.assertEqual(cfg.retention.staleness_days, 3)
        self.assertFalse(cfg.retention.keep_unknown_tokens)
        self.assertEqual(cfg.feed.page_size, 50)

    def test_empty_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = load_config(_write(td, "{}"))

        self.assertEqual(cfg.querying.queries, list(DEFAULT_QUERIES))
        self.assertEqual(cfg.retention.staleness_days, 7)
        self.assertEqual(cfg.retention.retention_days, 30)
        self.assertEqual(cfg.scheduling.sweep_interval_minutes, 60)
        self.assertEqual(cfg.provider.timeout_secs, 30)

    def test_rejects_retention_shorter_than_staleness(self) -> None:
        bad = _VALID_YAML.replace("retention_days: 30", "retention_days: 2")
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigError) as ctx:
                load_config(_write(td, bad))
        self.assertIn("retention", str(ctx.exception))

    def test_rejects_unknown_keys_and_bad_values(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigError):
                load_config(_write(td, "provider:\n  surprise: 1\n"))
            with self.assertRaises(ConfigError) as ctx:
                load_config(_write(td, "provider:\n  timeout_secs: 0\n"))
            self.assertIn("provider.timeout_secs", str(ctx.exception))
            with self.assertRaises(ConfigError):
                load_config(_write(td, "querying:\n  queries: ['  ']\n"))
            with self.assertRaises(ConfigError):
                load_config(_write(td, "- just\n- a list\n"))

    def test_missing_file(self) -> None:
        with self.assertRaises(ConfigError):
            load_config("/nonexistent/airshark.yaml")

    def test_resolve_runtime_secrets_requires_env(self) -> None:
        cfg = AppConfig()

        with self.assertRaises(ConfigError):
            resolve_runtime_secrets(cfg, environ={})
        with self.assertRaises(ConfigError):
            resolve_runtime_secrets(cfg, environ={"TWITTERAPI_IO_KEY": "   "})

        secrets = resolve_runtime_secrets(cfg, environ={"TWITTERAPI_IO_KEY": " k "})
        self.assertEqual(secrets.provider_api_key, "k")

    def test_config_hash_is_stable(self) -> None:
        a = AppConfig()
        b = AppConfig.model_validate({})
        c = AppConfig.model_validate({"feed": {"page_size": 5}})
        self.assertEqual(config_sha256(a), config_sha256(b))
        self.assertNotEqual(config_sha256(a), config_sha256(c))


if __name__ == "__main__":
    unittest.main()
