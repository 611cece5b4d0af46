from __future__ import annotations

import unittest

from airshark.config_schema import AppConfig
from airshark.dry_run import run_dry_run
from airshark.errors import ProviderAuthError
from airshark.offline import OfflineSearchClient
from airshark.search_client import SearchPage


class _FailingClient:
    def search(self, query: str, *, cursor: str | None = None) -> SearchPage:
        raise ProviderAuthError("bad key", status_code=401)


class TestDryRun(unittest.TestCase):
    def test_offline_dry_run_uses_first_query(self) -> None:
        cfg = AppConfig.model_validate({"querying": {"queries": ["first q", "second q"]}})
        client = OfflineSearchClient()

        result = run_dry_run(cfg, None, client=client)

        self.assertEqual(client.calls, ["first q"])
        self.assertEqual(result.query, "first q")
        self.assertEqual(result.fetched_count, 5)
        # The weaker $BONK post loses to the official one.
        self.assertEqual(result.accepted_count, 4)
        self.assertIsNone(result.failure_kind)
        assert result.example_post is not None
        self.assertEqual(result.example_post["token"], "BONK")
        self.assertIn("Verified account", result.example_post["score_reasons"])

    def test_hidden_unknown_tokens_are_rejected(self) -> None:
        cfg = AppConfig.model_validate({"retention": {"keep_unknown_tokens": False}})
        result = run_dry_run(cfg, None, client=OfflineSearchClient())
        self.assertEqual(result.accepted_count, 2)

    def test_provider_failure_is_reported_not_raised(self) -> None:
        result = run_dry_run(AppConfig(), None, client=_FailingClient())
        self.assertEqual(result.fetched_count, 0)
        self.assertEqual(result.failure_kind, "auth")
        self.assertIsNone(result.example_post)

    def test_requires_secrets_without_client(self) -> None:
        with self.assertRaises(ValueError):
            run_dry_run(AppConfig(), None)


if __name__ == "__main__":
    unittest.main()
