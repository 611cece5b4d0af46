from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from .config import RuntimeSecrets
from .config_schema import AppConfig
from .ingest import IngestionOrchestrator
from .post import Post
from .scheduler import QueryRotation
from .search_client import SearchClient, TwitterSearchClient
from .store import FeedStore


@dataclass(frozen=True)
class DryRunResult:
    query: str
    fetched_count: int
    accepted_count: int
    failure_kind: str | None
    example_post: dict[str, Any] | None


def _post_for_print(post: Post) -> dict[str, Any]:
    return {
        "id": post.id,
        "url": post.url,
        "author": post.author.user_name,
        "token": post.token,
        "quality_score": post.quality_score,
        "score_reasons": list(post.score_reasons),
        "is_suspicious": post.scam.is_suspicious,
        "matched_patterns": list(post.scam.matched_patterns),
        "expected_release_hint": post.expected_release_hint,
        "created_at": post.created_at.isoformat(),
    }


def run_dry_run(
    config: AppConfig,
    secrets: RuntimeSecrets | None,
    *,
    client: SearchClient | None = None,
) -> DryRunResult:
    """
    One fetch cycle for the first configured query into a throwaway in-memory store.
    """
    if client is None:
        if secrets is None:
            raise ValueError("secrets are required when no client is given")
        client = TwitterSearchClient.from_config(secrets.provider_api_key, config.provider)

    store = FeedStore(
        staleness=timedelta(days=config.retention.staleness_days),
        retention=timedelta(days=config.retention.retention_days),
        keep_unknown_tokens=config.retention.keep_unknown_tokens,
    )
    rotation = QueryRotation(config.querying.queries)
    orchestrator = IngestionOrchestrator(client, store, rotation)

    query = rotation.select_next_query()
    result = orchestrator.fetch_cycle(query)

    posts = sorted(store.snapshot(), key=lambda p: p.quality_score, reverse=True)
    example = _post_for_print(posts[0]) if posts else None

    return DryRunResult(
        query=query,
        fetched_count=result.fetched,
        accepted_count=result.accepted,
        failure_kind=result.failure_kind,
        example_post=example,
    )
