from __future__ import annotations

import argparse
import json
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Sequence

from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .daemon import run_daemon
from .dry_run import run_dry_run
from .errors import ConfigError, ProviderError, StorageError
from .feed import FeedService, FilterOptions
from .ingest import IngestionOrchestrator
from .post import post_to_dict
from .rate_limit import HourlyRateLimiter
from .run_log import RunLogger
from .scheduler import QueryRotation
from .search_client import TwitterSearchClient
from .storage import SQLitePostCache
from .store import FeedStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="airshark")

    subparsers = parser.add_subparsers(dest="command", required=True)

    dry = subparsers.add_parser(
        "dry-run",
        help="Run one fetch cycle for the first query against a throwaway store.",
    )
    dry.add_argument("--config", required=True, help="Path to YAML config file.")
    dry.add_argument(
        "--offline",
        action="store_true",
        help="Run without network calls using a small stub dataset.",
    )
    dry.set_defaults(_handler=_cmd_dry_run)

    fetch = subparsers.add_parser(
        "fetch",
        help="Search every configured query once and persist accepted posts.",
    )
    _add_common_run_args(fetch)
    fetch.set_defaults(_handler=_cmd_fetch)

    feed = subparsers.add_parser(
        "feed",
        help="Print one page of the filtered, sorted feed as JSON.",
    )
    _add_common_run_args(feed)
    feed.add_argument(
        "--sort",
        choices=["most_recent", "most_likes", "most_retweets", "most_views"],
        default="most_recent",
    )
    feed.add_argument("--token", default=None, help="Token substring filter.")
    feed.add_argument("--search", default=None, help="Match text, author name, or handle.")
    feed.add_argument("--min-engagement", type=int, default=0, help="Minimum likes + retweets.")
    feed.add_argument("--date", type=date.fromisoformat, default=None, help="Only posts created on YYYY-MM-DD (UTC).")

    scam = feed.add_mutually_exclusive_group()
    scam.add_argument("--scam-only", action="store_true")
    scam.add_argument("--hide-scam", action="store_true")

    verified = feed.add_mutually_exclusive_group()
    verified.add_argument("--verified-only", action="store_true")
    verified.add_argument("--unverified-only", action="store_true")

    feed.add_argument("--hide-unknown", action="store_true", help="Hide posts with no extracted token.")
    feed.add_argument("--refresh", action="store_true", help="Fetch new posts before answering.")
    feed.add_argument("--cursor", default=None, help="Cursor from a previous page.")
    feed.set_defaults(_handler=_cmd_feed)

    watch = subparsers.add_parser(
        "watch",
        help="Keep fetching and sweeping on a schedule until interrupted.",
    )
    _add_common_run_args(watch)
    watch.set_defaults(_handler=_cmd_watch)

    return parser


def _add_common_run_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", required=True, help="Path to YAML config file.")
    p.add_argument("--out", required=True, help="Output directory for state and logs.")


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True))


_CommandBody = Callable[[AppConfig, FeedStore, SQLitePostCache, RunLogger], int]


def _build_store(cfg: AppConfig, cache: SQLitePostCache, log: RunLogger) -> FeedStore:
    store = FeedStore(
        staleness=timedelta(days=cfg.retention.staleness_days),
        retention=timedelta(days=cfg.retention.retention_days),
        keep_unknown_tokens=cfg.retention.keep_unknown_tokens,
        cache=cache,
        logger=log,
    )
    loaded = store.load_from_cache()
    log.info("cache_loaded", loaded=loaded, retained=len(store))
    return store


def _build_orchestrator(
    cfg: AppConfig, store: FeedStore, cache: SQLitePostCache, log: RunLogger
) -> IngestionOrchestrator:
    secrets = resolve_runtime_secrets(cfg)
    client = TwitterSearchClient.from_config(secrets.provider_api_key, cfg.provider)
    rotation = QueryRotation(
        cfg.querying.queries,
        fetch_interval=timedelta(minutes=cfg.scheduling.fetch_interval_minutes),
        logger=log,
    )
    orchestrator = IngestionOrchestrator(
        client,
        store,
        rotation,
        rate_limiter=HourlyRateLimiter(cfg.provider.max_calls_per_hour),
        max_incremental_cycles=cfg.scheduling.max_incremental_cycles,
        state_store=cache,
        logger=log,
    )
    orchestrator.load_state()
    return orchestrator


def _run_logged(args: argparse.Namespace, body: _CommandBody) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    log_path = out_dir / "run.log"
    with RunLogger.open(log_path, overwrite=False) as log:
        log.info(
            "run_command_started",
            command=args.command,
            config_path=str(args.config),
            out_dir=str(out_dir),
        )
        try:
            cfg = load_config(args.config)
            log.info(
                "config_loaded",
                config_sha256=config_sha256(cfg),
                api_key_env=cfg.provider.api_key_env,
                queries=len(cfg.querying.queries),
            )
            with SQLitePostCache.open(out_dir / "state.sqlite") as cache:
                store = _build_store(cfg, cache, log)
                return int(body(cfg, store, cache, log))
        except KeyboardInterrupt:
            log.info("run_command_interrupted")
            raise
        except Exception as e:
            log.exception("run_command_failed", exc=e)
            raise


def _cmd_dry_run(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)

    if bool(getattr(args, "offline", False)):
        from .offline import OfflineSearchClient

        result = run_dry_run(cfg, None, client=OfflineSearchClient())
    else:
        result = run_dry_run(cfg, resolve_runtime_secrets(cfg))

    print(f"fetched_count={result.fetched_count}")
    print(f"accepted_count={result.accepted_count}")
    print(f"query={result.query}")
    if result.failure_kind is not None:
        print(f"failure_kind={result.failure_kind}")
    print("example_post=")
    _print_json(result.example_post)

    return 0 if result.failure_kind is None else 3


def _cmd_fetch(args: argparse.Namespace) -> int:
    def body(cfg: AppConfig, store: FeedStore, cache: SQLitePostCache, log: RunLogger) -> int:
        orchestrator = _build_orchestrator(cfg, store, cache, log)
        accepted = orchestrator.run_initial_burst()
        log.info("fetch_command_completed", accepted=accepted, retained=len(store))

        print(f"accepted={accepted}")
        print(f"retained={len(store)}")
        print(f"tokens={len(store.representatives())}")
        print(f"run_log={Path(args.out) / 'run.log'}")
        return 0

    return _run_logged(args, body)


def _filter_options(args: argparse.Namespace) -> FilterOptions:
    return FilterOptions(
        show_scam_posts=not args.hide_scam,
        show_non_scam_posts=not args.scam_only,
        show_verified=not args.unverified_only,
        show_non_verified=not args.verified_only,
        show_unknown_tokens=not args.hide_unknown,
        search_text=args.search,
        min_engagement=max(0, int(args.min_engagement)),
        date_filter=args.date,
        token_filter=args.token,
        sort_by=args.sort,
    )


def _cmd_feed(args: argparse.Namespace) -> int:
    options = _filter_options(args)

    def body(cfg: AppConfig, store: FeedStore, cache: SQLitePostCache, log: RunLogger) -> int:
        orchestrator = _build_orchestrator(cfg, store, cache, log) if args.refresh else None
        service = FeedService(store, orchestrator, page_size=cfg.feed.page_size, logger=log)

        page = service.refresh(options) if args.refresh else service.query(options, cursor=args.cursor)
        _print_json(
            {
                "posts": [post_to_dict(p) for p in page.posts],
                "has_more": page.has_more,
                "next_cursor": page.next_cursor,
                "newly_accepted_count": page.newly_accepted_count,
            }
        )
        return 0

    return _run_logged(args, body)


def _cmd_watch(args: argparse.Namespace) -> int:
    def body(cfg: AppConfig, store: FeedStore, cache: SQLitePostCache, log: RunLogger) -> int:
        orchestrator = _build_orchestrator(cfg, store, cache, log)
        run_daemon(orchestrator, store, scheduling=cfg.scheduling, logger=log)
        return 0

    return _run_logged(args, body)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (ProviderError, StorageError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
