from __future__ import annotations

from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError
from .feed import FeedService, FilterOptions, get_feed
from .ingest import IngestionOrchestrator
from .normalize import normalize
from .post import Post
from .store import AcceptResult, FeedStore

__all__ = [
    "AcceptResult",
    "AppConfig",
    "ConfigError",
    "FeedService",
    "FeedStore",
    "FilterOptions",
    "IngestionOrchestrator",
    "Post",
    "config_sha256",
    "get_feed",
    "load_config",
    "normalize",
    "resolve_runtime_secrets",
]
