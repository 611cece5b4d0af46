from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_QUERIES: tuple[str, ...] = (
    "(airdrop solana)",
    "(airdrop sol)",
    "(air drop solana)",
    "(solana airdrop)",
    "(sol airdrop)",
    "(solana air drop)",
    "(airdrop $sol)",
    "(airdrop $solana)",
    "(solana token airdrop)",
    "(sol token airdrop)",
)


def _normalize_query_list(values: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()

    for item in values:
        query = " ".join((item or "").split())
        if not query:
            continue
        key = query.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(query)

    if not out:
        raise ValueError("must contain at least one non-empty query")
    return out


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api_key_env: str = "TWITTERAPI_IO_KEY"
    base_url: str = "https://api.twitterapi.io/twitter/tweet/advanced_search"
    query_type: Literal["Latest", "Top"] = "Latest"
    timeout_secs: PositiveInt = 30
    max_calls_per_hour: PositiveInt = 30

    @field_validator("api_key_env")
    @classmethod
    def _api_key_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        url = (v or "").strip()
        if not url.startswith(("https://", "http://")):
            raise ValueError("must be an http(s) URL")
        return url


class QueryingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    queries: list[str] = Field(default_factory=lambda: list(DEFAULT_QUERIES))

    @field_validator("queries")
    @classmethod
    def _normalize_queries(cls, v: list[str]) -> list[str]:
        return _normalize_query_list(v)


class SchedulingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fetch_interval_minutes: PositiveInt = 10
    max_incremental_cycles: PositiveInt = 10
    sweep_interval_minutes: PositiveInt = 60


class RetentionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    staleness_days: PositiveInt = 7
    retention_days: PositiveInt = 30
    keep_unknown_tokens: bool = True

    @model_validator(mode="after")
    def _retention_must_cover_staleness(self) -> "RetentionConfig":
        if self.retention_days < self.staleness_days:
            raise ValueError("retention_days must be >= staleness_days")
        return self


class FeedConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    page_size: PositiveInt = 20


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    querying: QueryingConfig = Field(default_factory=QueryingConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
