from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from .config_schema import ProviderConfig
from .errors import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
)

_USER_AGENT = "airshark/0.1"
_READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class SearchPage:
    posts: Sequence[Any]
    has_next_page: bool = False
    next_cursor: str | None = None


class SearchClient(Protocol):
    def search(self, query: str, *, cursor: str | None = None) -> SearchPage: ...


class _SearchEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tweets: list[Any] | None = None
    data: list[Any] | None = None
    has_next_page: bool = False
    next_cursor: str | None = None


def parse_search_payload(payload: Any) -> SearchPage:
    """
    Validate the provider's JSON body. The post array may live under `tweets` or `data`.
    """
    if not isinstance(payload, dict):
        raise ProviderResponseError(f"Expected a JSON object, got {type(payload).__name__}")

    try:
        env = _SearchEnvelope.model_validate(payload)
    except ValidationError as e:
        raise ProviderResponseError(f"Malformed search response: {e}") from e

    items = env.tweets if env.tweets is not None else env.data
    if items is None:
        raise ProviderResponseError("Search response has no 'tweets' or 'data' array")

    cursor = (env.next_cursor or "").strip() or None
    return SearchPage(posts=items, has_next_page=bool(env.has_next_page and cursor), next_cursor=cursor)


class TwitterSearchClient:
    """
    Client for the twitterapi.io advanced search endpoint.

    One `search` call is one HTTP request; there are no in-call retries, the
    next scheduled cycle is the retry.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        query_type: str = "Latest",
        timeout_secs: float = 30,
        session: requests.Session | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        key = (api_key or "").strip()
        if not key:
            raise ProviderAuthError("API key must be a non-empty string")

        self._base_url = base_url
        self._query_type = query_type
        self._timeout = timeout_secs
        self._monotonic = monotonic
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "X-API-Key": key,
                "Accept": "application/json",
                "User-Agent": _USER_AGENT,
            }
        )

    @classmethod
    def from_config(
        cls,
        api_key: str,
        provider: ProviderConfig,
        *,
        session: requests.Session | None = None,
    ) -> "TwitterSearchClient":
        return cls(
            api_key,
            base_url=provider.base_url,
            query_type=provider.query_type,
            timeout_secs=provider.timeout_secs,
            session=session,
        )

    def close(self) -> None:
        self._session.close()

    def search(self, query: str, *, cursor: str | None = None) -> SearchPage:
        q = (query or "").strip()
        if not q:
            raise ValueError("query must be a non-empty string")

        params: dict[str, str] = {"query": q, "queryType": self._query_type}
        if cursor:
            params["cursor"] = cursor

        # Timeouts and connection errors propagate as requests exceptions.
        started = self._monotonic()
        resp = self._session.get(self._base_url, params=params, timeout=self._timeout, stream=True)
        try:
            _raise_for_status(resp)
            body = self._read_body(resp, deadline=started + self._timeout)
        finally:
            resp.close()

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ProviderResponseError(
                f"Search response is not valid JSON: {e}", status_code=resp.status_code
            ) from e

        return parse_search_payload(payload)

    def _read_body(self, resp: requests.Response, *, deadline: float) -> bytes:
        """
        `requests` applies its timeout per connect and per read; this caps the
        whole exchange, so a slow-dripping response cannot stall a cycle.
        """
        chunks: list[bytes] = []
        for chunk in resp.iter_content(chunk_size=_READ_CHUNK_BYTES):
            if self._monotonic() > deadline:
                raise requests.Timeout(f"Search response exceeded {self._timeout}s total")
            chunks.append(chunk)
        return b"".join(chunks)


def _raise_for_status(resp: requests.Response) -> None:
    code = resp.status_code
    if 200 <= code < 300:
        return

    detail = (resp.text or "")[:200]
    if code in (401, 403):
        raise ProviderAuthError(f"Search provider rejected credentials (HTTP {code}): {detail}", status_code=code)
    if code == 429:
        raise ProviderRateLimitError(f"Search provider rate limit exceeded (HTTP 429): {detail}", status_code=code)
    raise ProviderError(f"Search provider request failed (HTTP {code}): {detail}", status_code=code)
