from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Literal, Mapping

from .post import Author, Metrics, Post, ScamAssessment
from .text_analysis import (
    detect_scam_signals,
    extract_hashtags,
    extract_mentions,
    extract_release_hint,
    extract_token,
    score_quality,
)

if TYPE_CHECKING:
    from .run_log import RunLogger

DEFAULT_PROFILE_IMAGE = (
    "https://abs.twimg.com/sticky/default_profile_images/default_profile_normal.png"
)

RawShape = Literal["flat_counters", "public_metrics", "unknown"]

_TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"

# (flat key, nested key under public_metrics)
_METRIC_KEYS: dict[str, tuple[str, str]] = {
    "likes": ("likeCount", "like_count"),
    "retweets": ("retweetCount", "retweet_count"),
    "views": ("viewCount", "view_count"),
    "replies": ("replyCount", "reply_count"),
    "quotes": ("quoteCount", "quote_count"),
    "bookmarks": ("bookmarkCount", "bookmark_count"),
}

_URL_RE = re.compile(r"https?://\S+")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalized_text_key(text: str) -> str:
    """
    Canonical form of post text used only as a duplicate-content key.
    """
    value = (text or "").lower()
    value = _WS_RE.sub(" ", value)
    value = _URL_RE.sub("", value)
    value = _NON_WORD_RE.sub("", value)
    value = _WS_RE.sub(" ", value)
    return value.strip()


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value))
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _coerce_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e12:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    s = _coerce_str(value)
    if s is None:
        return None

    try:
        return datetime.strptime(s, _TWITTER_DATE_FORMAT)
    except ValueError:
        pass

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def raw_shape(item: Mapping[str, Any]) -> RawShape:
    """
    Classify a provider record by which metric layout it carries.
    """
    if any(flat in item for flat, _ in _METRIC_KEYS.values()):
        return "flat_counters"
    if isinstance(item.get("public_metrics"), Mapping):
        return "public_metrics"
    return "unknown"


def _metrics_from_item(item: Mapping[str, Any]) -> Metrics:
    nested = _mapping(item.get("public_metrics")) or _mapping(item.get("metrics"))

    values: dict[str, int] = {}
    for name, (flat_key, nested_key) in _METRIC_KEYS.items():
        flat = _coerce_int(item.get(flat_key))
        if flat is None:
            flat = _coerce_int(nested.get(nested_key))
        if flat is None:
            flat = _coerce_int(nested.get(name))
        values[name] = flat or 0

    return Metrics(**values)


def upgrade_profile_image(url: str | None) -> str:
    value = _coerce_str(url)
    if value is None:
        return DEFAULT_PROFILE_IMAGE
    if value.startswith("http:"):
        value = "https:" + value[len("http:") :]
    return value.replace("_normal.", "_bigger.")


def _author_from_item(item: Mapping[str, Any]) -> Author:
    raw = _mapping(item.get("author")) or _mapping(item.get("user"))
    public = _mapping(raw.get("public_metrics"))

    user_name = (
        _coerce_str(raw.get("userName"))
        or _coerce_str(raw.get("username"))
        or _coerce_str(raw.get("screen_name"))
        or "unknown"
    )
    display_name = _coerce_str(raw.get("name")) or user_name

    followers = _coerce_int(raw.get("followers"))
    if followers is None:
        followers = _coerce_int(public.get("followers_count"))
    following = _coerce_int(raw.get("following"))
    if following is None:
        following = _coerce_int(public.get("following_count"))

    verified = bool(
        raw.get("isVerified") is True
        or raw.get("isBlueVerified") is True
        or raw.get("verified") is True
    )

    return Author(
        user_name=user_name,
        display_name=display_name,
        profile_image_url=upgrade_profile_image(
            raw.get("profilePicture") or raw.get("profile_image_url")
        ),
        is_verified=verified,
        follower_count=followers or 0,
        following_count=following or 0,
        account_created_at=_coerce_datetime(raw.get("createdAt") or raw.get("created_at")),
    )


def _entity_terms(entities: Mapping[str, Any], key: str, fields: tuple[str, ...]) -> tuple[str, ...]:
    values = entities.get(key)
    if not isinstance(values, list):
        return ()

    out: list[str] = []
    seen: set[str] = set()
    for entry in values:
        term: str | None = None
        if isinstance(entry, str):
            term = _coerce_str(entry)
        elif isinstance(entry, Mapping):
            for f in fields:
                term = _coerce_str(entry.get(f))
                if term:
                    break
        if not term:
            continue
        term = term.lstrip("#@")
        k = term.casefold()
        if not term or k in seen:
            continue
        seen.add(k)
        out.append(term)
    return tuple(out)


def normalize(
    item: Mapping[str, Any],
    *,
    search_query: str | None = None,
    now: datetime | None = None,
    logger: RunLogger | None = None,
) -> Post:
    """
    Convert one provider record into a canonical Post.

    Never raises: a record that cannot be converted becomes a degraded stub
    (`is_degraded=True`) so one bad record never stalls a batch.
    """
    ts = now or datetime.now(timezone.utc)
    try:
        return _normalize(item, search_query=search_query, now=ts)
    except Exception as e:
        if logger is not None:
            shape = raw_shape(item) if isinstance(item, Mapping) else "unknown"
            logger.warning(
                "normalize_failed",
                error_type=type(e).__name__,
                error=str(e),
                shape=shape,
            )
        return degraded_post(item, search_query=search_query, now=ts)


def _normalize(item: Mapping[str, Any], *, search_query: str | None, now: datetime) -> Post:
    if not isinstance(item, Mapping):
        raise TypeError(f"expected a mapping, got {type(item).__name__}")

    post_id = _coerce_id(item.get("id")) or _coerce_id(item.get("id_str"))
    if not post_id:
        raise ValueError("record has no id")

    text = _coerce_str(item.get("text")) or _coerce_str(item.get("full_text"))
    if text is None:
        raise ValueError("record has no text")

    created_at = _coerce_datetime(item.get("createdAt") or item.get("created_at"))
    if created_at is None:
        raise ValueError("record has no parseable creation time")

    author = _author_from_item(item)
    metrics = _metrics_from_item(item)

    url = _coerce_str(item.get("url")) or _coerce_str(item.get("twitterUrl"))
    if url is None:
        url = f"https://x.com/{author.user_name}/status/{post_id}"

    entities = _mapping(item.get("entities"))
    hashtags = _entity_terms(entities, "hashtags", ("text", "tag")) or extract_hashtags(text)
    mentions = (
        _entity_terms(entities, "user_mentions", ("screen_name", "username"))
        or _entity_terms(entities, "mentions", ("username", "screen_name"))
        or extract_mentions(text)
    )

    quality = score_quality(text, author, metrics, now=now)

    return Post(
        id=post_id,
        url=url,
        text=text,
        created_at=created_at,
        author=author,
        metrics=metrics,
        token=extract_token(text),
        hashtags=hashtags,
        mentions=mentions,
        scam=detect_scam_signals(text),
        quality_score=quality.score,
        score_reasons=quality.reasons,
        expected_release_hint=extract_release_hint(text, today=now.date()),
        search_query=_coerce_str(search_query),
    )


def degraded_post(
    item: Any,
    *,
    search_query: str | None = None,
    now: datetime | None = None,
) -> Post:
    ts = now or datetime.now(timezone.utc)
    raw = item if isinstance(item, Mapping) else {}
    author_raw = _mapping(raw.get("author"))

    post_id = _coerce_id(raw.get("id")) or ""
    user_name = _coerce_str(author_raw.get("userName")) or _coerce_str(author_raw.get("username")) or "unknown"

    return Post(
        id=post_id,
        url=_coerce_str(raw.get("url")) or "",
        text=_coerce_str(raw.get("text")) or "",
        created_at=ts,
        author=Author(
            user_name=user_name,
            display_name=_coerce_str(author_raw.get("name")) or "Unknown User",
            profile_image_url=DEFAULT_PROFILE_IMAGE,
        ),
        metrics=Metrics(),
        token=None,
        scam=ScamAssessment(),
        quality_score=0.0,
        search_query=_coerce_str(search_query),
        is_degraded=True,
    )
