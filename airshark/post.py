from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence


@dataclass(frozen=True)
class Author:
    user_name: str
    display_name: str
    profile_image_url: str
    is_verified: bool = False
    follower_count: int = 0
    following_count: int = 0
    account_created_at: datetime | None = None


@dataclass(frozen=True)
class Metrics:
    likes: int = 0
    retweets: int = 0
    views: int = 0
    replies: int = 0
    quotes: int = 0
    bookmarks: int = 0

    @property
    def engagement(self) -> int:
        return self.likes + self.retweets


@dataclass(frozen=True)
class ScamAssessment:
    is_suspicious: bool = False
    matched_patterns: Sequence[str] = ()


@dataclass(frozen=True)
class Post:
    """
    Canonical post record owned by the pipeline.

    Everything derived (token, scam assessment, score) is computed once at
    normalization time and never updated afterwards.
    """

    id: str
    url: str
    text: str
    created_at: datetime
    author: Author
    metrics: Metrics = field(default_factory=Metrics)

    token: str | None = None
    hashtags: Sequence[str] = ()
    mentions: Sequence[str] = ()
    scam: ScamAssessment = field(default_factory=ScamAssessment)
    quality_score: float = 0.0
    score_reasons: Sequence[str] = ()
    expected_release_hint: str | None = None

    search_query: str | None = None
    ingested_at: datetime | None = None
    is_degraded: bool = False


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def post_to_dict(post: Post) -> dict[str, Any]:
    return {
        "id": post.id,
        "url": post.url,
        "text": post.text,
        "created_at": _iso(post.created_at),
        "author": {
            "user_name": post.author.user_name,
            "display_name": post.author.display_name,
            "profile_image_url": post.author.profile_image_url,
            "is_verified": post.author.is_verified,
            "follower_count": post.author.follower_count,
            "following_count": post.author.following_count,
            "account_created_at": _iso(post.author.account_created_at),
        },
        "metrics": {
            "likes": post.metrics.likes,
            "retweets": post.metrics.retweets,
            "views": post.metrics.views,
            "replies": post.metrics.replies,
            "quotes": post.metrics.quotes,
            "bookmarks": post.metrics.bookmarks,
        },
        "token": post.token,
        "hashtags": list(post.hashtags),
        "mentions": list(post.mentions),
        "scam": {
            "is_suspicious": post.scam.is_suspicious,
            "matched_patterns": list(post.scam.matched_patterns),
        },
        "quality_score": post.quality_score,
        "score_reasons": list(post.score_reasons),
        "expected_release_hint": post.expected_release_hint,
        "search_query": post.search_query,
        "ingested_at": _iso(post.ingested_at),
        "is_degraded": post.is_degraded,
    }


def post_from_dict(data: Mapping[str, Any]) -> Post:
    """
    Rebuild a Post from `post_to_dict` output.

    Raises KeyError/ValueError on records that were not produced by `post_to_dict`.
    """
    author = data["author"]
    metrics = data.get("metrics") or {}
    scam = data.get("scam") or {}

    created_at = _parse_iso(data["created_at"])
    if created_at is None:
        raise ValueError("created_at is required")

    return Post(
        id=str(data["id"]),
        url=str(data.get("url") or ""),
        text=str(data.get("text") or ""),
        created_at=created_at,
        author=Author(
            user_name=str(author.get("user_name") or ""),
            display_name=str(author.get("display_name") or ""),
            profile_image_url=str(author.get("profile_image_url") or ""),
            is_verified=bool(author.get("is_verified")),
            follower_count=int(author.get("follower_count") or 0),
            following_count=int(author.get("following_count") or 0),
            account_created_at=_parse_iso(author.get("account_created_at")),
        ),
        metrics=Metrics(
            likes=int(metrics.get("likes") or 0),
            retweets=int(metrics.get("retweets") or 0),
            views=int(metrics.get("views") or 0),
            replies=int(metrics.get("replies") or 0),
            quotes=int(metrics.get("quotes") or 0),
            bookmarks=int(metrics.get("bookmarks") or 0),
        ),
        token=data.get("token") or None,
        hashtags=tuple(data.get("hashtags") or ()),
        mentions=tuple(data.get("mentions") or ()),
        scam=ScamAssessment(
            is_suspicious=bool(scam.get("is_suspicious")),
            matched_patterns=tuple(scam.get("matched_patterns") or ()),
        ),
        quality_score=float(data.get("quality_score") or 0.0),
        score_reasons=tuple(data.get("score_reasons") or ()),
        expected_release_hint=data.get("expected_release_hint") or None,
        search_query=data.get("search_query") or None,
        ingested_at=_parse_iso(data.get("ingested_at")),
        is_degraded=bool(data.get("is_degraded")),
    )
