from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence

from .search_client import SearchPage

_TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def _author(
    user_name: str,
    name: str,
    *,
    followers: int,
    verified: bool = False,
    created_at: str = "Mon Mar 01 12:00:00 +0000 2021",
) -> dict[str, Any]:
    return {
        "userName": user_name,
        "name": name,
        "profilePicture": f"http://pbs.twimg.com/profile_images/{user_name}_normal.jpg",
        "isBlueVerified": verified,
        "followers": followers,
        "following": 180,
        "createdAt": created_at,
    }


# (id, hours before now, text, author, likes, retweets, views)
_OFFLINE_ROWS: tuple[tuple[str, int, str, dict[str, Any], int, int, int], ...] = (
    (
        "1800000000000000001",
        2,
        "Official $BONK airdrop snapshot on 12/06/2025. Whitelist check at https://bonk.example/claim",
        _author("bonk_inu", "BONK", followers=250000, verified=True, created_at="Sat Dec 24 09:00:00 +0000 2022"),
        1200,
        340,
        98000,
    ),
    (
        "1800000000000000002",
        3,
        "Small thread on the $BONK airdrop, rules inside",
        _author("solana_scout", "Solana Scout", followers=800),
        14,
        2,
        900,
    ),
    (
        "1800000000000000003",
        5,
        "DM me to claim now!!! Connect your wallet, only 5 left. 10x guaranteed",
        _author("free_sol_gifts", "FREE SOL", followers=40),
        3,
        1,
        120,
    ),
    (
        "1800000000000000004",
        6,
        "Something big is coming for the solana ecosystem, stay tuned",
        _author("chain_watcher", "Chain Watcher", followers=5200),
        40,
        7,
        3100,
    ),
    (
        "1800000000000000005",
        8,
        "JUPITER airdrop distribution launching March 3, 2026 for early users",
        _author("jup_news", "Jupiter News", followers=61000, verified=True),
        530,
        120,
        41000,
    ),
)


def default_offline_items(now: datetime) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for post_id, hours_ago, text, author, likes, retweets, views in _OFFLINE_ROWS:
        created = now - timedelta(hours=hours_ago)
        out.append(
            {
                "type": "tweet",
                "id": post_id,
                "url": f"https://x.com/{author['userName']}/status/{post_id}",
                "text": text,
                "createdAt": created.strftime(_TWITTER_DATE_FORMAT),
                "likeCount": likes,
                "retweetCount": retweets,
                "viewCount": views,
                "replyCount": likes // 10,
                "quoteCount": retweets // 10,
                "bookmarkCount": likes // 20,
                "author": dict(author),
            }
        )
    return out


@dataclass
class OfflineSearchClient:
    """
    Network-free search client for dry-run smoke checks.

    Returns the same deterministic records for every query, timestamped relative
    to the clock so they pass the staleness window.
    """

    items: Sequence[dict[str, Any]] | None = None
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    calls: list[str] = field(default_factory=list)

    def search(self, query: str, *, cursor: str | None = None) -> SearchPage:
        _ = cursor
        self.calls.append(query)
        items = list(self.items) if self.items is not None else default_offline_items(self.clock())
        return SearchPage(posts=items, has_next_page=False, next_cursor=None)
