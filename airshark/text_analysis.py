from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Pattern

from .post import Author, Metrics, ScamAssessment

# --- token extraction -------------------------------------------------------

EXCLUDED_SYMBOLS = frozenset({"SOL"})

TOKEN_KEYWORDS = ("TOKEN", "AIRDROP", "PRESALE")

# Words that precede a keyword in ordinary prose ("the airdrop", "solana token")
# and are never a ticker on their own.
KEYWORD_STOPWORDS = frozenset(
    {
        "A",
        "AN",
        "AND",
        "ANY",
        "BIG",
        "COIN",
        "CRYPTO",
        "FIRST",
        "FOR",
        "FREE",
        "HUGE",
        "MEME",
        "MEMECOIN",
        "MY",
        "NEW",
        "NEXT",
        "OF",
        "OUR",
        "SOLANA",
        "THAT",
        "THE",
        "THIS",
        "TO",
        "TOKEN",
        "AIRDROP",
        "PRESALE",
        "YOUR",
    }
)

# $50, $2.5, $1,000, $10k, $3M
_MONETARY_RE = re.compile(r"\$\d+(?:[.,]\d+)*[kKmM]?(?![A-Za-z0-9])")
_DOLLAR_SYMBOL_RE = re.compile(r"\$([A-Za-z][A-Za-z0-9]{1,9})(?![A-Za-z0-9])")
_KEYWORD_SYMBOL_RES: tuple[Pattern[str], ...] = tuple(
    re.compile(rf"\b([A-Za-z][A-Za-z0-9]{{1,9}})\s+{kw}\b", re.IGNORECASE)
    for kw in TOKEN_KEYWORDS
)


def _is_excluded(symbol: str, *, keyword_rule: bool) -> bool:
    if symbol in EXCLUDED_SYMBOLS:
        return True
    return keyword_rule and symbol in KEYWORD_STOPWORDS


def extract_token(text: str) -> str | None:
    """
    Return the first plausible token symbol in `text`, uppercased, or None.

    Monetary amounts ($50, $2.5, $10k) are skipped rather than treated as
    tickers. Dollar-prefixed symbols win over the "<WORD> TOKEN|AIRDROP|PRESALE"
    fallback. The chain's own symbol (SOL) is never returned.
    """
    if not text:
        return None

    scrubbed = _MONETARY_RE.sub(" ", text)

    for m in _DOLLAR_SYMBOL_RE.finditer(scrubbed):
        symbol = m.group(1).upper()
        if not _is_excluded(symbol, keyword_rule=False):
            return symbol

    for regex in _KEYWORD_SYMBOL_RES:
        for m in regex.finditer(scrubbed):
            symbol = m.group(1).upper()
            if not _is_excluded(symbol, keyword_rule=True):
                return symbol

    return None


# --- hashtags / mentions ----------------------------------------------------

_HASHTAG_RE = re.compile(r"#([A-Za-z0-9_]+)")
_MENTION_RE = re.compile(r"(?<![A-Za-z0-9_])@([A-Za-z0-9_]{1,15})")


def _dedupe_in_order(values: list[str]) -> tuple[str, ...]:
    out: list[str] = []
    seen: set[str] = set()
    for item in values:
        key = item.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return tuple(out)


def extract_hashtags(text: str) -> tuple[str, ...]:
    return _dedupe_in_order(_HASHTAG_RE.findall(text or ""))


def extract_mentions(text: str) -> tuple[str, ...]:
    return _dedupe_in_order(_MENTION_RE.findall(text or ""))


# --- scam signals -----------------------------------------------------------


@dataclass(frozen=True)
class ScamRule:
    label: str
    matches: Callable[[str], bool]


def _regex_rule(label: str, pattern: str) -> ScamRule:
    compiled = re.compile(pattern, re.IGNORECASE | re.DOTALL)
    return ScamRule(label=label, matches=lambda text: compiled.search(text) is not None)


MAX_EXCLAMATION_MARKS = 2
MAX_EMOJI = 10
MAX_CAPS_WORD_RATIO = 0.5

_EMOJI_RE = re.compile(
    "[\U0001F300-\U0001F6FF\U0001F900-\U0001F9FF\U0001FA70-\U0001FAFF☀-➿]"
)


def _too_many_exclamations(text: str) -> bool:
    return text.count("!") > MAX_EXCLAMATION_MARKS


def _too_many_emoji(text: str) -> bool:
    return len(_EMOJI_RE.findall(text)) > MAX_EMOJI


def _too_much_caps(text: str) -> bool:
    words = text.split()
    if not words:
        return False
    caps = [w for w in words if len(w) > 2 and w.isupper()]
    return len(caps) / len(words) > MAX_CAPS_WORD_RATIO


SCAM_RULES: tuple[ScamRule, ...] = (
    _regex_rule("DM solicitation", r"\bsend\b.*\bdms?\b|\bdms?\b.*\bme\b|\bmessage me\b"),
    _regex_rule("Wallet connection request", r"connect.*wallet"),
    _regex_rule("Wallet validation/sync request", r"(?:validate|verify|sync).*wallet"),
    _regex_rule("Urgency-based language", r"\burgent|\bhurry\b|limited time|don'?t miss out"),
    _regex_rule("Urgent claim messaging", r"\bclaim\b.*\bnow\b|\blast\b.*\bchance\b"),
    _regex_rule("Artificial scarcity", r"\bonly\b.*\d+.*\b(?:left|spots?)\b"),
    _regex_rule("FOMO tactics", r"\bfirst\b.*\d+.*\busers\b|giveaway.*\bfirst \d+"),
    _regex_rule("Send-to-receive scheme", r"\bsend\b.*\b(?:receive|get back)\b|deposit.*withdraw"),
    _regex_rule("Link-in-bio redirection", r"click (?:my|the) (?:bio|link)"),
    _regex_rule("Multiplier promise", r"\b\d+x\b"),
    _regex_rule(
        "Percentage return promise",
        r"\d+(?:\.\d+)?%\s*(?:apy\b|apr\b|returns?\b|profits?\b|gains?\b|roi\b|daily\b|per day\b)"
        r"|\b(?:earn|get|make|guaranteed?)\s+(?:up to\s+)?\d+(?:\.\d+)?%",
    ),
    ScamRule(label="Excessive exclamation marks", matches=_too_many_exclamations),
    ScamRule(label="Excessive emoji", matches=_too_many_emoji),
    ScamRule(label="Excessive capitalization", matches=_too_much_caps),
)


def detect_scam_signals(text: str) -> ScamAssessment:
    """
    Run every scam rule against `text` and report all labels that matched.
    """
    body = text or ""
    matched = tuple(rule.label for rule in SCAM_RULES if rule.matches(body))
    return ScamAssessment(is_suspicious=bool(matched), matched_patterns=matched)


# --- quality score ----------------------------------------------------------

QUALITY_WEIGHTS: dict[str, float] = {
    "account_age": 0.20,
    "followers": 0.30,
    "engagement": 0.20,
    "verified": 0.15,
    "content": 0.15,
}

CONTENT_RULES: tuple[tuple[int, Pattern[str]], ...] = (
    (10, re.compile(r"whitelist", re.IGNORECASE)),
    (10, re.compile(r"official", re.IGNORECASE)),
    (10, re.compile(r"verified", re.IGNORECASE)),
    (15, re.compile(r"\$[A-Za-z]+")),
    (15, re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}")),
    (10, re.compile(r"\d+:\d+")),
    (10, re.compile(r"https://", re.IGNORECASE)),
)


@dataclass(frozen=True)
class QualityAssessment:
    score: float
    reasons: tuple[str, ...]


def _cap(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def content_quality_score(text: str) -> float:
    body = text or ""
    points = sum(p for p, regex in CONTENT_RULES if regex.search(body))
    return _cap(points)


def score_quality(
    text: str,
    author: Author,
    metrics: Metrics,
    *,
    now: datetime | None = None,
) -> QualityAssessment:
    """
    Weighted 0-100 composite of account age, reach, engagement, verification
    and content signals. Advisory only: used as the representative tie-break.
    """
    ts = now or datetime.now(timezone.utc)

    age_days = 0.0
    if author.account_created_at is not None:
        age_days = max(0.0, (ts - author.account_created_at).total_seconds() / 86400.0)
    age_score = _cap(age_days / 365.0 * 100.0)

    followers = max(0, int(author.follower_count))
    follower_score = _cap(followers / 10000.0 * 100.0)

    engagement = metrics.likes + metrics.retweets + metrics.replies
    rate = (engagement / followers) * 100.0 if followers > 0 else 0.0
    engagement_score = _cap(rate * 20.0)

    verified_score = 100.0 if author.is_verified else 0.0
    content_score = content_quality_score(text)

    total = (
        age_score * QUALITY_WEIGHTS["account_age"]
        + follower_score * QUALITY_WEIGHTS["followers"]
        + engagement_score * QUALITY_WEIGHTS["engagement"]
        + verified_score * QUALITY_WEIGHTS["verified"]
        + content_score * QUALITY_WEIGHTS["content"]
    )

    reasons: list[str] = []
    if age_score > 50:
        reasons.append("Established account")
    if follower_score > 50:
        reasons.append("High follower count")
    if engagement_score > 50:
        reasons.append("Good engagement")
    if verified_score > 0:
        reasons.append("Verified account")
    if content_score > 50:
        reasons.append("High quality content")

    return QualityAssessment(score=round(_cap(total), 4), reasons=tuple(reasons))


# --- release hints ----------------------------------------------------------

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

RELEASE_KEYWORDS = ("launching", "release", "available", "claim", "distribution")
_WINDOW_WORDS = 6

_MONTH_ALT = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_ORDINAL = r"(?:st|nd|rd|th)?"

_DATE_RE = re.compile(
    rf"\b\d{{1,2}}[/\-.]\d{{1,2}}[/\-.]\d{{2,4}}\b"
    rf"|\b{_MONTH_ALT}\.? \d{{1,2}}{_ORDINAL},? \d{{4}}\b"
    rf"|\b\d{{1,2}}{_ORDINAL} {_MONTH_ALT}\.?,? \d{{4}}\b",
    re.IGNORECASE,
)

# Looser shapes only trusted right after "snapshot" or a release keyword.
_NEARBY_DATE_RE = re.compile(
    rf"\bQ[1-4],? 20\d{{2}}\b"
    rf"|\b{_MONTH_ALT}\.? \d{{1,2}}{_ORDINAL}\b"
    rf"|\b\d{{1,2}}{_ORDINAL} {_MONTH_ALT}\b"
    rf"|\b\d{{1,2}}/\d{{1,2}}\b",
    re.IGNORECASE,
)

_MONTH_WORD_RES = tuple(
    re.compile(rf"\b(?:{name}|{name.upper()})\b") for name in MONTH_NAMES
)


def _search_window(words: list[str], marker: str) -> str | None:
    for i, word in enumerate(words):
        if marker not in word.casefold():
            continue
        window = " ".join(words[i : i + _WINDOW_WORDS])
        m = _DATE_RE.search(window) or _NEARBY_DATE_RE.search(window)
        if m:
            return m.group(0)
    return None


def extract_release_hint(text: str, *, today: date | None = None) -> str | None:
    """
    Best-effort guess at when a token launches or an airdrop is claimable.

    Order: explicit date anywhere, a date shortly after "snapshot", a date
    shortly after a release keyword, then the next upcoming month mentioned
    by name (reported with the current year).
    """
    body = text or ""
    if not body.strip():
        return None

    m = _DATE_RE.search(body)
    if m:
        return m.group(0)

    words = body.split()
    lowered = body.casefold()

    if "snapshot" in lowered:
        hit = _search_window(words, "snapshot")
        if hit:
            return hit

    for keyword in RELEASE_KEYWORDS:
        if keyword in lowered:
            hit = _search_window(words, keyword)
            if hit:
                return hit

    day = today or datetime.now(timezone.utc).date()
    start = day.month - 1
    for offset in range(12):
        idx = (start + offset) % 12
        if _MONTH_WORD_RES[idx].search(body):
            return f"{MONTH_NAMES[idx]} {day.year}"

    return None
