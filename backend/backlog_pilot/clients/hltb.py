"""HowLongToBeat client — main-story completion times.

The site has no public API. Its web bundle is the contract: the search
endpoint path is read out of the Next.js script chunks and an auth token
is requested from ``{endpoint}/init``. Both are cached together for an
hour and rediscovered when stale or rejected.

Every public entry point degrades to ``None``; a completion-time lookup
must never fail a caller's sync batch.
"""

import httpx
import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from backlog_pilot.clients.base import ICompletionTimeProvider

logger = logging.getLogger(__name__)


BASE_URL = "https://howlongtobeat.com"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Script chunks referenced from the homepage, in page order.
SCRIPT_SRC_PATTERN = re.compile(r'src="(/_next/static/chunks/[^"]+\.js)"')

# Client-side search call inside a bundle, e.g.
#   fetch("/api/seek/abc123", {method: "POST", ...
# Group 1 is the endpoint path.
FETCH_POST_PATTERN = re.compile(
    r"""fetch\s*\(\s*["']([^"']*/api/[a-zA-Z0-9_/]+)["']\s*,\s*\{[^}]*method:\s*["']POST["']""",
    re.IGNORECASE,
)

_LETTER_DIGIT_BOUNDARY = re.compile(r"(?<=[^\W\d_])(?=\d)|(?<=\d)(?=[^\W\d_])")
_QUALIFIER_PATTERN = re.compile(r"\b(?:edition|enhanced|complete|ultimate|definitive)\b", re.IGNORECASE)
_YEAR_PATTERN = re.compile(r"\(\d{4}\)")


# ── Discovery cache ──────────────────────────────────────────────

@dataclass
class HltbConfig:
    search_endpoint: str
    auth_token: str
    discovered_at: float


class HltbConfigCache:
    """Process-scoped holder for the discovered endpoint + token pair."""

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._config: Optional[HltbConfig] = None

    def get(self) -> Optional[HltbConfig]:
        """Cached config if still within its TTL."""
        if self._config and self._clock() - self._config.discovered_at < self.ttl_seconds:
            return self._config
        return None

    def store(self, search_endpoint: str, auth_token: str) -> HltbConfig:
        self._config = HltbConfig(search_endpoint, auth_token, self._clock())
        return self._config

    def invalidate(self) -> None:
        self._config = None


# ── Title helpers ────────────────────────────────────────────────

def normalize_search_terms(title: str) -> list[str]:
    """Turn a store title into search terms.

    Keeps letters, digits and spaces, splits letter/digit runs
    ("Halo3" -> "Halo 3") and collapses whitespace.
    """
    kept = "".join(ch for ch in title if ch.isalnum() or ch == " ")
    return _LETTER_DIGIT_BOUNDARY.sub(" ", kept).split()


def has_edition_qualifier(title: str) -> bool:
    return bool(_QUALIFIER_PATTERN.search(title) or _YEAR_PATTERN.search(title))


def strip_edition_qualifiers(title: str) -> str:
    """Drop edition words and "(YYYY)" years: "Game: Edition (2020)" -> "Game:"."""
    cleaned = _YEAR_PATTERN.sub(" ", title)
    cleaned = _QUALIFIER_PATTERN.sub(" ", cleaned)
    return " ".join(cleaned.split())


def seconds_to_hours(seconds: float) -> float:
    """Seconds to hours, one decimal place."""
    return math.floor(seconds / 360 + 0.5) / 10


# ── Client ───────────────────────────────────────────────────────

class HltbClient(ICompletionTimeProvider):
    """Scraping client for HowLongToBeat search."""

    RESULT_COUNT = 2

    def __init__(
        self,
        base_url: str = BASE_URL,
        cache: Optional[HltbConfigCache] = None,
        timeout: float = 10.0,
        short_result_hours: Optional[float] = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache = cache or HltbConfigCache()
        self.timeout = timeout
        # Results shorter than this are treated as a likely mis-rank
        # when a longer second result exists. Approximation, not ground truth.
        self.short_result_hours = short_result_hours
        self._transport = transport
        self._clock = clock

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT, "Referer": self.base_url},
            transport=self._transport,
            follow_redirects=True,
        )

    def _absolute(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    # ── Discovery ────────────────────────────────────────────────

    async def get_config(self) -> Optional[HltbConfig]:
        """Cached config, or a fresh discovery when stale/absent."""
        return self.cache.get() or await self.discover_config()

    async def discover_config(self) -> Optional[HltbConfig]:
        """Find the search endpoint and auth token. None on any failure."""
        try:
            async with self._http() as client:
                endpoint = await self._find_search_endpoint(client)
                if not endpoint:
                    logger.warning("HLTB discovery: no script exposes a POST /api/ search call")
                    return None

                token = await self._fetch_auth_token(client, endpoint)
                if not token:
                    logger.warning(f"HLTB discovery: no auth token from {endpoint}/init")
                    return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"HLTB discovery failed: {e}")
            return None

        logger.info(f"HLTB search endpoint discovered: {endpoint}")
        return self.cache.store(endpoint, token)

    async def _find_search_endpoint(self, client: httpx.AsyncClient) -> Optional[str]:
        """Scan script chunks in page order, stop at the first match."""
        resp = await client.get(f"{self.base_url}/")
        resp.raise_for_status()

        script_paths = list(dict.fromkeys(SCRIPT_SRC_PATTERN.findall(resp.text)))
        for path in script_paths:
            script = await client.get(self._absolute(path))
            if script.status_code != 200:
                continue
            match = FETCH_POST_PATTERN.search(script.text)
            if match:
                return match.group(1)
        return None

    async def _fetch_auth_token(self, client: httpx.AsyncClient, endpoint: str) -> Optional[str]:
        now_ms = int(self._clock() * 1000)
        resp = await client.get(self._absolute(f"{endpoint.rstrip('/')}/init"), params={"t": now_ms})
        resp.raise_for_status()
        return resp.json().get("token") or None

    # ── Search ───────────────────────────────────────────────────

    async def search(self, config: HltbConfig, title: str) -> Optional[float]:
        """Main-story hours for the best match of ``title``."""
        terms = normalize_search_terms(title)
        if not terms:
            return None

        async with self._http() as client:
            resp = await client.post(
                self._absolute(config.search_endpoint),
                json=self._build_payload(terms),
                headers={"x-auth-token": config.auth_token},
            )

        if resp.status_code in (401, 403, 404):
            # Endpoint rotated or token expired, force rediscovery next time
            logger.info(f"HLTB search rejected ({resp.status_code}), invalidating discovery cache")
            self.cache.invalidate()
            return None
        if resp.status_code >= 400:
            logger.warning(f"HLTB search for {title!r} returned {resp.status_code}")
            return None

        chosen = self._pick_result(resp.json().get("data") or [])
        if not chosen or not chosen.get("comp_main"):
            return None
        return seconds_to_hours(chosen["comp_main"])

    def _pick_result(self, results: list[dict]) -> Optional[dict]:
        """First result, unless it looks like a mis-ranked short entry."""
        if not results:
            return None
        first = results[0]
        if self.short_result_hours is None or len(results) < 2:
            return first

        threshold = self.short_result_hours * 3600
        second = results[1]
        if (first.get("comp_main") or 0) < threshold <= (second.get("comp_main") or 0):
            return second
        return first

    def _build_payload(self, terms: list[str]) -> dict:
        return {
            "searchType": "games",
            "searchTerms": terms,
            "searchPage": 1,
            "size": self.RESULT_COUNT,
            "searchOptions": {
                "games": {
                    "userId": 0,
                    "platform": "",
                    "sortCategory": "popular",
                    "rangeCategory": "main",
                    "rangeTime": {"min": 0, "max": 0},
                    "gameplay": {"perspective": "", "flow": "", "genre": "", "difficulty": ""},
                    "rangeYear": {"max": "", "min": ""},
                    "modifier": "",
                },
                "users": {"sortCategory": "postcount"},
                "lists": {"sortCategory": "follows"},
                "filter": "",
                "sort": 0,
                "randomizer": 0,
            },
            "useCache": True,
        }

    # ── Public entry point ───────────────────────────────────────

    async def get_main_story_hours(self, title: str) -> Optional[float]:
        """Discovery + search, retrying once without edition qualifiers."""
        try:
            config = await self.get_config()
            if config is None:
                return None

            hours = await self.search(config, title)
            if hours is None and has_edition_qualifier(title):
                cleaned = strip_edition_qualifiers(title)
                config = await self.get_config()
                if cleaned and config is not None:
                    logger.debug(f"HLTB retry {title!r} as {cleaned!r}")
                    hours = await self.search(config, cleaned)
            return hours
        except Exception as e:
            logger.warning(f"HLTB lookup failed for {title!r}: {e}")
            return None
