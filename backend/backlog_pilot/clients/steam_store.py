"""Steam storefront client — app details and aggregate reviews.

Both endpoints are public and unauthenticated. Missing data is ``None``;
only throttling (HTTP 429) is raised, so the sync driver can back off.
"""

import httpx
import logging
from typing import Optional

from backlog_pilot.clients.base import CatalogMetadata, ReviewSummary
from backlog_pilot.errors import RateLimitedError

logger = logging.getLogger(__name__)

KNOWN_TYPES = ("game", "dlc", "software")


class SteamStoreClient:
    """Steam storefront API client."""

    BASE_URL = "https://store.steampowered.com"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 15.0,
        default_retry_after: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_retry_after = default_retry_after
        self._transport = transport

    async def _get(self, path: str, params: dict | None = None) -> Optional[dict]:
        """GET a storefront JSON document. None on any non-success."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}{path}", params=params)
        except httpx.HTTPError as e:
            logger.warning(f"Steam store request {path} failed: {e}")
            return None

        if resp.status_code == 429:
            raise RateLimitedError(
                "Steam store rate limit",
                retry_after=self._parse_retry_after(resp.headers.get("Retry-After")),
            )
        if resp.status_code != 200:
            logger.debug(f"Steam store {path} returned {resp.status_code}")
            return None

        try:
            data = resp.json()
        except ValueError:
            logger.warning(f"Steam store {path} returned non-JSON body")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Steam store {path} returned {type(data).__name__}, expected an object")
            return None
        return data

    def _parse_retry_after(self, value: Optional[str]) -> float:
        try:
            return float(value) if value else self.default_retry_after
        except ValueError:
            return self.default_retry_after

    # ── App details ──────────────────────────────────────────────

    async def get_catalog_details(self, app_id: int) -> Optional[dict]:
        """Raw app-details entry for one app id, or None if unavailable."""
        data = await self._get("/api/appdetails", {"appids": app_id})
        if not data:
            return None
        entry = data.get(str(app_id))
        if not isinstance(entry, dict) or not entry.get("success") or not entry.get("data"):
            return None
        return entry

    @staticmethod
    def extract_metadata(details: dict) -> Optional[CatalogMetadata]:
        """Map an app-details entry to the fields we keep."""
        if not details or not details.get("success") or not details.get("data"):
            return None

        data = details["data"]
        app_type = (data.get("type") or "").lower()
        return CatalogMetadata(
            type=app_type if app_type in KNOWN_TYPES else "unknown",
            name=data.get("name") or None,
            genres=[g["description"] for g in data.get("genres") or [] if g.get("description")],
            categories=[c["description"] for c in data.get("categories") or [] if c.get("description")],
            description=data.get("short_description") or None,
            release_date=(data.get("release_date") or {}).get("date") or None,
            header_image=data.get("header_image") or None,
        )

    # ── Reviews ──────────────────────────────────────────────────

    async def get_review_data(self, app_id: int) -> Optional[ReviewSummary]:
        """Share of positive reviews (0-100) and total review count."""
        data = await self._get(
            f"/appreviews/{app_id}",
            {"json": 1, "language": "all", "purchase_type": "all", "num_per_page": 0},
        )
        if not data or data.get("success") != 1:
            return None

        summary = data.get("query_summary") or {}
        total = summary.get("total_reviews") or 0
        if total <= 0:
            return None

        positive = summary.get("total_positive") or 0
        return ReviewSummary(score=round(positive / total * 100), count=total)
