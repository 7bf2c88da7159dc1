"""Steam Web API client — owned games for library refresh."""

import httpx
from typing import Optional

from backlog_pilot.clients.base import OwnedGame


class SteamWebClient:
    """Steam Web API (api.steampowered.com) client. Needs an API key."""

    BASE_URL = "https://api.steampowered.com"

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get(self, path: str, params: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.get(f"{self.base_url}{path}", params={"key": self.api_key, **params})
            resp.raise_for_status()
            return resp.json()

    async def get_owned_games(self, steam_id: str) -> list[OwnedGame]:
        """All games owned by ``steam_id``, free-to-play titles included."""
        data = await self._get(
            "/IPlayerService/GetOwnedGames/v1/",
            {"steamid": steam_id, "include_appinfo": "true", "include_played_free_games": "true"},
        )
        return [
            OwnedGame(
                app_id=g["appid"],
                name=g.get("name", ""),
                playtime_forever=g.get("playtime_forever", 0),
                img_icon_url=g.get("img_icon_url") or None,
            )
            for g in data.get("response", {}).get("games", [])
        ]
