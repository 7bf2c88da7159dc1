"""Probe all configured integrations on startup and report status."""

import httpx
from backlog_pilot.config import Settings


async def probe_all(settings: Settings) -> dict:
    """Check reachability of all configured services. Returns status dict."""
    results = {}

    async with httpx.AsyncClient(timeout=5.0, follow_redirects=True) as client:
        # Steam storefront (public)
        results["steam_store"] = await _probe(
            client, f"{settings.steam_store_url}/api/appdetails?appids=10",
        )

        # Steam Web API (owned games)
        if settings.has_steam_web_api:
            results["steam_web_api"] = await _probe(
                client,
                f"{settings.steam_api_url}/ISteamWebAPIUtil/GetServerInfo/v1/",
            )
        else:
            results["steam_web_api"] = {"status": "not_configured"}

        # HowLongToBeat homepage (endpoint discovery starts here)
        results["hltb"] = await _probe(client, f"{settings.hltb_base_url}/")

        # Completion service
        if settings.has_llm:
            results["llm"] = await _probe(
                client, f"{settings.llm_base_url}/models",
                headers={"Authorization": f"Bearer {settings.llm_api_key}"},
            )
        else:
            results["llm"] = {"status": "not_configured"}

    return results


async def _probe(client: httpx.AsyncClient, url: str, headers: dict | None = None) -> dict:
    """Probe a single endpoint."""
    try:
        resp = await client.get(url, headers=headers)
        return {
            "status": "ok" if resp.status_code < 400 else "error",
            "code": resp.status_code,
        }
    except httpx.ConnectError:
        return {"status": "unreachable"}
    except Exception as e:
        return {"status": "error", "detail": str(e)[:200]}
