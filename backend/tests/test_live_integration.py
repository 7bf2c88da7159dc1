"""Live integration smoke test — runs against actual services.

Usage: python -m tests.test_live_integration
NOT for CI — hits the real Steam storefront, HowLongToBeat and (optionally)
the Steam Web API, the completion service and PostgreSQL.
"""

import asyncio
import os
import sys

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def check_steam_store():
    """Fetch a well-known title (Portal 2) from the public storefront."""
    from backlog_pilot.clients.steam_store import SteamStoreClient
    client = SteamStoreClient()

    print("\n═══ STEAM STORE ═══")
    details = await client.get_catalog_details(620)
    meta = client.extract_metadata(details) if details else None
    print(f"  App details: {'✅' if meta else '❌'}")
    if not meta:
        return
    print(f"    {meta.name} ({meta.type}), released {meta.release_date}")
    print(f"    Genres: {meta.genres}")
    print(f"    Single-player: {'Single-player' in meta.categories}")

    reviews = await client.get_review_data(620)
    if reviews:
        from backlog_pilot.services.scoring import weighted_review_score
        weighted = weighted_review_score(reviews.score, reviews.count)
        print(f"  Reviews: ✅ {reviews.score}% of {reviews.count} (weighted {weighted})")
    else:
        print("  Reviews: ❌")


async def check_hltb():
    """Run endpoint discovery and a couple of searches."""
    from backlog_pilot.clients.hltb import HltbClient
    client = HltbClient()

    print("\n═══ HOWLONGTOBEAT ═══")
    config = await client.discover_config()
    print(f"  Discovery: {'✅' if config else '❌'}")
    if not config:
        return
    print(f"    Endpoint: {config.search_endpoint}")

    for title in ("Portal 2", "Hades", "The Witcher 3: Wild Hunt - Complete Edition"):
        hours = await client.get_main_story_hours(title)
        print(f"    {title}: {f'{hours}h' if hours is not None else '—'}")


async def check_steam_web(api_key: str, steam_id: str):
    """List owned games for a Steam account."""
    from backlog_pilot.clients.steam_web import SteamWebClient
    client = SteamWebClient(api_key)

    print("\n═══ STEAM WEB API ═══")
    try:
        games = await client.get_owned_games(steam_id)
    except Exception as e:
        print(f"  Owned games: ❌ ({e})")
        return
    print(f"  Owned games: ✅ {len(games)}")
    for g in sorted(games, key=lambda g: -g.playtime_forever)[:5]:
        print(f"    [{g.app_id}] {g.name} ({g.playtime_forever} min)")


async def check_llm(base_url: str, api_key: str, model: str):
    """Ask the completion service for a tiny JSON reply and parse it."""
    from backlog_pilot.clients.llm import ChatCompletionClient
    from backlog_pilot.services.prompt import parse_reply
    client = ChatCompletionClient(base_url, api_key, model=model)

    print("\n═══ COMPLETION SERVICE ═══")
    try:
        reply = await client.complete(
            'Respond with ONLY this JSON: {"app_id": 620, "reasoning": "Smoke test."}'
        )
        parsed = parse_reply(reply)
        print(f"  Completion: ✅ app_id={parsed.app_id} reasoning={parsed.reasoning!r}")
    except Exception as e:
        print(f"  Completion: ❌ ({e})")


async def check_database(db_url: str):
    """Test PostgreSQL connection."""
    print("\n═══ DATABASE ═══")
    try:
        import asyncpg
        # Convert SQLAlchemy URL to asyncpg format
        pg_url = db_url.replace("postgresql+asyncpg://", "postgresql://")
        conn = await asyncpg.connect(pg_url)
        version = await conn.fetchval("SELECT version()")
        print(f"  Connection: ✅")
        print(f"  Version: {version[:60]}...")
        await conn.close()
    except Exception as e:
        print(f"  Connection: ❌ ({e})")


async def main():
    print("╔══════════════════════════════════════════════════╗")
    print("║  BACKLOG PILOT — Live Integration Smoke Test    ║")
    print("╚══════════════════════════════════════════════════╝")

    # Read from env
    db_url = os.environ.get("DATABASE_URL", "")
    steam_key = os.environ.get("STEAM_API_KEY", "")
    steam_id = os.environ.get("STEAM_ID", "")
    llm_url = os.environ.get("LLM_BASE_URL", "https://api.openai.com/v1")
    llm_key = os.environ.get("LLM_API_KEY", "")
    llm_model = os.environ.get("LLM_MODEL", "gpt-4o-mini")

    await check_steam_store()
    await check_hltb()

    if db_url:
        await check_database(db_url)
    else:
        print("\n═══ DATABASE ═══\n  ⏭ Skipped (DATABASE_URL not set)")

    if steam_key and steam_id:
        await check_steam_web(steam_key, steam_id)
    else:
        print("\n═══ STEAM WEB API ═══\n  ⏭ Skipped (STEAM_API_KEY / STEAM_ID not set)")

    if llm_key:
        await check_llm(llm_url, llm_key, llm_model)
    else:
        print("\n═══ COMPLETION SERVICE ═══\n  ⏭ Skipped (LLM_API_KEY not set)")

    print("\n══════════════════════════════════════════════════")
    print("Done. Review results above for any ❌ failures.")


if __name__ == "__main__":
    asyncio.run(main())
