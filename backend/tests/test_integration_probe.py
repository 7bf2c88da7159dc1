"""
Tests for the startup integration probe
"""
from unittest.mock import AsyncMock, patch

from backlog_pilot.config import Settings
from backlog_pilot.services.integration_probe import probe_all


class TestProbeAll:
    """Which integrations get probed"""

    async def test_optional_integrations_not_configured(self):
        settings = Settings(steam_api_key=None, llm_api_key=None)

        with patch("backlog_pilot.services.integration_probe._probe", new=AsyncMock(return_value={"status": "ok"})) as probe:
            results = await probe_all(settings)

        assert results["steam_store"] == {"status": "ok"}
        assert results["hltb"] == {"status": "ok"}
        assert results["steam_web_api"] == {"status": "not_configured"}
        assert results["llm"] == {"status": "not_configured"}
        assert probe.await_count == 2

    async def test_configured_integrations_are_probed(self):
        settings = Settings(steam_api_key="key", llm_api_key="sk-test", llm_base_url="https://llm.test/v1")

        with patch("backlog_pilot.services.integration_probe._probe", new=AsyncMock(return_value={"status": "ok"})) as probe:
            results = await probe_all(settings)

        assert results["llm"] == {"status": "ok"}
        assert results["steam_web_api"] == {"status": "ok"}
        urls = [call.args[1] for call in probe.await_args_list]
        assert "https://llm.test/v1/models" in urls
        headers = probe.await_args_list[-1].kwargs["headers"]
        assert headers == {"Authorization": "Bearer sk-test"}
