"""Unit tests for notification services."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from protection_swarm.config import DiscordConfig, NotificationsConfig
from protection_swarm.notifications import DiscordNotifier, build_notifiers
from protection_swarm.notifications.discord import MAX_CONTENT_LENGTH, SUPPRESS_NOTIFICATIONS


@pytest.fixture()
def discord_notifier() -> DiscordNotifier:
    return DiscordNotifier(
        DiscordConfig(
            enabled=True,
            webhook_url="https://discord.example.com/api/webhooks/1/abc",
            username="Swarm",
        )
    )


@pytest.fixture()
def discord_notifier_unconfigured() -> DiscordNotifier:
    return DiscordNotifier(DiscordConfig(enabled=True, webhook_url=""))


def _mock_session(status: int) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestDiscordNotifier:
    @pytest.mark.asyncio
    async def test_send_alert_success(self, discord_notifier: DiscordNotifier) -> None:
        mock_session = _mock_session(204)

        with patch("protection_swarm.notifications.discord.aiohttp.ClientSession", return_value=mock_session):
            with patch("protection_swarm.notifications.discord.aiohttp.TCPConnector"):
                result = await discord_notifier.send_alert("test alert", subject="Incident failed")

        assert result is True
        payload = mock_session.post.call_args.kwargs["json"]
        assert payload["content"] == "**Incident failed**\ntest alert"
        assert payload["username"] == "Swarm"
        assert "flags" not in payload

    @pytest.mark.asyncio
    async def test_send_alert_failure(self, discord_notifier: DiscordNotifier) -> None:
        mock_session = _mock_session(403)

        with patch("protection_swarm.notifications.discord.aiohttp.ClientSession", return_value=mock_session):
            with patch("protection_swarm.notifications.discord.aiohttp.TCPConnector"):
                result = await discord_notifier.send_alert("test alert")

        assert result is False

    @pytest.mark.asyncio
    async def test_silent_log_sets_flag(self, discord_notifier: DiscordNotifier) -> None:
        mock_session = _mock_session(200)

        with patch("protection_swarm.notifications.discord.aiohttp.ClientSession", return_value=mock_session):
            with patch("protection_swarm.notifications.discord.aiohttp.TCPConnector"):
                result = await discord_notifier.send_log("test log")

        assert result is True
        payload = mock_session.post.call_args.kwargs["json"]
        assert payload["flags"] == SUPPRESS_NOTIFICATIONS

    @pytest.mark.asyncio
    async def test_long_content_truncated(self, discord_notifier: DiscordNotifier) -> None:
        mock_session = _mock_session(204)

        with patch("protection_swarm.notifications.discord.aiohttp.ClientSession", return_value=mock_session):
            with patch("protection_swarm.notifications.discord.aiohttp.TCPConnector"):
                await discord_notifier.send_log("x" * 5000, silent=False)

        content = mock_session.post.call_args.kwargs["json"]["content"]
        assert len(content) == MAX_CONTENT_LENGTH
        assert content.endswith("...")

    @pytest.mark.asyncio
    async def test_unconfigured_returns_false(
        self, discord_notifier_unconfigured: DiscordNotifier
    ) -> None:
        result = await discord_notifier_unconfigured.send_alert("test")
        assert result is False

        result = await discord_notifier_unconfigured.send_log("test")
        assert result is False


class TestBuildNotifiers:
    def test_disabled_builds_nothing(self) -> None:
        assert build_notifiers(NotificationsConfig()) == []

    def test_enabled_discord(self) -> None:
        config = NotificationsConfig(
            discord=DiscordConfig(enabled=True, webhook_url="https://discord.example.com/x")
        )
        notifiers = build_notifiers(config)
        assert len(notifiers) == 1
        assert isinstance(notifiers[0], DiscordNotifier)
