"""Discord webhook notification service."""
import logging
import ssl

import aiohttp
import certifi

from ..config import DiscordConfig

logger = logging.getLogger(__name__)

# Discord message flag that suppresses push and desktop notifications.
SUPPRESS_NOTIFICATIONS = 1 << 12
MAX_CONTENT_LENGTH = 2000


class DiscordNotifier:
    """Send notifications via a Discord webhook."""

    def __init__(self, config: DiscordConfig) -> None:
        self.webhook_url = config.webhook_url
        self.username = config.username

    async def _send_message(self, content: str, silent: bool = False) -> bool:
        """Post a message to the webhook."""
        if not self.webhook_url:
            logger.warning("Discord webhook not configured")
            return False

        if len(content) > MAX_CONTENT_LENGTH:
            content = content[: MAX_CONTENT_LENGTH - 3] + "..."

        payload = {"content": content, "username": self.username}
        if silent:
            payload["flags"] = SUPPRESS_NOTIFICATIONS

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(self.webhook_url, json=payload) as response:
                if response.status in (200, 204):
                    return True
                else:
                    logger.error(
                        "Failed to send Discord message: %s", response.status
                    )
                    return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Send an alert; the subject becomes a bold first line."""
        content = f"**{subject}**\n{message}" if subject else message
        if await self._send_message(content, silent=False):
            logger.info("Discord alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        """Send a status log message."""
        if await self._send_message(message, silent=silent):
            logger.info("Discord log sent")
            return True
        return False
