"""Notification modules."""
from __future__ import annotations

from ..config import NotificationsConfig
from ..interfaces.notifier import Notifier
from .discord import DiscordNotifier

__all__ = ["DiscordNotifier", "build_notifiers"]


def build_notifiers(config: NotificationsConfig) -> list[Notifier]:
    """Instantiate every enabled notification channel."""
    notifiers: list[Notifier] = []
    if config.discord.enabled:
        notifiers.append(DiscordNotifier(config.discord))
    return notifiers
