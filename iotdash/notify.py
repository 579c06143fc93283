"""User notification delivery.

The engine only needs "deliver this titled message"; how it reaches the
user (push service, chat bot, desktop toast) is up to the implementation.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any, Callable

from loguru import logger


class Notifier(abc.ABC):
    """Delivers a titled message to the user."""

    @abc.abstractmethod
    async def notify(self, title: str, body: str) -> None:
        """Deliver one notification."""


class LoggingNotifier(Notifier):
    """Writes notifications to the log. Default when nothing else is wired."""

    async def notify(self, title: str, body: str) -> None:
        logger.info(f"[Notify] {title}: {body}")


class CallbackNotifier(Notifier):
    """Forwards notifications to a plain callable (sync or async)."""

    def __init__(self, callback: Callable[[str, str], Any]):
        self._callback = callback

    async def notify(self, title: str, body: str) -> None:
        result = self._callback(title, body)
        if asyncio.iscoroutine(result):
            await result
        logger.debug(f"[Notify] delivered '{title}'")
